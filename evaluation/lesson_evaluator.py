"""
Heuristic quality evaluation for generated lessons.

Five independent dimensions, each scored 0-100:
- faithfulness: does the lesson cover the pomodoro topic?
- relevance: does it reuse terms from the curriculum / RAG context?
- length: does it reach the minimum word count?
- structure: title, subtitles, examples, analogy, quiz
- no_hallucination: does it avoid vocabulary leaked from C/CS50 material?

The overall score is a fixed weighted sum; a lesson passes at 70.
"""

import logging
import re
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from shared.config import settings
from shared.numeric import round_half_up
from storage.record_store import EvaluationRecord, RecordStore

logger = logging.getLogger(__name__)

PROHIBITED_TERMS = [
    "printf",
    "scanf",
    "gcc",
    "compile",
    "main()",
    "int main",
    "return 0",
    "#include",
    "stdlib",
    "comando de terminal",
    "línea de comandos",
]

_CONTEXT_TERM = re.compile(r"\b[a-záéíóúñü]{4,}\b")
_TITLE = re.compile(r"^#\s+.+", re.MULTILINE)
_SUBTITLE = re.compile(r"^#{2,3}\s+.+", re.MULTILINE)
_BOLD = re.compile(r"\*\*[^*]+\*\*")


@dataclass
class FaithfulnessDetails:
    topic_words: int
    matched_words: int
    match_rate: int  # percent


@dataclass
class RelevanceDetails:
    context_terms: int
    matched_terms: int
    match_rate: int  # percent


@dataclass
class LengthDetails:
    word_count: int
    min_required: int
    percentage: int


@dataclass
class StructureDetails:
    has_title: bool
    has_subtitles: bool
    has_examples: bool
    has_analogy: bool
    has_quiz: bool
    quiz_has_options: bool


@dataclass
class NoHallucinationDetails:
    prohibited_found: List[str]
    count: int


@dataclass
class EvaluationDetails:
    """Per-dimension diagnostics, one record type per dimension."""

    faithfulness: FaithfulnessDetails
    relevance: RelevanceDetails
    length: LengthDetails
    structure: StructureDetails
    no_hallucination: NoHallucinationDetails


@dataclass
class EvaluationScores:
    faithfulness: int
    relevance: int
    length: int
    structure: int
    no_hallucination: int
    overall: int


@dataclass
class EvaluationResult:
    """Result of evaluating one lesson."""

    scores: EvaluationScores
    details: EvaluationDetails
    passed: bool
    word_count: int
    has_examples: bool
    has_quiz: bool
    evaluation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EvaluationStats:
    """Aggregate over stored evaluations."""

    total_evaluations: int
    avg_score: Optional[float]
    min_score: Optional[int]
    max_score: Optional[int]
    passed_count: int
    avg_word_count: Optional[float]
    pass_rate: int
    p50_score: Optional[float] = None
    dimension_means: Dict[str, float] = field(default_factory=dict)


def lesson_content(lesson: Mapping) -> str:
    return lesson.get("contenido") or lesson.get("content") or ""


def lesson_quiz(lesson: Mapping) -> List[Mapping]:
    return list(lesson.get("quiz") or [])


def _question_options(question: Mapping) -> List:
    return list(question.get("opciones") or question.get("options") or [])


class LessonEvaluator:
    """
    Score generated lessons on five heuristic dimensions.

    Usage:
        evaluator = LessonEvaluator(store=store)
        result = evaluator.evaluate(lesson, context, rag_context)
        if not result.passed:
            ...
    """

    def __init__(
        self,
        store: RecordStore = None,
        weights: Dict[str, float] = None,
        prohibited_terms: List[str] = None,
        min_words: int = None,
        pass_threshold: int = None,
    ):
        """
        Args:
            store: Record store for evaluate_and_save / get_stats
            weights: Dimension weights, must sum to 1.0
            prohibited_terms: Hallucination markers
            min_words: Word count that earns a full length score
            pass_threshold: Overall score needed to pass
        """
        self.store = store
        self.weights = dict(weights or settings.evaluation.weights)
        self.prohibited_terms = list(prohibited_terms or PROHIBITED_TERMS)
        self.min_words = min_words or settings.evaluation.min_words
        self.pass_threshold = (
            pass_threshold
            if pass_threshold is not None
            else settings.evaluation.pass_threshold
        )

        expected = {"faithfulness", "relevance", "length", "structure", "no_hallucination"}
        if set(self.weights) != expected:
            raise ValueError(f"Weights must cover exactly {sorted(expected)}")
        if abs(sum(self.weights.values()) - 1.0) > 1e-9:
            raise ValueError(
                f"Weights must sum to 1.0, got {sum(self.weights.values()):.4f}"
            )

    def evaluate(
        self,
        lesson: Mapping,
        context: Mapping,
        rag_context: str = "",
    ) -> EvaluationResult:
        """
        Evaluate a generated lesson.

        Args:
            lesson: {"contenido": str, "quiz": [{"pregunta", "opciones", ...}]}
            context: {"texto_del_pomodoro", "tematica_semanal", "concepto_del_dia"}
            rag_context: Retrieved context used for generation

        Returns:
            EvaluationResult with scores and per-dimension details
        """
        content = lesson_content(lesson)
        quiz = lesson_quiz(lesson)

        faithfulness, faithfulness_details = self._evaluate_faithfulness(
            content, context.get("texto_del_pomodoro") or ""
        )
        relevance, relevance_details = self._evaluate_relevance(
            content, context, rag_context or ""
        )
        length, length_details = self._evaluate_length(content)
        structure, structure_details = self._evaluate_structure(content, quiz)
        no_hallucination, hallucination_details = self._evaluate_no_hallucination(content)

        weighted = (
            faithfulness * self.weights["faithfulness"]
            + relevance * self.weights["relevance"]
            + length * self.weights["length"]
            + structure * self.weights["structure"]
            + no_hallucination * self.weights["no_hallucination"]
        )
        overall = int(min(100, max(0, round_half_up(weighted))))

        return EvaluationResult(
            scores=EvaluationScores(
                faithfulness=faithfulness,
                relevance=relevance,
                length=length,
                structure=structure,
                no_hallucination=no_hallucination,
                overall=overall,
            ),
            details=EvaluationDetails(
                faithfulness=faithfulness_details,
                relevance=relevance_details,
                length=length_details,
                structure=structure_details,
                no_hallucination=hallucination_details,
            ),
            passed=overall >= self.pass_threshold,
            word_count=length_details.word_count,
            has_examples=structure_details.has_examples,
            has_quiz=structure_details.has_quiz,
        )

    def evaluate_and_save(
        self,
        lesson_id: str,
        lesson: Mapping,
        context: Mapping,
        rag_context: str = "",
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EvaluationResult:
        """Evaluate and persist an immutable audit record."""
        if self.store is None:
            raise RuntimeError("evaluate_and_save requires a record store")

        result = self.evaluate(lesson, context, rag_context)
        evaluation_id = str(uuid.uuid4())

        self.store.save_evaluation(
            EvaluationRecord(
                id=evaluation_id,
                lesson_id=lesson_id,
                session_id=session_id,
                user_id=user_id,
                scores=asdict(result.scores),
                details=asdict(result.details),
                word_count=result.word_count,
                has_examples=result.has_examples,
                has_quiz=result.has_quiz,
            )
        )

        logger.info(
            f"Lesson {lesson_id} evaluated: overall={result.scores.overall} "
            f"passed={result.passed}"
        )
        return replace(result, evaluation_id=evaluation_id)

    def get_stats(self, days: int = 7) -> EvaluationStats:
        """Aggregate evaluations stored in the last `days` days."""
        if self.store is None:
            raise RuntimeError("get_stats requires a record store")

        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        records = self.store.list_evaluations(since=since)

        if not records:
            return EvaluationStats(
                total_evaluations=0,
                avg_score=None,
                min_score=None,
                max_score=None,
                passed_count=0,
                avg_word_count=None,
                pass_rate=0,
            )

        overall = np.array([r.scores["overall"] for r in records], dtype=float)
        word_counts = np.array([r.word_count for r in records], dtype=float)
        passed_count = int(np.sum(overall >= self.pass_threshold))

        return EvaluationStats(
            total_evaluations=len(records),
            avg_score=float(np.mean(overall)),
            min_score=int(np.min(overall)),
            max_score=int(np.max(overall)),
            passed_count=passed_count,
            avg_word_count=float(np.mean(word_counts)),
            pass_rate=round_half_up(passed_count / len(records) * 100),
            p50_score=float(np.percentile(overall, 50)),
            dimension_means={
                dim: float(np.mean([r.scores[dim] for r in records]))
                for dim in self.weights
            },
        )

    def _evaluate_faithfulness(self, content: str, pomodoro_topic: str):
        content_lower = content.lower()
        topic_words = [w for w in pomodoro_topic.lower().split() if len(w) > 3]

        matched = sum(1 for w in topic_words if w in content_lower)
        match_rate = matched / len(topic_words) if topic_words else 0.0
        score = min(100, round_half_up(match_rate * 100))

        return score, FaithfulnessDetails(
            topic_words=len(topic_words),
            matched_words=matched,
            match_rate=round_half_up(match_rate * 100),
        )

    def _evaluate_relevance(self, content: str, context: Mapping, rag_context: str):
        content_lower = content.lower()
        source = " ".join(
            [
                rag_context,
                context.get("tematica_semanal") or "",
                context.get("concepto_del_dia") or "",
            ]
        ).lower()
        context_terms = set(_CONTEXT_TERM.findall(source))

        matched = sum(1 for term in context_terms if term in content_lower)
        match_rate = matched / len(context_terms) if context_terms else 0.0
        # Full coverage of every context term is not expected
        score = min(100, round_half_up(match_rate * 150))

        return score, RelevanceDetails(
            context_terms=len(context_terms),
            matched_terms=matched,
            match_rate=round_half_up(match_rate * 100),
        )

    def _evaluate_length(self, content: str):
        word_count = len(content.split())
        min_words = self.min_words

        if word_count >= min_words:
            score = 100
        elif word_count >= min_words * 0.7:
            score = 80
        elif word_count >= min_words * 0.5:
            score = 60
        else:
            score = round_half_up(word_count / min_words * 50)

        return score, LengthDetails(
            word_count=word_count,
            min_required=min_words,
            percentage=round_half_up(word_count / min_words * 100),
        )

    def _evaluate_structure(self, content: str, quiz: List[Mapping]):
        checks = StructureDetails(
            has_title=bool(_TITLE.search(content)) or "**" in content,
            has_subtitles=bool(_SUBTITLE.search(content))
            or len(_BOLD.findall(content)) >= 3,
            has_examples="Ejemplo" in content or "ejemplo" in content or "```" in content,
            has_analogy="Analogía" in content or "analogía" in content or "Imagina" in content,
            has_quiz=len(quiz) >= 3,
            quiz_has_options=len(quiz) > 0
            and all(len(_question_options(q)) >= 4 for q in quiz),
        )

        score = 0
        if checks.has_title:
            score += 15
        if checks.has_subtitles:
            score += 15
        if checks.has_examples:
            score += 25
        if checks.has_analogy:
            score += 15
        if checks.has_quiz:
            score += 20
        if checks.quiz_has_options:
            score += 10

        return score, checks

    def _evaluate_no_hallucination(self, content: str):
        content_lower = content.lower()
        found = [t for t in self.prohibited_terms if t.lower() in content_lower]
        score = max(0, 100 - 25 * len(found))

        return score, NoHallucinationDetails(prohibited_found=found, count=len(found))
