"""
LLM-as-judge evaluation for generated lessons.

Complements the heuristic evaluator: the generation capability itself
grades the lesson against a pedagogical rubric and returns JSON.

Returns: JudgeResult(success, faithfulness, pedagogy, ..., reasoning)
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from shared.config import settings

from .lesson_evaluator import lesson_content

logger = logging.getLogger(__name__)


JUDGE_PROMPT = """Eres un evaluador de contenido educativo para estudiantes de 10 a 14 años.

Puntúa la lección de 1 a 10 en cada criterio.

LECCIÓN:
{lesson_content}

CURRÍCULO:
{curriculum_context}

CRITERIOS:
1. faithfulness: la lección cubre el tema del pomodoro
2. pedagogy: lenguaje y analogías adecuados para la edad
3. codeFree: evita código real (printf, scanf, gcc, terminal)
4. engagement: mantiene la atención del estudiante
5. structure: introducción, desarrollo, ejemplos y quiz

Responde SOLO con JSON válido:
{{
    "faithfulness": <1-10>,
    "pedagogy": <1-10>,
    "codeFree": <1-10>,
    "engagement": <1-10>,
    "structure": <1-10>,
    "overall": <promedio redondeado>,
    "reasoning": "<una o dos frases>",
    "improvements": ["<sugerencia>", "<sugerencia>"]
}}"""


COMPARE_PROMPT = """Compara dos lecciones sobre "{topic}" para un estudiante de 12 años.

LECCIÓN A:
{lesson_a}

LECCIÓN B:
{lesson_b}

Responde SOLO con JSON válido:
{{
    "winner": "A" | "B" | "tie",
    "reasoning": "<explicación breve>",
    "confidence": <1-10>
}}"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class JudgeResult:
    """Rubric scores returned by the judge (1-10 each)."""

    success: bool
    faithfulness: Optional[float] = None
    pedagogy: Optional[float] = None
    code_free: Optional[float] = None
    engagement: Optional[float] = None
    structure: Optional[float] = None
    overall: Optional[float] = None
    reasoning: str = ""
    improvements: List[str] = field(default_factory=list)
    error: Optional[str] = None
    evaluator_type: str = "llm-judge"


@dataclass
class ComparisonResult:
    """Pairwise preference between two lessons."""

    winner: str  # A, B or tie
    reasoning: str
    confidence: float
    success: bool = True
    error: Optional[str] = None


def parse_json_response(response_text: str) -> Dict:
    """
    Parse a JSON object from an LLM reply.

    Tries, in order: the raw text, a fenced ```json block, the first
    {...} span. Raises ValueError when none parses.
    """
    try:
        return json.loads(response_text)
    except json.JSONDecodeError:
        pass

    for pattern in (_FENCED_JSON, _JSON_OBJECT):
        match = pattern.search(response_text)
        if match:
            candidate = match.group(1) if pattern is _FENCED_JSON else match.group()
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue

    raise ValueError(f"Could not parse JSON from response: {response_text[:200]!r}")


def curriculum_summary(context: Mapping) -> str:
    return "\n".join(
        [
            f"Tema semanal: {context.get('tematica_semanal') or 'N/A'}",
            f"Concepto del día: {context.get('concepto_del_dia') or 'N/A'}",
            f"Pomodoro: {context.get('texto_del_pomodoro') or 'N/A'}",
        ]
    )


class LLMJudgeEvaluator:
    """
    LLM-based lesson grading.

    Usage:
        judge = LLMJudgeEvaluator(generate)
        result = judge.evaluate(lesson, context)
        if result.success:
            print(result.overall, result.improvements)
    """

    def __init__(
        self,
        generate: Callable[[str], str],
        max_lesson_chars: int = None,
    ):
        """
        Args:
            generate: Generation capability, prompt -> text
            max_lesson_chars: Lesson text sent to the judge is cut here
        """
        self.generate = generate
        self.max_lesson_chars = max_lesson_chars or settings.evaluation.judge_max_lesson_chars

    def evaluate(self, lesson: Mapping, context: Mapping) -> JudgeResult:
        """
        Grade a lesson. Never raises; failures come back with success=False.
        """
        prompt = JUDGE_PROMPT.format(
            lesson_content=lesson_content(lesson)[: self.max_lesson_chars],
            curriculum_context=curriculum_summary(context),
        )

        try:
            parsed = parse_json_response(self.generate(prompt))
            return JudgeResult(
                success=True,
                faithfulness=parsed.get("faithfulness"),
                pedagogy=parsed.get("pedagogy"),
                code_free=parsed.get("codeFree"),
                engagement=parsed.get("engagement"),
                structure=parsed.get("structure"),
                overall=parsed.get("overall"),
                reasoning=parsed.get("reasoning", ""),
                improvements=list(parsed.get("improvements") or []),
            )
        except Exception as e:
            logger.error(f"LLM judge evaluation failed: {e}")
            return JudgeResult(success=False, error=str(e))

    def compare_lessons(
        self,
        lesson_a: Mapping,
        lesson_b: Mapping,
        context: Mapping,
    ) -> ComparisonResult:
        """Ask the judge which of two lessons is better."""
        prompt = COMPARE_PROMPT.format(
            topic=context.get("texto_del_pomodoro") or "",
            lesson_a=lesson_content(lesson_a)[:2000],
            lesson_b=lesson_content(lesson_b)[:2000],
        )

        try:
            parsed = parse_json_response(self.generate(prompt))
            winner = parsed.get("winner", "tie")
            if winner not in ("A", "B", "tie"):
                winner = "tie"
            return ComparisonResult(
                winner=winner,
                reasoning=parsed.get("reasoning", ""),
                confidence=parsed.get("confidence") or 0,
            )
        except Exception as e:
            logger.error(f"LLM judge comparison failed: {e}")
            return ComparisonResult(
                winner="tie",
                reasoning=str(e),
                confidence=0,
                success=False,
                error=str(e),
            )
