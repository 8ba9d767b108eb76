"""
End-to-end lesson generation with quality gates.

Flow:
1. Fit the raw slots into the model budget, truncating few-shot/RAG
2. Assemble the prompt (Serial Position context window)
3. Call the generation capability
4. Parse the lesson JSON
5. Score it heuristically (and optionally with the LLM judge)
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Optional

from context.context_window import ContextUsage, ContextWindowManager, PromptComponents
from context.token_budget import FitResult, TokenBudgetManager
from evaluation.lesson_evaluator import EvaluationResult, LessonEvaluator
from evaluation.llm_judge import JudgeResult, LLMJudgeEvaluator

logger = logging.getLogger(__name__)

_OUTER_FENCE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$")


@dataclass
class LessonRequest:
    """Inputs for one lesson generation."""

    curriculum: Dict[str, Any]  # texto_del_pomodoro, tematica_semanal, concepto_del_dia
    current_query: str
    system_prompt: str = ""
    critical_instructions: Optional[str] = None
    few_shot_examples: Optional[str] = None
    rag_context: str = ""
    student_profile: Optional[str] = None
    session_history: Optional[str] = None
    reminder_end: Optional[str] = None
    lesson_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    use_judge: bool = False


@dataclass
class LessonGenerationResult:
    lesson: Dict[str, Any]
    evaluation: EvaluationResult
    budget: FitResult
    context_usage: ContextUsage
    judge: Optional[JudgeResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def parse_lesson(text: str) -> Dict[str, Any]:
    """
    Parse generated text into a lesson dict.

    JSON replies (optionally wrapped in one outer code fence) are used
    as-is; fences inside the lesson content are left untouched. Anything
    else becomes {"contenido": text, "quiz": []}.
    """
    stripped = (text or "").strip()
    fenced = _OUTER_FENCE.match(stripped)
    if fenced:
        stripped = fenced.group(1)
    if stripped.startswith("{"):
        try:
            parsed = json.loads(stripped)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            logger.warning("Lesson reply looked like JSON but did not parse")
    return {"contenido": text or "", "quiz": []}


class LessonPipeline:
    """
    Generate a lesson and gate it on quality.

    Usage:
        pipeline = LessonPipeline(
            generate=client.generate,
            context_manager=ContextWindowManager(),
            budget_manager=budget_for_model("pro"),
            evaluator=LessonEvaluator(store=store),
        )
        result = pipeline.generate_lesson(request)
    """

    def __init__(
        self,
        generate: Callable[[str], str],
        context_manager: ContextWindowManager,
        budget_manager: TokenBudgetManager,
        evaluator: LessonEvaluator,
        judge: LLMJudgeEvaluator = None,
    ):
        self.generate = generate
        self.context_manager = context_manager
        self.budget_manager = budget_manager
        self.evaluator = evaluator
        self.judge = judge

    def generate_lesson(self, request: LessonRequest) -> LessonGenerationResult:
        """
        Run the full pipeline for one lesson.

        Errors from the generation capability propagate to the caller.
        """
        fitted = self.budget_manager.fit_within_budget(
            {
                "system": request.system_prompt,
                "few_shot": request.few_shot_examples,
                "session": request.session_history,
                "rag": request.rag_context,
                "user": request.current_query,
            }
        )
        if fitted.was_adjusted:
            logger.warning(
                f"Prompt adjusted by budget: {fitted.original_tokens} -> "
                f"{fitted.final_tokens} tokens"
            )

        optimized = self.context_manager.optimize_context(
            PromptComponents(
                critical_instructions=request.critical_instructions,
                system_prompt=request.system_prompt,
                current_query=request.current_query,
                few_shot_examples=fitted.components.get("few_shot"),
                rag_context=fitted.components.get("rag"),
                student_profile=request.student_profile,
                session_history=request.session_history,
                reminder_end=request.reminder_end,
            )
        )
        logger.info(
            f"Context optimized: {optimized.usage.used_tokens}/"
            f"{optimized.usage.available_tokens} tokens"
        )

        raw = self.generate(optimized.optimized_prompt)
        lesson = parse_lesson(raw)

        if request.lesson_id and self.evaluator.store is not None:
            evaluation = self.evaluator.evaluate_and_save(
                request.lesson_id,
                lesson,
                request.curriculum,
                request.rag_context,
                session_id=request.session_id,
                user_id=request.user_id,
            )
        else:
            evaluation = self.evaluator.evaluate(
                lesson, request.curriculum, request.rag_context
            )

        judge_result = None
        if request.use_judge and self.judge is not None:
            judge_result = self.judge.evaluate(lesson, request.curriculum)

        logger.info(
            f"Lesson {request.lesson_id or '<unsaved>'} evaluated: "
            f"heuristic={evaluation.scores.overall} "
            f"judge={judge_result.overall if judge_result else 'N/A'} "
            f"passed={evaluation.passed}"
        )

        return LessonGenerationResult(
            lesson=lesson,
            evaluation=evaluation,
            budget=fitted,
            context_usage=optimized.usage,
            judge=judge_result,
            metadata={
                "lesson_id": request.lesson_id,
                "session_id": request.session_id,
                "scores": asdict(evaluation.scores),
                "budget_used": {
                    "was_adjusted": fitted.was_adjusted,
                    "tokens": fitted.final_tokens,
                },
            },
        )
