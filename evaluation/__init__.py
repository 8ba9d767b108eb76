"""
Lesson evaluation module.
What you cannot measure you cannot improve.

This module implements:
- Lexical text metrics (ROUGE-1, ROUGE-L, BLEU-1, groundedness)
- Heuristic five-dimension lesson scoring
- LLM-as-judge grading and pairwise comparison
- Baseline regression testing and regression detection

Usage:
    from evaluation import LessonEvaluator, RegressionTester

    result = LessonEvaluator().evaluate(lesson, context, rag_context)
    report = RegressionTester(store).detect_regression(baseline_id)
"""

from .lesson_evaluator import EvaluationResult, EvaluationStats, LessonEvaluator
from .llm_judge import ComparisonResult, JudgeResult, LLMJudgeEvaluator
from .regression_tester import (
    RegressionReport,
    RegressionResult,
    RegressionSummary,
    RegressionTester,
    RegressionThresholds,
)
from .text_metrics import (
    CombinedMetrics,
    GroundednessScore,
    RougeScore,
    bleu_1,
    calculate_all,
    groundedness,
    lcs_length,
    rouge_1,
    rouge_l,
    tokenize,
)

__all__ = [
    "CombinedMetrics",
    "ComparisonResult",
    "EvaluationResult",
    "EvaluationStats",
    "GroundednessScore",
    "JudgeResult",
    "LLMJudgeEvaluator",
    "LessonEvaluator",
    "RegressionReport",
    "RegressionResult",
    "RegressionSummary",
    "RegressionTester",
    "RegressionThresholds",
    "RougeScore",
    "bleu_1",
    "calculate_all",
    "groundedness",
    "lcs_length",
    "rouge_1",
    "rouge_l",
    "tokenize",
]
