"""
Pydantic schemas for API request/response models.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BudgetPolicyName(str, Enum):
    BEST_EFFORT = "best_effort"
    STRICT = "strict"


class OptimizeContextRequest(BaseModel):
    """Prompt fragments to place in the context window."""

    critical_instructions: Optional[str] = None
    system_prompt: Optional[str] = None
    current_query: Optional[str] = Field(
        default=None, description="Always included, even over budget"
    )
    few_shot_examples: Optional[str] = None
    rag_context: Optional[str] = None
    student_profile: Optional[str] = None
    session_history: Optional[str] = None
    reminder_end: Optional[str] = None
    max_tokens: int = Field(default=8000, gt=0, description="Model context window")
    reserve_for_output: int = Field(default=2000, ge=0)
    policy: Optional[BudgetPolicyName] = Field(
        default=None, description="Defaults to the BUDGET_POLICY setting"
    )


class SectionUsage(BaseModel):
    name: str
    position: str
    priority: int
    tokens: int
    truncated: bool = False


class ContextUsageResponse(BaseModel):
    used_tokens: int
    available_tokens: int
    utilization: int
    sections: List[SectionUsage]
    dropped: List[str] = Field(default_factory=list)


class OptimizeContextResponse(BaseModel):
    optimized_prompt: str
    usage: ContextUsageResponse


class BudgetCheckRequest(BaseModel):
    text: str
    model: Optional[str] = Field(
        default=None, description="Budget preset: pro, flash, default (DEFAULT_MODEL when unset)"
    )


class BudgetCheckResponse(BaseModel):
    fits: bool
    estimated: int
    available: int
    usage: int


class FitBudgetRequest(BaseModel):
    """Prompt slots to fit into a model budget."""

    system: Optional[str] = None
    few_shot: Optional[str] = None
    session: Optional[str] = None
    rag: Optional[str] = None
    user: Optional[str] = None
    model: Optional[str] = Field(
        default=None, description="Budget preset: pro, flash, default (DEFAULT_MODEL when unset)"
    )
    policy: Optional[BudgetPolicyName] = Field(
        default=None, description="Defaults to the BUDGET_POLICY setting"
    )


class FitBudgetResponse(BaseModel):
    components: Dict[str, Optional[str]]
    was_adjusted: bool
    original_tokens: int
    final_tokens: int
    adjustments: List[Dict[str, Any]] = Field(default_factory=list)


class QuizQuestion(BaseModel):
    pregunta: str = ""
    opciones: List[str] = Field(default_factory=list)
    # English-keyed replies; the evaluator reads this when opciones is empty
    options: List[str] = Field(default_factory=list)
    respuesta_correcta: Optional[str] = None
    explicacion: Optional[str] = None


class LessonPayload(BaseModel):
    contenido: str = Field(..., description="Lesson body in markdown")
    quiz: List[QuizQuestion] = Field(default_factory=list)


class CurriculumContext(BaseModel):
    texto_del_pomodoro: str = ""
    tematica_semanal: str = ""
    concepto_del_dia: str = ""


class EvaluateLessonRequest(BaseModel):
    lesson: LessonPayload
    context: CurriculumContext = Field(default_factory=CurriculumContext)
    rag_context: str = ""
    lesson_id: Optional[str] = Field(
        default=None, description="When set, the evaluation is persisted"
    )
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class EvaluationScoresResponse(BaseModel):
    faithfulness: int
    relevance: int
    length: int
    structure: int
    no_hallucination: int
    overall: int


class EvaluateLessonResponse(BaseModel):
    scores: EvaluationScoresResponse
    details: Dict[str, Any]
    passed: bool
    word_count: int
    has_examples: bool
    has_quiz: bool
    evaluation_id: Optional[str] = None


class EvaluationStatsResponse(BaseModel):
    total_evaluations: int
    avg_score: Optional[float] = None
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    passed_count: int
    avg_word_count: Optional[float] = None
    pass_rate: int
    p50_score: Optional[float] = None
    dimension_means: Dict[str, float] = Field(default_factory=dict)


class AddBaselineRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Unique test name")
    context: Dict[str, Any] = Field(default_factory=dict)
    expected_output: Optional[str] = None
    expected_topics: List[str] = Field(default_factory=list)
    forbidden_terms: List[str] = Field(default_factory=list)


class AddBaselineResponse(BaseModel):
    id: str


class BaselineResponse(BaseModel):
    id: str
    test_name: str
    input_context: Dict[str, Any]
    expected_output: Optional[str] = None
    expected_topics: List[str]
    forbidden_terms: List[str]
    created_at: str


class RunTestRequest(BaseModel):
    generated_output: str


class RunTestResponse(BaseModel):
    baseline_id: str
    test_name: Optional[str] = None
    passed: bool
    metrics: Optional[Dict[str, Any]] = None
    thresholds: Optional[Dict[str, float]] = None
    error: Optional[str] = None


class RegressionRunResponse(BaseModel):
    id: Optional[int] = None
    baseline_id: str
    generated_output: str
    metrics: Dict[str, Any]
    passed: bool
    run_at: str


class RegressionReportResponse(BaseModel):
    has_regression: bool
    reason: Optional[str] = None
    failed_runs: Optional[List[str]] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    store_connected: bool
    baseline_count: int
