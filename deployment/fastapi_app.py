"""
FastAPI application for the lesson quality stack.

Exposes:
- Context window assembly and token budget checks
- Heuristic lesson evaluation (optionally persisted) and statistics
- Regression baselines, runs and regression detection
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from context.context_window import ContextWindowManager, PromptComponents
from context.token_budget import BudgetExceededError, BudgetPolicy, budget_for_model
from context.token_estimation import get_estimator
from evaluation.lesson_evaluator import LessonEvaluator
from evaluation.regression_tester import RegressionTester
from shared.config import settings
from shared.schemas import (
    AddBaselineRequest,
    AddBaselineResponse,
    BaselineResponse,
    BudgetCheckRequest,
    BudgetCheckResponse,
    BudgetPolicyName,
    EvaluateLessonRequest,
    EvaluateLessonResponse,
    EvaluationStatsResponse,
    FitBudgetRequest,
    FitBudgetResponse,
    HealthResponse,
    OptimizeContextRequest,
    OptimizeContextResponse,
    RegressionReportResponse,
    RegressionRunResponse,
    RunTestRequest,
    RunTestResponse,
)
from storage import RecordStore, get_record_store

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

__version__ = "1.0.0"


def create_app(store: RecordStore = None) -> FastAPI:
    """
    Build the API around a record store.

    Args:
        store: Record store (defaults to the configured SQLite store)
    """
    store = store or get_record_store()
    estimator = get_estimator(settings.TOKEN_ESTIMATOR, settings.CHARS_PER_TOKEN)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting Lesson Quality Stack v{__version__}")
        try:
            count = len(store.list_baselines())
            logger.info(f"Record store ready. Baselines: {count}")
        except Exception as e:
            logger.warning(f"Record store unavailable: {e}")

        yield

        logger.info("Shutting down Lesson Quality Stack")
        if hasattr(store, "close"):
            store.close()

    app = FastAPI(
        title="Lesson Quality Stack",
        description="Prompt budgeting, lesson evaluation and regression testing API",
        version=__version__,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.evaluator = LessonEvaluator(store=store)
    app.state.tester = RegressionTester(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID for tracing."""
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"- {response.status_code} - {duration_ms:.1f}ms"
        )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(BudgetExceededError)
    async def budget_exceeded_handler(request: Request, exc: BudgetExceededError):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Token budget exceeded",
                "detail": str(exc),
                "estimated": exc.estimated,
                "available": exc.available,
            },
        )

    def _policy(name: Optional[BudgetPolicyName]) -> BudgetPolicy:
        return BudgetPolicy(name.value if name else settings.BUDGET_POLICY)

    def _budget_manager(model: str, policy: BudgetPolicy):
        try:
            return budget_for_model(model, estimator=estimator, policy=policy)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        try:
            count = len(store.list_baselines())
            connected = True
        except Exception:
            count = 0
            connected = False

        return HealthResponse(
            status="healthy" if connected else "degraded",
            version=__version__,
            store_connected=connected,
            baseline_count=count,
        )

    @app.post("/context/optimize", response_model=OptimizeContextResponse)
    async def optimize_context(body: OptimizeContextRequest):
        """Assemble a prompt with Serial Position ordering."""
        try:
            manager = ContextWindowManager(
                max_tokens=body.max_tokens,
                reserve_for_output=body.reserve_for_output,
                estimator=estimator,
                policy=_policy(body.policy),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        fields = body.model_dump(
            exclude={"max_tokens", "reserve_for_output", "policy"}
        )
        result = manager.optimize_context(PromptComponents(**fields))
        return OptimizeContextResponse(
            optimized_prompt=result.optimized_prompt,
            usage=asdict(result.usage),
        )

    @app.post("/budget/check", response_model=BudgetCheckResponse)
    async def check_budget(body: BudgetCheckRequest):
        manager = _budget_manager(body.model, BudgetPolicy.BEST_EFFORT)
        return BudgetCheckResponse(**asdict(manager.check_budget(body.text)))

    @app.post("/budget/fit", response_model=FitBudgetResponse)
    async def fit_budget(body: FitBudgetRequest):
        """Truncate few-shot and RAG slots to fit a model budget."""
        manager = _budget_manager(body.model, _policy(body.policy))
        components = body.model_dump(exclude={"model", "policy"}, exclude_none=True)
        return FitBudgetResponse(**asdict(manager.fit_within_budget(components)))

    @app.post("/lessons/evaluate", response_model=EvaluateLessonResponse)
    async def evaluate_lesson(body: EvaluateLessonRequest):
        """Score a lesson; persisted when lesson_id is given."""
        evaluator: LessonEvaluator = app.state.evaluator
        lesson = body.lesson.model_dump()
        context = body.context.model_dump()

        if body.lesson_id:
            result = evaluator.evaluate_and_save(
                body.lesson_id,
                lesson,
                context,
                body.rag_context,
                session_id=body.session_id,
                user_id=body.user_id,
            )
        else:
            result = evaluator.evaluate(lesson, context, body.rag_context)

        return EvaluateLessonResponse(**result.to_dict())

    @app.get("/lessons/evaluations/stats", response_model=EvaluationStatsResponse)
    async def evaluation_stats(days: int = Query(default=7, ge=1, le=365)):
        evaluator: LessonEvaluator = app.state.evaluator
        return EvaluationStatsResponse(**asdict(evaluator.get_stats(days=days)))

    @app.post("/baselines", response_model=AddBaselineResponse)
    async def add_baseline(body: AddBaselineRequest):
        tester: RegressionTester = app.state.tester
        baseline_id = tester.add_baseline(
            body.name,
            body.context,
            expected_output=body.expected_output,
            expected_topics=body.expected_topics,
            forbidden_terms=body.forbidden_terms,
        )
        return AddBaselineResponse(id=baseline_id)

    @app.get("/baselines", response_model=List[BaselineResponse])
    async def list_baselines():
        tester: RegressionTester = app.state.tester
        return [BaselineResponse(**asdict(b)) for b in tester.list_baselines()]

    @app.post("/baselines/{baseline_id}/runs", response_model=RunTestResponse)
    async def run_test(baseline_id: str, body: RunTestRequest):
        """Check a generated output against a baseline."""
        tester: RegressionTester = app.state.tester
        result = tester.run_test(baseline_id, body.generated_output)
        if result.error:
            raise HTTPException(status_code=404, detail=result.error)
        return RunTestResponse(**asdict(result))

    @app.get("/baselines/{baseline_id}/runs", response_model=List[RegressionRunResponse])
    async def run_history(baseline_id: str, limit: int = Query(default=10, ge=1, le=100)):
        tester: RegressionTester = app.state.tester
        return [RegressionRunResponse(**asdict(r)) for r in tester.get_history(baseline_id, limit)]

    @app.get("/baselines/{baseline_id}/regression", response_model=RegressionReportResponse)
    async def detect_regression(baseline_id: str):
        tester: RegressionTester = app.state.tester
        if tester.store.get_baseline(baseline_id) is None:
            raise HTTPException(status_code=404, detail=f"Baseline {baseline_id} not found")
        return RegressionReportResponse(**asdict(tester.detect_regression(baseline_id)))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
