"""
Regression testing for lesson generation.

Stores expected input/output baselines and replays them through the
generation capability after every prompt or model change:
- lexical similarity to the expected output (ROUGE-1 gate)
- coverage of expected topics
- absence of forbidden terms

Batches call the generator strictly one baseline at a time so the LLM
endpoint never sees concurrent regression traffic and the run log stays
in a deterministic order.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from deployment.circuit_breaker import CircuitBreaker
from shared.config import settings
from shared.numeric import round_half_up
from storage.record_store import BaselineRecord, RecordStore, RegressionRunRecord

from .text_metrics import CombinedMetrics, calculate_all

logger = logging.getLogger(__name__)

Generator = Callable[[Dict[str, Any]], str]
AsyncGenerator = Callable[[Dict[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class RegressionThresholds:
    rouge1_f1: float = settings.regression.rouge1_f1
    rougeL_f1: float = settings.regression.rougeL_f1
    bleu: float = settings.regression.bleu
    topic_coverage: float = settings.regression.topic_coverage


@dataclass
class RegressionMetrics:
    """What a single regression run measured."""

    text_metrics: Optional[CombinedMetrics]
    topics_coverage: float
    topics_found: List[str]
    topics_missing: List[str]
    forbidden_found: List[str]


@dataclass
class RegressionResult:
    """Outcome of one baseline check; `error` set when it could not run."""

    baseline_id: str
    passed: bool
    test_name: Optional[str] = None
    metrics: Optional[RegressionMetrics] = None
    thresholds: Optional[RegressionThresholds] = None
    error: Optional[str] = None


@dataclass
class RegressionSummary:
    total: int
    passed: int
    failed: int
    pass_rate: int  # percent
    results: List[RegressionResult] = field(default_factory=list)


@dataclass
class RegressionReport:
    has_regression: bool
    reason: Optional[str] = None
    failed_runs: Optional[List[str]] = None


class RegressionTester:
    """
    Baseline-driven regression testing.

    Usage:
        tester = RegressionTester(store)
        baseline_id = tester.add_baseline(
            "bucles-scratch",
            context={"texto_del_pomodoro": "Bucles en Scratch"},
            expected_topics=["bucle", "repetir"],
            forbidden_terms=["printf"],
        )
        summary = tester.run_all_tests(lambda ctx: generate_lesson(ctx))
        report = tester.detect_regression(baseline_id)
    """

    def __init__(
        self,
        store: RecordStore,
        thresholds: RegressionThresholds = None,
        history_window: int = None,
        max_stored_output_chars: int = None,
    ):
        """
        Args:
            store: Baseline and run store
            thresholds: Pass/fail thresholds
            history_window: Runs inspected by detect_regression
            max_stored_output_chars: Generated output is cut to this when stored
        """
        self.store = store
        self.thresholds = thresholds or RegressionThresholds()
        self.history_window = history_window or settings.regression.history_window
        self.max_stored_output_chars = (
            max_stored_output_chars or settings.regression.max_stored_output_chars
        )

    def add_baseline(
        self,
        name: str,
        context: Mapping[str, Any],
        expected_output: Optional[str] = None,
        expected_topics: Optional[List[str]] = None,
        forbidden_terms: Optional[List[str]] = None,
    ) -> str:
        """
        Add or replace the baseline named `name`.

        Identity is the name: re-adding a name replaces the previous
        definition under a fresh id.

        Returns:
            The new baseline id
        """
        baseline_id = f"baseline-{uuid.uuid4().hex[:12]}"
        self.store.upsert_baseline(
            BaselineRecord(
                id=baseline_id,
                test_name=name,
                input_context=dict(context),
                expected_output=expected_output or None,
                expected_topics=list(expected_topics or []),
                forbidden_terms=list(forbidden_terms or []),
            )
        )
        logger.info(f"Baseline '{name}' stored as {baseline_id}")
        return baseline_id

    def list_baselines(self) -> List[BaselineRecord]:
        return self.store.list_baselines()

    def run_test(self, baseline_id: str, generated_output: str) -> RegressionResult:
        """
        Check one generated output against a stored baseline.

        An unknown baseline id returns a result with `error` set instead
        of raising. Every completed check is appended to the run log.
        """
        baseline = self.store.get_baseline(baseline_id)
        if baseline is None:
            return RegressionResult(
                baseline_id=baseline_id,
                passed=False,
                error=f"Baseline {baseline_id} not found",
            )

        output = generated_output or ""
        lower_output = output.lower()

        text_metrics = None
        if baseline.expected_output:
            text_metrics = calculate_all(output, baseline.expected_output)

        topics_found = [t for t in baseline.expected_topics if t.lower() in lower_output]
        topics_coverage = (
            len(topics_found) / len(baseline.expected_topics)
            if baseline.expected_topics
            else 1.0
        )

        forbidden_found = [t for t in baseline.forbidden_terms if t.lower() in lower_output]

        similarity_ok = (
            text_metrics is None or text_metrics.rouge1.f1 >= self.thresholds.rouge1_f1
        )
        passed = (
            similarity_ok
            and topics_coverage >= self.thresholds.topic_coverage
            and not forbidden_found
        )

        metrics = RegressionMetrics(
            text_metrics=text_metrics,
            topics_coverage=round_half_up(topics_coverage, 2),
            topics_found=topics_found,
            topics_missing=[t for t in baseline.expected_topics if t not in topics_found],
            forbidden_found=forbidden_found,
        )

        self.store.append_run(
            RegressionRunRecord(
                baseline_id=baseline_id,
                generated_output=output[: self.max_stored_output_chars],
                metrics=asdict(metrics),
                passed=passed,
            )
        )

        if not passed:
            logger.warning(
                f"Regression check failed for '{baseline.test_name}': "
                f"coverage={metrics.topics_coverage}, forbidden={forbidden_found}"
            )

        return RegressionResult(
            baseline_id=baseline_id,
            test_name=baseline.test_name,
            passed=passed,
            metrics=metrics,
            thresholds=self.thresholds,
        )

    def run_all_tests(
        self,
        generator: Generator,
        breaker: CircuitBreaker = None,
    ) -> RegressionSummary:
        """
        Replay every baseline through the generator, one at a time.

        A failure for one baseline (including an open circuit) is recorded
        as a failed result and the batch continues.

        Args:
            generator: Takes a baseline's input context, returns lesson text
            breaker: Optional circuit breaker around the generator

        Returns:
            RegressionSummary over all baselines
        """
        baselines = self.store.list_baselines()
        logger.info(f"Starting regression batch over {len(baselines)} baselines")

        results = []
        for baseline in baselines:
            try:
                if breaker is not None:
                    generated = breaker.call(generator, baseline.input_context)
                else:
                    generated = generator(baseline.input_context)
            except Exception as e:
                results.append(self._generation_failure(baseline, e))
                continue
            results.append(self.run_test(baseline.id, generated))

        return self._summarize(results)

    async def arun_all_tests(
        self,
        generator: AsyncGenerator,
        breaker: CircuitBreaker = None,
    ) -> RegressionSummary:
        """
        Async variant of run_all_tests.

        Each generator call is awaited before the next one starts.
        """
        baselines = self.store.list_baselines()
        logger.info(f"Starting async regression batch over {len(baselines)} baselines")

        results = []
        for baseline in baselines:
            try:
                if breaker is not None:
                    generated = await breaker.call_async(generator, baseline.input_context)
                else:
                    generated = await generator(baseline.input_context)
            except Exception as e:
                results.append(self._generation_failure(baseline, e))
                continue
            results.append(self.run_test(baseline.id, generated))

        return self._summarize(results)

    def get_history(self, baseline_id: str, limit: int = 10) -> List[RegressionRunRecord]:
        """Runs for a baseline, most recent first."""
        return self.store.get_runs(baseline_id, limit=limit)

    def detect_regression(self, baseline_id: str) -> RegressionReport:
        """
        Flag a regression when the two most recent runs both failed
        while at least one of the older runs in the window passed.
        """
        history = self.get_history(baseline_id, limit=self.history_window)

        if len(history) < 2:
            return RegressionReport(has_regression=False, reason="Insufficient history")

        recent, older = history[:2], history[2:]
        recent_failed = not any(r.passed for r in recent)
        previously_passed = any(r.passed for r in older)

        if recent_failed and previously_passed:
            logger.warning(f"Regression detected for baseline {baseline_id}")
            return RegressionReport(
                has_regression=True,
                reason="Recent runs failing after previous success",
                failed_runs=[r.run_at for r in recent],
            )

        return RegressionReport(has_regression=False)

    def _generation_failure(self, baseline: BaselineRecord, error: Exception) -> RegressionResult:
        logger.error(f"Generation failed for baseline '{baseline.test_name}': {error}")
        return RegressionResult(
            baseline_id=baseline.id,
            test_name=baseline.test_name,
            passed=False,
            error=str(error),
        )

    def _summarize(self, results: List[RegressionResult]) -> RegressionSummary:
        passed = sum(1 for r in results if r.passed)
        summary = RegressionSummary(
            total=len(results),
            passed=passed,
            failed=len(results) - passed,
            pass_rate=round_half_up(passed / len(results) * 100) if results else 0,
            results=results,
        )
        logger.info(
            f"Regression batch complete: {summary.passed}/{summary.total} passed "
            f"({summary.pass_rate}%)"
        )
        return summary
