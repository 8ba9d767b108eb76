"""
Token budget management for lesson prompts.

Treat the prompt as a resource with a budget:
- Each target model gets its own immutable Budget
- Few-shot examples are cut first, then RAG context
- System prompt, session context and the user prompt are never cut

Under the best-effort policy a prompt whose protected slots alone exceed
the budget is still returned (and logged). The strict policy raises.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from shared.config import settings
from shared.numeric import round_half_up

from .token_estimation import CharRatioEstimator

logger = logging.getLogger(__name__)

BUDGET_SLOTS = ("system", "few_shot", "session", "rag", "user")


class BudgetPolicy(Enum):
    """What to do when mandatory content alone exceeds the budget."""

    BEST_EFFORT = "best_effort"
    STRICT = "strict"


class BudgetExceededError(ValueError):
    """Raised under the strict policy when content cannot fit."""

    def __init__(self, message: str, estimated: int, available: int):
        super().__init__(message)
        self.estimated = estimated
        self.available = available


@dataclass(frozen=True)
class Budget:
    """Token budget for one target model."""

    max_tokens: int
    reserved_for_output: int

    def __post_init__(self):
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if not 0 <= self.reserved_for_output < self.max_tokens:
            raise ValueError(
                f"reserved_for_output must be in [0, {self.max_tokens}), "
                f"got {self.reserved_for_output}"
            )

    @property
    def available_budget(self) -> int:
        """Tokens available for the prompt."""
        return self.max_tokens - self.reserved_for_output


@dataclass
class BudgetCheck:
    """Result of checking a single prompt against the budget."""

    fits: bool
    estimated: int
    available: int
    usage: int  # percent of available budget


@dataclass
class FitResult:
    """Result of fitting prompt components into the budget."""

    components: Dict[str, str]
    was_adjusted: bool
    original_tokens: int
    final_tokens: int
    adjustments: List[Dict] = field(default_factory=list)


class TokenBudgetManager:
    """
    Estimate and enforce a token budget.

    Usage:
        manager = TokenBudgetManager(30000, 4000)
        check = manager.check_budget(prompt)
        result = manager.fit_within_budget({"system": ..., "rag": ..., "user": ...})
    """

    def __init__(
        self,
        max_tokens: int = 8000,
        reserved_for_output: int = 2000,
        estimator: CharRatioEstimator = None,
        policy: BudgetPolicy = BudgetPolicy.BEST_EFFORT,
    ):
        """
        Args:
            max_tokens: Model context window
            reserved_for_output: Tokens kept free for the generated lesson
            estimator: Token estimator (defaults to chars / 3.5)
            policy: Best-effort or strict overflow handling
        """
        self.budget = Budget(max_tokens, reserved_for_output)
        self.estimator = estimator or CharRatioEstimator()
        self.policy = policy

    @classmethod
    def from_budget(cls, budget: Budget, **kwargs) -> "TokenBudgetManager":
        return cls(budget.max_tokens, budget.reserved_for_output, **kwargs)

    @property
    def max_tokens(self) -> int:
        return self.budget.max_tokens

    @property
    def reserved_for_output(self) -> int:
        return self.budget.reserved_for_output

    @property
    def available_budget(self) -> int:
        return self.budget.available_budget

    def estimate_tokens(self, text: Optional[str]) -> int:
        """Estimated token count of text (0 for empty/None)."""
        return self.estimator.estimate(text)

    def check_budget(self, text: Optional[str]) -> BudgetCheck:
        """Check whether a full prompt fits the available budget."""
        estimated = self.estimate_tokens(text)
        available = self.available_budget

        return BudgetCheck(
            fits=estimated <= available,
            estimated=estimated,
            available=available,
            usage=round_half_up(estimated / available * 100) if available > 0 else 0,
        )

    def fit_within_budget(self, components: Dict[str, Optional[str]]) -> FitResult:
        """
        Fit named prompt components into the budget.

        Slots: system, few_shot, session, rag, user. Missing slots count
        as empty. Truncation order: few_shot to 10% of the available
        budget, then rag to 30%.

        Args:
            components: Mapping of slot name to text

        Returns:
            FitResult with (possibly) adjusted components and token totals
        """
        unknown = set(components) - set(BUDGET_SLOTS)
        if unknown:
            raise ValueError(f"Unknown budget slots: {sorted(unknown)}")

        tokens = {
            slot: self.estimate_tokens(components.get(slot)) for slot in BUDGET_SLOTS
        }
        total = sum(tokens.values())
        available = self.available_budget

        if total <= available:
            return FitResult(
                components=dict(components),
                was_adjusted=False,
                original_tokens=total,
                final_tokens=total,
            )

        adjusted = dict(components)
        adjustments = []
        current = total

        for slot, share in (
            ("few_shot", settings.budget.few_shot_share),
            ("rag", settings.budget.rag_share),
        ):
            text = components.get(slot)
            if current <= available or not text:
                continue

            target = int(available * share)
            truncated = self._truncate_to_tokens(text, target)
            new_tokens = self.estimate_tokens(truncated)
            adjusted[slot] = truncated
            current += new_tokens - tokens[slot]
            adjustments.append(
                {"slot": slot, "target": target, "before": tokens[slot], "after": new_tokens}
            )

        if current > available:
            message = (
                f"Prompt still over budget after truncation: "
                f"{current} > {available} tokens"
            )
            if self.policy == BudgetPolicy.STRICT:
                raise BudgetExceededError(message, current, available)
            logger.warning(f"{message} (best-effort, protected slots kept)")

        logger.info(
            f"Prompt adjusted to budget: {total} -> {current} tokens "
            f"({len(adjustments)} slot(s) truncated)"
        )

        return FitResult(
            components=adjusted,
            was_adjusted=True,
            original_tokens=total,
            final_tokens=current,
            adjustments=adjustments,
        )

    def _truncate_to_tokens(self, text: str, target_tokens: int) -> str:
        """Keep the prefix that fits target_tokens and mark the cut."""
        chars = self.estimator.max_chars(target_tokens)
        if len(text) <= chars:
            return text
        keep = max(0, chars - settings.budget.marker_reserve_chars)
        return text[:keep] + settings.budget.truncation_marker


def budget_for_model(
    model: str = None,
    estimator: CharRatioEstimator = None,
    policy: BudgetPolicy = BudgetPolicy.BEST_EFFORT,
) -> TokenBudgetManager:
    """
    Build a budget manager for a configured model preset.

    Presets: pro (30000/4000), flash (100000/8000), default (8000/2000).
    """
    max_tokens, reserved = settings.budget_preset(model)
    return TokenBudgetManager(max_tokens, reserved, estimator=estimator, policy=policy)
