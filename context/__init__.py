"""
Context Assembly Module.

Treat the lesson prompt as a resource with a budget.

This module handles:
- Token estimation (one canonical heuristic, shared by every component)
- Serial Position prompt assembly
- Per-model token budgets with ordered truncation

Usage:
    from context import ContextWindowManager, PromptComponents, budget_for_model

    assembled = ContextWindowManager().optimize_context(
        PromptComponents(system_prompt=system, current_query=query)
    )
    fitted = budget_for_model("pro").fit_within_budget(
        {"system": system, "user": assembled.optimized_prompt}
    )
"""

from .context_window import (
    ContextSection,
    ContextUsage,
    ContextWindowManager,
    OptimizedContext,
    PromptComponents,
    summarize_history,
)
from .token_budget import (
    Budget,
    BudgetCheck,
    BudgetExceededError,
    BudgetPolicy,
    FitResult,
    TokenBudgetManager,
    budget_for_model,
)
from .token_estimation import CharRatioEstimator, TiktokenEstimator, get_estimator

__all__ = [
    "Budget",
    "BudgetCheck",
    "BudgetExceededError",
    "BudgetPolicy",
    "CharRatioEstimator",
    "ContextSection",
    "ContextUsage",
    "ContextWindowManager",
    "FitResult",
    "OptimizedContext",
    "PromptComponents",
    "TiktokenEstimator",
    "TokenBudgetManager",
    "budget_for_model",
    "get_estimator",
    "summarize_history",
]
