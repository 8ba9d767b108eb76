"""
Tests for token estimation and per-model budgets.
"""

import dataclasses

import pytest

from context.token_budget import (
    Budget,
    BudgetExceededError,
    BudgetPolicy,
    TokenBudgetManager,
    budget_for_model,
)
from context.token_estimation import CharRatioEstimator, TiktokenEstimator, get_estimator


class TestCharRatioEstimator:
    """Test the canonical heuristic estimator."""

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_is_zero(self, text):
        assert CharRatioEstimator().estimate(text) == 0

    def test_exact_ratio(self):
        assert CharRatioEstimator().estimate("a" * 350) == 100

    def test_rounds_up(self):
        assert CharRatioEstimator().estimate("a") == 1
        assert CharRatioEstimator().estimate("a" * 351) == 101

    def test_max_chars(self):
        estimator = CharRatioEstimator()
        assert estimator.max_chars(100) == 350
        assert estimator.max_chars(0) == 0

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            CharRatioEstimator(0)

    def test_get_estimator(self):
        assert isinstance(get_estimator("heuristic"), CharRatioEstimator)
        assert get_estimator("heuristic", 4.0).chars_per_token == 4.0
        # tiktoken encodings load lazily, so construction is offline
        assert isinstance(get_estimator("tiktoken"), TiktokenEstimator)

    def test_get_estimator_unknown(self):
        with pytest.raises(ValueError, match="Unknown token estimator"):
            get_estimator("words")


class TestBudget:
    """Test budget construction and presets."""

    def test_available_budget(self):
        assert Budget(8000, 2000).available_budget == 6000

    def test_immutable(self):
        budget = Budget(8000, 2000)
        with pytest.raises(dataclasses.FrozenInstanceError):
            budget.max_tokens = 1

    @pytest.mark.parametrize("max_tokens,reserved", [(0, 0), (100, 100), (100, -1)])
    def test_invalid(self, max_tokens, reserved):
        with pytest.raises(ValueError):
            TokenBudgetManager(max_tokens, reserved)

    @pytest.mark.parametrize(
        "model,max_tokens,reserved,available",
        [
            ("pro", 30000, 4000, 26000),
            ("flash", 100000, 8000, 92000),
            ("default", 8000, 2000, 6000),
        ],
    )
    def test_presets(self, model, max_tokens, reserved, available):
        manager = budget_for_model(model)
        assert manager.max_tokens == max_tokens
        assert manager.reserved_for_output == reserved
        assert manager.available_budget == available

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown budget preset"):
            budget_for_model("ultra")

    def test_from_budget(self):
        manager = TokenBudgetManager.from_budget(Budget(1000, 100))
        assert manager.available_budget == 900


class TestCheckBudget:
    """Test single-prompt budget checks."""

    def test_fits(self):
        check = TokenBudgetManager(1000, 200).check_budget("Hello world")
        assert check.fits is True
        assert check.estimated == 4
        assert check.available == 800

    def test_does_not_fit(self):
        check = TokenBudgetManager(1000, 200).check_budget("a" * 3500)
        assert check.fits is False
        assert check.estimated == 1000
        assert check.usage == 125


class TestFitWithinBudget:
    """Test ordered truncation of few-shot and RAG slots."""

    def test_under_budget_is_unchanged(self):
        components = {"system": "System", "rag": "contexto", "user": "Pregunta"}
        result = TokenBudgetManager(1000, 200).fit_within_budget(components)

        assert result.was_adjusted is False
        assert result.components == components
        assert result.original_tokens == result.final_tokens

    def test_few_shot_truncated_first(self):
        manager = TokenBudgetManager(1000, 200)
        result = manager.fit_within_budget(
            {"system": "System", "few_shot": "a" * 3500, "user": "User prompt"}
        )

        few_shot = result.components["few_shot"]
        assert result.was_adjusted is True
        assert few_shot.endswith("[...]")
        # 10% of 800 tokens -> 280 chars, minus the marker reserve, plus the marker
        assert len(few_shot) == 267
        assert result.original_tokens == 1006
        assert result.final_tokens == 83
        assert [a["slot"] for a in result.adjustments] == ["few_shot"]
        assert result.components["system"] == "System"
        assert result.components["user"] == "User prompt"

    def test_rag_truncated_after_few_shot(self):
        manager = TokenBudgetManager(1000, 200)
        result = manager.fit_within_budget({"few_shot": "b" * 700, "rag": "r" * 3500})

        assert [a["slot"] for a in result.adjustments] == ["few_shot", "rag"]
        assert len(result.components["rag"]) == 827
        assert result.final_tokens == 314
        assert result.final_tokens <= manager.available_budget

    def test_final_tokens_match_components(self):
        manager = TokenBudgetManager(1000, 200)
        result = manager.fit_within_budget(
            {"system": "s" * 70, "few_shot": "f" * 2000, "rag": "r" * 5000, "user": "u" * 35}
        )
        recomputed = sum(manager.estimate_tokens(t) for t in result.components.values())
        assert result.final_tokens == recomputed

    def test_idempotent(self):
        manager = TokenBudgetManager(1000, 200)
        first = manager.fit_within_budget({"few_shot": "b" * 700, "rag": "r" * 3500})
        second = manager.fit_within_budget(first.components)

        assert second.was_adjusted is False
        assert second.components == first.components

    def test_protected_slots_kept_best_effort(self):
        manager = TokenBudgetManager(1000, 200)
        system = "a" * 3500
        result = manager.fit_within_budget({"system": system, "user": "hola"})

        assert result.was_adjusted is True
        assert result.components["system"] == system
        assert result.final_tokens > manager.available_budget
        assert result.adjustments == []

    def test_strict_policy_raises(self):
        manager = TokenBudgetManager(1000, 200, policy=BudgetPolicy.STRICT)
        with pytest.raises(BudgetExceededError) as exc_info:
            manager.fit_within_budget({"system": "a" * 3500})

        assert exc_info.value.estimated == 1000
        assert exc_info.value.available == 800

    def test_unknown_slot(self):
        with pytest.raises(ValueError, match="Unknown budget slots"):
            TokenBudgetManager().fit_within_budget({"examples": "x"})
