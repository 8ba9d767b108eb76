"""
Tests for Serial Position context assembly.
"""

import pytest

from context.context_window import ContextWindowManager, PromptComponents, summarize_history
from context.token_budget import BudgetExceededError, BudgetPolicy

SEPARATOR = "\n\n---\n\n"


@pytest.fixture
def manager():
    # 800 tokens available at 3.5 chars per token
    return ContextWindowManager(max_tokens=1000, reserve_for_output=200)


class TestPlacement:
    """Test start/middle/end ordering."""

    def test_serial_position_order(self, manager):
        result = manager.optimize_context(
            PromptComponents(
                critical_instructions="CRIT",
                system_prompt="SYS",
                current_query="QUERY",
                few_shot_examples="FEW",
                rag_context="RAG",
                student_profile="PROF",
                session_history="HIST",
                reminder_end="REMIND",
            )
        )

        assert result.optimized_prompt.split(SEPARATOR) == [
            "SYS",
            "CRIT",
            "QUERY",
            "FEW",
            "RAG",
            "HIST",
            "PROF",
            "REMIND",
        ]
        assert result.usage.dropped == []

    def test_empty_components_are_skipped(self, manager):
        result = manager.optimize_context(
            PromptComponents(system_prompt="SYS", current_query="QUERY", rag_context="")
        )
        assert result.optimized_prompt == f"SYS{SEPARATOR}QUERY"
        assert [s["name"] for s in result.usage.sections] == ["system_prompt", "current_query"]

    def test_accepts_mapping(self, manager):
        result = manager.optimize_context({"system_prompt": "SYS", "current_query": "Q"})
        assert result.optimized_prompt == f"SYS{SEPARATOR}Q"

    def test_usage_report(self, manager):
        result = manager.optimize_context(PromptComponents(current_query="a" * 350))
        assert result.usage.used_tokens == 100
        assert result.usage.available_tokens == 800
        # 12.5% rounds half up
        assert result.usage.utilization == 13
        assert result.usage.sections[0]["position"] == "middle"


class TestBudgetEnforcement:
    """Test truncation, dropping and the query guarantee."""

    def test_current_query_always_included(self, manager):
        query = "q" * 3500
        result = manager.optimize_context(
            PromptComponents(current_query=query, rag_context="RAG")
        )

        assert query in result.optimized_prompt
        assert result.usage.used_tokens == 1000
        assert result.usage.utilization == 125
        assert "rag_context" in result.usage.dropped

    def test_strict_policy_rejects_oversized_query(self):
        manager = ContextWindowManager(1000, 200, policy=BudgetPolicy.STRICT)
        with pytest.raises(BudgetExceededError):
            manager.optimize_context(PromptComponents(current_query="q" * 3500))

    def test_optional_component_truncated_to_fit(self, manager):
        result = manager.optimize_context(
            PromptComponents(
                system_prompt="S" * 700,
                current_query="Q" * 700,
                rag_context="R" * 3500,
                reminder_end="REMIND",
            )
        )

        rag = next(s for s in result.usage.sections if s["name"] == "rag_context")
        assert rag["truncated"] is True
        assert rag["tokens"] == 400
        assert "... [truncado]" in result.optimized_prompt
        assert result.usage.used_tokens == 800
        assert result.usage.dropped == ["reminder_end"]

    def test_used_tokens_within_budget_without_query_overflow(self, manager):
        result = manager.optimize_context(
            PromptComponents(
                system_prompt="S" * 1000,
                current_query="Q" * 200,
                few_shot_examples="F" * 2000,
                rag_context="R" * 2000,
                session_history="H" * 2000,
                student_profile="P" * 2000,
                reminder_end="fin",
            )
        )
        assert result.usage.used_tokens <= result.usage.available_tokens

    def test_oversized_critical_instructions_dropped(self, manager):
        result = manager.optimize_context(
            PromptComponents(
                critical_instructions="c" * 3500,
                system_prompt="SYS",
                current_query="Q",
            )
        )
        assert result.usage.dropped == ["critical_instructions"]
        assert result.optimized_prompt == f"SYS{SEPARATOR}Q"

    def test_reserve_must_be_smaller_than_window(self):
        with pytest.raises(ValueError):
            ContextWindowManager(max_tokens=1000, reserve_for_output=1000)

    @pytest.mark.parametrize("max_tokens", [0, -100])
    def test_explicit_non_positive_window_rejected(self, max_tokens):
        with pytest.raises(ValueError, match="max_tokens must be positive"):
            ContextWindowManager(max_tokens=max_tokens, reserve_for_output=0)


class TestSummarizeHistory:
    """Test session history rendering."""

    def test_empty(self):
        assert summarize_history([]) == ""

    def test_renders_event_types(self):
        text = summarize_history(
            [
                {"type": "LESSON_GENERATED", "topic": "Bucles en Scratch"},
                {"type": "QUIZ_ANSWERED", "topic": "Condicionales", "correct": True},
                {"type": "QUIZ_ANSWERED", "topic": "Variables", "correct": False},
                {"type": "SESSION_STARTED"},
            ]
        )
        assert text.splitlines() == [
            '- Lección sobre: "Bucles en Scratch"',
            "- Quiz: ✓ Condicionales",
            "- Quiz: ✗ Variables",
            "- SESSION_STARTED",
        ]

    def test_keeps_most_recent(self):
        history = [{"type": "LESSON_GENERATED", "topic": f"Tema {i}"} for i in range(7)]
        lines = summarize_history(history).splitlines()
        assert len(lines) == 5
        assert lines[0] == '- Lección sobre: "Tema 2"'
        assert lines[-1] == '- Lección sobre: "Tema 6"'
