"""
Context window assembly with Serial Position ordering.

Recall is strongest for what sits at the start and at the end of a
prompt, so critical instructions and the system prompt open the window,
a short reminder closes it, and everything optional sits in the middle.

Placement rules:
- start: critical_instructions, system_prompt (each only if it fits)
- middle: current_query (always), then optional components by priority,
  truncated to the remaining budget or dropped
- end: reminder_end (only if it fits)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shared.config import settings
from shared.numeric import round_half_up

from .token_budget import BudgetExceededError, BudgetPolicy
from .token_estimation import CharRatioEstimator

logger = logging.getLogger(__name__)

PRIORITIES: Dict[str, int] = {
    "system_prompt": 100,
    "current_query": 95,
    "critical_instructions": 90,
    "reminder_end": 85,
    "few_shot_examples": 70,
    "rag_context": 60,
    "session_history": 50,
    "student_profile": 40,
}

OPTIONAL_COMPONENTS = ("few_shot_examples", "rag_context", "session_history", "student_profile")


@dataclass
class PromptComponents:
    """Raw prompt fragments supplied by the caller."""

    critical_instructions: Optional[str] = None
    system_prompt: Optional[str] = None
    current_query: Optional[str] = None
    few_shot_examples: Optional[str] = None
    rag_context: Optional[str] = None
    student_profile: Optional[str] = None
    session_history: Optional[str] = None
    reminder_end: Optional[str] = None


@dataclass
class ContextSection:
    """One placed fragment of the final prompt."""

    name: str
    position: str  # start, middle, end
    priority: int
    content: str
    tokens: int
    truncated: bool = False


@dataclass
class ContextUsage:
    """Token usage diagnostics for an assembled prompt."""

    used_tokens: int
    available_tokens: int
    utilization: int  # percent
    sections: List[Dict] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


@dataclass
class OptimizedContext:
    """Assembled prompt and its usage report."""

    optimized_prompt: str
    usage: ContextUsage


class ContextWindowManager:
    """
    Assemble a bounded prompt from prioritized fragments.

    Usage:
        manager = ContextWindowManager(max_tokens=8000, reserve_for_output=2000)
        result = manager.optimize_context(PromptComponents(
            system_prompt=system,
            current_query=query,
            rag_context=rag,
        ))
        prompt = result.optimized_prompt
    """

    def __init__(
        self,
        max_tokens: int = None,
        reserve_for_output: int = None,
        estimator: CharRatioEstimator = None,
        policy: BudgetPolicy = BudgetPolicy.BEST_EFFORT,
        separator: str = None,
    ):
        """
        Args:
            max_tokens: Model context window
            reserve_for_output: Tokens kept free for generation
            estimator: Token estimator shared with the budget manager
            policy: Strict raises if the current query alone overflows
            separator: String placed between sections
        """
        self.max_tokens = (
            max_tokens if max_tokens is not None else settings.context.max_tokens
        )
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        self.reserve_for_output = (
            reserve_for_output
            if reserve_for_output is not None
            else settings.context.reserve_for_output
        )
        if self.reserve_for_output >= self.max_tokens:
            raise ValueError(
                f"reserve_for_output ({self.reserve_for_output}) must be smaller "
                f"than max_tokens ({self.max_tokens})"
            )
        self.available_tokens = self.max_tokens - self.reserve_for_output
        self.estimator = estimator or CharRatioEstimator()
        self.policy = policy
        self.separator = separator or settings.context.section_separator
        self.priorities = dict(PRIORITIES)

    def optimize_context(self, components: PromptComponents) -> OptimizedContext:
        """
        Place components by Serial Position and assemble the prompt.

        Args:
            components: Prompt fragments (any may be None)

        Returns:
            OptimizedContext with the final prompt and usage report
        """
        if isinstance(components, dict):
            components = PromptComponents(**components)

        sections: List[ContextSection] = []
        dropped: List[str] = []
        used = 0

        # Start: critical material, each checked on its own
        for name in ("critical_instructions", "system_prompt"):
            content = getattr(components, name)
            if not content:
                continue
            tokens = self._estimate_tokens(content)
            if used + tokens <= self.available_tokens:
                sections.append(self._section(name, "start", content, tokens))
                used += tokens
            else:
                dropped.append(name)

        # Middle: the live query is never dropped
        if components.current_query:
            tokens = self._estimate_tokens(components.current_query)
            if self.policy == BudgetPolicy.STRICT and used + tokens > self.available_tokens:
                raise BudgetExceededError(
                    f"Current query needs {tokens} tokens, "
                    f"only {self.available_tokens - used} remain",
                    used + tokens,
                    self.available_tokens,
                )
            sections.append(
                self._section("current_query", "middle", components.current_query, tokens)
            )
            used += tokens

        for name in sorted(OPTIONAL_COMPONENTS, key=lambda n: -self.priorities[n]):
            raw = getattr(components, name)
            if not raw:
                continue
            content = self._truncate_if_needed(raw, self.available_tokens - used)
            tokens = self._estimate_tokens(content)
            if content and used + tokens <= self.available_tokens:
                section = self._section(name, "middle", content, tokens)
                section.truncated = content != raw
                sections.append(section)
                used += tokens
            else:
                dropped.append(name)

        # End: recency slot
        if components.reminder_end:
            tokens = self._estimate_tokens(components.reminder_end)
            if used + tokens <= self.available_tokens:
                sections.append(
                    self._section("reminder_end", "end", components.reminder_end, tokens)
                )
                used += tokens
            else:
                dropped.append("reminder_end")

        start = sorted(
            (s for s in sections if s.position == "start"), key=lambda s: -s.priority
        )
        middle = sorted(
            (s for s in sections if s.position == "middle"), key=lambda s: -s.priority
        )
        end = [s for s in sections if s.position == "end"]

        prompt = self.separator.join(s.content for s in start + middle + end)

        if used > self.available_tokens:
            logger.warning(
                f"Context over budget (best-effort): {used}/{self.available_tokens} tokens"
            )
        if dropped:
            logger.info(f"Dropped context components: {dropped}")

        usage = ContextUsage(
            used_tokens=used,
            available_tokens=self.available_tokens,
            utilization=round_half_up(used / self.available_tokens * 100),
            sections=[
                {
                    "name": s.name,
                    "position": s.position,
                    "priority": s.priority,
                    "tokens": s.tokens,
                    "truncated": s.truncated,
                }
                for s in sections
            ],
            dropped=dropped,
        )

        return OptimizedContext(optimized_prompt=prompt, usage=usage)

    def _section(self, name: str, position: str, content: str, tokens: int) -> ContextSection:
        return ContextSection(
            name=name,
            position=position,
            priority=self.priorities[name],
            content=content,
            tokens=tokens,
        )

    def _estimate_tokens(self, text: Optional[str]) -> int:
        return self.estimator.estimate(text)

    def _truncate_if_needed(self, content: str, max_tokens: int) -> str:
        """
        Cut content to max_tokens, leaving room for the truncation marker.

        Returns "" when not even the marker fits.
        """
        if self._estimate_tokens(content) <= max_tokens:
            return content

        marker = settings.context.truncation_marker
        max_chars = self.estimator.max_chars(max_tokens) - len(marker)
        if max_chars <= 0:
            return ""
        return content[:max_chars] + marker


def summarize_history(history: List[Dict], max_items: int = None) -> str:
    """
    Render recent session events for the session_history slot.

    Keeps the most recent max_items events, oldest first.

    Example:
        - Lección sobre: "Bucles en Scratch"
        - Quiz: ✓ Condicionales
    """
    if not history:
        return ""

    max_items = max_items or settings.context.history_items
    lines = []
    for event in history[-max_items:]:
        kind = event.get("type", "EVENT")
        if kind == "LESSON_GENERATED":
            lines.append(f'- Lección sobre: "{event.get("topic", "")}"')
        elif kind == "QUIZ_ANSWERED":
            mark = "✓" if event.get("correct") else "✗"
            lines.append(f"- Quiz: {mark} {event.get('topic', '')}")
        else:
            lines.append(f"- {kind}")
    return "\n".join(lines)
