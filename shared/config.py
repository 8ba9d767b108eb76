"""
Configuration module for the lesson quality stack.
Manages all environment variables and settings with validation.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Tuple


@dataclass
class BudgetConfig:
    """Per-model token budgets as (max_tokens, reserved_for_output)."""
    presets: Dict[str, Tuple[int, int]] = field(
        default_factory=lambda: {
            "pro": (30000, 4000),
            "flash": (100000, 8000),
            "default": (8000, 2000),
        }
    )
    few_shot_share: float = 0.10
    rag_share: float = 0.30
    truncation_marker: str = "\n\n[...]"
    marker_reserve_chars: int = 20


@dataclass
class ContextConfig:
    """Context window assembly configuration."""
    max_tokens: int = 8000
    reserve_for_output: int = 2000
    section_separator: str = "\n\n---\n\n"
    truncation_marker: str = "... [truncado]"
    history_items: int = 5


@dataclass
class EvaluationConfig:
    """Heuristic lesson evaluation configuration."""
    min_words: int = 800
    pass_threshold: int = 70
    weights: Dict[str, float] = field(
        default_factory=lambda: {
            "faithfulness": 0.25,
            "relevance": 0.20,
            "length": 0.15,
            "structure": 0.25,
            "no_hallucination": 0.15,
        }
    )
    judge_max_lesson_chars: int = 3000


@dataclass
class RegressionConfig:
    """Regression testing thresholds and history settings."""
    rouge1_f1: float = 0.5
    rougeL_f1: float = 0.4
    bleu: float = 0.3
    topic_coverage: float = 0.5
    history_window: int = 5
    max_stored_output_chars: int = 5000


@dataclass
class Settings:
    """Main application settings loaded from environment."""

    # Storage
    DATABASE_PATH: str = field(
        default_factory=lambda: os.getenv("DATABASE_PATH", "./data/lesson_quality.db")
    )

    # Token estimation
    TOKEN_ESTIMATOR: str = field(
        default_factory=lambda: os.getenv("TOKEN_ESTIMATOR", "heuristic")
    )
    CHARS_PER_TOKEN: float = field(
        default_factory=lambda: float(os.getenv("CHARS_PER_TOKEN", "3.5"))
    )
    BUDGET_POLICY: str = field(
        default_factory=lambda: os.getenv("BUDGET_POLICY", "best_effort")
    )
    DEFAULT_MODEL: str = field(default_factory=lambda: os.getenv("DEFAULT_MODEL", "pro"))

    # Application settings
    DEBUG: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Nested configs
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    regression: RegressionConfig = field(default_factory=RegressionConfig)

    def budget_preset(self, model: str = None) -> Tuple[int, int]:
        """Look up (max_tokens, reserved_for_output) for a model preset."""
        name = (model or self.DEFAULT_MODEL).lower()
        if name not in self.budget.presets:
            raise ValueError(
                f"Unknown budget preset '{name}'. "
                f"Available: {sorted(self.budget.presets)}"
            )
        return self.budget.presets[name]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
