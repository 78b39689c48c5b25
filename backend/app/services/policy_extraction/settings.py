"""
Run-time settings for the extraction pipeline.

Settings are an immutable value handed to constructors. Nothing in the
pipeline reads the environment directly; ``app.config.Config`` builds the
settings from environment variables.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ExtractionSettings:
    """Tunable limits and engine connection parameters."""

    # Pass controller
    max_passes: int = 3

    # Value classifier thresholds (characters)
    short_value_threshold: int = 40
    long_value_threshold: int = 120
    rederive_descriptions: bool = True

    # Post-processing
    apply_domain_rules: bool = True
    apply_formatting: bool = True
    currency_code: str = "QAR"

    # Transport retry policy (transport failures only)
    transport_max_attempts: int = 3
    transport_backoff_seconds: float = 1.0
    transport_backoff_max_seconds: float = 8.0

    # Extraction engine
    llm_api_key: Optional[str] = None
    llm_api_base: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o"
    llm_timeout: int = 60
    llm_max_tokens: int = 2000
    temperature: float = 0.0

    def __post_init__(self):
        if self.max_passes < 1:
            raise ValueError(f"max_passes must be >= 1, got {self.max_passes}")
        if self.short_value_threshold < 1:
            raise ValueError("short_value_threshold must be positive")
        if self.long_value_threshold < self.short_value_threshold:
            raise ValueError(
                "long_value_threshold must not be smaller than short_value_threshold "
                f"({self.long_value_threshold} < {self.short_value_threshold})"
            )
        if self.transport_max_attempts < 1:
            raise ValueError("transport_max_attempts must be >= 1")
        if self.transport_backoff_seconds < 0 or self.transport_backoff_max_seconds < 0:
            raise ValueError("transport backoff must not be negative")
        if self.llm_timeout <= 0:
            raise ValueError("llm_timeout must be positive")

    @property
    def has_llm_credentials(self) -> bool:
        return bool(self.llm_api_key)

    def with_overrides(self, **changes) -> "ExtractionSettings":
        """Return a copy with the given fields replaced (validated again)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)
