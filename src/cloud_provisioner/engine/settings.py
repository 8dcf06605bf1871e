"""Engine tuning knobs."""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryPolicy(BaseModel):
    """Exponential backoff for transient remote failures."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)

    @model_validator(mode="after")
    def _check_delays(self) -> Self:
        if self.max_delay < self.initial_delay:
            raise ValueError("'max_delay' must be >= 'initial_delay'")
        return self


class EngineSettings(BaseModel):
    """Concurrency, timeout and retry settings for a run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    parallelism: int = Field(default=10, ge=1)
    timeout: float = Field(default=60.0, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    verify_remote_on_apply: bool = True
