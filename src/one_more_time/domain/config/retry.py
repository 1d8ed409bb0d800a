"""Retry configuration model."""

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class RetryConfig(BaseModel):
    """Configuration for retry logic.

    Timeouts are expressed in milliseconds.

    Attributes:
        max_timeout: Upper bound for the backoff delay
        min_timeout: Delay before the first retry
        factor: Exponential backoff multiplier
        retries: Maximum number of retries after the first attempt
    """

    max_timeout: float = Field(30 * 1000, ge=1, strict=True)
    min_timeout: float = Field(500, ge=1, strict=True, validate_default=True)
    factor: float = Field(2, ge=1, strict=True)
    retries: int = Field(3, gt=0, strict=True)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("min_timeout")
    @classmethod
    def _min_not_above_max(cls, value: float, info: ValidationInfo) -> float:
        max_timeout = info.data.get("max_timeout")
        if max_timeout is not None and value > max_timeout:
            raise ValueError("min_timeout must not exceed max_timeout")
        return value

    def backoff_for(self, retries: int) -> float:
        """Delay in ms after ``retries`` recorded attempts, capped at max_timeout."""
        return min(self.max_timeout, self.min_timeout * self.factor**retries)
