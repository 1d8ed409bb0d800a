"""Configuration models with Pydantic validation."""

from one_more_time.domain.config.retry import RetryConfig

__all__ = ["RetryConfig"]
