"""Configuration manager for loading and validating .one-more-time.yml"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from one_more_time.domain.config import RetryConfig
from one_more_time.domain.errors import InvalidArgument

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".one-more-time.yml"

# Environment variable -> (retry field, parser)
ENV_OVERRIDES = {
    "ONE_MORE_TIME_RETRIES": ("retries", int),
    "ONE_MORE_TIME_FACTOR": ("factor", float),
    "ONE_MORE_TIME_MIN_TIMEOUT": ("min_timeout", float),
    "ONE_MORE_TIME_MAX_TIMEOUT": ("max_timeout", float),
}


class ConfigurationError(InvalidArgument):
    """Configuration validation error."""

    pass


def format_validation_error(e: ValidationError) -> str:
    """Render pydantic errors as one indented line per field."""
    errors = []
    for error in e.errors():
        field = ".".join(str(x) for x in error["loc"])
        errors.append(f"  - {field}: {error['msg']}")
    return "\n".join(errors)


class ConfigManager:
    """Manages retry configuration from .one-more-time.yml and environment variables

    Configuration priority:
    1. Default values (defined in RetryConfig)
    2. .one-more-time.yml file, ``retry`` section (searched from current directory)
    3. Environment variables (ONE_MORE_TIME_*)
    4. Explicit constructor arguments (handled by Retry)
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager

        Args:
            config_path: Path to .one-more-time.yml (searches from current dir if None)

        Raises:
            ConfigurationError: If configuration validation fails
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)
        self.config_path = config_path or self._find_config_file()
        raw = self._load_raw()
        try:
            self.config: RetryConfig = RetryConfig(**raw)
        except ValidationError as e:
            first_loc = e.errors()[0]["loc"] if e.errors() else ()
            raise ConfigurationError(
                "Configuration validation failed:\n" + format_validation_error(e),
                field=str(first_loc[0]) if first_loc else None,
            ) from e

    def _find_config_file(self) -> Optional[Path]:
        """Find .one-more-time.yml starting from current directory

        Returns:
            Path to config file or None if not found
        """
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            config_file = parent / CONFIG_FILE_NAME
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return config_file
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")
        return None

    def _load_raw(self) -> Dict[str, Any]:
        """Read the retry section from file and apply environment overrides

        Raises:
            ConfigurationError: If the file is not valid YAML or not a mapping
        """
        config_dict: Dict[str, Any] = {}

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
            except OSError as e:
                logger.warning(f"Failed to load config from {self.config_path}: {e}")
                logger.info("Using default configuration")
                file_config = {}

            if not isinstance(file_config, dict):
                raise ConfigurationError(f"{self.config_path} must contain a mapping")
            section = file_config.get("retry", {}) or {}
            if not isinstance(section, dict):
                raise ConfigurationError("retry section must be a mapping", field="retry")
            config_dict.update(copy.deepcopy(section))
            logger.info(f"Loaded configuration from {self.config_path}")

        return self._apply_env_overrides(config_dict)

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides

        Args:
            config: Configuration dictionary

        Returns:
            Configuration with env overrides applied
        """
        for env_name, (field, parse) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if not value:
                continue
            try:
                config[field] = parse(value)
            except ValueError as e:
                kind = "an integer" if parse is int else "a number"
                raise ConfigurationError(
                    f"{env_name} must be {kind}, got {value!r}", field=field
                ) from e
        return config

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration

        Returns:
            Retry configuration model
        """
        return self.config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by field name"""
        return self.config.model_dump().get(key, default)
