"""Configuration loading"""

from one_more_time.infrastructure.config.config_manager import ConfigManager, ConfigurationError

__all__ = ["ConfigManager", "ConfigurationError"]
