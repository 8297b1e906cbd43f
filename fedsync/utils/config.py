"""
Configuration management for the sync controller.

Handles loading and merging configuration from:
- Default configuration file
- An optional override file
- Environment variables
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

_TRUE_VALUES = ("1", "true", "yes", "on")


class Config:
    """Configuration manager for the sync controller."""
    
    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.
        
        Args:
            config_file: Path to configuration file. If None, uses default.
        """
        self._config: Dict[str, Any] = {}
        self._load_default_config()
        
        if config_file:
            self._load_config_file(config_file)
        
        self._apply_env_overrides()
    
    def _load_default_config(self) -> None:
        default_config_path = Path(__file__).parent.parent.parent / "config" / "default.yaml"
        if default_config_path.exists():
            self._load_config_file(str(default_config_path))
    
    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.
        
        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._config = self._deep_merge(self._config, file_config)
    
    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
    
    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if delay := os.getenv("FEDSYNC_CLUSTER_AVAILABLE_DELAY_MS"):
            self.set("controller-duration.available-delay-ms", int(delay))
        
        if delay := os.getenv("FEDSYNC_CLUSTER_UNAVAILABLE_DELAY_MS"):
            self.set("controller-duration.unavailable-delay-ms", int(delay))
        
        if skip := os.getenv("FEDSYNC_SKIP_ADOPTING_RESOURCES"):
            self.set("sync-controller.skip-adopting-resources", skip.lower() in _TRUE_VALUES)
        
        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation (e.g., "sync-controller.update-timeout-ms")
            default: Default value if key not found
        
        Returns:
            Configuration value
        """
        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value
    
    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
    
    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()


@dataclass
class ControllerConfig:
    """
    Timing and behaviour settings for the sync controller.
    
    Attributes:
        cluster_available_delay_ms: Delay before re-sweeping after a cluster becomes available
        cluster_unavailable_delay_ms: Delay before re-sweeping after a cluster becomes unavailable
        small_delay_ms: Delay used when re-enqueuing resources during a sweep
        update_timeout_ms: Shared deadline for one dispatch round
        status_retry_interval_ms: Interval between status write attempts on conflict
        status_retry_timeout_ms: Total time allowed for status write retries
        skip_adopting_resources: Fail instead of adopting pre-existing resources
        retry_delay_ms: Requeue delay for resources that need a recheck
        initial_backoff_ms: First backoff after a reconcile error
        max_backoff_ms: Backoff ceiling after repeated errors
        max_concurrent_reconciles: Number of reconcile workers
    """
    cluster_available_delay_ms: int = 20000
    cluster_unavailable_delay_ms: int = 60000
    small_delay_ms: int = 3000
    update_timeout_ms: int = 30000
    status_retry_interval_ms: int = 1000
    status_retry_timeout_ms: int = 5000
    skip_adopting_resources: bool = False
    retry_delay_ms: int = 10000
    initial_backoff_ms: int = 5000
    max_backoff_ms: int = 60000
    max_concurrent_reconciles: int = 1
    
    @classmethod
    def from_config(cls, config: Config) -> "ControllerConfig":
        """
        Build controller settings from a loaded configuration.
        
        Args:
            config: Configuration manager
        
        Returns:
            Controller configuration, defaults filling any missing keys
        """
        defaults = cls()
        return cls(
            cluster_available_delay_ms=int(config.get(
                "controller-duration.available-delay-ms",
                defaults.cluster_available_delay_ms,
            )),
            cluster_unavailable_delay_ms=int(config.get(
                "controller-duration.unavailable-delay-ms",
                defaults.cluster_unavailable_delay_ms,
            )),
            small_delay_ms=int(config.get(
                "sync-controller.small-delay-ms", defaults.small_delay_ms,
            )),
            update_timeout_ms=int(config.get(
                "sync-controller.update-timeout-ms", defaults.update_timeout_ms,
            )),
            status_retry_interval_ms=int(config.get(
                "sync-controller.status-retry-interval-ms",
                defaults.status_retry_interval_ms,
            )),
            status_retry_timeout_ms=int(config.get(
                "sync-controller.status-retry-timeout-ms",
                defaults.status_retry_timeout_ms,
            )),
            skip_adopting_resources=bool(config.get(
                "sync-controller.skip-adopting-resources",
                defaults.skip_adopting_resources,
            )),
            retry_delay_ms=int(config.get(
                "worker.retry-delay-ms", defaults.retry_delay_ms,
            )),
            initial_backoff_ms=int(config.get(
                "worker.initial-backoff-ms", defaults.initial_backoff_ms,
            )),
            max_backoff_ms=int(config.get(
                "worker.max-backoff-ms", defaults.max_backoff_ms,
            )),
            max_concurrent_reconciles=int(config.get(
                "sync-controller.max-concurrent-reconciles",
                defaults.max_concurrent_reconciles,
            )),
        )
    
    def minimize_latency(self) -> "ControllerConfig":
        """Return a copy with delays and timeouts reduced for testing."""
        return replace(
            self,
            cluster_available_delay_ms=1000,
            cluster_unavailable_delay_ms=1000,
            small_delay_ms=20,
            update_timeout_ms=5000,
            retry_delay_ms=50,
        )


# Global configuration instance
_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.
    
    Args:
        config_file: Optional configuration file path
    
    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
