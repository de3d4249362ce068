"""
Configuration management for socialpipe.

Handles loading and merging configuration from:
- Default configuration file (config/default.yaml)
- An optional user configuration file
- Environment variables
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "default.yaml"


class Config:
    """Configuration manager for socialpipe."""
    
    def __init__(self, config_file: Optional[str] = None, load_defaults: bool = True):
        """
        Initialize configuration.
        
        Args:
            config_file: Path to configuration file merged over the defaults
            load_defaults: Whether to load config/default.yaml first
        """
        self._config: Dict[str, Any] = {}
        
        if load_defaults:
            self._load_default_config()
        
        if config_file:
            self._load_config_file(config_file)
        
        self._apply_env_overrides()
    
    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "Config":
        """
        Build a configuration from a dictionary on top of the defaults.
        
        Args:
            values: Nested configuration values
        
        Returns:
            Configuration instance
        """
        config = cls()
        config._merge_config(values)
        return config
    
    def _load_default_config(self) -> None:
        """Load default configuration."""
        if DEFAULT_CONFIG_PATH.exists():
            self._load_config_file(str(DEFAULT_CONFIG_PATH))
    
    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.
        
        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._merge_config(file_config)
    
    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Deep merge new configuration into existing configuration."""
        self._config = self._deep_merge(self._config, new_config)
    
    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.
        
        Args:
            base: Base dictionary
            override: Override dictionary
        
        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
    
    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if data_dir := os.getenv("SOCIALPIPE_DATA_DIR"):
            self.set("eventlog.data_dir", data_dir)
        
        if backend := os.getenv("SOCIALPIPE_CACHE_BACKEND"):
            self.set("cache.backend", backend)
        
        if store_factory := os.getenv("SOCIALPIPE_STORE_FACTORY"):
            self.set("store.factory", store_factory)
        
        if redis_url := os.getenv("REDIS_URL"):
            self.set("cache.redis_url", redis_url)
        
        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)
        
        if log_format := os.getenv("LOG_FORMAT"):
            self.set("logging.format", log_format)
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation (e.g., "consumer.max_attempts")
            default: Default value if key not found
        
        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
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
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
    
    def to_dict(self) -> Dict[str, Any]:
        """Get entire configuration as dictionary."""
        return self._config.copy()


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
