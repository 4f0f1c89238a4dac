"""
Configuration loading and validation for Spanner Database Dumper.
"""

import os
import re
from typing import Any

import yaml


class ConfigLoader:
    """Loads and validates configuration from YAML file."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')
    REQUIRED_INSTANCE_KEYS = ('project',)

    def __init__(self, config_path: str):
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        return self._resolve_env_vars(config)

    def _resolve_env_vars(self, obj: Any) -> Any:
        """Recursively resolve ${VAR} references; unset variables become empty."""
        if isinstance(obj, str):
            return self.ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), ''), obj)
        elif isinstance(obj, dict):
            return {k: self._resolve_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._resolve_env_vars(item) for item in obj]
        return obj

    def get_instance(self, instance_name: str) -> dict[str, Any]:
        """Get Spanner instance configuration.

        ``project`` is required; ``instance`` defaults to the entry's key.
        """
        instances = self.config.get('instances') or {}
        if instance_name not in instances:
            raise ValueError(f"Instance '{instance_name}' not found in configuration")

        instance = instances[instance_name] or {}
        missing = [key for key in self.REQUIRED_INSTANCE_KEYS if not instance.get(key)]
        if missing:
            raise ValueError(f"Instance '{instance_name}' is missing: {', '.join(missing)}")
        return instance

    def get_databases(self) -> list[dict[str, Any]]:
        """Get list of databases to dump."""
        return self.config.get('databases') or []

    def get_defaults(self) -> dict[str, Any]:
        """Get default dump settings."""
        return self.config.get('defaults') or {}

    def get_output_settings(self) -> dict[str, Any]:
        """Get output settings."""
        return self.config.get('output') or {}

    def get_logging_settings(self) -> dict[str, Any]:
        """Get logging settings."""
        return self.config.get('logging') or {}

    def override_defaults(self, **overrides: Any) -> None:
        """Apply command line overrides on top of the configured defaults.

        ``None`` values leave the configured setting untouched.
        """
        defaults = self.config.get('defaults') or {}
        defaults.update({k: v for k, v in overrides.items() if v is not None})
        self.config['defaults'] = defaults

    def override_output(self, **overrides: Any) -> None:
        """Apply command line overrides on top of the output settings."""
        output = self.config.get('output') or {}
        output.update({k: v for k, v in overrides.items() if v is not None})
        self.config['output'] = output
