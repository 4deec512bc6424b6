"""
Configuration Loading Utility - Centralized config management for StratAgent.

This module provides:
- YAML configuration loading with validation
- Environment variable substitution
- Per-file validators for execution and database configs
- Cached config access
- Thread-safe global config instance
"""

import logging
import math
import os
import re
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import StratAgentError, ErrorKind

logger = logging.getLogger(__name__)

# Thread lock for global config loader access
_config_lock = threading.Lock()

_MARKET_DATA_PROVIDERS = ('http', 'static')
_STORE_BACKENDS = ('memory', 'postgres')


class ConfigError(StratAgentError):
    """Configuration loading or validation error."""
    kind = ErrorKind.VALIDATION


class ConfigLoader:
    """
    Centralized configuration loader.

    Loads YAML configs with environment variable substitution
    and validation.
    """

    # Environment variable pattern: ${VAR_NAME:-default_value}
    ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

    def __init__(self, config_dir: str | Path):
        """
        Initialize ConfigLoader.

        Args:
            config_dir: Path to configuration directory
        """
        self.config_dir = Path(config_dir)
        self._cache: dict[str, dict] = {}

        if not self.config_dir.exists():
            raise ConfigError(f"Config directory not found: {self.config_dir}")

    def load(self, config_name: str, validate: bool = True) -> dict:
        """
        Load a configuration file.

        Args:
            config_name: Config file name (without .yaml extension)
            validate: Whether to validate the config

        Returns:
            Configuration dictionary
        """
        if config_name in self._cache:
            return self._cache[config_name]

        config_path = self.config_dir / f"{config_name}.yaml"
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                raw_content = f.read()
            config = yaml.safe_load(self._substitute_env_vars(raw_content)) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        # Env vars arrive as strings
        config = self._coerce_types(config)

        if validate:
            self._validate_config(config_name, config)

        self._cache[config_name] = config
        logger.info(f"Loaded config: {config_name}")
        return config

    def load_all(self) -> dict[str, dict]:
        """Load every configuration file in the config directory."""
        configs = {}
        for config_file in self.config_dir.glob("*.yaml"):
            config_name = config_file.stem
            try:
                configs[config_name] = self.load(config_name)
            except ConfigError as e:
                logger.warning(f"Failed to load {config_name}: {e}")
        return configs

    def get_execution_config(self) -> dict:
        """Execution config (coordinator, scheduler, market data, settlement)."""
        return self.load('execution')

    def get_database_config(self) -> dict:
        config = self.load('database')
        return config.get('database', {})

    def clear_cache(self) -> None:
        self._cache.clear()

    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in config content.

        Supports ${VAR_NAME} and ${VAR_NAME:-default_value} syntax.
        """
        def replace_match(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ''
            return os.environ.get(var_name, default_value)

        return self.ENV_VAR_PATTERN.sub(replace_match, content)

    def _coerce_types(self, value: Any) -> Any:
        """
        Recursively coerce string values to bool/int/float.

        Time-of-day strings ("09:00") and non-finite numbers stay strings.
        """
        if isinstance(value, dict):
            return {k: self._coerce_types(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._coerce_types(item) for item in value]
        if not isinstance(value, str):
            return value

        lowered = value.lower()
        if lowered in ('true', 'yes', 'on'):
            return True
        if lowered in ('false', 'no', 'off'):
            return False
        if lowered in ('inf', '-inf', 'nan', 'infinity', '-infinity'):
            return value

        if value.lstrip('-').isdigit():
            return int(value)

        try:
            float_val = float(value)
        except ValueError:
            return value
        return float_val if math.isfinite(float_val) else value

    def _validate_config(self, config_name: str, config: dict) -> None:
        validators = {
            'execution': self._validate_execution_config,
            'database': self._validate_database_config,
        }

        validator = validators.get(config_name)
        if validator:
            validator(config)

    def _validate_execution_config(self, config: dict) -> None:
        """Validate execution configuration."""
        coordinator = config.get('coordinator', {})
        timeout = coordinator.get('snapshot_timeout_seconds', 10)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError("Invalid coordinator.snapshot_timeout_seconds")

        persist = coordinator.get('dry_run', {}).get('persist_results', False)
        if not isinstance(persist, bool):
            raise ConfigError("coordinator.dry_run.persist_results must be a boolean")

        agents = config.get('agents', {})
        fraction = agents.get('budget_fraction', 0.1)
        if not isinstance(fraction, (int, float)) or not 0 < fraction <= 1:
            raise ConfigError("agents.budget_fraction must be in (0, 1]")

        retry = agents.get('retry_policy', {})
        if int(retry.get('max_retries', 3)) < 0:
            raise ConfigError("agents.retry_policy.max_retries must be >= 0")

        market_data = config.get('market_data', {})
        provider = market_data.get('provider', 'http')
        if provider not in _MARKET_DATA_PROVIDERS:
            raise ConfigError(f"Unknown market_data.provider: {provider}")
        if provider == 'http' and not market_data.get('base_url'):
            raise ConfigError("market_data.base_url is required for the http provider")

        scheduler = config.get('scheduler', {})
        if int(scheduler.get('max_concurrent_agents', 5)) <= 0:
            raise ConfigError("scheduler.max_concurrent_agents must be positive")

        backend = config.get('store', {}).get('backend', 'memory')
        if backend not in _STORE_BACKENDS:
            raise ConfigError(f"Unknown store.backend: {backend}")

        slippage = config.get('paper_settlement', {}).get('simulated_slippage_pct', 0.1)
        if not isinstance(slippage, (int, float)) or slippage < 0:
            raise ConfigError("paper_settlement.simulated_slippage_pct must be >= 0")

        logger.debug("Execution config validated successfully")

    def _validate_database_config(self, config: dict) -> None:
        """Validate database configuration."""
        db = config.get('database', {})

        conn = db.get('connection', {})
        for field in ('host', 'port', 'database', 'user'):
            if field not in conn:
                raise ConfigError(f"Missing database connection field: {field}")

        logger.debug("Database config validated successfully")


# Global config instance (lazy-loaded, thread-safe)
_config_loader: Optional[ConfigLoader] = None


def get_config_loader(config_dir: str | Path | None = None) -> ConfigLoader:
    """
    Get or create the global ConfigLoader instance (thread-safe).

    Args:
        config_dir: Path to config directory (uses default if not provided)
    """
    global _config_loader

    # Double-checked locking
    if _config_loader is None:
        with _config_lock:
            if _config_loader is None:
                if config_dir is None:
                    # config/ at the project root
                    project_root = Path(__file__).parent.parent.parent.parent
                    config_dir = project_root / 'config'

                _config_loader = ConfigLoader(config_dir)

    return _config_loader


def reset_config_loader() -> None:
    """Reset the global ConfigLoader instance (for testing)."""
    global _config_loader
    with _config_lock:
        _config_loader = None
        logger.debug("Global config loader reset")


def load_config(config_name: str) -> dict:
    """Convenience function to load a config file by name."""
    return get_config_loader().load(config_name)
