"""
Configuration loader with YAML + environment variable support.

Loads and validates config/engine.yaml from the project root.
Supports:
- ${ENV_VAR} and ${ENV_VAR:default} placeholders
- Explicit environment variable overrides
- Pydantic validation (invariant violations fail startup)
- Caching and hot reload
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ConfigurationError
from .settings import AppConfig

logger = logging.getLogger(__name__)

# Project root (src/tradegate/config -> project root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent.parent

load_dotenv(PROJECT_ROOT / ".env")

# Environment variable -> (section path, converter)
ENV_OVERRIDES = {
    "ENVIRONMENT": (("system", "environment"), str),
    "LOG_LEVEL": (("system", "log_level"), str),
    "LOG_JSON": (("system", "json_logs"), lambda v: v.lower() in ("1", "true", "yes")),
    "DATA_DIR": (("system", "data_dir"), str),
    "API_HOST": (("system", "api_host"), str),
    "API_PORT": (("system", "api_port"), int),
    "AUDIT_BACKEND": (("audit", "backend"), str),
    "AUDIT_PATH": (("audit", "path"), str),
    "TRADEGATE_MAX_SPREAD_BPS": (("rules", "gates", "max_spread_bps"), float),
    "TRADEGATE_EXECUTE_THRESHOLD": (("rules", "thresholds", "execute"), float),
    "TRADEGATE_WAIT_THRESHOLD": (("rules", "thresholds", "wait"), float),
    "TRADEGATE_REQUEST_BUDGET_MS": (("orchestrator", "request_budget_ms"), int),
    "TRADEGATE_GUARD_INTERVAL_S": (("guard", "check_interval_s"), float),
}


class ConfigLoader:
    """
    Configuration loader with YAML + environment variable support.

    Features:
    - Loads configuration from YAML files
    - Overrides with environment variables
    - Validates using Pydantic models
    - Supports hot reload
    """

    def __init__(self, config_dir: Optional[Path] = None, config_name: str = "engine"):
        """
        Initialize configuration loader.

        Args:
            config_dir: Configuration directory (defaults to PROJECT_ROOT/config)
            config_name: Main YAML file name without extension
        """
        self.config_dir = Path(config_dir) if config_dir else (PROJECT_ROOT / "config")
        self.config_name = config_name
        self._cache: Dict[str, AppConfig] = {}
        logger.debug(f"ConfigLoader initialized with config_dir: {self.config_dir}")

    def load_yaml(self, config_name: str) -> Dict[str, Any]:
        """
        Load a YAML configuration file.

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        config_path = self.config_dir / f"{config_name}.yaml"

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.debug(f"Loading YAML config from: {config_path}")

        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        return self._replace_env_vars(config)

    def _replace_env_vars(self, config: Any) -> Any:
        """
        Recursively replace environment variable placeholders in config.

        Placeholders format: ${ENV_VAR_NAME} or ${ENV_VAR_NAME:default_value}
        """
        if isinstance(config, dict):
            return {k: self._replace_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._replace_env_vars(item) for item in config]
        elif isinstance(config, str):
            if config.startswith("${") and config.endswith("}"):
                env_expr = config[2:-1]

                if ":" in env_expr:
                    var_name, default_value = env_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default_value.strip())

                var_name = env_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    logger.warning(f"Environment variable {var_name} not set, using empty string")
                    return ""
                return value

        return config

    def load_app_config(self, use_cache: bool = True) -> AppConfig:
        """
        Load complete application configuration.

        Raises:
            ConfigurationError: If any configuration invariant is violated
        """
        if use_cache and "app_config" in self._cache:
            return self._cache["app_config"]

        try:
            config_data = self.load_yaml(self.config_name)
        except FileNotFoundError:
            logger.warning(f"{self.config_name}.yaml not found, using defaults")
            config_data = {}

        config_data = self._apply_env_overrides(config_data)

        try:
            app_config = AppConfig(**config_data)
        except (PydanticValidationError, ValueError) as e:
            logger.error(f"❌ Configuration validation failed: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        logger.info("✅ Application configuration loaded and validated")

        if use_cache:
            self._cache["app_config"] = app_config

        return app_config

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides listed in ENV_OVERRIDES."""
        for env_name, (path, convert) in ENV_OVERRIDES.items():
            env_val = os.getenv(env_name)
            if env_val is None or env_val == "":
                continue

            try:
                value = convert(env_val)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {env_val!r}") from e

            section = config
            for key in path[:-1]:
                section = section.setdefault(key, {})
            section[path[-1]] = value

        return config

    def reload(self) -> AppConfig:
        """Reload configuration from disk (hot reload)."""
        logger.info("Reloading configuration from disk")
        self._cache.clear()
        return self.load_app_config(use_cache=False)


_global_loader: Optional[ConfigLoader] = None


def get_config_loader() -> ConfigLoader:
    global _global_loader
    if _global_loader is None:
        _global_loader = ConfigLoader()
    return _global_loader


def get_app_config(use_cache: bool = True) -> AppConfig:
    return get_config_loader().load_app_config(use_cache=use_cache)
