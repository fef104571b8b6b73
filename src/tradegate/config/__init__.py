"""
Configuration management module.

Loads config/engine.yaml, validates it and builds the frozen rule registry.
"""

from .loader import ConfigLoader, get_app_config
from .rules import RuleRegistry
from .settings import AppConfig, RulesConfig

__all__ = ['ConfigLoader', 'get_app_config', 'RuleRegistry', 'AppConfig', 'RulesConfig']
