"""
Core infrastructure: error taxonomy and the service container.
"""

from .container import CircularDependencyError, DependencyResolutionError, ServiceContainer
from .errors import (
    ConfigurationError,
    EngineFault,
    ImmutabilityViolation,
    IncompleteContextError,
    ProviderError,
    TradegateError,
    UnrecognizedSource,
    ValidationError,
    VersionMismatch,
)

__all__ = [
    'ServiceContainer',
    'DependencyResolutionError',
    'CircularDependencyError',
    'TradegateError',
    'ConfigurationError',
    'ValidationError',
    'UnrecognizedSource',
    'IncompleteContextError',
    'ProviderError',
    'ImmutabilityViolation',
    'VersionMismatch',
    'EngineFault',
]
