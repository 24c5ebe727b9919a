"""Configuration for saasguard."""

from saasguard.config.settings import (
    Environment,
    SaasGuardSettings,
    get_settings,
    set_settings,
)
from saasguard.config.loader import (
    ConfigurationError,
    expand_env_vars,
    load_config,
    validate_config,
)

__all__ = [
    "Environment",
    "SaasGuardSettings",
    "get_settings",
    "set_settings",
    "ConfigurationError",
    "expand_env_vars",
    "load_config",
    "validate_config",
]
