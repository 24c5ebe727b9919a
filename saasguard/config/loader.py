"""Identity provider configuration file.

Providers can be declared in YAML and imported into storage by the CLI.
Secrets are usually injected with ``${VAR}`` or ``${VAR:-default}``
references, which are expanded before validation.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
import structlog

from saasguard.core.utils.url_validation import is_valid_okta_domain

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("saasguard.yaml")
SUPPORTED_PROVIDER_TYPES = ("azuread", "google", "okta")
MIN_SYNC_INTERVAL = 300

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


class ConfigurationError(Exception):
    """Raised when the provider configuration cannot be used."""

    pass


def _substitute(match: "re.Match[str]") -> str:
    name, default = match.group("name"), match.group("default")
    value = os.environ.get(name)
    if value:
        return value
    if default is None:
        logger.warning("environment_variable_not_set", var_name=name)
        return ""
    return default


def expand_env_vars(value: Any) -> Any:
    """Expand ``${VAR}`` references in every string of a parsed YAML tree.

    Unset variables expand to their ``:-`` default, or to an empty string.
    """
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_substitute, value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Read, expand and validate a provider configuration file.

    Args:
        config_path: YAML file to read (default: saasguard.yaml)

    Returns:
        The expanded configuration

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error reading configuration: {e}")

    if not raw:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be a mapping")

    config = expand_env_vars(raw)
    validate_config(config)

    logger.info("configuration_loaded", config_path=str(path))
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration structure and required fields.

    Args:
        config: Configuration dictionary

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if "tenant_id" not in config:
        raise ConfigurationError("Missing required configuration key: tenant_id")

    providers = config.get("identity_providers", [])
    if not isinstance(providers, list):
        raise ConfigurationError("identity_providers must be a list")

    for index, provider in enumerate(providers):
        prefix = f"identity_providers[{index}]"

        if not isinstance(provider, dict):
            raise ConfigurationError(f"{prefix} must be a mapping")

        provider_type = provider.get("type")
        if provider_type not in SUPPORTED_PROVIDER_TYPES:
            raise ConfigurationError(
                f"{prefix}.type must be one of: {', '.join(SUPPORTED_PROVIDER_TYPES)}"
            )

        for field in ("name", "client_secret"):
            if not provider.get(field):
                raise ConfigurationError(f"{prefix}.{field} is required")

        if provider_type == "azuread":
            for field in ("client_id", "tenant_domain"):
                if not provider.get(field):
                    raise ConfigurationError(f"{prefix}.{field} is required for azuread")

        if provider_type == "okta":
            domain = provider.get("tenant_domain")
            if not isinstance(domain, str) or not is_valid_okta_domain(domain):
                raise ConfigurationError(f"{prefix}.tenant_domain must be an Okta tenant domain")

        if provider_type == "google":
            custom = provider.get("config") or {}
            if not isinstance(custom, dict):
                raise ConfigurationError(f"{prefix}.config must be a mapping")
            if not (custom.get("admin_email") or custom.get("delegated_admin_email")):
                raise ConfigurationError(f"{prefix}.config.admin_email is required for google")

        interval = provider.get("sync_interval")
        if interval is not None:
            try:
                seconds = int(interval)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{prefix}.sync_interval must be a number of seconds") from None
            if seconds < MIN_SYNC_INTERVAL:
                raise ConfigurationError(
                    f"{prefix}.sync_interval must be at least {MIN_SYNC_INTERVAL} seconds"
                )

    logger.info("configuration_validated", providers=len(providers))
