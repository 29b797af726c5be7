"""
Configuration loader for modelgate.

Loads a YAML settings file, validates it against the pydantic schema, and
resolves vendor API keys from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from modelgate.config.settings import GatewaySettings
from modelgate.exceptions import ConfigurationError

CONFIG_ENV_VAR = "MODELGATE_CONFIG"


def load_settings(
    config_path: Optional[str | Path] = None,
    *,
    load_env_file: bool = True,
) -> GatewaySettings:
    """
    Load and validate gateway settings.

    Args:
        config_path: Explicit path to a YAML file. If not provided, the
                     MODELGATE_CONFIG environment variable is consulted;
                     with neither, defaults are returned.
        load_env_file: Load a .env file from the working directory first.

    Raises:
        ConfigurationError: If the file is missing, empty, or invalid.
    """
    if load_env_file:
        load_dotenv()

    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
        if not env_path:
            return GatewaySettings()
        config_path = env_path

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(
            f"Config not found: {config_path}", field=CONFIG_ENV_VAR
        )

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ConfigurationError(f"Config file is empty: {config_path}")
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must contain a mapping at the top level: {config_path}"
        )

    try:
        return GatewaySettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid config in {config_path}:\n{e}",
            details={"errors": e.errors()},
        ) from e


def api_key_env_var(vendor: str) -> str:
    """'azure-openai' -> 'AZURE_OPENAI_API_KEY'."""
    return vendor.upper().replace("-", "_") + "_API_KEY"


def resolve_api_key(vendor: str, explicit: Optional[str] = None) -> str:
    """
    Return the explicit key, or the vendor's key from the environment.

    Raises:
        ConfigurationError: If neither is set.
    """
    if explicit and explicit.strip():
        return explicit.strip()

    var_name = api_key_env_var(vendor)
    value = os.environ.get(var_name, "").strip()
    if not value:
        raise ConfigurationError(
            f'No API key configured for provider "{vendor}". '
            f"Set an API key in the provider settings or the {var_name} "
            f"environment variable.",
            vendor=vendor,
            field="api_key",
        )
    return value
