"""Settings and configuration."""
import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values
from pydantic_settings import BaseSettings

from txvault.domain.envelope.registry import LEGACY_KEY_NAME, VERSIONED_KEY_PREFIX


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_REDACTION_ENABLED: bool = True

    model_config = {
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore"
    }


def _is_key_name(name: str) -> bool:
    return name == LEGACY_KEY_NAME or name.startswith(VERSIONED_KEY_PREFIX)


def load_key_config(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str] = ".env",
) -> Dict[str, str]:
    """Collect master key entries for ``build_registry``.

    Values from ``env_file`` (if it exists) are overridden by ``environ``
    (defaults to the process environment). Only ``MASTER_KEY`` and
    ``MASTER_KEY_V*`` names are returned.
    """
    config: Dict[str, str] = {}

    if env_file and os.path.exists(env_file):
        for name, value in dotenv_values(env_file).items():
            if _is_key_name(name) and value is not None:
                config[name] = value

    source = os.environ if environ is None else environ
    for name, value in source.items():
        if _is_key_name(name):
            config[name] = value

    return config


def get_settings() -> Settings:
    return Settings()
