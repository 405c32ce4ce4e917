"""ChatNest application configuration.

Loads settings from two YAML files:
  * chatnest.settings.yaml:  non-secret configuration
  * chatnest.secrets.yaml:   secrets (never committed)

Both paths can be overridden with the CHATNEST_SETTINGS and CHATNEST_SECRETS
environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatnest.settings.yaml")
SECRETS_FILE  = Path("chatnest.secrets.yaml")

# Hard ceiling for a single history page, whatever the settings say.
MAX_HISTORY_LIMIT = 100


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Invalid config format in {path}, expected a mapping.")
    return data


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class OpenRouterSecrets(BaseModel):
    api_key: Optional[str] = None


class Secrets(BaseModel):
    openrouter: OpenRouterSecrets = Field(default_factory=OpenRouterSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "chatnest.duckdb"


class SyncSettings(BaseModel):
    """Behaviour of the client-side room message synchronizer."""
    history_limit:       int = 50
    ai_author_name:      str = "GPT-4"
    unknown_author_name: str = "Anonymous"
    provisional_prefix:  str = "temp-"
    typing_text:         str = "AI is typing..."
    ai_error_text:       str = "There was a problem getting a reply."

    @field_validator("history_limit")
    @classmethod
    def _clamp_history_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history_limit must be at least 1")
        return min(value, MAX_HISTORY_LIMIT)


class AISettings(BaseModel):
    enabled:         bool  = True
    base_url:        str   = "https://openrouter.ai/api/v1"
    model:           str   = "openai/gpt-4o"
    max_tokens:      int   = 800
    system_prompt:   str   = "You are a helpful AI assistant."
    timeout_seconds: float = 60.0
    endpoint_path:   str   = "/functions/v1/ask-gpt"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sync:     SyncSettings     = Field(default_factory=SyncSettings)
    ai:       AISettings       = Field(default_factory=AISettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_path or Path(os.environ.get("CHATNEST_SETTINGS", SETTINGS_FILE))
    secrets_path  = secrets_path or Path(os.environ.get("CHATNEST_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, ai.enabled=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.ai.enabled,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppSettings) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached settings (used by tests)."""
    global _config
    _config = None
