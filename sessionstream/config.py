"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./sessionstream.yaml or ./sessionstream.yml (working directory)
3. ~/.sessionstream/config.yaml (user home)

Environment variables override YAML: SESSIONSTREAM_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
ENV_PREFIX = "SESSIONSTREAM_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class BackendConfig(BaseModel):
    """Chat backend location, credentials and endpoint paths."""

    base_url: str = "http://127.0.0.1:3000"
    api_key: str = ""
    timeout: float = 30.0
    session_path: str = "/api/session"
    sessions_path: str = "/api/sessions"
    sync_path: str = "/api/session/sync"
    stream_path: str = "/api/chat/stream"
    interact_path: str = "/api/chat/interact"
    title_path: str = "/api/conversations/gen-title"
    share_path: str = "/api/share"


class RetryConfig(BaseModel):
    """Retry budget for a logical send."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0


class AgentsConfig(BaseModel):
    """Agent identities that determine the default merge discipline.

    Lists may also be given as comma-separated strings, which is how
    they arrive from environment overrides.
    """

    code_generation_agents: list[str] = ["CodingAgent"]
    conversational_agents: list[str] = ["ConversationalWelcomeAgent", "WelcomeAgent"]

    @field_validator("code_generation_agents", "conversational_agents", mode="before")
    @classmethod
    def split_comma_separated(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class LoggingConfig(BaseModel):
    """Log level, line format and optional log file."""

    level: str = "info"
    format: Literal["text", "json"] = "text"
    file: str | None = None


class SessionStreamConfig(BaseModel):
    """Top-level configuration for the sessionstream client."""

    backend: BackendConfig = BackendConfig()
    retry: RetryConfig = RetryConfig()
    agents: AgentsConfig = AgentsConfig()
    logging: LoggingConfig = LoggingConfig()


def _find_config_file() -> Path | None:
    candidates = [
        Path.cwd() / "sessionstream.yaml",
        Path.cwd() / "sessionstream.yml",
        Path.home() / ".sessionstream" / "config.yaml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply SESSIONSTREAM_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix, so
    ``SESSIONSTREAM_RETRY_MAX_RETRIES`` maps to section ``retry``, field
    ``max_retries``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    known_sections = sorted(
        SessionStreamConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if not isinstance(section_data, dict):
            continue
        try:
            section_data[matched_field] = int(value)
        except ValueError:
            if value.lower() in ("true", "false"):
                section_data[matched_field] = value.lower() == "true"
            else:
                section_data[matched_field] = value
    return data


def load_config(config_path: str | None = None) -> SessionStreamConfig | None:
    """Load configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.sessionstream/).

    Returns:
        Parsed and validated SessionStreamConfig, or None if no config found.

    Raises:
        FileNotFoundError: If ``config_path`` was given but does not exist.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()
        if path is None:
            return None

    logger.info("Loading config from %s", path)

    with open(path) as f:
        raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return SessionStreamConfig(**data)


def resolve_config(config_path: str | None = None) -> SessionStreamConfig:
    """Load configuration, falling back to defaults plus env overrides."""
    config = load_config(config_path)
    if config is None:
        config = SessionStreamConfig(**_apply_env_overrides({}))
    return config
