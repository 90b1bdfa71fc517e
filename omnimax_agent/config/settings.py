"""Assistant settings loaded from YAML, the environment and ``.env``."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from omnimax_agent.orchestration.state import ModelSelection
from omnimax_agent.tools.context_tools import LATEST_MESSAGES_TOOL, PROTOCOL_HISTORY_TOOL

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("config") / "omnimax.yaml"

_ENV_PATTERN = re.compile(r"\$\{[^}]+\}")


class SettingsError(Exception):
    """Raised when settings cannot be loaded or are invalid."""

    pass


class Persona(BaseModel):
    """A named assistant configuration: prompt plus permitted tools."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    prompt: str = ""
    tool_names: list[str] = Field(default_factory=list, alias="toolNames")


DEFAULT_PERSONA = Persona(
    id="default",
    name="Assistant",
    description="General assistant for customer-service attendants.",
    prompt="You are an assistant helping a customer-service attendant handle the current session.",
    tool_names=[PROTOCOL_HISTORY_TOOL, LATEST_MESSAGES_TOOL],
)


class ModelSettings(BaseModel):
    provider: str = Field(default_factory=lambda: os.getenv("OMNIMAX_PROVIDER", "openai"))
    model: str = Field(default_factory=lambda: os.getenv("OMNIMAX_MODEL", ""))
    api_key: str | None = Field(default_factory=lambda: os.getenv("OMNIMAX_API_KEY") or None)
    base_url: str | None = Field(default_factory=lambda: os.getenv("OMNIMAX_MODEL_BASE_URL") or None)
    max_retries: int = Field(0, ge=0)

    def to_selection(self) -> ModelSelection:
        return ModelSelection(
            provider=self.provider,
            model=self.model,
            api_key=self.api_key,
            base_url=self.base_url,
        )


class StorageSettings(BaseModel):
    db_path: Path = Field(
        default_factory=lambda: Path(os.getenv("OMNIMAX_DB_PATH", "data/omnimax_checkpoints.db"))
    )
    use_sqlite: bool = True
    recursion_limit: int = Field(25, ge=1)


class HttpSettings(BaseModel):
    timeout: float = Field(30.0, gt=0)
    page_size: int = Field(20, ge=1)


class AssistantSettings(BaseModel):
    """Validated settings for the assistant service."""

    model: ModelSettings = Field(default_factory=ModelSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    personas: list[Persona] = Field(default_factory=lambda: [DEFAULT_PERSONA])

    @field_validator("personas")
    @classmethod
    def _check_personas(cls, value: list[Persona]) -> list[Persona]:
        if not value:
            raise ValueError("at least one persona is required")
        ids = [persona.id for persona in value]
        duplicates = sorted({pid for pid in ids if ids.count(pid) > 1})
        if duplicates:
            raise ValueError(f"duplicate persona ids: {', '.join(duplicates)}")
        return value

    def resolve_persona(self, persona_id: str | None) -> Persona:
        """Return the persona with ``persona_id``, else the first persona."""
        for persona in self.personas:
            if persona.id == persona_id:
                return persona
        if persona_id:
            logger.warning(f"Unknown persona {persona_id!r}; using {self.personas[0].id!r}")
        return self.personas[0]


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        expanded = os.path.expandvars(value)
        if _ENV_PATTERN.search(expanded):
            raise SettingsError(f"Missing environment variable in value: {value}")
        return expanded
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_config(path: Path) -> dict[str, Any]:
    """Load and expand a YAML settings file."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SettingsError(f"Cannot read settings file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise SettingsError(f"Invalid YAML in {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError("Settings must be a dictionary")
    return _expand_env(raw)


def validate_settings(path: Path) -> AssistantSettings:
    """Validate a single settings file."""
    data = load_config(path)
    try:
        return AssistantSettings(**data)
    except ValidationError as exc:
        raise SettingsError(f"Invalid settings in {path}: {exc}") from exc


def load_settings(path: Path | None = None, *, env_file: Path | None = None) -> AssistantSettings:
    """Load settings for the service.

    ``.env`` is loaded first so both ``${VAR}`` references and the
    environment defaults see its values. Without an explicit path the
    default file is optional.

    Raises:
        SettingsError: If the file is missing, unreadable or invalid.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True))

    if path is None:
        path = Path(os.getenv("OMNIMAX_CONFIG", str(DEFAULT_SETTINGS_PATH)))
        if not path.exists():
            logger.info(f"No settings file at {path}; using environment defaults")
            return AssistantSettings()
    elif not path.exists():
        raise SettingsError(f"Settings file not found: {path}")

    logger.info(f"Loading settings from {path}")
    return validate_settings(path)
