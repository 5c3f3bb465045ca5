"""
Configuration for Session Chat.

Settings come from, in increasing priority: built-in defaults, a YAML file,
a ``.env`` file and environment variables. Nested sections use ``__`` in
environment variable names, e.g. ``ROUTING__GENERATION_TIMEOUT=30``.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.models import SessionMode

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SESSION_CHAT_CONFIG"

DEFAULT_SYSTEM_PROMPT = "You are a helpful, friendly assistant."

SPECIALIZED_SYSTEM_PROMPT = (
    "You are a supportive, careful assistant trained in reflective listening. "
    "Respond with empathy, ask gentle clarifying questions, and encourage the "
    "user to seek professional help when their wellbeing may be at risk."
)

DEFAULT_SPECIALIZED_KEYWORDS = [
    "anxious",
    "anxiety",
    "depressed",
    "depression",
    "lonely",
    "panic",
    "stressed",
    "overwhelmed",
    "hopeless",
    "therapy",
]


class DatabaseConfig(BaseModel):
    """Where sessions and messages are stored."""

    url: str | None = Field(
        default=None,
        description="SQLAlchemy database URL; empty means a SQLite file in data_dir",
    )
    encryption_enabled: bool = Field(
        default=True, description="Encrypt message content at rest"
    )
    echo: bool = Field(default=False, description="Log every SQL statement")


class APIConfig(BaseModel):
    """HTTP settings for the model provider."""

    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenAI-compatible API base URL",
    )
    timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")
    retries: int = Field(
        default=0, ge=0, le=10, description="Retries for transient provider errors"
    )
    max_backoff: int = Field(default=60, ge=1, description="Longest wait between retries")


class ModeProfile(BaseModel):
    """How replies are generated while a session is in one mode."""

    model: str = Field(..., description="Model identifier")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1, le=32000)
    system_prompt: str | None = Field(None, description="System prompt for the mode")

    @field_validator("model")
    @classmethod
    def strip_model(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Model cannot be empty")
        return v.strip()


def _default_mode_profiles() -> dict[SessionMode, ModeProfile]:
    return {
        SessionMode.DEFAULT: ModeProfile(
            model="openai/gpt-3.5-turbo",
            system_prompt=DEFAULT_SYSTEM_PROMPT,
        ),
        SessionMode.SPECIALIZED: ModeProfile(
            model="openai/gpt-4",
            temperature=0.5,
            max_tokens=1500,
            system_prompt=SPECIALIZED_SYSTEM_PROMPT,
        ),
    }


class RoutingConfig(BaseModel):
    """Mode classification and reply generation."""

    classifier_model: str = Field(
        default="openai/gpt-4o-mini", description="Model used for mode classification"
    )
    classification_timeout: float = Field(default=10.0, gt=0, le=120)
    generation_timeout: float = Field(default=60.0, gt=0, le=600)
    confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a specialized classification to count",
    )
    max_history_messages: int = Field(
        default=50, ge=1, description="Most recent messages sent to the generator"
    )
    specialized_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SPECIALIZED_KEYWORDS),
        description="Trigger words for the offline keyword classifier",
    )
    modes: dict[SessionMode, ModeProfile] = Field(default_factory=_default_mode_profiles)

    @model_validator(mode="after")
    def require_every_mode(self) -> "RoutingConfig":
        missing = [mode.value for mode in SessionMode if mode not in self.modes]
        if missing:
            raise ValueError(f"Missing mode profiles: {missing}")
        return self

    def profile_for(self, mode: SessionMode) -> ModeProfile:
        return self.modes[mode]


class AppSettings(BaseSettings):
    """Application settings."""

    app_name: str = "Session Chat"
    environment: Literal["development", "testing", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    data_dir: str = Field(default="./data", description="Database and key file location")

    openrouter_api_key: str | None = Field(default=None, repr=False)
    classifier_endpoint: str | None = Field(
        default=None, description="HTTP endpoint of an external mode classifier"
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs and rank below the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_api_key_when_deployed(self) -> "AppSettings":
        if self.environment in ("staging", "production") and not self.openrouter_api_key:
            raise ValueError("OpenRouter API key must be configured in staging and production")
        return self

    @property
    def database_url(self) -> str:
        """Configured database URL, or the SQLite file in data_dir."""
        return self.database.url or f"sqlite:///{self.get_data_path('session_chat.db')}"

    def get_data_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename


@contextmanager
def _environ(overrides: dict[str, str] | None) -> Iterator[None]:
    """Apply environment variables for the duration of the block."""
    saved = {key: os.environ.get(key) for key in overrides or {}}
    os.environ.update(overrides or {})
    try:
        yield
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


class ConfigurationManager:
    """Loads, caches and resets the process-wide settings."""

    def __init__(self):
        self._settings: AppSettings | None = None

    def load_configuration(
        self,
        config_path: Path | None = None,
        override_env: dict[str, str] | None = None,
    ) -> AppSettings:
        """
        Load settings from a YAML file and the environment.

        Args:
            config_path: YAML file; defaults to ``$SESSION_CHAT_CONFIG`` when set
            override_env: Extra environment variables applied while loading

        Returns:
            Validated settings, also cached as the current settings

        Raises:
            ValueError: If the YAML file is malformed or data_dir cannot be created
        """
        if config_path is None and os.environ.get(CONFIG_PATH_ENV):
            config_path = Path(os.environ[CONFIG_PATH_ENV])

        file_values = self._read_yaml(config_path) if config_path else {}

        with _environ(override_env):
            settings = AppSettings(**file_values)

        self._prepare(settings)
        self._settings = settings
        return settings

    @staticmethod
    def _read_yaml(config_path: Path) -> dict[str, Any]:
        if not config_path.exists():
            logger.debug(f"No configuration file at {config_path}")
            return {}
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML configuration in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        logger.debug(f"Loaded configuration file {config_path}")
        return data

    @staticmethod
    def _prepare(settings: AppSettings) -> None:
        if not settings.database.url:
            try:
                Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValueError(f"Cannot create data directory {settings.data_dir}: {e}") from e

        key = settings.openrouter_api_key
        if key and not key.startswith("sk-or-"):
            logger.warning("OpenRouter API key should start with 'sk-or-'")

    @property
    def settings(self) -> AppSettings:
        """Current settings, loaded on first access."""
        if self._settings is None:
            self.load_configuration()
        return self._settings

    def reset(self):
        self._settings = None

    def export_config_template(self, output_path: Path):
        """Write a YAML file with the main tunables and their defaults."""
        routing = RoutingConfig()
        template = {
            "app_name": "Session Chat",
            "environment": "development",
            "log_level": "INFO",
            "database": {"encryption_enabled": True},
            "api": {"timeout": 30, "retries": 0},
            "routing": {
                "classifier_model": routing.classifier_model,
                "classification_timeout": routing.classification_timeout,
                "generation_timeout": routing.generation_timeout,
                "confidence_threshold": routing.confidence_threshold,
                "specialized_keywords": routing.specialized_keywords,
                "modes": {
                    mode.value: profile.model_dump(exclude_none=True)
                    for mode, profile in routing.modes.items()
                },
            },
        }

        with open(output_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(template, f, default_flow_style=False, sort_keys=False)


config_manager = ConfigurationManager()


def get_settings() -> AppSettings:
    return config_manager.settings


def load_config(config_path: Path | None = None) -> AppSettings:
    """Load settings from ``config_path`` and make them current."""
    return config_manager.load_configuration(config_path)
