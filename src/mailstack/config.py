"""Configuration management for the mailstack CLI."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)

_DEFAULT_HOME = "~/.mailstack"


class LoggingSettings(BaseModel):
    level: str = Field(default="WARNING", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)
    sts_region: str = Field(default="us-east-1")
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)


class StorageSettings(BaseModel):
    home: str = Field(default=_DEFAULT_HOME, description="Per-user configuration directory")

    @property
    def home_path(self) -> Path:
        return Path(self.home).expanduser()

    @property
    def connections_path(self) -> Path:
        return self.home_path / "connections"


class CredentialSettings(BaseModel):
    refresh_buffer_seconds: int = Field(default=300, ge=0, le=3600)
    cache_max_entries: int = Field(default=500, ge=1, le=10000)
    session_duration_seconds: int = Field(default=3600, ge=900, le=43200)
    session_name: str = Field(default="mailstack-console-session")


class EngineSettings(BaseModel):
    project_name: str = Field(default="mailstack")
    backend_url: str | None = Field(
        default=None,
        description="Pulumi state backend; defaults to a file backend under the home directory",
    )
    passphrase: str = Field(default="", description="Passphrase for the local secrets provider")


class ConsoleSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=5555, ge=1024, le=65535)


class PresetSettings(BaseModel):
    path: str | None = Field(default=None, description="Optional preset catalogue override")

    @field_validator("path")
    @classmethod
    def _validate_path(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return str(Path(value).expanduser())


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    console: ConsoleSettings = Field(default_factory=ConsoleSettings)
    presets: PresetSettings = Field(default_factory=PresetSettings)

    def pulumi_backend_url(self) -> str:
        if self.engine.backend_url:
            return self.engine.backend_url
        return (self.storage.home_path / "state").as_uri()


ENV_KEYS = {
    "home": "MAILSTACK_HOME",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "aws_region": "AWS_DEFAULT_REGION",
    "aws_profile": "AWS_PROFILE",
    "max_retries": "MAILSTACK_AWS_MAX_RETRIES",
    "refresh_buffer": "MAILSTACK_CREDENTIAL_REFRESH_BUFFER_SECONDS",
    "cache_max_entries": "MAILSTACK_CREDENTIAL_CACHE_MAX_ENTRIES",
    "backend_url": "MAILSTACK_PULUMI_BACKEND_URL",
    "passphrase": "PULUMI_CONFIG_PASSPHRASE",
    "presets_path": "MAILSTACK_PRESETS_PATH",
}


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    load_dotenv(dotenv_path=Path.cwd() / ".env")

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": os.getenv(ENV_KEYS["log_file"]) or None,
        },
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "default_profile": os.getenv(ENV_KEYS["aws_profile"]),
            "sts_region": os.getenv("AWS_STS_REGION", AWSSettings().sts_region),
            "sdk_timeout_seconds": _env_int(
                "MAILSTACK_SDK_TIMEOUT_SECONDS", AWSSettings().sdk_timeout_seconds
            ),
            "max_retries": _env_int(ENV_KEYS["max_retries"], AWSSettings().max_retries),
        },
        "storage": {
            "home": os.getenv(ENV_KEYS["home"], StorageSettings().home),
        },
        "credentials": {
            "refresh_buffer_seconds": _env_int(
                ENV_KEYS["refresh_buffer"],
                CredentialSettings().refresh_buffer_seconds,
            ),
            "cache_max_entries": _env_int(
                ENV_KEYS["cache_max_entries"],
                CredentialSettings().cache_max_entries,
            ),
            "session_duration_seconds": _env_int(
                "MAILSTACK_CREDENTIAL_DURATION_SECONDS",
                CredentialSettings().session_duration_seconds,
            ),
        },
        "engine": {
            "backend_url": os.getenv(ENV_KEYS["backend_url"]) or None,
            "passphrase": os.getenv(ENV_KEYS["passphrase"], EngineSettings().passphrase),
        },
        "console": {
            "host": os.getenv("MAILSTACK_CONSOLE_HOST", ConsoleSettings().host),
            "port": _env_int("MAILSTACK_CONSOLE_PORT", ConsoleSettings().port),
        },
        "presets": {
            "path": os.getenv(ENV_KEYS["presets_path"]) or None,
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    settings.storage.connections_path.mkdir(parents=True, exist_ok=True)

    return settings
