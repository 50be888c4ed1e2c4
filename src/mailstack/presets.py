"""Preset catalogue loader for presets.yaml."""

from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from mailstack.errors import ConfigurationError
from mailstack.infrastructure.planner import DEFAULT_EVENTS, ArchiveRetention, FeatureFlags
from mailstack.metadata.models import IntegrationLevel


class PresetFeatures(BaseModel):
    config_set: bool = False
    event_tracking: bool = False
    reputation_metrics: bool = False
    tls_required: bool = True
    archive_retention: str | None = None
    events: list[str] = Field(default_factory=lambda: list(DEFAULT_EVENTS))

    @field_validator("events", mode="before")
    @classmethod
    def _validate_events(cls, v: Any) -> list:
        if v is None:
            return list(DEFAULT_EVENTS)
        return [str(item).upper() for item in v]

    @field_validator("archive_retention", mode="before")
    @classmethod
    def _validate_retention(cls, v: Any) -> str | None:
        if v is None:
            return None
        return ArchiveRetention.parse(str(v)).value


class Preset(BaseModel):
    description: str = ""
    integration_level: IntegrationLevel = IntegrationLevel.ENHANCED
    features: PresetFeatures = Field(default_factory=PresetFeatures)

    @field_validator("features", mode="before")
    @classmethod
    def _validate_features(cls, v: Any) -> Any:
        return v or {}

    def flags(self) -> FeatureFlags:
        return FeatureFlags(
            config_set=self.features.config_set,
            event_tracking=self.features.event_tracking,
            reputation_metrics=self.features.reputation_metrics,
            tls_required=self.features.tls_required,
            archive_retention=(
                ArchiveRetention.parse(self.features.archive_retention)
                if self.features.archive_retention
                else None
            ),
            events=tuple(self.features.events),
        ).with_dependencies()


class PresetCatalog(BaseModel):
    version: int = Field(default=1)
    default: str = Field(default="starter")
    presets: dict[str, Preset] = Field(default_factory=dict)

    def get(self, name: str | None) -> tuple[str, Preset]:
        key = (name or self.default).strip().lower()
        preset = self.presets.get(key)
        if preset is None:
            raise ConfigurationError(
                f"Unknown preset: {key}",
                code="unknown_preset",
                suggestion=f"Choose one of: {', '.join(sorted(self.presets))}",
            )
        return key, preset

    def names(self) -> list[str]:
        return list(self.presets)


def load_presets(path: str | None = None) -> PresetCatalog:
    if path:
        preset_path = Path(path)
        if not preset_path.exists():
            raise ConfigurationError(
                f"Preset file not found: {preset_path}",
                code="presets_not_found",
                suggestion="Check MAILSTACK_PRESETS_PATH",
            )
        text = preset_path.read_text(encoding="utf-8")
    else:
        text = resources.files("mailstack").joinpath("presets.yaml").read_text(encoding="utf-8")

    data = yaml.safe_load(text) or {}
    try:
        return PresetCatalog.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid preset catalogue: {exc}", code="invalid_presets"
        ) from exc
