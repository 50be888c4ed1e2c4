"""Persisted connection metadata models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from mailstack.utils.time import utc_now

RECORD_VERSION = 1


class Provider(str, Enum):
    VERCEL = "vercel"
    AWS = "aws"
    RAILWAY = "railway"
    OTHER = "other"


class IntegrationLevel(str, Enum):
    DASHBOARD_ONLY = "dashboard-only"
    ENHANCED = "enhanced"


class FeatureName(str, Enum):
    CONFIG_SET = "configSet"
    EVENT_TRACKING = "eventTracking"
    EMAIL_HISTORY = "emailHistory"
    TRACKING_DOMAIN = "trackingDomain"
    ARCHIVE = "archive"
    MAIL_FROM = "mailFrom"


class FeatureAction(str, Enum):
    DEPLOY_NEW = "deploy-new"
    REPLACE = "replace"
    SKIP = "skip"


class IdentityType(str, Enum):
    DOMAIN = "domain"
    ADDRESS = "address"


class IdentityAction(str, Enum):
    NO_CHANGE = "no-change"
    ATTACHED = "attached"
    REPLACED = "replaced"


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FeatureState(_RecordModel):
    enabled: bool = False
    action: FeatureAction = FeatureAction.SKIP
    original_value: str | None = None
    current_value: str | None = None

    @model_validator(mode="after")
    def _replace_requires_original(self) -> "FeatureState":
        if self.action is FeatureAction.REPLACE and not self.original_value:
            raise ValueError("a replaced feature must record its original value")
        return self

    @classmethod
    def skipped(cls) -> "FeatureState":
        return cls(enabled=False, action=FeatureAction.SKIP)

    @classmethod
    def deployed(cls, current_value: str | None = None) -> "FeatureState":
        return cls(enabled=True, action=FeatureAction.DEPLOY_NEW, current_value=current_value)

    @classmethod
    def replacing(cls, original_value: str, current_value: str | None) -> "FeatureState":
        return cls(
            enabled=True,
            action=FeatureAction.REPLACE,
            original_value=original_value,
            current_value=current_value,
        )


class IdentityState(_RecordModel):
    name: str
    type: IdentityType = IdentityType.DOMAIN
    original_config_set: str | None = None
    current_config_set: str | None = None
    action: IdentityAction = IdentityAction.NO_CHANGE

    @model_validator(mode="after")
    def _check_action(self) -> "IdentityState":
        if self.action is IdentityAction.REPLACED and not self.original_config_set:
            raise ValueError(f"identity {self.name} is replaced but has no original config set")
        if self.action is IdentityAction.ATTACHED and self.original_config_set:
            raise ValueError(f"identity {self.name} is attached but already had a config set")
        return self

    @property
    def reversible(self) -> bool:
        return self.action in (IdentityAction.ATTACHED, IdentityAction.REPLACED)


class DeployedResources(_RecordModel):
    """Fields derived from the provisioning engine outputs."""

    role_arn: str | None = None
    role_name: str | None = None
    oidc_provider_arn: str | None = None
    config_set_name: str | None = None
    domain: str | None = None
    dkim_tokens: list[str] = Field(default_factory=list)
    mail_from_domain: str | None = None
    table_name: str | None = None
    topic_arn: str | None = None
    function_arns: list[str] = Field(default_factory=list)
    dead_letter_queue_arn: str | None = None
    tracking_domain: str | None = None
    distribution_id: str | None = None
    distribution_domain: str | None = None
    certificate_arn: str | None = None
    validation_records: list[dict[str, str]] = Field(default_factory=list)
    archive_id: str | None = None
    archive_arn: str | None = None


class Diagnostic(_RecordModel):
    code: str
    message: str
    group: str | None = None
    recorded_at: datetime = Field(default_factory=utc_now)


class ConnectionRecord(_RecordModel):
    account_id: str
    region: str
    provider: Provider
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    stack_id: str
    preset: str | None = None
    integration_level: IntegrationLevel = IntegrationLevel.ENHANCED
    features: dict[str, FeatureState] = Field(default_factory=dict)
    feature_flags: dict[str, Any] = Field(default_factory=dict)
    identities: list[IdentityState] = Field(default_factory=list)
    resources: DeployedResources = Field(default_factory=DeployedResources)
    provider_params: dict[str, str] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    version: int = RECORD_VERSION

    @field_validator("features", mode="before")
    @classmethod
    def _normalize_feature_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        known = {name.value for name in FeatureName}
        normalized: dict[str, Any] = {}
        for key, state in value.items():
            name = key.value if isinstance(key, FeatureName) else str(key)
            if name not in known:
                raise ValueError(f"unknown feature: {name}")
            normalized[name] = state
        return normalized

    def set_feature(self, name: FeatureName, state: FeatureState) -> None:
        self.features[name.value] = state

    def identity(self, name: str) -> IdentityState | None:
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def merge_identities(self, incoming: list[IdentityState]) -> list[IdentityState]:
        """Append identities not yet tracked. Existing entries are never altered."""
        added: list[IdentityState] = []
        for identity in incoming:
            if self.identity(identity.name) is None:
                self.identities.append(identity)
                added.append(identity)
        return added

    def replaced_features(self) -> dict[str, FeatureState]:
        return {
            name: state
            for name, state in self.features.items()
            if state.action is FeatureAction.REPLACE
        }

    def reversible_identities(self) -> list[IdentityState]:
        return [identity for identity in self.identities if identity.reversible]

    def has_restorable_changes(self) -> bool:
        return bool(self.replaced_features() or self.reversible_identities())

    def add_diagnostic(self, code: str, message: str, group: str | None = None) -> None:
        self.diagnostics.append(Diagnostic(code=code, message=message, group=group))

    def touch(self) -> None:
        self.updated_at = utc_now()
