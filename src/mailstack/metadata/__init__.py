"""Connection metadata models and store."""

from mailstack.metadata.models import (
    ConnectionRecord,
    DeployedResources,
    Diagnostic,
    FeatureAction,
    FeatureName,
    FeatureState,
    IdentityAction,
    IdentityState,
    IdentityType,
    IntegrationLevel,
    Provider,
)
from mailstack.metadata.store import ConnectionStore

__all__ = [
    "ConnectionRecord",
    "ConnectionStore",
    "DeployedResources",
    "Diagnostic",
    "FeatureAction",
    "FeatureName",
    "FeatureState",
    "IdentityAction",
    "IdentityState",
    "IdentityType",
    "IntegrationLevel",
    "Provider",
]
