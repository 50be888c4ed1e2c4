from __future__ import annotations

import pytest
from pydantic import ValidationError

from mailstack.metadata import (
    ConnectionRecord,
    FeatureAction,
    FeatureName,
    FeatureState,
    IdentityAction,
    IdentityState,
    Provider,
)


def _record(**values) -> ConnectionRecord:
    return ConnectionRecord(
        account_id="123456789012",
        region="us-east-1",
        provider=Provider.AWS,
        stack_id="mailstack-123456789012-us-east-1",
        **values,
    )


def test_replaced_feature_requires_original_value() -> None:
    with pytest.raises(ValidationError):
        FeatureState(enabled=True, action=FeatureAction.REPLACE)


def test_replaced_identity_requires_original_config_set() -> None:
    with pytest.raises(ValidationError):
        IdentityState(name="example.com", action=IdentityAction.REPLACED)


def test_attached_identity_cannot_have_original_config_set() -> None:
    with pytest.raises(ValidationError):
        IdentityState(name="example.com", original_config_set="legacy", action=IdentityAction.ATTACHED)


def test_untouched_identity_is_not_reversible() -> None:
    identity = IdentityState(name="example.com", original_config_set="legacy", current_config_set="legacy")

    assert identity.reversible is False


def test_feature_keys_accept_enum_members() -> None:
    record = _record(features={FeatureName.CONFIG_SET: FeatureState.deployed("set")})

    assert list(record.features) == ["configSet"]
    assert record.features["configSet"].current_value == "set"


def test_unknown_feature_key_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _record(features={"teleport": FeatureState.skipped()})


def test_record_accepts_camel_case_documents() -> None:
    record = ConnectionRecord.model_validate(
        {
            "accountId": "123456789012",
            "region": "us-east-1",
            "provider": "vercel",
            "stackId": "s",
            "features": {"configSet": {"enabled": True, "action": "deploy-new"}},
        }
    )

    assert record.provider is Provider.VERCEL
    assert record.features["configSet"].enabled is True


def test_merge_identities_never_alters_existing_entries() -> None:
    existing = IdentityState(
        name="example.com",
        original_config_set="legacy",
        current_config_set="mailstack-email-tracking",
        action=IdentityAction.REPLACED,
    )
    record = _record(identities=[existing])

    added = record.merge_identities(
        [
            IdentityState(name="example.com", current_config_set="other"),
            IdentityState(name="other.com", action=IdentityAction.ATTACHED, current_config_set="x"),
        ]
    )

    assert [identity.name for identity in added] == ["other.com"]
    assert record.identity("example.com") == existing


def test_restorable_changes() -> None:
    record = _record()
    assert record.has_restorable_changes() is False

    record.set_feature(FeatureName.CONFIG_SET, FeatureState.replacing("legacy", "new"))

    assert record.has_restorable_changes() is True
    assert list(record.replaced_features()) == ["configSet"]


def test_diagnostics_and_touch() -> None:
    record = _record()
    before = record.updated_at

    record.add_diagnostic("eventing_apply_failed", "boom", group="eventing")
    record.touch()

    assert record.diagnostics[0].group == "eventing"
    assert record.updated_at >= before
