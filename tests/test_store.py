from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from mailstack.errors import ConfigurationError, ConflictError
from mailstack.metadata import (
    ConnectionRecord,
    ConnectionStore,
    FeatureName,
    FeatureState,
    IdentityAction,
    IdentityState,
    Provider,
)

ACCOUNT = "123456789012"
REGION = "us-east-1"


def _record(**overrides) -> ConnectionRecord:
    values = {
        "account_id": ACCOUNT,
        "region": REGION,
        "provider": Provider.AWS,
        "stack_id": f"mailstack-{ACCOUNT}-{REGION}",
    }
    values.update(overrides)
    return ConnectionRecord(**values)


def test_save_then_load(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    record = _record()
    record.set_feature(FeatureName.CONFIG_SET, FeatureState.replacing("legacy", "mailstack-email-tracking"))
    record.identities.append(
        IdentityState(
            name="example.com",
            original_config_set="legacy",
            current_config_set="mailstack-email-tracking",
            action=IdentityAction.REPLACED,
        )
    )

    path = store.save(record)

    assert path == tmp_path / f"{ACCOUNT}-{REGION}.json"
    loaded = store.load(ACCOUNT, REGION)
    assert loaded == record


def test_record_is_written_with_camel_case_keys(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)

    path = store.save(_record())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["accountId"] == ACCOUNT
    assert "stackId" in data


def test_save_leaves_no_temporary_files(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    store.save(_record())
    store.save(_record(preset="production"))

    assert sorted(os.listdir(tmp_path)) == [f"{ACCOUNT}-{REGION}.json"]
    assert store.load(ACCOUNT, REGION).preset == "production"


def test_failed_write_keeps_previous_record(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = ConnectionStore(tmp_path)
    store.save(_record(preset="starter"))

    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _fail)
    with pytest.raises(OSError):
        store.save(_record(preset="production"))

    assert store.load(ACCOUNT, REGION).preset == "starter"
    assert sorted(os.listdir(tmp_path)) == [f"{ACCOUNT}-{REGION}.json"]


def test_load_missing_returns_none(tmp_path: Path) -> None:
    assert ConnectionStore(tmp_path).load(ACCOUNT, REGION) is None


def test_delete_is_idempotent(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    store.save(_record())

    assert store.delete(ACCOUNT, REGION) is True
    assert store.delete(ACCOUNT, REGION) is False
    assert store.load(ACCOUNT, REGION) is None


def test_corrupt_record_is_reported(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    store.path_for(ACCOUNT, REGION).write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError) as exc_info:
        store.load(ACCOUNT, REGION)

    assert exc_info.value.code == "metadata_corrupt"


@pytest.mark.parametrize(("account", "region"), [("../etc", REGION), (ACCOUNT, ""), (ACCOUNT, "us east")])
def test_invalid_key_components_are_rejected(tmp_path: Path, account: str, region: str) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        ConnectionStore(tmp_path).path_for(account, region)

    assert exc_info.value.code == "invalid_connection_key"


def test_lock_is_exclusive_and_released(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)

    with store.lock(ACCOUNT, REGION) as lock_path:
        assert lock_path.exists()
        with pytest.raises(ConflictError) as exc_info:
            with store.lock(ACCOUNT, REGION):
                pass
        assert exc_info.value.code == "operation_in_progress"

    assert not lock_path.exists()
    with store.lock(ACCOUNT, REGION):
        pass


def test_stale_lock_is_taken_over(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    lock_path = tmp_path / f"{ACCOUNT}-{REGION}.lock"
    lock_path.write_text(
        json.dumps({"pid": os.getpid(), "acquiredAt": "2000-01-01T00:00:00+00:00"}),
        encoding="utf-8",
    )

    with store.lock(ACCOUNT, REGION):
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["acquiredAt"] != "2000-01-01T00:00:00+00:00"


def test_unreadable_lock_file_counts_as_stale(tmp_path: Path) -> None:
    store = ConnectionStore(tmp_path)
    (tmp_path / f"{ACCOUNT}-{REGION}.lock").write_text("garbage", encoding="utf-8")

    with store.lock(ACCOUNT, REGION):
        pass
