from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

from mailstack.metadata.models import FeatureAction
from mailstack.utils.serialization import dumps, json_default
from mailstack.utils.time import ensure_aware, utc_now


def test_json_default_handles_dynamodb_numbers() -> None:
    assert json_default(Decimal("3")) == 3
    assert json_default(Decimal("2.5")) == 2.5


def test_dumps_handles_datetimes_enums_and_sets() -> None:
    when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    data = json.loads(dumps({"at": when, "action": FeatureAction.REPLACE, "tags": {"a"}}, indent=None))

    assert data == {"at": "2025-01-02T03:04:05+00:00", "action": "replace", "tags": ["a"]}


def test_bytes_are_decoded() -> None:
    assert json_default(b"abc") == "abc"


def test_ensure_aware() -> None:
    naive = datetime(2025, 1, 1, 12, 0)

    assert ensure_aware(naive).tzinfo is timezone.utc
    now = utc_now()
    assert ensure_aware(now) is now
