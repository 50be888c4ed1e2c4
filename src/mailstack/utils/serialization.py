"""JSON serialization utilities."""

from __future__ import annotations

import datetime
import decimal
import enum
import json
from typing import Any

from pydantic import BaseModel


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        # DynamoDB numbers come back as Decimal.
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return str(obj)


def dumps(value: Any, *, indent: int | None = 2) -> str:
    return json.dumps(value, default=json_default, indent=indent, sort_keys=False)
