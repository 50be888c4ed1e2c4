"""Lifecycle states and the guards each command checks before acting."""

from __future__ import annotations

from enum import Enum

from mailstack.errors import connection_exists, connection_not_found
from mailstack.metadata.models import ConnectionRecord


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    DEPLOYED = "deployed"
    UPGRADED = "upgraded"
    RESTORED = "restored"
    DESTROYED = "destroyed"


def state_of(record: ConnectionRecord | None) -> LifecycleState:
    """A record on disk is the only signal that a stack exists."""
    return LifecycleState.DEPLOYED if record is not None else LifecycleState.UNINITIALIZED


def require_uninitialized(record: ConnectionRecord | None, account_id: str, region: str) -> None:
    if record is not None:
        raise connection_exists(account_id, region)


def require_deployed(
    record: ConnectionRecord | None, account_id: str, region: str
) -> ConnectionRecord:
    if record is None:
        raise connection_not_found(account_id, region)
    return record
