"""In-memory cache of assumed-role credentials.

Entries are keyed by role ARN and external id and are never written to disk.
Concurrent misses for one key share a single refresh task; a failed refresh
reaches every waiter and leaves nothing behind, so the next call retries.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from mailstack.aws_credentials.sts_provider import TemporaryCredentials

Refresh = Callable[[], Awaitable[TemporaryCredentials]]


@dataclass(frozen=True)
class CacheKey:
    role_arn: str
    external_id: str | None = None


def _expires_within(creds: TemporaryCredentials, seconds: int) -> bool:
    expiration = creds.expiration
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    return expiration <= datetime.now(timezone.utc) + timedelta(seconds=seconds)


class CredentialCache:
    """LRU of temporary credentials with one refresh in flight per key."""

    def __init__(self, refresh_buffer_seconds: int, max_entries: int) -> None:
        self._buffer = refresh_buffer_seconds
        self._capacity = max_entries
        self._entries: OrderedDict[CacheKey, TemporaryCredentials] = OrderedDict()
        self._pending: dict[CacheKey, asyncio.Task[TemporaryCredentials]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, key: CacheKey) -> TemporaryCredentials | None:
        creds = self._entries.get(key)
        if creds is None or _expires_within(creds, self._buffer):
            return None
        self._entries.move_to_end(key)
        return creds

    def _remember(self, key: CacheKey, creds: TemporaryCredentials) -> None:
        self._entries[key] = creds
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def _start_refresh(self, key: CacheKey, refresh_fn: Refresh) -> asyncio.Task[TemporaryCredentials]:
        async def run() -> TemporaryCredentials:
            return await refresh_fn()

        task = asyncio.ensure_future(run())

        def settle(done: asyncio.Task[TemporaryCredentials]) -> None:
            if self._pending.get(key) is done:
                del self._pending[key]
            if not done.cancelled() and done.exception() is None:
                self._remember(key, done.result())

        # Registered before any waiter so the entry is stored by the time they resume.
        task.add_done_callback(settle)
        self._pending[key] = task
        return task

    async def get_or_refresh(self, key: CacheKey, refresh_fn: Refresh) -> TemporaryCredentials:
        creds = self._fresh(key)
        if creds is not None:
            return creds
        task = self._pending.get(key) or self._start_refresh(key, refresh_fn)
        # A cancelled caller must not cancel the refresh other callers wait on.
        return await asyncio.shield(task)

    async def invalidate(self, key: CacheKey) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()
