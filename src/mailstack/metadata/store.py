"""File-backed store for connection records.

One JSON document per (account, region) lives under
``<home>/connections/<account>-<region>.json``. Writes go to a temporary file
in the same directory and are moved into place with ``os.replace`` so a crash
never leaves a half-written record behind.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import tempfile
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from mailstack.errors import ConfigurationError, ConflictError
from mailstack.metadata.models import ConnectionRecord
from mailstack.utils.time import ensure_aware, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9-]+$")
_STALE_LOCK_AFTER = timedelta(hours=1)


class ConnectionStore:
    """Durable per-(account, region) connection records."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, account_id: str, region: str) -> Path:
        return self._root / f"{self._key(account_id, region)}.json"

    def load(self, account_id: str, region: str) -> ConnectionRecord | None:
        path = self.path_for(account_id, region)
        if not path.exists():
            return None
        return self._read(path)

    def save(self, record: ConnectionRecord) -> Path:
        path = self.path_for(record.account_id, record.region)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = record.model_dump_json(by_alias=True, indent=2)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

        logger.debug("Saved connection record %s", path)
        return path

    def delete(self, account_id: str, region: str) -> bool:
        """Remove a record. Returns False when there was nothing to remove."""
        path = self.path_for(account_id, region)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted connection record %s", path)
        return True

    @contextlib.contextmanager
    def lock(self, account_id: str, region: str) -> Iterator[Path]:
        """Advisory lock around a read-modify-write cycle for one key."""
        path = self._root / f"{self._key(account_id, region)}.lock"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._acquire(path)
        try:
            yield path
        finally:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()

    def _acquire(self, path: Path) -> None:
        for attempt in range(2):
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                if attempt == 0 and self._is_stale(path):
                    logger.warning("Taking over stale lock %s", path)
                    with contextlib.suppress(FileNotFoundError):
                        path.unlink()
                    continue
                raise ConflictError(
                    "Another mailstack command is already running for this account and region",
                    code="operation_in_progress",
                    suggestion=f"Wait for it to finish or remove {path} if it crashed",
                ) from None
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"pid": os.getpid(), "acquiredAt": utc_now_iso()}, handle)
            return

    @staticmethod
    def _is_stale(path: Path) -> bool:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            pid = int(data["pid"])
            acquired_at = ensure_aware(datetime.fromisoformat(data["acquiredAt"]))
        except (OSError, ValueError, KeyError, TypeError):
            return True

        if utc_now() - acquired_at > _STALE_LOCK_AFTER:
            return True
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False

    def _read(self, path: Path) -> ConnectionRecord:
        try:
            return ConnectionRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Connection record {path} is corrupt: {exc.error_count()} validation error(s)",
                code="metadata_corrupt",
                suggestion=f"Inspect or remove {path}",
            ) from exc

    @staticmethod
    def _key(account_id: str, region: str) -> str:
        for value in (account_id, region):
            if not value or not _SAFE_KEY.match(value):
                raise ConfigurationError(
                    f"Invalid connection key component: {value!r}",
                    code="invalid_connection_key",
                )
        return f"{account_id}-{region}"
