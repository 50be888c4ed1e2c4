from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from mailstack.aws.clients import clear_client_cache
from mailstack.config import _load_settings_cached

_ENV_KEYS = (
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "AWS_PROFILE",
    "LOG_LEVEL",
    "LOG_FILE",
    "MAILSTACK_PRESETS_PATH",
    "MAILSTACK_PULUMI_BACKEND_URL",
)


@pytest.fixture(autouse=True)
def mailstack_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Every test gets its own configuration directory and fresh settings."""
    home = tmp_path / "mailstack-home"
    monkeypatch.setenv("MAILSTACK_HOME", str(home))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    _load_settings_cached.cache_clear()
    clear_client_cache()
    yield home
    _load_settings_cached.cache_clear()
    clear_client_cache()
