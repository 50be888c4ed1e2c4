"""boto3 client construction for the gateway and the dashboard."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import boto3
from botocore.config import Config

from mailstack.config import Settings, load_settings
from mailstack.errors import no_region

logger = logging.getLogger(__name__)


class _ClientCache:
    """Thread-safe LRU of boto3 clients that expire after ``ttl`` seconds."""

    def __init__(self, max_size: int = 64, ttl: float = 3600.0) -> None:
        self._max_size = max_size
        self._ttl = ttl
        self._clients: OrderedDict[tuple[str, str, str], tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: tuple[str, str, str], build: Callable[[], Any]) -> Any:
        with self._lock:
            hit = self._clients.pop(key, None)
            if hit is not None and time.monotonic() - hit[1] < self._ttl:
                self._clients[key] = hit
                return hit[0]
            client = build()
            self._clients[key] = (client, time.monotonic())
            if len(self._clients) > self._max_size:
                self._clients.popitem(last=False)
            return client

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()


_clients = _ClientCache()


def clear_client_cache() -> None:
    _clients.clear()


def get_client(
    service: str,
    region: str | None,
    profile: str | None = None,
    settings: Settings | None = None,
) -> Any:
    """Cached client for the operator's own credentials."""
    settings = settings or load_settings()
    region = region or settings.aws.default_region
    profile = profile or settings.aws.default_profile

    def build() -> Any:
        session = boto3.Session(profile_name=profile, region_name=region)
        logger.debug("Created %s client (region=%s)", service, session.region_name)
        return session.client(service, config=_service_config(settings))

    return _clients.get((service, region or "", profile or ""), build)


def create_client_with_credentials(
    service: str,
    region: str,
    credentials: dict[str, str],
    settings: Settings | None = None,
) -> Any:
    """Uncached client for short-lived assumed-role credentials."""
    settings = settings or load_settings()
    session = boto3.Session(region_name=region, **credentials)
    return session.client(service, config=_service_config(settings))


def ambient_region(profile: str | None = None) -> str | None:
    """Region from the shared AWS config, if any."""
    return boto3.Session(profile_name=profile).region_name


def _service_config(settings: Settings) -> Config:
    timeout = settings.aws.sdk_timeout_seconds
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": settings.aws.max_retries, "mode": "standard"},
    )


def resolve_region(
    explicit: str | None,
    settings: Settings | None = None,
    profile: str | None = None,
) -> str:
    """Explicit flag, then configured default, then the shared AWS config."""
    if explicit:
        return explicit
    settings = settings or load_settings()
    region = settings.aws.default_region or ambient_region(profile or settings.aws.default_profile)
    if not region:
        raise no_region()
    return region
