"""Credential broker used by the dashboard read path."""

from __future__ import annotations

import logging

from mailstack.aws_credentials.cache import CacheKey, CredentialCache
from mailstack.aws_credentials.sts_provider import STSCredentialProvider, TemporaryCredentials
from mailstack.config import Settings

logger = logging.getLogger(__name__)


class CredentialBroker:
    """Assumes customer roles and reuses the temporary credentials.

    One broker is created per process and handed to whoever needs it; there is
    no module-level instance.
    """

    def __init__(
        self,
        cache: CredentialCache,
        provider: STSCredentialProvider,
        session_name: str = "mailstack-console-session",
        duration_seconds: int = 3600,
    ) -> None:
        self._cache = cache
        self._provider = provider
        self._session_name = session_name
        self._duration_seconds = duration_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialBroker":
        return cls(
            cache=CredentialCache(
                refresh_buffer_seconds=settings.credentials.refresh_buffer_seconds,
                max_entries=settings.credentials.cache_max_entries,
            ),
            provider=STSCredentialProvider(
                region=settings.aws.sts_region,
                profile=settings.aws.default_profile,
            ),
            session_name=settings.credentials.session_name,
            duration_seconds=settings.credentials.session_duration_seconds,
        )

    async def get_credentials(
        self, role_arn: str, external_id: str | None = None
    ) -> TemporaryCredentials:
        """Return cached credentials for the role, assuming it when needed.

        STS failures propagate unchanged as ``STSCredentialError`` and are not
        cached, so the next call retries.
        """
        key = CacheKey(role_arn=role_arn, external_id=external_id or None)

        async def refresh() -> TemporaryCredentials:
            logger.debug("Assuming %s for dashboard access", role_arn)
            return await self._provider.assume_role(
                role_arn=role_arn,
                external_id=key.external_id,
                session_name=self._session_name,
                duration_seconds=self._duration_seconds,
            )

        return await self._cache.get_or_refresh(key, refresh)

    async def invalidate(self, role_arn: str, external_id: str | None = None) -> bool:
        return await self._cache.invalidate(CacheKey(role_arn=role_arn, external_id=external_id))
