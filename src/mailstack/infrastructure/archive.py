"""Full-message archive bound to the configuration set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from mailstack.aws.models import ArchiveInfo
from mailstack.errors import MailstackError, NotFoundError, PartialApplyError
from mailstack.infrastructure.planner import ArchiveRetention

logger = logging.getLogger(__name__)


class ArchiveGateway(Protocol):
    async def find_archive(self, name: str) -> ArchiveInfo | None: ...

    async def create_archive(
        self, name: str, retention_period: str, kms_key_arn: str | None = None
    ) -> ArchiveInfo: ...

    async def link_archive(self, config_set: str, archive_arn: str | None) -> None: ...

    async def delete_archive(self, archive_id: str) -> bool: ...


@dataclass(frozen=True)
class ArchiveResult:
    archive_id: str
    archive_arn: str
    name: str
    retention: ArchiveRetention
    created: bool


def archive_name(config_set: str) -> str:
    return f"{config_set}-archive"


class ArchiveBuilder:
    """Creates the archive, then links it. The first step is never rolled back."""

    def __init__(self, gateway: ArchiveGateway) -> None:
        self._gateway = gateway

    async def bind(
        self,
        config_set: str,
        retention: ArchiveRetention,
        kms_key_arn: str | None = None,
    ) -> ArchiveResult:
        name = archive_name(config_set)
        archive = await self._gateway.find_archive(name)
        created = archive is None
        if archive is None:
            # Without a key reference the provider-managed key is used.
            archive = await self._gateway.create_archive(
                name, retention.retention_period, kms_key_arn
            )
            logger.info("Created archive %s (%s)", archive.archive_id, retention.value)
        else:
            logger.info("Reusing archive %s", archive.archive_id)

        try:
            await self._gateway.link_archive(config_set, archive.archive_arn)
        except MailstackError as exc:
            raise PartialApplyError(
                f"Archive {name} exists but linking it to {config_set} failed: {exc.message}",
                group="archive",
                code="archive_link_failed",
                suggestion="Run 'mailstack update' to link the archive again",
                created={"archive_id": archive.archive_id, "archive_arn": archive.archive_arn},
            ) from exc

        return ArchiveResult(
            archive_id=archive.archive_id,
            archive_arn=archive.archive_arn,
            name=name,
            retention=retention,
            created=created,
        )

    async def unbind(self, config_set: str | None, archive_id: str | None) -> None:
        """Unlink then delete. Already-missing pieces are skipped."""
        if config_set:
            try:
                await self._gateway.link_archive(config_set, None)
            except NotFoundError:
                logger.info("Configuration set %s is already gone", config_set)
        if archive_id:
            await self._gateway.delete_archive(archive_id)
