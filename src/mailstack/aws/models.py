"""Plain result types returned by the cloud gateway."""

from __future__ import annotations

from dataclasses import dataclass

from mailstack.metadata.models import IdentityType


@dataclass(frozen=True)
class CallerIdentity:
    account_id: str
    arn: str
    user_id: str


@dataclass(frozen=True)
class IdentitySummary:
    name: str
    type: IdentityType
    sending_enabled: bool = True
    verification_status: str | None = None


@dataclass(frozen=True)
class IdentityDetails:
    name: str
    type: IdentityType
    verified: bool
    verification_status: str | None = None
    dkim_status: str | None = None
    dkim_signing_enabled: bool = False
    dkim_tokens: tuple[str, ...] = ()
    mail_from_domain: str | None = None
    mail_from_status: str | None = None
    config_set: str | None = None


@dataclass(frozen=True)
class HostedZone:
    id: str
    name: str


@dataclass(frozen=True)
class ArchiveInfo:
    archive_id: str
    archive_arn: str
    name: str
    state: str | None = None

