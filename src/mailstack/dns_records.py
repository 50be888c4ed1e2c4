"""DNS records required for sending, and their verification.

``required_records`` is deterministic and pure. Applying records needs a
Route 53 hosted zone for the domain; without one the records are printed for
manual entry. Verification only reads public DNS.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import dns.asyncresolver
import dns.exception
import dns.resolver

from mailstack.aws.models import IdentityDetails

logger = logging.getLogger(__name__)

DEFAULT_TTL = 1800
SPF_VALUE = "v=spf1 include:amazonses.com ~all"
PUBLIC_NAMESERVERS = ("8.8.8.8", "1.1.1.1")


class RecordGroup(str, Enum):
    DKIM = "dkim"
    SPF = "spf"
    DMARC = "dmarc"
    TRACKING = "tracking"
    MAIL_FROM = "mail-from"


class RecordStatus(str, Enum):
    VERIFIED = "verified"
    INCORRECT = "incorrect"
    MISSING = "missing"
    PENDING = "pending"


@dataclass(frozen=True)
class DnsRecord:
    name: str
    type: str
    value: str
    group: RecordGroup
    ttl: int = DEFAULT_TTL

    def resource_value(self) -> str:
        if self.type == "TXT":
            return f'"{self.value}"'
        return self.value

    def to_change(self, values: Sequence[str] | None = None) -> dict[str, Any]:
        return {
            "Action": "UPSERT",
            "ResourceRecordSet": {
                "Name": self.name,
                "Type": self.type,
                "TTL": self.ttl,
                "ResourceRecords": [
                    {"Value": value} for value in (values or [self.resource_value()])
                ],
            },
        }


def _qualify(name: str, domain: str) -> str:
    name = name.strip().rstrip(".").lower()
    if name == domain or name.endswith(f".{domain}"):
        return name
    return f"{name}.{domain}"


def tracking_redirect_host(region: str) -> str:
    return f"r.{region}.awstrack.me"


def required_records(
    domain: str,
    dkim_tokens: Iterable[str],
    region: str,
    tracking_domain: str | None = None,
    edge_domain: str | None = None,
    mail_from_domain: str | None = None,
) -> list[DnsRecord]:
    domain = domain.strip().rstrip(".").lower()
    records = [
        DnsRecord(
            name=f"{token}._domainkey.{domain}",
            type="CNAME",
            value=f"{token}.dkim.amazonses.com",
            group=RecordGroup.DKIM,
        )
        for token in dkim_tokens
    ]
    records.append(DnsRecord(name=domain, type="TXT", value=SPF_VALUE, group=RecordGroup.SPF))
    records.append(
        DnsRecord(
            name=f"_dmarc.{domain}",
            type="TXT",
            value=f"v=DMARC1; p=quarantine; rua=mailto:postmaster@{domain}",
            group=RecordGroup.DMARC,
        )
    )

    if tracking_domain:
        records.append(
            DnsRecord(
                name=_qualify(tracking_domain, domain),
                type="CNAME",
                value=edge_domain or tracking_redirect_host(region),
                group=RecordGroup.TRACKING,
            )
        )

    if mail_from_domain:
        mail_from = _qualify(mail_from_domain, domain)
        records.append(
            DnsRecord(
                name=mail_from,
                type="MX",
                value=f"10 feedback-smtp.{region}.amazonses.com",
                group=RecordGroup.MAIL_FROM,
            )
        )
        records.append(
            DnsRecord(name=mail_from, type="TXT", value=SPF_VALUE, group=RecordGroup.MAIL_FROM)
        )

    return records


def merge_txt_values(existing: Iterable[str], record: DnsRecord) -> list[str]:
    """Keep unrelated TXT values at the same name; replace any previous SPF policy."""
    desired = record.resource_value()
    merged: list[str] = []
    for value in existing:
        unquoted = value.strip('"')
        if record.value.startswith("v=spf1") and unquoted.startswith("v=spf1"):
            continue
        if record.value.startswith("v=DMARC1") and unquoted.startswith("v=DMARC1"):
            continue
        if value != desired:
            merged.append(value)
    merged.append(desired)
    return merged


def format_records(records: Iterable[DnsRecord]) -> list[str]:
    return [f"{record.type:<6} {record.name:<45} {record.resource_value()}" for record in records]


class DnsResolver(Protocol):
    async def resolve(self, name: str, rdtype: str) -> list[str]:
        """Return record values, or an empty list when nothing is published."""


class PublicResolver:
    """Resolves against public nameservers so local caches do not mask changes."""

    def __init__(
        self,
        nameservers: Sequence[str] = PUBLIC_NAMESERVERS,
        lifetime: float = 5.0,
    ) -> None:
        self._resolver = dns.asyncresolver.Resolver(configure=False)
        self._resolver.nameservers = list(nameservers)
        self._resolver.lifetime = lifetime

    async def resolve(self, name: str, rdtype: str) -> list[str]:
        try:
            answer = await self._resolver.resolve(name, rdtype)
        except (
            dns.resolver.NXDOMAIN,
            dns.resolver.NoAnswer,
            dns.resolver.NoNameservers,
            dns.exception.Timeout,
        ) as exc:
            logger.debug("No %s answer for %s: %s", rdtype, name, exc)
            return []

        values: list[str] = []
        for rdata in answer:
            if rdtype == "TXT":
                values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
            elif rdtype == "CNAME":
                values.append(rdata.target.to_text())
            elif rdtype == "MX":
                values.append(f"{rdata.preference} {rdata.exchange.to_text()}")
            else:
                values.append(rdata.to_text())
        return values


@dataclass(frozen=True)
class RecordResult:
    record: DnsRecord
    status: RecordStatus
    found: tuple[str, ...] = ()


@dataclass
class VerificationReport:
    domain: str
    records: list[RecordResult] = field(default_factory=list)
    identity_verified: bool | None = None
    verification_status: str | None = None
    dkim_status: str | None = None
    dkim_signing_enabled: bool | None = None

    @property
    def groups(self) -> dict[RecordGroup, RecordStatus]:
        statuses: dict[RecordGroup, list[RecordStatus]] = {}
        for result in self.records:
            statuses.setdefault(result.record.group, []).append(result.status)
        summary: dict[RecordGroup, RecordStatus] = {}
        for group, values in statuses.items():
            if all(value is RecordStatus.VERIFIED for value in values):
                summary[group] = RecordStatus.VERIFIED
            elif any(value is RecordStatus.INCORRECT for value in values):
                summary[group] = RecordStatus.INCORRECT
            else:
                summary[group] = RecordStatus.MISSING
        return summary

    @property
    def overall(self) -> RecordStatus:
        groups = self.groups.values()
        if any(status is RecordStatus.INCORRECT for status in groups):
            return RecordStatus.INCORRECT
        dns_ok = all(status is RecordStatus.VERIFIED for status in groups)
        if dns_ok and self.identity_verified is not False:
            return RecordStatus.VERIFIED
        return RecordStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "overall": self.overall.value,
            "identityVerified": self.identity_verified,
            "verificationStatus": self.verification_status,
            "dkimStatus": self.dkim_status,
            "groups": {group.value: status.value for group, status in self.groups.items()},
            "records": [
                {
                    "name": result.record.name,
                    "type": result.record.type,
                    "expected": result.record.value,
                    "found": list(result.found),
                    "status": result.status.value,
                }
                for result in self.records
            ],
        }


def _normalize(value: str) -> str:
    return value.strip().strip('"').rstrip(".").lower()


def classify(record: DnsRecord, found: Sequence[str]) -> RecordStatus:
    values = [_normalize(value) for value in found]
    if record.type == "TXT":
        if record.value.startswith("v=spf1"):
            policies = [value for value in values if value.startswith("v=spf1")]
            if not policies:
                return RecordStatus.MISSING
            if any("include:amazonses.com" in value for value in policies):
                return RecordStatus.VERIFIED
            return RecordStatus.INCORRECT
        if record.value.startswith("v=DMARC1"):
            policies = [value for value in values if value.startswith("v=dmarc1")]
            return RecordStatus.VERIFIED if policies else RecordStatus.MISSING
    if not values:
        return RecordStatus.MISSING
    if _normalize(record.value) in values:
        return RecordStatus.VERIFIED
    return RecordStatus.INCORRECT


async def _check(resolver: DnsResolver, record: DnsRecord) -> RecordResult:
    found = await resolver.resolve(record.name, record.type)
    return RecordResult(record=record, status=classify(record, found), found=tuple(found))


async def verify_domain(
    domain: str,
    identity: IdentityDetails,
    resolver: DnsResolver,
    region: str,
    tracking_domain: str | None = None,
    edge_domain: str | None = None,
) -> VerificationReport:
    """Resolve every expected record concurrently and grade the results."""
    records = required_records(
        domain,
        identity.dkim_tokens,
        region,
        tracking_domain=tracking_domain,
        edge_domain=edge_domain,
        mail_from_domain=identity.mail_from_domain,
    )
    results = await asyncio.gather(*(_check(resolver, record) for record in records))
    return VerificationReport(
        domain=domain,
        records=list(results),
        identity_verified=identity.verified,
        verification_status=identity.verification_status,
        dkim_status=identity.dkim_status,
        dkim_signing_enabled=identity.dkim_signing_enabled,
    )
