"""Typed async facade over the AWS APIs the lifecycle commands need.

boto3 is synchronous, so each call runs in a worker thread. Errors are mapped
to the operator-facing taxonomy by :func:`mailstack.errors.wrap_client_error`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from mailstack.aws.clients import get_client
from mailstack.aws.models import (
    ArchiveInfo,
    CallerIdentity,
    HostedZone,
    IdentityDetails,
    IdentitySummary,
)
from mailstack.config import Settings, load_settings
from mailstack.dns_records import DnsRecord, merge_txt_values
from mailstack.errors import NotFoundError, wrap_client_error
from mailstack.metadata.models import IdentityType

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Route 53 and CloudFront are global services homed in us-east-1.
GLOBAL_REGION = "us-east-1"


def _identity_type(value: str | None) -> IdentityType:
    return IdentityType.ADDRESS if value == "EMAIL_ADDRESS" else IdentityType.DOMAIN


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class CloudGateway:
    """AWS calls for one account and region."""

    def __init__(
        self,
        region: str,
        profile: str | None = None,
        settings: Settings | None = None,
        client_factory: Callable[..., Any] = get_client,
    ) -> None:
        self.region = region
        self.profile = profile
        self._settings = settings or load_settings()
        self._client_factory = client_factory

    def _client(self, service: str, region: str | None = None) -> Any:
        return self._client_factory(
            service, region or self.region, self.profile, self._settings
        )

    async def _call(self, action: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise wrap_client_error(exc, action) from exc

    # Identity and credentials

    async def caller_identity(self) -> CallerIdentity:
        def call() -> CallerIdentity:
            response = self._client("sts").get_caller_identity()
            return CallerIdentity(
                account_id=response["Account"],
                arn=response["Arn"],
                user_id=response["UserId"],
            )

        return await self._call("sts:GetCallerIdentity", call)

    # SES identities

    async def list_email_identities(self) -> list[IdentitySummary]:
        def call() -> list[IdentitySummary]:
            client = self._client("sesv2")
            identities: list[IdentitySummary] = []
            params: dict[str, Any] = {"PageSize": 100}
            while True:
                response = client.list_email_identities(**params)
                for item in response.get("EmailIdentities", []):
                    identities.append(
                        IdentitySummary(
                            name=item["IdentityName"],
                            type=_identity_type(item.get("IdentityType")),
                            sending_enabled=item.get("SendingEnabled", True),
                            verification_status=item.get("VerificationStatus"),
                        )
                    )
                token = response.get("NextToken")
                if not token:
                    return identities
                params["NextToken"] = token

        return await self._call("ses:ListEmailIdentities", call)

    async def get_email_identity(self, name: str) -> IdentityDetails | None:
        def call() -> IdentityDetails | None:
            try:
                response = self._client("sesv2").get_email_identity(EmailIdentity=name)
            except ClientError as exc:
                if _error_code(exc) == "NotFoundException":
                    return None
                raise
            dkim = response.get("DkimAttributes") or {}
            mail_from = response.get("MailFromAttributes") or {}
            return IdentityDetails(
                name=name,
                type=_identity_type(response.get("IdentityType")),
                verified=bool(response.get("VerifiedForSendingStatus")),
                verification_status=response.get("VerificationStatus"),
                dkim_status=dkim.get("Status"),
                dkim_signing_enabled=bool(dkim.get("SigningEnabled")),
                dkim_tokens=tuple(dkim.get("Tokens") or ()),
                mail_from_domain=mail_from.get("MailFromDomain") or None,
                mail_from_status=mail_from.get("MailFromDomainStatus"),
                config_set=response.get("ConfigurationSetName") or None,
            )

        return await self._call("ses:GetEmailIdentity", call)

    async def get_email_identities(self, names: Iterable[str]) -> list[IdentityDetails]:
        """Fetch several identities concurrently; unknown names are dropped."""
        results = await asyncio.gather(*(self.get_email_identity(name) for name in names))
        return [result for result in results if result is not None]

    async def set_identity_config_set(self, name: str, config_set: str | None) -> None:
        def call() -> None:
            params: dict[str, Any] = {"EmailIdentity": name}
            if config_set:
                params["ConfigurationSetName"] = config_set
            self._client("sesv2").put_email_identity_configuration_set_attributes(**params)

        await self._call("ses:PutEmailIdentityConfigurationSetAttributes", call)
        logger.info("Identity %s now uses configuration set %s", name, config_set or "<none>")

    async def list_configuration_sets(self) -> list[str]:
        def call() -> list[str]:
            client = self._client("sesv2")
            names: list[str] = []
            params: dict[str, Any] = {"PageSize": 100}
            while True:
                response = client.list_configuration_sets(**params)
                names.extend(response.get("ConfigurationSets", []))
                token = response.get("NextToken")
                if not token:
                    return names
                params["NextToken"] = token

        return await self._call("ses:ListConfigurationSets", call)

    # DNS

    async def find_hosted_zone(self, domain: str) -> HostedZone | None:
        def call() -> HostedZone | None:
            client = self._client("route53", GLOBAL_REGION)
            labels = domain.strip().rstrip(".").lower().split(".")
            for start in range(len(labels) - 1):
                candidate = ".".join(labels[start:])
                response = client.list_hosted_zones_by_name(DNSName=candidate, MaxItems="1")
                for zone in response.get("HostedZones", []):
                    if zone.get("Config", {}).get("PrivateZone"):
                        continue
                    if zone["Name"].rstrip(".").lower() == candidate:
                        return HostedZone(id=zone["Id"].rsplit("/", 1)[-1], name=candidate)
            return None

        return await self._call("route53:ListHostedZonesByName", call)

    async def apply_dns_records(self, zone_id: str, records: Sequence[DnsRecord]) -> str:
        """Upsert every record in one change batch. Returns the change id."""

        def call() -> str:
            client = self._client("route53", GLOBAL_REGION)
            changes = []
            for record in records:
                values = None
                if record.type == "TXT":
                    values = merge_txt_values(self._existing_values(client, zone_id, record), record)
                changes.append(record.to_change(values))
            response = client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={"Comment": "mailstack email records", "Changes": changes},
            )
            return response["ChangeInfo"]["Id"]

        change_id = await self._call("route53:ChangeResourceRecordSets", call)
        logger.info("Applied %d DNS records to zone %s", len(records), zone_id)
        return change_id

    @staticmethod
    def _existing_values(client: Any, zone_id: str, record: DnsRecord) -> list[str]:
        response = client.list_resource_record_sets(
            HostedZoneId=zone_id,
            StartRecordName=record.name,
            StartRecordType=record.type,
            MaxItems="1",
        )
        for record_set in response.get("ResourceRecordSets", []):
            if (
                record_set["Name"].rstrip(".").lower() == record.name
                and record_set["Type"] == record.type
            ):
                return [item["Value"] for item in record_set.get("ResourceRecords", [])]
        return []

    # CloudFront

    async def find_distribution_by_alias(self, alias: str) -> str | None:
        def call() -> str | None:
            client = self._client("cloudfront", GLOBAL_REGION)
            paginator = client.get_paginator("list_distributions")
            wanted = alias.strip().rstrip(".").lower()
            for page in paginator.paginate():
                for item in page.get("DistributionList", {}).get("Items", []):
                    aliases = item.get("Aliases", {}).get("Items", [])
                    if wanted in (value.lower() for value in aliases):
                        return item["Id"]
            return None

        return await self._call("cloudfront:ListDistributions", call)

    # Mail Manager archive

    async def find_archive(self, name: str) -> ArchiveInfo | None:
        def call() -> ArchiveInfo | None:
            client = self._client("mailmanager")
            params: dict[str, Any] = {"PageSize": 50}
            while True:
                response = client.list_archives(**params)
                for item in response.get("Archives", []):
                    if item.get("ArchiveName") == name and item.get("ArchiveState") != "PENDING_DELETION":
                        return self._describe_archive(client, item["ArchiveId"])
                token = response.get("NextToken")
                if not token:
                    return None
                params["NextToken"] = token

        return await self._call("ses:ListArchives", call)

    async def create_archive(
        self, name: str, retention_period: str, kms_key_arn: str | None = None
    ) -> ArchiveInfo:
        def call() -> ArchiveInfo:
            client = self._client("mailmanager")
            params: dict[str, Any] = {
                "ArchiveName": name,
                "Retention": {"RetentionPeriod": retention_period},
                "Tags": [{"Key": "ManagedBy", "Value": "mailstack"}],
            }
            if kms_key_arn:
                params["KmsKeyArn"] = kms_key_arn
            response = client.create_archive(**params)
            return self._describe_archive(client, response["ArchiveId"])

        return await self._call("ses:CreateArchive", call)

    @staticmethod
    def _describe_archive(client: Any, archive_id: str) -> ArchiveInfo:
        response = client.get_archive(ArchiveId=archive_id)
        return ArchiveInfo(
            archive_id=response["ArchiveId"],
            archive_arn=response["ArchiveArn"],
            name=response["ArchiveName"],
            state=response.get("ArchiveState"),
        )

    async def link_archive(self, config_set: str, archive_arn: str | None) -> None:
        def call() -> None:
            params: dict[str, Any] = {"ConfigurationSetName": config_set}
            if archive_arn:
                params["ArchiveArn"] = archive_arn
            self._client("sesv2").put_configuration_set_archiving_options(**params)

        await self._call("ses:PutConfigurationSetArchivingOptions", call)

    async def delete_archive(self, archive_id: str) -> bool:
        def call() -> None:
            self._client("mailmanager").delete_archive(ArchiveId=archive_id)

        try:
            await self._call("ses:DeleteArchive", call)
        except NotFoundError:
            logger.info("Archive %s was already deleted", archive_id)
            return False
        return True

    # IAM

    async def oidc_provider_exists(self, arn: str) -> bool:
        def call() -> None:
            self._client("iam", GLOBAL_REGION).get_open_id_connect_provider(
                OpenIDConnectProviderArn=arn
            )

        try:
            await self._call("iam:GetOpenIDConnectProvider", call)
        except NotFoundError:
            return False
        return True
