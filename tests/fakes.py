"""In-memory stand-ins for the engine, the AWS gateway and DNS."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from mailstack.aws.models import (
    ArchiveInfo,
    CallerIdentity,
    HostedZone,
    IdentityDetails,
    IdentitySummary,
)
from mailstack.dns_records import DnsRecord
from mailstack.errors import NotFoundError, ProvisioningError
from mailstack.infrastructure.graph import ResourceGraph, StepKind
from mailstack.infrastructure.outputs import StackOutputs
from mailstack.metadata.models import IdentityType

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"
DKIM_TOKENS = ("tokena", "tokenb", "tokenc")


def exports_for(graph: ResourceGraph) -> dict[str, Any]:
    """What the inline program would export for this graph."""
    exports: dict[str, Any] = {
        "roleArn": f"arn:aws:iam::{graph.account_id}:role/{graph.role.name}",
        "roleName": graph.role.name,
    }
    for step in graph:
        params = step.params
        if step.kind is StepKind.OIDC_PROVIDER:
            exports["oidcProviderArn"] = params["arn"]
        elif step.kind is StepKind.CONFIG_SET:
            exports["configSetName"] = params["name"]
        elif step.kind is StepKind.IDENTITY:
            exports["domain"] = params["domain"]
            exports["dkimTokens"] = list(DKIM_TOKENS)
            if params.get("mail_from_domain"):
                exports["mailFromDomain"] = f"{params['mail_from_domain']}.{params['domain']}"
        elif step.kind is StepKind.HISTORY_TABLE:
            exports["tableName"] = params["name"]
        elif step.kind is StepKind.EVENT_TOPIC:
            exports["topicArn"] = f"arn:aws:sns:{graph.region}:{graph.account_id}:{params['name']}"
        elif step.kind is StepKind.EVENT_FUNCTIONS:
            exports["functionArns"] = [
                f"arn:aws:lambda:{graph.region}:{graph.account_id}:function:{params['name']}"
            ]
            exports["deadLetterQueueArn"] = f"arn:aws:sqs:{graph.region}:{graph.account_id}:{params['name']}-dlq"
        elif step.kind is StepKind.TRACKING_EDGE:
            exports["trackingDomain"] = params["domain"]
            exports["certificateArn"] = f"arn:aws:acm:us-east-1:{graph.account_id}:certificate/abc"
            if params.get("zone_id") or params.get("await_validation"):
                exports["distributionId"] = "E2EXAMPLE"
                exports["distributionDomain"] = "d111111abcdef8.cloudfront.net"
            else:
                exports["validationRecords"] = [
                    {
                        "name": f"_x1.{params['domain']}.",
                        "type": "CNAME",
                        "value": "_y1.acm-validations.aws.",
                    }
                ]
    return exports


class FakeEngine:
    def __init__(self, fail_on: Iterable[StepKind] = ()) -> None:
        self.fail_on = set(fail_on)
        self.stacks: dict[str, dict[str, Any]] = {}
        self.applied: list[tuple[str, list[StepKind]]] = []
        self.destroyed: list[str] = []
        self.destroy_error: Exception | None = None

    async def apply(self, stack_id: str, graph: ResourceGraph) -> StackOutputs:
        kinds = graph.kinds()
        self.applied.append((stack_id, kinds))
        failing = self.fail_on.intersection(kinds)
        if failing:
            raise ProvisioningError(
                f"apply on {stack_id} failed: {sorted(k.value for k in failing)}",
                code="engine_failed",
            )
        exports = exports_for(graph)
        self.stacks[stack_id] = exports
        return StackOutputs.from_engine(exports)

    async def destroy(self, stack_id: str) -> None:
        if self.destroy_error is not None:
            raise self.destroy_error
        if stack_id not in self.stacks:
            raise NotFoundError(f"Stack {stack_id} does not exist", code="stack_not_found")
        del self.stacks[stack_id]
        self.destroyed.append(stack_id)

    async def outputs(self, stack_id: str) -> StackOutputs | None:
        exports = self.stacks.get(stack_id)
        if exports is None:
            return None
        return StackOutputs.from_engine(exports)


class FakeGateway:
    def __init__(
        self,
        identities: Sequence[IdentityDetails] = (),
        config_sets: Sequence[str] = (),
        zones: dict[str, HostedZone] | None = None,
    ) -> None:
        self.region = REGION
        self.identities = {identity.name: identity for identity in identities}
        self.config_sets = list(config_sets)
        self.zones = zones or {}
        self.oidc_providers: set[str] = set()
        self.archives: dict[str, ArchiveInfo] = {}
        self.archive_links: dict[str, str | None] = {}
        self.config_set_calls: list[tuple[str, str | None]] = []
        self.dns_changes: list[tuple[str, list[DnsRecord]]] = []
        self.fail_attach: set[str] = set()

    async def caller_identity(self) -> CallerIdentity:
        return CallerIdentity(
            account_id=ACCOUNT_ID,
            arn=f"arn:aws:iam::{ACCOUNT_ID}:user/deployer",
            user_id="AIDAEXAMPLE",
        )

    async def oidc_provider_exists(self, arn: str) -> bool:
        return arn in self.oidc_providers

    async def list_email_identities(self) -> list[IdentitySummary]:
        return [
            IdentitySummary(name=identity.name, type=identity.type)
            for identity in self.identities.values()
        ]

    async def get_email_identity(self, name: str) -> IdentityDetails | None:
        return self.identities.get(name)

    async def get_email_identities(self, names: Iterable[str]) -> list[IdentityDetails]:
        return [self.identities[name] for name in names if name in self.identities]

    async def list_configuration_sets(self) -> list[str]:
        return list(self.config_sets)

    async def set_identity_config_set(self, name: str, config_set: str | None) -> None:
        if name in self.fail_attach:
            raise ProvisioningError(f"cannot update {name}", code="aws_throttling")
        if name not in self.identities:
            raise NotFoundError(f"{name} does not exist", code="resource_not_found")
        self.config_set_calls.append((name, config_set))
        current = self.identities[name]
        self.identities[name] = IdentityDetails(
            name=current.name,
            type=current.type,
            verified=current.verified,
            dkim_tokens=current.dkim_tokens,
            config_set=config_set,
        )

    async def find_hosted_zone(self, domain: str) -> HostedZone | None:
        return self.zones.get(domain)

    async def apply_dns_records(self, zone_id: str, records: Sequence[DnsRecord]) -> str:
        self.dns_changes.append((zone_id, list(records)))
        return "/change/C1"

    async def find_distribution_by_alias(self, alias: str) -> str | None:
        return None

    async def find_archive(self, name: str) -> ArchiveInfo | None:
        return self.archives.get(name)

    async def create_archive(
        self, name: str, retention_period: str, kms_key_arn: str | None = None
    ) -> ArchiveInfo:
        archive = ArchiveInfo(
            archive_id=f"a-{len(self.archives) + 1}",
            archive_arn=f"arn:aws:ses:{REGION}:{ACCOUNT_ID}:mailmanager-archive/a-{len(self.archives) + 1}",
            name=name,
            state="ACTIVE",
        )
        self.archives[name] = archive
        return archive

    async def link_archive(self, config_set: str, archive_arn: str | None) -> None:
        self.archive_links[config_set] = archive_arn

    async def delete_archive(self, archive_id: str) -> bool:
        for name, archive in list(self.archives.items()):
            if archive.archive_id == archive_id:
                del self.archives[name]
                return True
        return False


def domain_identity(name: str, config_set: str | None = None, verified: bool = True) -> IdentityDetails:
    return IdentityDetails(
        name=name,
        type=IdentityType.DOMAIN,
        verified=verified,
        verification_status="SUCCESS" if verified else "PENDING",
        dkim_status="SUCCESS" if verified else "PENDING",
        dkim_signing_enabled=True,
        dkim_tokens=DKIM_TOKENS,
        config_set=config_set,
    )


class FakeResolver:
    def __init__(self, answers: dict[tuple[str, str], list[str]] | None = None) -> None:
        self.answers = answers or {}
        self.queries: list[tuple[str, str]] = []

    async def resolve(self, name: str, rdtype: str) -> list[str]:
        self.queries.append((name, rdtype))
        return list(self.answers.get((name, rdtype), []))
