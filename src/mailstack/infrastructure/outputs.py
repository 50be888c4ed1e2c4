"""Typed provisioning-engine outputs, one optional result per resource group."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from mailstack.metadata.models import DeployedResources


@dataclass(frozen=True)
class RoleOutputs:
    role_arn: str
    role_name: str
    oidc_provider_arn: str | None = None


@dataclass(frozen=True)
class SendingOutputs:
    config_set_name: str | None = None
    domain: str | None = None
    dkim_tokens: tuple[str, ...] = ()
    mail_from_domain: str | None = None


@dataclass(frozen=True)
class EventingOutputs:
    table_name: str
    topic_arn: str
    function_arns: tuple[str, ...] = ()
    dead_letter_queue_arn: str | None = None


@dataclass(frozen=True)
class EdgeOutputs:
    domain: str
    certificate_arn: str
    distribution_id: str | None = None
    distribution_domain: str | None = None
    validation_records: tuple[Mapping[str, str], ...] = ()

    @property
    def pending_validation(self) -> bool:
        return self.distribution_id is None


@dataclass(frozen=True)
class StackOutputs:
    role: RoleOutputs
    sending: SendingOutputs | None = None
    eventing: EventingOutputs | None = None
    edge: EdgeOutputs | None = None

    @classmethod
    def from_engine(cls, values: Mapping[str, Any]) -> "StackOutputs":
        """Build from flat engine exports. Group presence is keyed on its anchor."""
        role_arn = values.get("roleArn")
        if not role_arn:
            raise ValueError("engine outputs are missing roleArn")
        role = RoleOutputs(
            role_arn=str(role_arn),
            role_name=str(values.get("roleName") or role_arn.rsplit("/", 1)[-1]),
            oidc_provider_arn=values.get("oidcProviderArn") or None,
        )

        sending = None
        if values.get("configSetName") or values.get("domain"):
            sending = SendingOutputs(
                config_set_name=values.get("configSetName") or None,
                domain=values.get("domain") or None,
                dkim_tokens=tuple(values.get("dkimTokens") or ()),
                mail_from_domain=values.get("mailFromDomain") or None,
            )

        eventing = None
        if values.get("tableName"):
            eventing = EventingOutputs(
                table_name=str(values["tableName"]),
                topic_arn=str(values.get("topicArn") or ""),
                function_arns=tuple(values.get("functionArns") or ()),
                dead_letter_queue_arn=values.get("deadLetterQueueArn") or None,
            )

        edge = None
        if values.get("trackingDomain"):
            edge = EdgeOutputs(
                domain=str(values["trackingDomain"]),
                certificate_arn=str(values.get("certificateArn") or ""),
                distribution_id=values.get("distributionId") or None,
                distribution_domain=values.get("distributionDomain") or None,
                validation_records=tuple(values.get("validationRecords") or ()),
            )

        return cls(role=role, sending=sending, eventing=eventing, edge=edge)

    def to_resources(self, previous: DeployedResources | None = None) -> DeployedResources:
        """Project onto the record. Archive fields are kept from ``previous``."""
        resources = DeployedResources(
            role_arn=self.role.role_arn,
            role_name=self.role.role_name,
            oidc_provider_arn=self.role.oidc_provider_arn,
        )
        if self.sending is not None:
            resources.config_set_name = self.sending.config_set_name
            resources.domain = self.sending.domain
            resources.dkim_tokens = list(self.sending.dkim_tokens)
            resources.mail_from_domain = self.sending.mail_from_domain
        if self.eventing is not None:
            resources.table_name = self.eventing.table_name
            resources.topic_arn = self.eventing.topic_arn
            resources.function_arns = list(self.eventing.function_arns)
            resources.dead_letter_queue_arn = self.eventing.dead_letter_queue_arn
        if self.edge is not None:
            resources.tracking_domain = self.edge.domain
            resources.certificate_arn = self.edge.certificate_arn
            resources.distribution_id = self.edge.distribution_id
            resources.distribution_domain = self.edge.distribution_domain
            resources.validation_records = [dict(item) for item in self.edge.validation_records]
        if previous is not None:
            resources.archive_id = previous.archive_id
            resources.archive_arn = previous.archive_arn
        return resources

    def to_exports(self) -> dict[str, Any]:
        """Flat engine exports; the inverse of :meth:`from_engine`."""
        exports: dict[str, Any] = {
            "roleArn": self.role.role_arn,
            "roleName": self.role.role_name,
        }
        if self.role.oidc_provider_arn:
            exports["oidcProviderArn"] = self.role.oidc_provider_arn
        if self.sending is not None:
            exports.update(
                configSetName=self.sending.config_set_name,
                domain=self.sending.domain,
                dkimTokens=list(self.sending.dkim_tokens),
                mailFromDomain=self.sending.mail_from_domain,
            )
        if self.eventing is not None:
            exports.update(
                tableName=self.eventing.table_name,
                topicArn=self.eventing.topic_arn,
                functionArns=list(self.eventing.function_arns),
            )
            if self.eventing.dead_letter_queue_arn:
                exports["deadLetterQueueArn"] = self.eventing.dead_letter_queue_arn
        if self.edge is not None:
            exports.update(
                trackingDomain=self.edge.domain,
                certificateArn=self.edge.certificate_arn,
                distributionId=self.edge.distribution_id,
                distributionDomain=self.edge.distribution_domain,
                validationRecords=[dict(item) for item in self.edge.validation_records],
            )
        return {key: value for key, value in exports.items() if value is not None}
