"""Inline Pulumi program rendered from a resource graph."""

from __future__ import annotations

import logging
from collections.abc import Callable

import pulumi

from mailstack.infrastructure.edge import EdgeBuilder
from mailstack.infrastructure.eventing import WireUpBuilder
from mailstack.infrastructure.graph import ResourceGraph, StepKind
from mailstack.infrastructure.role import RoleBuilder
from mailstack.infrastructure.sending import SendingBuilder

logger = logging.getLogger(__name__)

MANAGED_BY_TAG = {"ManagedBy": "mailstack"}


def build_program(graph: ResourceGraph) -> Callable[[], None]:
    """Return a Pulumi program declaring every engine-managed step of ``graph``."""
    graph = graph.engine_graph()

    def program() -> None:
        tags = dict(MANAGED_BY_TAG)

        oidc_step = graph.step(StepKind.OIDC_PROVIDER)
        role = RoleBuilder(tags).build(
            graph.role,
            import_oidc_arn=oidc_step.params.get("import_arn") if oidc_step else None,
        )
        pulumi.export("roleArn", role.role.arn)
        pulumi.export("roleName", role.role.name)
        if role.oidc_provider is not None:
            pulumi.export("oidcProviderArn", role.oidc_provider.arn)

        sending = SendingBuilder(tags)
        config_set = None
        config_step = graph.step(StepKind.CONFIG_SET)
        if config_step is not None:
            config_set = sending.config_set(config_step.params)
            pulumi.export("configSetName", config_set.configuration_set_name)

        identity_step = graph.step(StepKind.IDENTITY)
        if identity_step is not None:
            identity = sending.identity(identity_step.params, config_set)
            pulumi.export("domain", identity_step.params["domain"])
            pulumi.export("dkimTokens", identity.dkim_tokens())
            if identity.mail_from_domain:
                pulumi.export("mailFromDomain", identity.mail_from_domain)

        table_step = graph.step(StepKind.HISTORY_TABLE)
        topic_step = graph.step(StepKind.EVENT_TOPIC)
        functions_step = graph.step(StepKind.EVENT_FUNCTIONS)
        if config_set is not None and table_step and topic_step and functions_step:
            eventing = WireUpBuilder(graph.account_id, graph.region, tags).build(
                config_set,
                table_name=table_step.params["name"],
                topic_name=topic_step.params["name"],
                function_name=functions_step.params["name"],
                events=topic_step.params["events"],
                retention_days=table_step.params["retention_days"],
            )
            pulumi.export("tableName", eventing.table.name)
            pulumi.export("topicArn", eventing.topic.arn)
            pulumi.export("functionArns", eventing.function_arns())
            if eventing.dead_letter_queue is not None:
                pulumi.export("deadLetterQueueArn", eventing.dead_letter_queue.arn)

        edge_step = graph.step(StepKind.TRACKING_EDGE)
        if edge_step is not None:
            edge = EdgeBuilder(graph.region, tags).build(
                edge_step.params["domain"],
                zone_id=edge_step.params.get("zone_id"),
                existing_distribution_id=edge_step.params.get("distribution_id"),
                await_validation=bool(edge_step.params.get("await_validation")),
            )
            pulumi.export("trackingDomain", edge.domain)
            pulumi.export("certificateArn", edge.certificate.arn)
            pulumi.export("validationRecords", edge.validation_records)
            if edge.distribution is not None:
                pulumi.export("distributionId", edge.distribution.id)
                pulumi.export("distributionDomain", edge.distribution.domain_name)

        logger.debug("Declared %d steps for %s", len(graph), graph.region)

    return program
