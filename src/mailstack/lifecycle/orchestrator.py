"""Lifecycle commands: init, connect, upgrade, update, status, verify, restore, destroy.

Every mutating command runs its read-modify-write of the connection record
under the store's advisory lock. Resource creation goes through the
provisioning engine one stage at a time; identity attachments and the archive
are the only changes made directly through the cloud APIs, and both are
recorded so they can be reversed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mailstack.aws.gateway import CloudGateway
from mailstack.aws.models import IdentityDetails
from mailstack.config import Settings, load_settings
from mailstack.dns_records import (
    DnsRecord,
    DnsResolver,
    PublicResolver,
    RecordGroup,
    required_records,
    verify_domain,
)
from mailstack.errors import (
    InvariantError,
    MailstackError,
    NotFoundError,
    PartialApplyError,
)
from mailstack.infrastructure.archive import ArchiveBuilder
from mailstack.infrastructure.engine import ProvisioningEngine, stack_id_for
from mailstack.infrastructure.graph import ResourceGraph, ResourceGroup, StepKind
from mailstack.infrastructure.iam import RESOURCE_PREFIX, build_role, parse_provider
from mailstack.infrastructure.outputs import StackOutputs
from mailstack.infrastructure.planner import (
    CONFIG_SET_NAME,
    ArchiveRetention,
    FeatureFlags,
    plan,
)
from mailstack.lifecycle.prompts import Prompter
from mailstack.lifecycle.state import (
    LifecycleState,
    require_deployed,
    require_uninitialized,
    state_of,
)
from mailstack.metadata.models import (
    ConnectionRecord,
    DeployedResources,
    FeatureAction,
    FeatureName,
    FeatureState,
    IdentityAction,
    IdentityState,
    IntegrationLevel,
    Provider,
)
from mailstack.metadata.store import ConnectionStore
from mailstack.output import Reporter
from mailstack.presets import PresetCatalog, load_presets

logger = logging.getLogger(__name__)

PENDING_VALIDATION_CODE = "trackingEdge.pending-validation"
OIDC_IMPORTED_PARAM = "oidc_imported"


class ConflictStrategy(str, Enum):
    DEPLOY_ALONGSIDE = "deploy-alongside"
    REPLACE = "replace"
    SKIP = "skip"


_CONFLICT_OPTIONS = (
    (ConflictStrategy.DEPLOY_ALONGSIDE, "Deploy alongside: leave identities on their configuration set"),
    (ConflictStrategy.REPLACE, "Replace: switch identities to ours, remember theirs for restore"),
    (ConflictStrategy.SKIP, "Skip: no configuration set, keep your setup untouched"),
)


@dataclass
class CommandResult:
    exit_code: int
    state: LifecycleState
    record: ConnectionRecord | None = None
    diagnostics: list[MailstackError] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ApplyOutcome:
    outputs: StackOutputs
    diagnostics: list[PartialApplyError] = field(default_factory=list)
    archive_id: str | None = None
    archive_arn: str | None = None


def applied_groups(resources: DeployedResources | None) -> set[ResourceGroup]:
    """Engine groups a previous apply left in the stack."""
    if resources is None:
        return set()
    groups = {ResourceGroup.CORE}
    if resources.table_name:
        groups.add(ResourceGroup.EVENTING)
    if resources.tracking_domain:
        groups.add(ResourceGroup.EDGE)
    return groups


def feature_states(
    outputs: StackOutputs,
    resources: DeployedResources,
    previous: Mapping[str, FeatureState] | None = None,
) -> dict[str, FeatureState]:
    """Describe each feature from what actually exists after an apply."""
    previous = previous or {}
    sending = outputs.sending
    eventing = outputs.eventing
    current: dict[FeatureName, str | None] = {
        FeatureName.CONFIG_SET: sending.config_set_name if sending else None,
        FeatureName.EVENT_TRACKING: eventing.topic_arn if eventing else None,
        FeatureName.EMAIL_HISTORY: eventing.table_name if eventing else None,
        FeatureName.TRACKING_DOMAIN: outputs.edge.domain if outputs.edge else None,
        FeatureName.ARCHIVE: resources.archive_arn,
        FeatureName.MAIL_FROM: sending.mail_from_domain if sending else None,
    }
    states: dict[str, FeatureState] = {}
    for name, value in current.items():
        prior = previous.get(name.value)
        if prior is not None and prior.action is FeatureAction.REPLACE:
            states[name.value] = prior.model_copy(update={"current_value": value or prior.current_value})
        elif value:
            states[name.value] = FeatureState.deployed(value)
        else:
            states[name.value] = FeatureState.skipped()
    return states


def plan_identities(
    details: Iterable[IdentityDetails],
    config_set: str | None,
    strategy: ConflictStrategy,
) -> list[IdentityState]:
    """Decide, per existing identity, whether our configuration set is attached."""
    states: list[IdentityState] = []
    for identity in details:
        original = identity.config_set
        if config_set is None or original == config_set:
            action = IdentityAction.NO_CHANGE
        elif original is None:
            action = IdentityAction.ATTACHED
        elif strategy is ConflictStrategy.REPLACE:
            action = IdentityAction.REPLACED
        else:
            action = IdentityAction.NO_CHANGE
        states.append(
            IdentityState(
                name=identity.name,
                type=identity.type,
                original_config_set=original,
                current_config_set=config_set if action is not IdentityAction.NO_CHANGE else original,
                action=action,
            )
        )
    return states


def _foreign(config_set: str | None) -> bool:
    return bool(config_set) and not config_set.startswith(RESOURCE_PREFIX)


class Orchestrator:
    def __init__(
        self,
        store: ConnectionStore,
        engine: ProvisioningEngine,
        gateway: CloudGateway,
        prompter: Prompter,
        reporter: Reporter,
        settings: Settings | None = None,
        presets: PresetCatalog | None = None,
        resolver: DnsResolver | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._gateway = gateway
        self._prompter = prompter
        self._reporter = reporter
        self._settings = settings or load_settings()
        self._presets = presets or load_presets(self._settings.presets.path)
        self._resolver = resolver

    # Shared steps

    async def _account_id(self) -> str:
        self._reporter.step("Validating AWS credentials")
        identity = await self._gateway.caller_identity()
        self._reporter.info(f"Account {identity.account_id} ({identity.arn})")
        return identity.account_id

    async def _check_federation(
        self, provider: Provider, level: IntegrationLevel, params: dict[str, str], account_id: str
    ) -> None:
        """Adopt an identity provider that already exists instead of failing on create."""
        role = build_role(provider, level, params, account_id)
        if role.federation is None:
            return
        if await self._gateway.oidc_provider_exists(role.federation.arn):
            self._reporter.info(f"Reusing identity provider {role.federation.arn}")
            params[OIDC_IMPORTED_PARAM] = "true"

    async def _build_graph(
        self,
        provider: Provider,
        level: IntegrationLevel,
        params: Mapping[str, str],
        account_id: str,
        region: str,
        flags: FeatureFlags,
        domain: str | None = None,
        resources: DeployedResources | None = None,
    ) -> ResourceGraph:
        self._reporter.step("Planning resources")
        role = build_role(provider, level, params, account_id)
        graph = plan(level, flags, role, region, account_id, domain=domain)

        if role.federation is not None and params.get(OIDC_IMPORTED_PARAM) == "true":
            graph = graph.with_params(StepKind.OIDC_PROVIDER, import_arn=role.federation.arn)

        edge = graph.step(StepKind.TRACKING_EDGE)
        if edge is not None:
            tracking_domain = edge.params["domain"]
            ours = resources is not None and resources.tracking_domain == tracking_domain
            zone = await self._gateway.find_hosted_zone(tracking_domain)
            existing = None
            if not (ours and resources.distribution_id):
                existing = await self._gateway.find_distribution_by_alias(tracking_domain)
                if existing:
                    self._reporter.info(f"Importing existing distribution {existing} for {tracking_domain}")
            pending = ours and not resources.distribution_id
            graph = graph.with_params(
                StepKind.TRACKING_EDGE,
                zone_id=zone.id if zone else None,
                distribution_id=existing,
                await_validation=bool(pending and zone is None),
            )

        for step in graph:
            logger.debug("Planned %s (%s)", step.kind.value, step.group.value)
        return graph

    async def _apply(
        self,
        stack_id: str,
        graph: ResourceGraph,
        resources: DeployedResources | None = None,
    ) -> ApplyOutcome:
        """Apply stage by stage. Only a core failure is fatal."""
        outputs: StackOutputs | None = None
        diagnostics: list[PartialApplyError] = []
        for group, stage in graph.stages(applied_groups(resources)):
            self._reporter.step(f"Applying {group.value} resources ({len(stage)} steps)")
            try:
                outputs = await self._engine.apply(stack_id, stage)
            except MailstackError as exc:
                if group is ResourceGroup.CORE:
                    raise
                logger.warning("Stage %s failed: %s", group.value, exc.message)
                diagnostics.append(
                    PartialApplyError(
                        f"{group.value} resources were not completed: {exc.message}",
                        group=group.value,
                        code=f"{group.value}_apply_failed",
                        suggestion="Fix the cause, then run 'mailstack update' to retry",
                    )
                )
                break
            self._reporter.success(f"{group.value} resources applied")

        if outputs is None:
            raise InvariantError("The core stage produced no outputs", code="missing_outputs")
        outcome = ApplyOutcome(
            outputs=outputs,
            diagnostics=diagnostics,
            archive_id=resources.archive_id if resources else None,
            archive_arn=resources.archive_arn if resources else None,
        )
        await self._bind_archive(graph, outcome)
        return outcome

    async def _bind_archive(self, graph: ResourceGraph, outcome: ApplyOutcome) -> None:
        step = graph.step(StepKind.ARCHIVE)
        sending = outcome.outputs.sending
        if step is None or sending is None or not sending.config_set_name:
            return
        self._reporter.step("Binding the message archive")
        retention: ArchiveRetention = step.params["retention"]
        try:
            result = await ArchiveBuilder(self._gateway).bind(
                sending.config_set_name, retention, step.params.get("kms_key_arn")
            )
        except PartialApplyError as exc:
            outcome.archive_id = exc.created.get("archive_id", outcome.archive_id)
            outcome.archive_arn = exc.created.get("archive_arn", outcome.archive_arn)
            outcome.diagnostics.append(exc)
            return
        except MailstackError as exc:
            outcome.diagnostics.append(
                PartialApplyError(
                    f"Archive could not be created: {exc.message}",
                    group=ResourceGroup.ARCHIVE.value,
                    code="archive_failed",
                    suggestion=exc.suggestion or "Run 'mailstack update' to retry",
                )
            )
            return
        outcome.archive_id = result.archive_id
        outcome.archive_arn = result.archive_arn
        self._reporter.success(f"Archive {result.name} linked ({retention.value})")

    def _record_outcome(
        self, record: ConnectionRecord, outcome: ApplyOutcome, flags: FeatureFlags
    ) -> None:
        resources = outcome.outputs.to_resources(previous=record.resources)
        resources.archive_id = outcome.archive_id
        resources.archive_arn = outcome.archive_arn
        record.resources = resources
        record.features = feature_states(outcome.outputs, resources, record.features)
        record.feature_flags = flags.to_dict()
        record.diagnostics = []
        for diagnostic in outcome.diagnostics:
            record.add_diagnostic(diagnostic.code, diagnostic.message, diagnostic.group)
        edge = outcome.outputs.edge
        if edge is not None and edge.pending_validation:
            record.add_diagnostic(
                PENDING_VALIDATION_CODE,
                f"Certificate for {edge.domain} awaits DNS validation",
                ResourceGroup.EDGE.value,
            )
        record.touch()

    def _dns_records(self, outputs: StackOutputs, region: str) -> dict[str, list[DnsRecord]]:
        grouped: dict[str, list[DnsRecord]] = {}
        sending = outputs.sending
        if sending is not None and sending.domain:
            grouped[sending.domain] = required_records(
                sending.domain,
                sending.dkim_tokens,
                region,
                mail_from_domain=sending.mail_from_domain,
            )
        edge = outputs.edge
        if edge is not None:
            if edge.pending_validation:
                records = [
                    DnsRecord(
                        name=item["name"].rstrip("."),
                        type=item["type"],
                        value=item["value"].rstrip("."),
                        group=RecordGroup.TRACKING,
                        ttl=300,
                    )
                    for item in edge.validation_records
                ]
            else:
                records = [
                    DnsRecord(
                        name=edge.domain,
                        type="CNAME",
                        value=edge.distribution_domain or "",
                        group=RecordGroup.TRACKING,
                    )
                ]
            grouped.setdefault(edge.domain, []).extend(records)
        return grouped

    async def _publish_dns(self, outputs: StackOutputs, region: str) -> None:
        for name, records in self._dns_records(outputs, region).items():
            if not records:
                continue
            zone = await self._gateway.find_hosted_zone(name)
            if zone is None:
                self._reporter.records(f"Add these DNS records for {name}:", records)
                continue
            try:
                change_id = await self._gateway.apply_dns_records(zone.id, records)
            except MailstackError as exc:
                self._reporter.warning(f"Could not update hosted zone {zone.name}: {exc.message}")
                self._reporter.records(f"Add these DNS records for {name}:", records)
                continue
            self._reporter.success(f"{len(records)} DNS records upserted in {zone.name} ({change_id})")

    async def _attach(
        self, identities: Sequence[IdentityState], diagnostics: list[MailstackError]
    ) -> list[IdentityState]:
        """Point identities at our configuration set; failures leave them unchanged."""
        results: list[IdentityState] = []
        for identity in identities:
            if not identity.reversible:
                results.append(identity)
                continue
            try:
                await self._gateway.set_identity_config_set(identity.name, identity.current_config_set)
            except MailstackError as exc:
                self._reporter.warning(f"Could not attach {identity.name}: {exc.message}")
                diagnostics.append(exc)
                results.append(
                    IdentityState(
                        name=identity.name,
                        type=identity.type,
                        original_config_set=identity.original_config_set,
                        current_config_set=identity.original_config_set,
                        action=IdentityAction.NO_CHANGE,
                    )
                )
                continue
            self._reporter.success(f"{identity.name} now uses {identity.current_config_set}")
            results.append(identity)
        return results

    async def _reverse_identities(self, record: ConnectionRecord) -> None:
        for identity in record.reversible_identities():
            target = (
                identity.original_config_set
                if identity.action is IdentityAction.REPLACED
                else None
            )
            try:
                await self._gateway.set_identity_config_set(identity.name, target)
            except NotFoundError:
                self._reporter.warning(f"Identity {identity.name} no longer exists; skipped")
                continue
            if target:
                self._reporter.success(f"{identity.name} restored to {target}")
            else:
                self._reporter.success(f"{identity.name} detached from {identity.current_config_set}")

    async def _teardown(
        self, record: ConnectionRecord | None, stack_id: str, account_id: str, region: str
    ) -> None:
        """Reverse identity changes, unbind the archive, destroy the stack, drop the record."""
        if record is not None:
            self._reporter.step("Reverting identity changes")
            await self._reverse_identities(record)
            resources = record.resources
            if resources.archive_id or resources.archive_arn:
                self._reporter.step("Removing the message archive")
                await ArchiveBuilder(self._gateway).unbind(
                    resources.config_set_name if resources.archive_arn else None,
                    resources.archive_id,
                )

        self._reporter.step(f"Destroying stack {stack_id}")
        try:
            await self._engine.destroy(stack_id)
        except NotFoundError:
            self._reporter.warning(f"Stack {stack_id} was not found; treating it as removed")
        else:
            self._reporter.success(f"Stack {stack_id} destroyed")

        if self._store.delete(account_id, region):
            self._reporter.info("Connection record removed")

    def _report_diagnostics(self, diagnostics: Iterable[MailstackError]) -> None:
        for diagnostic in diagnostics:
            self._reporter.warning(diagnostic.message)
            if diagnostic.suggestion:
                self._reporter.info(diagnostic.suggestion)

    def _summarize(self, record: ConnectionRecord) -> None:
        resources = record.resources
        rows = [("Role", resources.role_arn or "-")]
        if resources.config_set_name:
            rows.append(("Configuration set", resources.config_set_name))
        if resources.table_name:
            rows.append(("History table", resources.table_name))
        if resources.function_arns:
            rows.append(("Functions", ", ".join(resources.function_arns)))
        if resources.domain:
            rows.append(("Domain", resources.domain))
        if resources.tracking_domain:
            rows.append(("Tracking domain", resources.tracking_domain))
        if resources.archive_arn:
            rows.append(("Archive", resources.archive_arn))
        self._reporter.table(rows)

    # Commands

    async def init(
        self,
        provider: str | Provider,
        region: str,
        domain: str | None = None,
        preset: str | None = None,
        provider_params: Mapping[str, str] | None = None,
    ) -> CommandResult:
        resolved = parse_provider(provider)
        preset_key, chosen = self._presets.get(preset)
        level = chosen.integration_level
        flags = chosen.flags()
        params = dict(provider_params or {})

        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            require_uninitialized(self._store.load(account_id, region), account_id, region)
            await self._check_federation(resolved, level, params, account_id)

            identities: list[IdentityState] = []
            plan_domain = None
            if domain and level is IntegrationLevel.ENHANCED:
                existing = await self._gateway.get_email_identity(domain)
                if existing is None:
                    plan_domain = domain
                else:
                    self._reporter.info(f"{domain} is already an identity; it will not be recreated")
                    strategy = ConflictStrategy.DEPLOY_ALONGSIDE
                    if flags.config_set and _foreign(existing.config_set):
                        strategy = self._prompter.choose(
                            f"{domain} uses configuration set {existing.config_set}.",
                            _CONFLICT_OPTIONS,
                            ConflictStrategy.DEPLOY_ALONGSIDE,
                        )
                    identities = plan_identities(
                        [existing], CONFIG_SET_NAME if flags.config_set else None, strategy
                    )

            graph = await self._build_graph(
                resolved, level, params, account_id, region, flags, domain=plan_domain
            )
            self._reporter.info(
                f"Preset {preset_key}: {', '.join(step.kind.value for step in graph)}"
            )
            self._prompter.confirm(f"Deploy these resources to {account_id} in {region}?")

            stack_id = stack_id_for(account_id, region)
            outcome = await self._apply(stack_id, graph)
            record = ConnectionRecord(
                account_id=account_id,
                region=region,
                provider=resolved,
                stack_id=stack_id,
                preset=preset_key,
                integration_level=level,
                provider_params=params,
            )
            self._record_outcome(record, outcome, flags)
            diagnostics: list[MailstackError] = list(outcome.diagnostics)
            record.merge_identities(await self._attach(identities, diagnostics))
            self._store.save(record)

        await self._publish_dns(outcome.outputs, region)
        self._summarize(record)
        self._report_diagnostics(diagnostics)
        self._reporter.success(f"Deployed {stack_id}")
        return CommandResult(0, LifecycleState.DEPLOYED, record, diagnostics)

    async def connect(
        self,
        provider: str | Provider,
        region: str,
        preset: str | None = "production",
        provider_params: Mapping[str, str] | None = None,
    ) -> CommandResult:
        resolved = parse_provider(provider)
        preset_key, chosen = self._presets.get(preset)
        level = chosen.integration_level
        flags = chosen.flags()
        params = dict(provider_params or {})

        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            require_uninitialized(self._store.load(account_id, region), account_id, region)

            self._reporter.step("Scanning existing email resources")
            summaries, config_sets = await asyncio.gather(
                self._gateway.list_email_identities(),
                self._gateway.list_configuration_sets(),
            )
            details = await self._gateway.get_email_identities(item.name for item in summaries)
            self._reporter.info(
                f"Found {len(details)} identities and {len(config_sets)} configuration sets"
            )
            if not details:
                self._reporter.warning("No identities found in this region")
                self._reporter.info("Use 'mailstack init' to create new infrastructure instead")
                return CommandResult(0, LifecycleState.UNINITIALIZED)

            replaced_config_set: FeatureState | None = None
            strategy = ConflictStrategy.DEPLOY_ALONGSIDE
            foreign = sorted({item.config_set for item in details if _foreign(item.config_set)})
            if flags.config_set and foreign:
                strategy = self._prompter.choose(
                    f"Identities already use configuration set(s): {', '.join(foreign)}.",
                    _CONFLICT_OPTIONS,
                    ConflictStrategy.DEPLOY_ALONGSIDE,
                )
                if strategy is ConflictStrategy.REPLACE:
                    replaced_config_set = FeatureState.replacing(
                        ", ".join(foreign), CONFIG_SET_NAME
                    )
                elif strategy is ConflictStrategy.SKIP:
                    flags = dataclasses.replace(
                        flags,
                        config_set=False,
                        event_tracking=False,
                        tracking_domain=None,
                        archive_retention=None,
                    )

            await self._check_federation(resolved, level, params, account_id)
            identities = plan_identities(
                details, CONFIG_SET_NAME if flags.config_set else None, strategy
            )
            for identity in identities:
                if identity.reversible:
                    self._reporter.info(
                        f"{identity.name}: {identity.original_config_set or 'none'} -> {identity.current_config_set}"
                    )

            graph = await self._build_graph(resolved, level, params, account_id, region, flags)
            self._prompter.confirm(f"Connect {len(details)} identities in {region}?")

            stack_id = stack_id_for(account_id, region)
            outcome = await self._apply(stack_id, graph)
            record = ConnectionRecord(
                account_id=account_id,
                region=region,
                provider=resolved,
                stack_id=stack_id,
                preset=preset_key,
                integration_level=level,
                provider_params=params,
            )
            if replaced_config_set is not None:
                record.set_feature(FeatureName.CONFIG_SET, replaced_config_set)
            self._record_outcome(record, outcome, flags)
            diagnostics: list[MailstackError] = list(outcome.diagnostics)
            record.merge_identities(await self._attach(identities, diagnostics))
            self._store.save(record)

        self._summarize(record)
        self._report_diagnostics(diagnostics)
        self._reporter.success(f"Connected {len(record.identities)} identities")
        return CommandResult(0, LifecycleState.DEPLOYED, record, diagnostics)

    async def _reapply(
        self,
        record: ConnectionRecord,
        flags: FeatureFlags,
        level: IntegrationLevel,
    ) -> list[MailstackError]:
        graph = await self._build_graph(
            record.provider,
            level,
            record.provider_params,
            record.account_id,
            record.region,
            flags,
            domain=record.resources.domain,
            resources=record.resources,
        )
        outcome = await self._apply(record.stack_id, graph, record.resources)
        record.integration_level = level
        self._record_outcome(record, outcome, flags)
        diagnostics: list[MailstackError] = list(outcome.diagnostics)
        await self._adopt_new_identities(record, outcome.outputs, diagnostics)
        self._store.save(record)
        await self._publish_dns(outcome.outputs, record.region)
        return diagnostics

    async def _adopt_new_identities(
        self, record: ConnectionRecord, outputs: StackOutputs, diagnostics: list[MailstackError]
    ) -> None:
        """Attach identities created after connect. Tracked entries keep their recorded state."""
        sending = outputs.sending
        if not record.identities or sending is None or not sending.config_set_name:
            return
        summaries = await self._gateway.list_email_identities()
        untracked = [item.name for item in summaries if record.identity(item.name) is None]
        if not untracked:
            return
        details = await self._gateway.get_email_identities(untracked)
        planned = plan_identities(details, sending.config_set_name, ConflictStrategy.DEPLOY_ALONGSIDE)
        added = record.merge_identities(await self._attach(planned, diagnostics))
        if added:
            self._reporter.info(f"Tracking {len(added)} identities added since connect")

    async def upgrade(
        self,
        region: str,
        enable: Iterable[str] = (),
        preset: str | None = None,
        tracking_domain: str | None = None,
        archive_retention: str | None = None,
    ) -> CommandResult:
        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            record = require_deployed(self._store.load(account_id, region), account_id, region)
            current = FeatureFlags.from_dict(record.feature_flags)
            level = record.integration_level

            requested = current
            if preset:
                preset_key, chosen = self._presets.get(preset)
                requested = requested.merge(chosen.flags())
                if chosen.integration_level is IntegrationLevel.ENHANCED:
                    level = IntegrationLevel.ENHANCED
                record.preset = preset_key
            enable = list(enable)
            if enable:
                requested = requested.enable(enable)
            if tracking_domain:
                requested = dataclasses.replace(requested, tracking_domain=tracking_domain.strip().lower())
            if archive_retention:
                requested = dataclasses.replace(
                    requested, archive_retention=ArchiveRetention.parse(archive_retention)
                )
            requested = current.merge(requested).with_dependencies()

            if requested != current and level is IntegrationLevel.DASHBOARD_ONLY:
                level = IntegrationLevel.ENHANCED
            if requested == current and level is record.integration_level:
                self._reporter.info("Nothing to upgrade; the requested features are already enabled")
                return CommandResult(0, LifecycleState.DEPLOYED, record)

            for key, value in requested.to_dict().items():
                if current.to_dict().get(key) != value:
                    self._reporter.info(f"{key}: {current.to_dict().get(key)} -> {value}")
            self._prompter.confirm(f"Apply these changes to {record.stack_id}?")
            diagnostics = await self._reapply(record, requested, level)

        self._summarize(record)
        self._report_diagnostics(diagnostics)
        self._reporter.success(f"Upgraded {record.stack_id}")
        return CommandResult(0, LifecycleState.UPGRADED, record, diagnostics)

    async def update(self, region: str) -> CommandResult:
        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            record = require_deployed(self._store.load(account_id, region), account_id, region)
            flags = FeatureFlags.from_dict(record.feature_flags)
            self._prompter.confirm(f"Re-apply the recorded configuration to {record.stack_id}?")
            diagnostics = await self._reapply(record, flags, record.integration_level)

        self._summarize(record)
        self._report_diagnostics(diagnostics)
        self._reporter.success(f"Updated {record.stack_id}")
        return CommandResult(0, LifecycleState.DEPLOYED, record, diagnostics)

    async def status(self, region: str, account_id: str | None = None) -> CommandResult:
        account_id = account_id or await self._account_id()
        record = require_deployed(self._store.load(account_id, region), account_id, region)

        names = [identity.name for identity in record.identities]
        if record.resources.domain and record.resources.domain not in names:
            names.append(record.resources.domain)
        outputs, details = await asyncio.gather(
            self._engine.outputs(record.stack_id),
            self._gateway.get_email_identities(names),
        )

        rows = [
            ("Account", record.account_id),
            ("Region", record.region),
            ("Provider", record.provider.value),
            ("Integration", record.integration_level.value),
            ("Preset", record.preset or "-"),
            ("Stack", record.stack_id if outputs is not None else f"{record.stack_id} (not found)"),
        ]
        for name, state in sorted(record.features.items()):
            rows.append((name, state.action.value if state.enabled else "off"))
        for identity in details:
            verified = "verified" if identity.verified else (identity.verification_status or "pending")
            dkim = identity.dkim_status or "unknown"
            config_set = identity.config_set or "-"
            rows.append((identity.name, f"{verified}, DKIM {dkim}, config set {config_set}"))
        self._reporter.table(rows)
        for diagnostic in record.diagnostics:
            self._reporter.warning(f"{diagnostic.code}: {diagnostic.message}")

        data = {
            "record": record.model_dump(mode="json", by_alias=True),
            "stackFound": outputs is not None,
            "outputs": outputs.to_exports() if outputs is not None else None,
            "identities": [
                {
                    "name": identity.name,
                    "verified": identity.verified,
                    "verificationStatus": identity.verification_status,
                    "dkimStatus": identity.dkim_status,
                    "dkimSigningEnabled": identity.dkim_signing_enabled,
                    "configSet": identity.config_set,
                }
                for identity in details
            ],
        }
        return CommandResult(0, LifecycleState.DEPLOYED, record, data=data)

    async def verify(self, domain: str, region: str) -> CommandResult:
        domain = domain.strip().rstrip(".").lower()
        self._reporter.step(f"Checking {domain}")
        identity = await self._gateway.get_email_identity(domain)
        if identity is None:
            raise NotFoundError(
                f"{domain} is not an email identity in {region}",
                code="identity_not_found",
                suggestion="Run 'mailstack init --domain' to create it",
            )

        tracking_domain = edge_domain = None
        account_id = (await self._gateway.caller_identity()).account_id
        record = self._store.load(account_id, region)
        if record is not None and record.resources.domain == domain:
            tracking_domain = record.resources.tracking_domain
            edge_domain = record.resources.distribution_domain

        resolver = self._resolver or PublicResolver()
        report = await verify_domain(
            domain, identity, resolver, region, tracking_domain=tracking_domain, edge_domain=edge_domain
        )
        for result in report.records:
            self._reporter.info(f"{result.status.value:<9} {result.record.type:<5} {result.record.name}")
        for group, status in report.groups.items():
            self._reporter.info(f"{group.value}: {status.value}")
        self._reporter.info(
            f"Identity {identity.verification_status or 'unknown'}, DKIM {identity.dkim_status or 'unknown'}"
        )
        self._reporter.success(f"Overall: {report.overall.value}")
        return CommandResult(0, state_of(record), record, data=report.to_dict())

    async def restore(self, region: str) -> CommandResult:
        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            record = require_deployed(self._store.load(account_id, region), account_id, region)
            if not record.has_restorable_changes():
                self._reporter.info("Nothing to restore: no identity or feature was replaced")
                return CommandResult(0, LifecycleState.DEPLOYED, record)

            self._reporter.step("These originals will be reinstated")
            for identity in record.reversible_identities():
                if identity.action is IdentityAction.REPLACED:
                    self._reporter.info(
                        f"{identity.name}: {identity.current_config_set} -> {identity.original_config_set}"
                    )
                else:
                    self._reporter.info(f"{identity.name}: detach {identity.current_config_set}")
            for name, state in record.replaced_features().items():
                self._reporter.info(f"{name}: {state.original_value} (left intact)")
            self._prompter.confirm(
                "Restore the originals and remove everything mailstack created?", default=False
            )
            await self._teardown(record, record.stack_id, account_id, region)

        self._reporter.success("Original configuration restored")
        return CommandResult(0, LifecycleState.RESTORED)

    async def destroy(self, region: str) -> CommandResult:
        account_id = await self._account_id()
        with self._store.lock(account_id, region):
            record = self._store.load(account_id, region)
            stack_id = record.stack_id if record is not None else stack_id_for(account_id, region)
            if record is None:
                self._reporter.info(f"No connection record for {account_id} in {region}")
            self._prompter.confirm(
                f"Destroy all mailstack resources in {account_id} ({region})?", default=False
            )
            await self._teardown(record, stack_id, account_id, region)

        self._reporter.success("All mailstack resources removed")
        return CommandResult(0, LifecycleState.DESTROYED)
