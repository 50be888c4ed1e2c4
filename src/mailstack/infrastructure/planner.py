"""Resource planner: integration level and feature flags to a resource graph."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mailstack.errors import ConfigurationError
from mailstack.infrastructure.graph import ResourceGraph, ResourceGroup, ResourceStep, StepKind
from mailstack.infrastructure.iam import RESOURCE_PREFIX, RoleSpec
from mailstack.metadata.models import IntegrationLevel

CONFIG_SET_NAME = f"{RESOURCE_PREFIX}-email-tracking"
HISTORY_TABLE_NAME = f"{RESOURCE_PREFIX}-email-history"
EVENT_TOPIC_NAME = f"{RESOURCE_PREFIX}-email-events"
EVENT_FUNCTION_NAME = f"{RESOURCE_PREFIX}-event-processor"
HISTORY_RETENTION_DAYS = 90

DEFAULT_EVENTS = ("SEND", "DELIVERY", "OPEN", "CLICK", "BOUNCE", "COMPLAINT")
SUPPORTED_EVENTS = frozenset(
    {
        "SEND",
        "REJECT",
        "BOUNCE",
        "COMPLAINT",
        "DELIVERY",
        "OPEN",
        "CLICK",
        "RENDERING_FAILURE",
        "DELIVERY_DELAY",
        "SUBSCRIPTION",
    }
)


class ArchiveRetention(str, Enum):
    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    NINE_MONTHS = "9months"
    ONE_YEAR = "1year"
    EIGHTEEN_MONTHS = "18months"
    TWO_YEARS = "2years"
    THIRTY_MONTHS = "30months"
    THREE_YEARS = "3years"
    FOUR_YEARS = "4years"
    FIVE_YEARS = "5years"
    SIX_YEARS = "6years"
    SEVEN_YEARS = "7years"
    EIGHT_YEARS = "8years"
    NINE_YEARS = "9years"
    TEN_YEARS = "10years"
    PERMANENT = "permanent"

    @property
    def retention_period(self) -> str:
        """Mail Manager ``RetentionPeriod`` value."""
        return self.name

    @classmethod
    def parse(cls, value: "str | ArchiveRetention") -> "ArchiveRetention":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(item.value for item in cls)
            raise ConfigurationError(
                f"Unknown archive retention: {value}",
                code="invalid_archive_retention",
                suggestion=f"Choose one of: {choices}",
            ) from None


@dataclass(frozen=True)
class FeatureFlags:
    config_set: bool = False
    event_tracking: bool = False
    tracking_domain: str | None = None
    archive_retention: ArchiveRetention | None = None
    archive_kms_key_arn: str | None = None
    mail_from_domain: str | None = None
    reputation_metrics: bool = False
    tls_required: bool = True
    events: tuple[str, ...] = DEFAULT_EVENTS

    def with_dependencies(self) -> "FeatureFlags":
        """Switch on whatever the requested groups need."""
        needs_config_set = bool(
            self.event_tracking or self.tracking_domain or self.archive_retention
        )
        if needs_config_set and not self.config_set:
            return dataclasses.replace(self, config_set=True)
        return self

    def merge(self, other: "FeatureFlags") -> "FeatureFlags":
        """Combine recorded flags with newly requested ones; nothing is switched off."""
        return FeatureFlags(
            config_set=self.config_set or other.config_set,
            event_tracking=self.event_tracking or other.event_tracking,
            tracking_domain=other.tracking_domain or self.tracking_domain,
            archive_retention=other.archive_retention or self.archive_retention,
            archive_kms_key_arn=other.archive_kms_key_arn or self.archive_kms_key_arn,
            mail_from_domain=other.mail_from_domain or self.mail_from_domain,
            reputation_metrics=self.reputation_metrics or other.reputation_metrics,
            tls_required=self.tls_required or other.tls_required,
            events=tuple(dict.fromkeys((*self.events, *other.events))),
        )

    def enable(self, names: Iterable[str]) -> "FeatureFlags":
        updates: dict[str, Any] = {}
        for name in names:
            key = name.strip().lower().replace("_", "-")
            if key in {"config-set", "configset"}:
                updates["config_set"] = True
            elif key in {"event-tracking", "tracking", "events", "email-history", "history"}:
                updates["event_tracking"] = True
            elif key in {"reputation-metrics", "reputation"}:
                updates["reputation_metrics"] = True
            else:
                raise ConfigurationError(
                    f"Unknown feature: {name}",
                    code="unknown_feature",
                    suggestion=(
                        "Choose one of: config-set, event-tracking, reputation-metrics; "
                        "use --tracking-domain or --archive-retention for the others"
                    ),
                )
        return dataclasses.replace(self, **updates).with_dependencies()

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["archive_retention"] = (
            self.archive_retention.value if self.archive_retention else None
        )
        data["events"] = list(self.events)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureFlags":
        values = dict(data)
        retention = values.get("archive_retention")
        values["archive_retention"] = ArchiveRetention.parse(retention) if retention else None
        events = values.get("events")
        values["events"] = tuple(events) if events else DEFAULT_EVENTS
        known = {item.name for item in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in values.items() if key in known})


def plan(
    integration_level: IntegrationLevel,
    flags: FeatureFlags,
    role: RoleSpec,
    region: str,
    account_id: str,
    domain: str | None = None,
) -> ResourceGraph:
    """Compute the resource graph. Pure: nothing is created or queried."""
    steps: list[ResourceStep] = []

    role_deps: tuple[StepKind, ...] = ()
    if role.federation is not None:
        steps.append(
            ResourceStep(
                kind=StepKind.OIDC_PROVIDER,
                group=ResourceGroup.CORE,
                params={"url": role.federation.url, "arn": role.federation.arn},
            )
        )
        role_deps = (StepKind.OIDC_PROVIDER,)
    steps.append(
        ResourceStep(
            kind=StepKind.ROLE,
            group=ResourceGroup.CORE,
            depends_on=role_deps,
            params={"name": role.name},
        )
    )

    if integration_level is IntegrationLevel.DASHBOARD_ONLY:
        return ResourceGraph(
            integration_level=integration_level,
            role=role,
            region=region,
            account_id=account_id,
            steps=tuple(steps),
        ).validate()

    _check_flags(flags)

    if flags.config_set:
        steps.append(
            ResourceStep(
                kind=StepKind.CONFIG_SET,
                group=ResourceGroup.CORE,
                depends_on=(StepKind.ROLE,),
                params={
                    "name": CONFIG_SET_NAME,
                    "reputation_metrics": flags.reputation_metrics,
                    "tls_required": flags.tls_required,
                    "tracking_domain": flags.tracking_domain,
                },
            )
        )

    if domain:
        steps.append(
            ResourceStep(
                kind=StepKind.IDENTITY,
                group=ResourceGroup.CORE,
                depends_on=(StepKind.CONFIG_SET,) if flags.config_set else (),
                params={
                    "domain": domain,
                    "config_set": CONFIG_SET_NAME if flags.config_set else None,
                    "mail_from_domain": flags.mail_from_domain,
                },
            )
        )

    if flags.event_tracking:
        steps.extend(
            [
                ResourceStep(
                    kind=StepKind.HISTORY_TABLE,
                    group=ResourceGroup.EVENTING,
                    depends_on=(StepKind.CONFIG_SET,),
                    params={
                        "name": HISTORY_TABLE_NAME,
                        "retention_days": HISTORY_RETENTION_DAYS,
                    },
                ),
                ResourceStep(
                    kind=StepKind.EVENT_TOPIC,
                    group=ResourceGroup.EVENTING,
                    depends_on=(StepKind.CONFIG_SET,),
                    params={"name": EVENT_TOPIC_NAME, "events": tuple(flags.events)},
                ),
                ResourceStep(
                    kind=StepKind.EVENT_FUNCTIONS,
                    group=ResourceGroup.EVENTING,
                    depends_on=(StepKind.HISTORY_TABLE, StepKind.EVENT_TOPIC),
                    params={"name": EVENT_FUNCTION_NAME},
                ),
            ]
        )

    if flags.tracking_domain:
        steps.append(
            ResourceStep(
                kind=StepKind.TRACKING_EDGE,
                group=ResourceGroup.EDGE,
                depends_on=(StepKind.CONFIG_SET,),
                params={"domain": flags.tracking_domain},
            )
        )

    if flags.archive_retention:
        steps.append(
            ResourceStep(
                kind=StepKind.ARCHIVE,
                group=ResourceGroup.ARCHIVE,
                depends_on=(StepKind.CONFIG_SET,),
                params={
                    "retention": flags.archive_retention,
                    "kms_key_arn": flags.archive_kms_key_arn,
                    "config_set": CONFIG_SET_NAME,
                },
            )
        )

    return ResourceGraph(
        integration_level=integration_level,
        role=role,
        region=region,
        account_id=account_id,
        steps=tuple(steps),
    ).validate()


def _check_flags(flags: FeatureFlags) -> None:
    if flags.config_set:
        unknown = [event for event in flags.events if event not in SUPPORTED_EVENTS]
        if unknown:
            raise ConfigurationError(
                f"Unsupported event types: {', '.join(unknown)}",
                code="invalid_feature_flags",
            )
        return

    dependents = [
        name
        for name, wanted in (
            ("event tracking", flags.event_tracking),
            ("tracking domain", bool(flags.tracking_domain)),
            ("archive", bool(flags.archive_retention)),
        )
        if wanted
    ]
    if dependents:
        raise ConfigurationError(
            f"{', '.join(dependents)} requires a configuration set",
            code="invalid_feature_flags",
            suggestion="Enable the configuration set as well",
        )
