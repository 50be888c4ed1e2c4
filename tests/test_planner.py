from __future__ import annotations

import pytest

from mailstack.errors import ConfigurationError
from mailstack.infrastructure.graph import (
    ResourceGraph,
    ResourceGroup,
    ResourceStep,
    StepKind,
)
from mailstack.infrastructure.iam import build_role
from mailstack.infrastructure.planner import (
    CONFIG_SET_NAME,
    DEFAULT_EVENTS,
    ArchiveRetention,
    FeatureFlags,
    plan,
)
from mailstack.metadata.models import IntegrationLevel

ACCOUNT = "123456789012"
REGION = "us-east-1"


def _plan(flags: FeatureFlags, level=IntegrationLevel.ENHANCED, provider="aws", **kwargs):
    role = build_role(provider, level, kwargs.pop("params", {}), ACCOUNT)
    return plan(level, flags, role, REGION, ACCOUNT, **kwargs)


def test_starter_plans_only_the_role() -> None:
    graph = _plan(FeatureFlags())

    assert graph.kinds() == [StepKind.ROLE]


def test_dashboard_only_ignores_feature_flags() -> None:
    graph = _plan(FeatureFlags(config_set=True, event_tracking=True), IntegrationLevel.DASHBOARD_ONLY)

    assert graph.kinds() == [StepKind.ROLE]


def test_vercel_adds_identity_provider_before_role() -> None:
    graph = _plan(FeatureFlags(), provider="vercel", params={"team_slug": "acme", "project_name": "web"})

    assert graph.kinds() == [StepKind.OIDC_PROVIDER, StepKind.ROLE]
    assert graph.step(StepKind.ROLE).depends_on == (StepKind.OIDC_PROVIDER,)


def test_full_plan_orders_steps_after_dependencies() -> None:
    flags = FeatureFlags(
        config_set=True,
        event_tracking=True,
        tracking_domain="track.example.com",
        archive_retention=ArchiveRetention.ONE_YEAR,
    )

    graph = _plan(flags, domain="example.com")

    assert graph.kinds() == [
        StepKind.ROLE,
        StepKind.CONFIG_SET,
        StepKind.IDENTITY,
        StepKind.HISTORY_TABLE,
        StepKind.EVENT_TOPIC,
        StepKind.EVENT_FUNCTIONS,
        StepKind.TRACKING_EDGE,
        StepKind.ARCHIVE,
    ]
    assert graph.step(StepKind.IDENTITY).params["config_set"] == CONFIG_SET_NAME
    assert graph.groups() == [
        ResourceGroup.CORE,
        ResourceGroup.EVENTING,
        ResourceGroup.EDGE,
        ResourceGroup.ARCHIVE,
    ]


def test_plan_is_pure() -> None:
    flags = FeatureFlags(config_set=True, event_tracking=True)

    assert _plan(flags) == _plan(flags)


@pytest.mark.parametrize(
    "flags",
    [
        FeatureFlags(event_tracking=True),
        FeatureFlags(tracking_domain="track.example.com"),
        FeatureFlags(archive_retention=ArchiveRetention.PERMANENT),
    ],
)
def test_groups_without_config_set_are_rejected(flags: FeatureFlags) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        _plan(flags)

    assert exc_info.value.code == "invalid_feature_flags"


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        _plan(FeatureFlags(config_set=True, events=("SEND", "TELEPORT")))


def test_stages_apply_core_first_then_each_group() -> None:
    flags = FeatureFlags(
        config_set=True, event_tracking=True, archive_retention=ArchiveRetention.ONE_YEAR
    )
    graph = _plan(flags)

    stages = graph.stages()

    assert [group for group, _ in stages] == [ResourceGroup.CORE, ResourceGroup.EVENTING]
    assert stages[0][1].kinds() == [StepKind.ROLE, StepKind.CONFIG_SET]
    assert StepKind.ARCHIVE not in stages[-1][1].kinds()
    assert StepKind.EVENT_FUNCTIONS in stages[-1][1].kinds()


def test_stages_keep_already_applied_groups_in_core() -> None:
    graph = _plan(FeatureFlags(config_set=True, event_tracking=True, tracking_domain="t.example.com"))

    stages = graph.stages(applied=[ResourceGroup.EVENTING])

    assert [group for group, _ in stages] == [ResourceGroup.CORE, ResourceGroup.EDGE]
    assert StepKind.HISTORY_TABLE in stages[0][1].kinds()


def test_graph_validation_rejects_missing_dependency() -> None:
    graph = _plan(FeatureFlags())
    broken = ResourceGraph(
        integration_level=graph.integration_level,
        role=graph.role,
        region=REGION,
        account_id=ACCOUNT,
        steps=(
            ResourceStep(
                kind=StepKind.HISTORY_TABLE,
                group=ResourceGroup.EVENTING,
                depends_on=(StepKind.CONFIG_SET,),
            ),
        ),
    )

    with pytest.raises(ConfigurationError) as exc_info:
        broken.validate()

    assert exc_info.value.code == "invalid_resource_graph"


def test_with_params_merges_into_one_step() -> None:
    graph = _plan(FeatureFlags(config_set=True))

    updated = graph.with_params(StepKind.CONFIG_SET, extra="yes")

    assert updated.step(StepKind.CONFIG_SET).params["extra"] == "yes"
    assert updated.step(StepKind.CONFIG_SET).params["name"] == CONFIG_SET_NAME
    assert "extra" not in graph.step(StepKind.CONFIG_SET).params


def test_enable_switches_on_dependencies() -> None:
    flags = FeatureFlags().enable(["event_tracking"])

    assert flags.event_tracking is True
    assert flags.config_set is True


def test_enable_rejects_unknown_feature() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        FeatureFlags().enable(["teleport"])

    assert exc_info.value.code == "unknown_feature"


def test_merge_never_switches_features_off() -> None:
    current = FeatureFlags(config_set=True, event_tracking=True, events=("SEND",))
    requested = FeatureFlags(tracking_domain="t.example.com", events=("SEND", "OPEN"))

    merged = current.merge(requested)

    assert merged.event_tracking is True
    assert merged.tracking_domain == "t.example.com"
    assert merged.events == ("SEND", "OPEN")


def test_flags_round_trip_through_record_dict() -> None:
    flags = FeatureFlags(config_set=True, archive_retention=ArchiveRetention.THREE_YEARS)

    data = flags.to_dict()

    assert data["archive_retention"] == "3years"
    assert FeatureFlags.from_dict(data) == flags


def test_from_dict_ignores_unknown_keys_and_defaults_events() -> None:
    flags = FeatureFlags.from_dict({"config_set": True, "legacy": 1})

    assert flags.config_set is True
    assert flags.events == DEFAULT_EVENTS


def test_archive_retention_parse() -> None:
    assert ArchiveRetention.parse(" 1YEAR ") is ArchiveRetention.ONE_YEAR
    assert ArchiveRetention.ONE_YEAR.retention_period == "ONE_YEAR"
    with pytest.raises(ConfigurationError):
        ArchiveRetention.parse("forever")
