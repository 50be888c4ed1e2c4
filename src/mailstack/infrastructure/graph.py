"""Resource graph handed to the provisioning engine."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mailstack.errors import ConfigurationError
from mailstack.infrastructure.iam import RoleSpec
from mailstack.metadata.models import IntegrationLevel


class StepKind(str, Enum):
    OIDC_PROVIDER = "oidc-provider"
    ROLE = "role"
    CONFIG_SET = "config-set"
    IDENTITY = "identity"
    HISTORY_TABLE = "history-table"
    EVENT_TOPIC = "event-topic"
    EVENT_FUNCTIONS = "event-functions"
    TRACKING_EDGE = "tracking-edge"
    ARCHIVE = "archive"


class ResourceGroup(str, Enum):
    CORE = "core"
    EVENTING = "eventing"
    EDGE = "edge"
    ARCHIVE = "archive"


# Groups the engine applies, in order. The archive is bound through the
# cloud API after the engine has produced the configuration set.
ENGINE_GROUP_ORDER = (ResourceGroup.CORE, ResourceGroup.EVENTING, ResourceGroup.EDGE)


@dataclass(frozen=True)
class ResourceStep:
    kind: StepKind
    group: ResourceGroup
    depends_on: tuple[StepKind, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def engine_managed(self) -> bool:
        return self.group is not ResourceGroup.ARCHIVE


@dataclass(frozen=True)
class ResourceGraph:
    """Ordered steps; every step appears after the steps it depends on."""

    integration_level: IntegrationLevel
    role: RoleSpec
    region: str
    account_id: str
    steps: tuple[ResourceStep, ...] = ()

    def __iter__(self) -> Iterator[ResourceStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def kinds(self) -> list[StepKind]:
        return [step.kind for step in self.steps]

    def step(self, kind: StepKind) -> ResourceStep | None:
        for step in self.steps:
            if step.kind is kind:
                return step
        return None

    def groups(self) -> list[ResourceGroup]:
        seen: list[ResourceGroup] = []
        for step in self.steps:
            if step.group not in seen:
                seen.append(step.group)
        return seen

    def validate(self) -> "ResourceGraph":
        emitted: set[StepKind] = set()
        for step in self.steps:
            missing = [dep for dep in step.depends_on if dep not in emitted]
            if missing:
                raise ConfigurationError(
                    f"{step.kind.value} requires {', '.join(dep.value for dep in missing)}",
                    code="invalid_resource_graph",
                )
            emitted.add(step.kind)
        return self

    def with_params(self, kind: StepKind, **params: Any) -> "ResourceGraph":
        """Return a copy with extra parameters merged into one step."""
        steps = tuple(
            dataclasses.replace(step, params={**step.params, **params})
            if step.kind is kind
            else step
            for step in self.steps
        )
        return dataclasses.replace(self, steps=steps)

    def subgraph(self, groups: set[ResourceGroup]) -> "ResourceGraph":
        steps = tuple(step for step in self.steps if step.group in groups)
        return dataclasses.replace(self, steps=steps).validate()

    def engine_graph(self) -> "ResourceGraph":
        return dataclasses.replace(
            self, steps=tuple(step for step in self.steps if step.engine_managed)
        )

    def stages(
        self, applied: Iterable[ResourceGroup] = ()
    ) -> list[tuple[ResourceGroup, "ResourceGraph"]]:
        """Cumulative engine stages: core first, then one per optional group.

        Groups in ``applied`` are already part of the stack and ride along with
        the core stage; applying core alone would otherwise remove them.
        """
        present = set(self.groups())
        included = {ResourceGroup.CORE} | (set(applied) & present)
        stages = [(ResourceGroup.CORE, self.subgraph(set(included)))]
        for group in ENGINE_GROUP_ORDER[1:]:
            if group in present and group not in included:
                included.add(group)
                stages.append((group, self.subgraph(set(included))))
        return stages
