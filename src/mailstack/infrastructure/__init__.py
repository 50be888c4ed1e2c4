"""Resource planning and provisioning.

Planning modules are pure; the Pulumi builders are imported only by the
engine so that planning works without the engine installed.
"""

from mailstack.infrastructure.graph import ResourceGraph, ResourceGroup, ResourceStep, StepKind
from mailstack.infrastructure.iam import RoleSpec, build_role
from mailstack.infrastructure.outputs import StackOutputs
from mailstack.infrastructure.planner import ArchiveRetention, FeatureFlags, plan

__all__ = [
    "ArchiveRetention",
    "FeatureFlags",
    "ResourceGraph",
    "ResourceGroup",
    "ResourceStep",
    "RoleSpec",
    "StackOutputs",
    "StepKind",
    "build_role",
    "plan",
]
