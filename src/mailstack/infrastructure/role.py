"""Pulumi resources for the execution role."""

from __future__ import annotations

from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from mailstack.infrastructure.iam import RoleSpec


@dataclass
class RoleResources:
    role: aws.iam.Role
    oidc_provider: aws.iam.OpenIdConnectProvider | None = None


class RoleBuilder:
    def __init__(self, tags: dict[str, str]) -> None:
        self._tags = tags

    def build(self, spec: RoleSpec, import_oidc_arn: str | None = None) -> RoleResources:
        oidc_provider = None
        depends_on: list[pulumi.Resource] = []
        if spec.federation is not None:
            oidc_provider = aws.iam.OpenIdConnectProvider(
                "mailstack-oidc-provider",
                url=spec.federation.url,
                client_id_lists=[spec.federation.client_id],
                thumbprint_lists=list(spec.federation.thumbprints),
                tags={**self._tags, **spec.tags},
                # A provider that predates the stack is adopted and left behind on destroy.
                opts=pulumi.ResourceOptions(
                    import_=import_oidc_arn,
                    retain_on_delete=bool(import_oidc_arn),
                ),
            )
            depends_on.append(oidc_provider)

        role = aws.iam.Role(
            spec.name,
            name=spec.name,
            assume_role_policy=spec.trust_policy_json(),
            tags={**self._tags, **spec.tags},
            opts=pulumi.ResourceOptions(depends_on=depends_on),
        )
        aws.iam.RolePolicy(
            f"{spec.name}-policy",
            role=role.id,
            policy=spec.permission_policy_json(),
        )
        return RoleResources(role=role, oidc_provider=oidc_provider)
