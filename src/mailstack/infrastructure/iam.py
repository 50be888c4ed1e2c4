"""Execution role and trust policy for the chosen hosting provider."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from mailstack.errors import ConfigurationError, unknown_provider
from mailstack.metadata.models import IntegrationLevel, Provider

ROLE_NAME = "mailstack-email-role"
RESOURCE_PREFIX = "mailstack"

VERCEL_OIDC_HOST = "oidc.vercel.com"
VERCEL_THUMBPRINTS = (
    "20032e77eca0785eece16b56b42c9b330b906320",
    "696db3af0dffc17e65c6a20d925c5a7bd24dec7e",
)

_AMBIENT_SERVICE_PRINCIPALS = (
    "lambda.amazonaws.com",
    "ec2.amazonaws.com",
    "ecs-tasks.amazonaws.com",
)


@dataclass(frozen=True)
class OidcFederation:
    """An OIDC identity provider that must exist before the role."""

    url: str
    client_id: str
    thumbprints: tuple[str, ...]
    arn: str


@dataclass(frozen=True)
class RoleSpec:
    name: str
    provider: Provider
    integration_level: IntegrationLevel
    trust_policy: Mapping[str, Any]
    permission_policy: Mapping[str, Any]
    federation: OidcFederation | None = None
    tags: Mapping[str, str] = field(default_factory=dict)

    def trust_policy_json(self) -> str:
        return json.dumps(self.trust_policy, sort_keys=True)

    def permission_policy_json(self) -> str:
        return json.dumps(self.permission_policy, sort_keys=True)


def parse_provider(value: str | Provider) -> Provider:
    if isinstance(value, Provider):
        return value
    try:
        return Provider(value.strip().lower())
    except ValueError:
        raise unknown_provider(value) from None


def build_role(
    provider: str | Provider,
    integration_level: IntegrationLevel,
    provider_params: Mapping[str, str],
    account_id: str,
) -> RoleSpec:
    """Compute the role for a provider. Pure; nothing is created here."""
    resolved = parse_provider(provider)

    federation: OidcFederation | None = None
    if resolved is Provider.VERCEL:
        federation, statement = _vercel_trust(provider_params, account_id)
    elif resolved is Provider.AWS:
        statement = {
            "Effect": "Allow",
            "Principal": {"Service": list(_AMBIENT_SERVICE_PRINCIPALS)},
            "Action": "sts:AssumeRole",
        }
    else:
        # Static credentials are configured outside this tool; only principals
        # from the same account may assume the role.
        statement = {
            "Effect": "Allow",
            "Principal": {"AWS": f"arn:aws:iam::{account_id}:root"},
            "Action": "sts:AssumeRole",
        }

    statements = [statement]
    dashboard = _dashboard_trust(provider_params)
    if dashboard is not None:
        statements.append(dashboard)

    return RoleSpec(
        name=ROLE_NAME,
        provider=resolved,
        integration_level=integration_level,
        trust_policy={"Version": "2012-10-17", "Statement": statements},
        permission_policy=permission_policy(integration_level),
        federation=federation,
        tags={"ManagedBy": "mailstack", "Provider": resolved.value},
    )


def permission_policy(integration_level: IntegrationLevel) -> dict[str, Any]:
    statements: list[dict[str, Any]] = [
        {
            "Sid": "ReadSendingStatistics",
            "Effect": "Allow",
            "Action": [
                "ses:GetSendStatistics",
                "ses:GetSendQuota",
                "ses:GetAccount",
                "ses:ListIdentities",
                "ses:ListEmailIdentities",
                "ses:GetEmailIdentity",
                "ses:GetIdentityVerificationAttributes",
                "ses:GetIdentityDkimAttributes",
                "ses:ListConfigurationSets",
                "ses:GetConfigurationSet",
            ],
            "Resource": "*",
        },
        {
            "Sid": "ReadMetricsAndLogs",
            "Effect": "Allow",
            "Action": [
                "cloudwatch:GetMetricData",
                "cloudwatch:GetMetricStatistics",
                "cloudwatch:ListMetrics",
                "logs:DescribeLogGroups",
                "logs:FilterLogEvents",
                "logs:GetLogEvents",
            ],
            "Resource": "*",
        },
    ]

    if integration_level is IntegrationLevel.ENHANCED:
        statements.extend(
            [
                {
                    "Sid": "SendEmail",
                    "Effect": "Allow",
                    "Action": [
                        "ses:SendEmail",
                        "ses:SendRawEmail",
                        "ses:SendTemplatedEmail",
                        "ses:SendBulkTemplatedEmail",
                        "ses:SendBulkEmail",
                    ],
                    "Resource": "*",
                },
                {
                    "Sid": "EmailHistoryTable",
                    "Effect": "Allow",
                    "Action": [
                        "dynamodb:PutItem",
                        "dynamodb:GetItem",
                        "dynamodb:Query",
                        "dynamodb:Scan",
                        "dynamodb:BatchGetItem",
                        "dynamodb:DescribeTable",
                    ],
                    "Resource": [
                        f"arn:aws:dynamodb:*:*:table/{RESOURCE_PREFIX}-*",
                        f"arn:aws:dynamodb:*:*:table/{RESOURCE_PREFIX}-*/index/*",
                    ],
                },
                {
                    "Sid": "ReadArchive",
                    "Effect": "Allow",
                    "Action": [
                        "ses:StartArchiveSearch",
                        "ses:GetArchiveSearchResults",
                        "ses:GetArchiveMessage",
                        "ses:GetArchiveMessageContent",
                        "ses:GetArchive",
                        "ses:ListArchives",
                    ],
                    "Resource": "arn:aws:ses:*:*:mailmanager-archive/*",
                },
            ]
        )

    return {"Version": "2012-10-17", "Statement": statements}


def _vercel_trust(
    params: Mapping[str, str], account_id: str
) -> tuple[OidcFederation, dict[str, Any]]:
    team = (params.get("team_slug") or "").strip()
    project = (params.get("project_name") or "").strip()
    if not team or not project:
        raise ConfigurationError(
            "Vercel requires both a team slug and a project name",
            code="missing_provider_params",
            suggestion="Pass --vercel-team and --vercel-project",
        )

    issuer = f"{VERCEL_OIDC_HOST}/{team}"
    audience = f"https://vercel.com/{team}"
    federation = OidcFederation(
        url=f"https://{issuer}",
        client_id=audience,
        thumbprints=VERCEL_THUMBPRINTS,
        arn=f"arn:aws:iam::{account_id}:oidc-provider/{issuer}",
    )
    statement = {
        "Effect": "Allow",
        "Principal": {"Federated": federation.arn},
        "Action": "sts:AssumeRoleWithWebIdentity",
        "Condition": {
            "StringEquals": {f"{issuer}:aud": audience},
            "StringLike": {f"{issuer}:sub": f"owner:{team}:project:{project}:environment:*"},
        },
    }
    return federation, statement


def _dashboard_trust(params: Mapping[str, str]) -> dict[str, Any] | None:
    dashboard_account = (params.get("dashboard_account_id") or "").strip()
    external_id = (params.get("external_id") or "").strip()
    if not dashboard_account:
        return None
    if not external_id:
        raise ConfigurationError(
            "Dashboard access requires an external ID",
            code="missing_external_id",
        )
    return {
        "Sid": "DashboardAccess",
        "Effect": "Allow",
        "Principal": {"AWS": f"arn:aws:iam::{dashboard_account}:root"},
        "Action": "sts:AssumeRole",
        "Condition": {"StringEquals": {"sts:ExternalId": external_id}},
    }
