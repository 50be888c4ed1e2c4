"""Pulumi resources for the configuration set and a new sending identity."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pulumi
import pulumi_aws as aws


def config_set_args(params: Mapping[str, Any]) -> dict[str, Any]:
    args: dict[str, Any] = {
        "configuration_set_name": params["name"],
        "delivery_options": {
            "tls_policy": "REQUIRE" if params.get("tls_required", True) else "OPTIONAL",
        },
        "reputation_options": {
            "reputation_metrics_enabled": bool(params.get("reputation_metrics")),
        },
        "sending_options": {"sending_enabled": True},
        "suppression_options": {"suppressed_reasons": ["BOUNCE", "COMPLAINT"]},
    }
    if params.get("tracking_domain"):
        args["tracking_options"] = {"custom_redirect_domain": params["tracking_domain"]}
    return args


@dataclass
class SendingResources:
    config_set: aws.sesv2.ConfigurationSet | None = None
    identity: aws.sesv2.EmailIdentity | None = None
    mail_from_domain: str | None = None

    def dkim_tokens(self) -> pulumi.Output[list[str]]:
        if self.identity is None:
            return pulumi.Output.from_input([])
        return self.identity.dkim_signing_attributes.apply(
            lambda attrs: list(attrs.tokens or []) if attrs else []
        )


class SendingBuilder:
    def __init__(self, tags: dict[str, str]) -> None:
        self._tags = tags

    def config_set(self, params: Mapping[str, Any]) -> aws.sesv2.ConfigurationSet:
        return aws.sesv2.ConfigurationSet(
            params["name"],
            tags=self._tags,
            **config_set_args(params),
        )

    def identity(
        self,
        params: Mapping[str, Any],
        config_set: aws.sesv2.ConfigurationSet | None,
    ) -> SendingResources:
        domain = params["domain"]
        identity = aws.sesv2.EmailIdentity(
            f"mailstack-identity-{domain}",
            email_identity=domain,
            configuration_set_name=config_set.configuration_set_name if config_set else None,
            tags=self._tags,
        )

        mail_from = params.get("mail_from_domain")
        if mail_from:
            if not mail_from.endswith(domain):
                mail_from = f"{mail_from}.{domain}"
            aws.sesv2.EmailIdentityMailFromAttributes(
                f"mailstack-mail-from-{domain}",
                email_identity=identity.email_identity,
                mail_from_domain=mail_from,
                behavior_on_mx_failure="USE_DEFAULT_VALUE",
            )
        return SendingResources(config_set=config_set, identity=identity, mail_from_domain=mail_from)
