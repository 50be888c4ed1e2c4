"""Custom tracking domain served through a CDN distribution.

The certificate and the web ACL must live in us-east-1 regardless of the
account's sending region. When the hosted zone is not ours, the certificate
cannot be validated inside the stack: the validation records are exported and
the distribution is left out until a later update finds the certificate
issued.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pulumi
import pulumi_aws as aws

from mailstack.dns_records import tracking_redirect_host

EDGE_REGION = "us-east-1"
RATE_LIMIT_PER_IP = 2000
PRICE_CLASS = "PriceClass_100"
MAX_TTL_SECONDS = 31536000


def _resource_slug(domain: str) -> str:
    return domain.strip(".").replace(".", "-")


def web_acl_rules() -> list[dict[str, Any]]:
    return [
        {
            "name": "rate-limit-per-ip",
            "priority": 1,
            "action": {"block": {}},
            "statement": {
                "rate_based_statement": {
                    "limit": RATE_LIMIT_PER_IP,
                    "aggregate_key_type": "IP",
                }
            },
            "visibility_config": {
                "cloudwatch_metrics_enabled": True,
                "metric_name": "mailstack-rate-limit",
                "sampled_requests_enabled": True,
            },
        }
    ]


def distribution_args(
    domain: str,
    region: str,
    certificate_arn: Any,
    web_acl_arn: Any,
) -> dict[str, Any]:
    origin_id = f"ses-tracking-{region}"
    return {
        "enabled": True,
        "comment": f"mailstack tracking domain {domain}",
        "aliases": [domain],
        "origins": [
            {
                "domain_name": tracking_redirect_host(region),
                "origin_id": origin_id,
                "custom_origin_config": {
                    "http_port": 80,
                    "https_port": 443,
                    "origin_protocol_policy": "http-only",
                    "origin_ssl_protocols": ["TLSv1.2"],
                },
            }
        ],
        "default_cache_behavior": {
            "target_origin_id": origin_id,
            "viewer_protocol_policy": "redirect-to-https",
            "allowed_methods": ["GET", "HEAD", "OPTIONS"],
            "cached_methods": ["GET", "HEAD"],
            "forwarded_values": {
                "query_string": True,
                "headers": ["*"],
                "cookies": {"forward": "all"},
            },
            "min_ttl": 0,
            "default_ttl": 0,
            "max_ttl": MAX_TTL_SECONDS,
            "compress": True,
        },
        "price_class": PRICE_CLASS,
        "restrictions": {"geo_restriction": {"restriction_type": "none"}},
        "viewer_certificate": {
            "acm_certificate_arn": certificate_arn,
            "ssl_support_method": "sni-only",
            "minimum_protocol_version": "TLSv1.2_2021",
        },
        "web_acl_id": web_acl_arn,
    }


def _validation_records(options: list[Any] | None) -> list[dict[str, str]]:
    return [
        {
            "name": option.resource_record_name,
            "type": option.resource_record_type,
            "value": option.resource_record_value,
        }
        for option in options or []
    ]



def distribution_options(
    provider: pulumi.ProviderResource | None, existing_distribution_id: str | None
) -> pulumi.ResourceOptions:
    # An adopted distribution belongs to the operator and survives destroy.
    return pulumi.ResourceOptions(
        provider=provider,
        import_=existing_distribution_id,
        retain_on_delete=bool(existing_distribution_id),
    )


@dataclass
class EdgeResources:
    domain: str
    certificate: aws.acm.Certificate
    validation_records: pulumi.Output[list[dict[str, str]]]
    distribution: aws.cloudfront.Distribution | None = None


class EdgeBuilder:
    def __init__(self, region: str, tags: dict[str, str]) -> None:
        self._region = region
        self._tags = tags

    def build(
        self,
        domain: str,
        zone_id: str | None = None,
        existing_distribution_id: str | None = None,
        await_validation: bool = False,
    ) -> EdgeResources:
        slug = _resource_slug(domain)
        provider = aws.Provider(f"edge-{slug}", region=EDGE_REGION)
        edge_opts = pulumi.ResourceOptions(provider=provider)

        certificate = aws.acm.Certificate(
            f"edge-cert-{slug}",
            domain_name=domain,
            validation_method="DNS",
            tags=self._tags,
            opts=edge_opts,
        )
        records = certificate.domain_validation_options.apply(_validation_records)

        web_acl = aws.wafv2.WebAcl(
            f"edge-acl-{slug}",
            scope="CLOUDFRONT",
            default_action={"allow": {}},
            rules=web_acl_rules(),
            visibility_config={
                "cloudwatch_metrics_enabled": True,
                "metric_name": f"mailstack-edge-{slug}",
                "sampled_requests_enabled": True,
            },
            tags=self._tags,
            opts=edge_opts,
        )

        if zone_id:
            option = certificate.domain_validation_options[0]
            record = aws.route53.Record(
                f"edge-cert-validation-{slug}",
                zone_id=zone_id,
                name=option.resource_record_name,
                type=option.resource_record_type,
                records=[option.resource_record_value],
                ttl=300,
                allow_overwrite=True,
            )
            validation = aws.acm.CertificateValidation(
                f"edge-cert-ready-{slug}",
                certificate_arn=certificate.arn,
                validation_record_fqdns=[record.fqdn],
                opts=edge_opts,
            )
        elif await_validation:
            # Records were published by the operator; wait for issuance.
            validation = aws.acm.CertificateValidation(
                f"edge-cert-ready-{slug}",
                certificate_arn=certificate.arn,
                opts=edge_opts,
            )
        else:
            return EdgeResources(domain=domain, certificate=certificate, validation_records=records)

        distribution = aws.cloudfront.Distribution(
            f"edge-cdn-{slug}",
            tags=self._tags,
            opts=distribution_options(provider, existing_distribution_id),
            **distribution_args(domain, self._region, validation.certificate_arn, web_acl.arn),
        )
        return EdgeResources(
            domain=domain,
            certificate=certificate,
            validation_records=records,
            distribution=distribution,
        )
