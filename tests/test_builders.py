"""Pure argument builders used by the Pulumi program."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mailstack.infrastructure import edge, eventing
from mailstack.infrastructure.edge import (
    PRICE_CLASS,
    RATE_LIMIT_PER_IP,
    EdgeBuilder,
    _resource_slug,
    distribution_args,
    distribution_options,
    web_acl_rules,
)
from mailstack.infrastructure.eventing import (
    EVENT_PROCESSOR_SOURCE,
    WireUpBuilder,
    event_destination,
    function_policy,
    history_table_args,
    topic_policy,
)
from mailstack.infrastructure.sending import config_set_args


def test_config_set_defaults_to_required_tls() -> None:
    args = config_set_args({"name": "mailstack-email-tracking"})

    assert args["delivery_options"] == {"tls_policy": "REQUIRE"}
    assert args["reputation_options"] == {"reputation_metrics_enabled": False}
    assert "tracking_options" not in args


def test_config_set_with_tracking_domain() -> None:
    args = config_set_args(
        {"name": "set", "tls_required": False, "tracking_domain": "track.example.com"}
    )

    assert args["delivery_options"]["tls_policy"] == "OPTIONAL"
    assert args["tracking_options"] == {"custom_redirect_domain": "track.example.com"}


def test_history_table_keys_and_index() -> None:
    args = history_table_args("mailstack-email-history")

    assert (args["hash_key"], args["range_key"]) == ("messageId", "sentAt")
    assert args["global_secondary_indexes"][0]["name"] == "accountId-sentAt-index"
    assert args["ttl"] == {"attribute_name": "expiresAt", "enabled": True}


def test_function_may_only_append_to_its_table() -> None:
    policy = function_policy("arn:table", "fn", "eu-west-1", "123456789012")

    history, logs = policy["Statement"]
    assert history["Action"] == ["dynamodb:PutItem"]
    assert history["Resource"] == "arn:table"
    assert logs["Resource"] == "arn:aws:logs:eu-west-1:123456789012:log-group:/aws/lambda/fn:*"


def test_topic_accepts_ses_from_the_same_account() -> None:
    statement = topic_policy("arn:topic", "123456789012")["Statement"][0]

    assert statement["Principal"] == {"Service": "ses.amazonaws.com"}
    assert statement["Condition"] == {"StringEquals": {"AWS:SourceAccount": "123456789012"}}


def test_event_destination_matches_requested_events() -> None:
    destination = event_destination("arn:topic", ("SEND", "BOUNCE"))

    assert destination["matching_event_types"] == ["SEND", "BOUNCE"]
    assert destination["sns_destination"] == {"topic_arn": "arn:topic"}


def test_event_processor_source_is_packaged() -> None:
    assert EVENT_PROCESSOR_SOURCE.is_file()


def test_distribution_points_at_regional_redirect_host() -> None:
    args = distribution_args("track.example.com", "eu-west-1", "arn:cert", "arn:acl")

    assert args["aliases"] == ["track.example.com"]
    assert args["origins"][0]["domain_name"] == "r.eu-west-1.awstrack.me"
    assert args["default_cache_behavior"]["viewer_protocol_policy"] == "redirect-to-https"
    assert args["viewer_certificate"]["acm_certificate_arn"] == "arn:cert"
    assert args["web_acl_id"] == "arn:acl"
    assert args["price_class"] == PRICE_CLASS


def test_web_acl_rate_limits_per_ip() -> None:
    rule = web_acl_rules()[0]

    assert rule["statement"]["rate_based_statement"]["limit"] == RATE_LIMIT_PER_IP
    assert rule["action"] == {"block": {}}


def test_resource_slug() -> None:
    assert _resource_slug("track.example.com.") == "track-example-com"


def test_new_distribution_is_deleted_with_the_stack() -> None:
    opts = distribution_options(None, None)

    assert opts.import_ is None
    assert not opts.retain_on_delete


def test_adopted_distribution_is_retained(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_aws = MagicMock()
    monkeypatch.setattr(edge, "aws", fake_aws)

    resources = EdgeBuilder("us-east-1", {}).build(
        "track.example.com", zone_id="Z1", existing_distribution_id="E123"
    )

    assert resources.distribution is fake_aws.cloudfront.Distribution.return_value
    opts = fake_aws.cloudfront.Distribution.call_args.kwargs["opts"]
    assert opts.import_ == "E123"
    assert opts.retain_on_delete is True


def test_function_may_park_failed_events() -> None:
    policy = function_policy("arn:table", "fn", "eu-west-1", "123456789012", dead_letter_arn="arn:dlq")

    park = policy["Statement"][-1]
    assert park["Action"] == ["sqs:SendMessage"]
    assert park["Resource"] == "arn:dlq"


def test_event_function_has_a_dead_letter_queue(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_aws = MagicMock()
    monkeypatch.setattr(eventing, "aws", fake_aws)
    monkeypatch.setattr(eventing.pulumi, "AssetArchive", MagicMock())
    monkeypatch.setattr(eventing.pulumi, "FileAsset", MagicMock())
    monkeypatch.setattr(eventing.pulumi, "ResourceOptions", MagicMock())
    monkeypatch.setattr(eventing.pulumi.Output, "all", MagicMock())

    resources = WireUpBuilder("123456789012", "us-east-1", {}).build(
        MagicMock(),
        table_name="mailstack-email-history",
        topic_name="mailstack-email-events",
        function_name="mailstack-event-processor",
        events=["SEND"],
        retention_days=90,
    )

    queue = fake_aws.sqs.Queue.return_value
    assert resources.dead_letter_queue is queue
    assert fake_aws.sqs.Queue.call_args.kwargs["name"] == "mailstack-event-processor-dlq"
    function_kwargs = fake_aws.lambda_.Function.call_args.kwargs
    assert function_kwargs["dead_letter_config"] == {"target_arn": queue.arn}
