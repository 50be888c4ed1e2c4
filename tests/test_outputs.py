from __future__ import annotations

import pytest

from mailstack.infrastructure.outputs import StackOutputs
from mailstack.metadata.models import DeployedResources

ROLE_ARN = "arn:aws:iam::123456789012:role/mailstack-email-role"


def test_role_only_exports() -> None:
    outputs = StackOutputs.from_engine({"roleArn": ROLE_ARN})

    assert outputs.role.role_name == "mailstack-email-role"
    assert outputs.sending is None
    assert outputs.eventing is None
    assert outputs.edge is None


def test_missing_role_is_rejected() -> None:
    with pytest.raises(ValueError):
        StackOutputs.from_engine({"configSetName": "x"})


def test_groups_are_keyed_on_their_anchor() -> None:
    outputs = StackOutputs.from_engine(
        {
            "roleArn": ROLE_ARN,
            "configSetName": "mailstack-email-tracking",
            "topicArn": "arn:aws:sns:us-east-1:123456789012:t",
        }
    )

    assert outputs.sending.config_set_name == "mailstack-email-tracking"
    assert outputs.eventing is None


def test_edge_without_distribution_is_pending_validation() -> None:
    outputs = StackOutputs.from_engine(
        {
            "roleArn": ROLE_ARN,
            "trackingDomain": "track.example.com",
            "certificateArn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
            "validationRecords": [{"name": "_x.track.example.com.", "type": "CNAME", "value": "_y."}],
        }
    )

    assert outputs.edge.pending_validation is True
    resources = outputs.to_resources()
    assert resources.tracking_domain == "track.example.com"
    assert resources.validation_records[0]["type"] == "CNAME"


def test_to_resources_keeps_archive_fields() -> None:
    previous = DeployedResources(archive_id="a-1", archive_arn="arn:archive", table_name="old")
    outputs = StackOutputs.from_engine({"roleArn": ROLE_ARN, "tableName": "mailstack-email-history"})

    resources = outputs.to_resources(previous)

    assert resources.archive_id == "a-1"
    assert resources.table_name == "mailstack-email-history"


def test_exports_round_trip() -> None:
    exports = {
        "roleArn": ROLE_ARN,
        "roleName": "mailstack-email-role",
        "configSetName": "mailstack-email-tracking",
        "domain": "example.com",
        "dkimTokens": ["a", "b", "c"],
        "tableName": "mailstack-email-history",
        "topicArn": "arn:aws:sns:us-east-1:123456789012:t",
        "functionArns": ["arn:aws:lambda:us-east-1:123456789012:function:f"],
    }

    assert StackOutputs.from_engine(exports).to_exports() == exports


def test_dead_letter_queue_is_recorded() -> None:
    dlq_arn = "arn:aws:sqs:us-east-1:123456789012:mailstack-event-processor-dlq"
    outputs = StackOutputs.from_engine(
        {"roleArn": ROLE_ARN, "tableName": "mailstack-email-history", "deadLetterQueueArn": dlq_arn}
    )

    assert outputs.to_resources().dead_letter_queue_arn == dlq_arn
    assert outputs.to_exports()["deadLetterQueueArn"] == dlq_arn
