"""Event wire-up: history table, event topic and the event-processing function.

The configuration set publishes delivery events to an SNS topic; the function
subscribed to it normalises each event and writes it to the history table.
The function's role may only append to that table and write its own logs.
Events that still fail after the asynchronous retries land in a dead-letter
queue instead of being dropped.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pulumi
import pulumi_aws as aws

EVENT_PROCESSOR_SOURCE = Path(__file__).resolve().parent.parent / "functions" / "event_processor.py"
LAMBDA_RUNTIME = "python3.12"
EVENT_DESTINATION_NAME = "mailstack-events"
DEAD_LETTER_RETENTION_SECONDS = 14 * 24 * 60 * 60

LAMBDA_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


def function_policy(
    table_arn: str,
    function_name: str,
    region: str,
    account_id: str,
    dead_letter_arn: str | None = None,
) -> dict[str, Any]:
    log_group = f"arn:aws:logs:{region}:{account_id}:log-group:/aws/lambda/{function_name}"
    policy: dict[str, Any] = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AppendHistory",
                "Effect": "Allow",
                "Action": ["dynamodb:PutItem"],
                "Resource": table_arn,
            },
            {
                "Sid": "WriteLogs",
                "Effect": "Allow",
                "Action": ["logs:CreateLogStream", "logs:PutLogEvents"],
                "Resource": f"{log_group}:*",
            },
        ],
    }
    if dead_letter_arn:
        policy["Statement"].append(
            {
                "Sid": "ParkFailedEvents",
                "Effect": "Allow",
                "Action": ["sqs:SendMessage"],
                "Resource": dead_letter_arn,
            }
        )
    return policy


def topic_policy(topic_arn: str, account_id: str) -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowSesPublish",
                "Effect": "Allow",
                "Principal": {"Service": "ses.amazonaws.com"},
                "Action": "sns:Publish",
                "Resource": topic_arn,
                "Condition": {"StringEquals": {"AWS:SourceAccount": account_id}},
            }
        ],
    }


def event_destination(topic_arn: Any, events: Sequence[str]) -> dict[str, Any]:
    return {
        "enabled": True,
        "matching_event_types": list(events),
        "sns_destination": {"topic_arn": topic_arn},
    }


def history_table_args(name: str) -> dict[str, Any]:
    return {
        "name": name,
        "billing_mode": "PAY_PER_REQUEST",
        "hash_key": "messageId",
        "range_key": "sentAt",
        "attributes": [
            {"name": "messageId", "type": "S"},
            {"name": "sentAt", "type": "N"},
            {"name": "accountId", "type": "S"},
        ],
        "global_secondary_indexes": [
            {
                "name": "accountId-sentAt-index",
                "hash_key": "accountId",
                "range_key": "sentAt",
                "projection_type": "ALL",
            }
        ],
        "ttl": {"attribute_name": "expiresAt", "enabled": True},
    }


@dataclass
class EventingResources:
    table: aws.dynamodb.Table
    topic: aws.sns.Topic
    dead_letter_queue: aws.sqs.Queue | None = None
    functions: list[aws.lambda_.Function] = field(default_factory=list)

    def function_arns(self) -> pulumi.Output[list[str]]:
        return pulumi.Output.all(*[function.arn for function in self.functions])


class WireUpBuilder:
    def __init__(self, account_id: str, region: str, tags: dict[str, str]) -> None:
        self._account_id = account_id
        self._region = region
        self._tags = tags

    def build(
        self,
        config_set: aws.sesv2.ConfigurationSet,
        table_name: str,
        topic_name: str,
        function_name: str,
        events: Sequence[str],
        retention_days: int,
    ) -> EventingResources:
        table = aws.dynamodb.Table(table_name, tags=self._tags, **history_table_args(table_name))

        topic = aws.sns.Topic(topic_name, name=topic_name, tags=self._tags)
        publish_policy = aws.sns.TopicPolicy(
            f"{topic_name}-policy",
            arn=topic.arn,
            policy=topic.arn.apply(lambda arn: json.dumps(topic_policy(arn, self._account_id))),
        )
        aws.sesv2.ConfigurationSetEventDestination(
            f"{topic_name}-destination",
            configuration_set_name=config_set.configuration_set_name,
            event_destination_name=EVENT_DESTINATION_NAME,
            event_destination=event_destination(topic.arn, events),
            opts=pulumi.ResourceOptions(depends_on=[publish_policy]),
        )

        dead_letter_queue = aws.sqs.Queue(
            f"{function_name}-dlq",
            name=f"{function_name}-dlq",
            message_retention_seconds=DEAD_LETTER_RETENTION_SECONDS,
            tags=self._tags,
        )
        function = self._function(table, dead_letter_queue, function_name, retention_days)
        permission = aws.lambda_.Permission(
            f"{function_name}-sns-invoke",
            action="lambda:InvokeFunction",
            function=function.name,
            principal="sns.amazonaws.com",
            source_arn=topic.arn,
        )
        aws.sns.TopicSubscription(
            f"{function_name}-subscription",
            topic=topic.arn,
            protocol="lambda",
            endpoint=function.arn,
            opts=pulumi.ResourceOptions(depends_on=[permission]),
        )
        return EventingResources(
            table=table,
            topic=topic,
            dead_letter_queue=dead_letter_queue,
            functions=[function],
        )

    def _function(
        self,
        table: aws.dynamodb.Table,
        dead_letter_queue: aws.sqs.Queue,
        function_name: str,
        retention_days: int,
    ) -> aws.lambda_.Function:
        role = aws.iam.Role(
            f"{function_name}-role",
            name=f"{function_name}-role",
            assume_role_policy=json.dumps(LAMBDA_TRUST_POLICY),
            tags=self._tags,
        )
        policy = aws.iam.RolePolicy(
            f"{function_name}-policy",
            role=role.id,
            policy=pulumi.Output.all(table.arn, dead_letter_queue.arn).apply(
                lambda arns: json.dumps(
                    function_policy(
                        arns[0], function_name, self._region, self._account_id, dead_letter_arn=arns[1]
                    )
                )
            ),
        )
        log_group = aws.cloudwatch.LogGroup(
            f"{function_name}-logs",
            name=f"/aws/lambda/{function_name}",
            retention_in_days=30,
            tags=self._tags,
        )
        return aws.lambda_.Function(
            function_name,
            name=function_name,
            runtime=LAMBDA_RUNTIME,
            handler="event_processor.handler",
            role=role.arn,
            code=pulumi.AssetArchive(
                {"event_processor.py": pulumi.FileAsset(str(EVENT_PROCESSOR_SOURCE))}
            ),
            timeout=30,
            memory_size=256,
            dead_letter_config={"target_arn": dead_letter_queue.arn},
            environment={
                "variables": {
                    "TABLE_NAME": table.name,
                    "ACCOUNT_ID": self._account_id,
                    "RETENTION_DAYS": str(retention_days),
                }
            },
            tags=self._tags,
            opts=pulumi.ResourceOptions(depends_on=[policy, log_group]),
        )
