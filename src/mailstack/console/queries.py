"""Read-only queries behind the dashboard API.

Each function takes ready boto3 clients and blocks; the HTTP layer runs them in
a worker thread.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from boto3.dynamodb.types import TypeDeserializer

from mailstack.utils.time import utc_now

logger = logging.getLogger(__name__)

SES_METRICS = ("Send", "Delivery", "Bounce", "Complaint", "Open", "Click")
HISTORY_INDEX = "accountId-sentAt-index"
MAX_METRIC_DAYS = 30
DEFAULT_LOG_LIMIT = 100

_STATUS_BY_EVENT = {
    "complaint": "complained",
    "bounce": "bounced",
    "delivery": "delivered",
    "send": "sent",
    "open": "opened",
    "click": "clicked",
}

_deserializer = TypeDeserializer()


def metric_period(days: int) -> int:
    # GetMetricData returns at most 100,800 points per call.
    return 300 if days <= 1 else 3600


def fetch_metrics(cloudwatch: Any, days: int, now: datetime | None = None) -> dict[str, Any]:
    """Sum of each SES sending metric over the last ``days`` days."""
    end = now or utc_now()
    start = end - timedelta(days=days)
    period = metric_period(days)
    queries = [
        {
            "Id": name.lower(),
            "MetricStat": {
                "Metric": {"Namespace": "AWS/SES", "MetricName": name},
                "Period": period,
                "Stat": "Sum",
            },
            "ReturnData": True,
        }
        for name in SES_METRICS
    ]

    series: dict[str, list[dict]] = {name.lower(): [] for name in SES_METRICS}
    kwargs: dict[str, Any] = {
        "MetricDataQueries": queries,
        "StartTime": start,
        "EndTime": end,
        "ScanBy": "TimestampAscending",
    }
    while True:
        response = cloudwatch.get_metric_data(**kwargs)
        for result in response.get("MetricDataResults", []):
            points = series.setdefault(result["Id"], [])
            for timestamp, value in zip(result.get("Timestamps", []), result.get("Values", [])):
                points.append({"timestamp": timestamp.isoformat(), "value": value})
        token = response.get("NextToken")
        if not token:
            break
        kwargs["NextToken"] = token

    return {
        "period": period,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "series": series,
        "totals": {key: sum(p["value"] for p in points) for key, points in series.items()},
    }


def fetch_quota(sesv2: Any) -> dict[str, Any]:
    account = sesv2.get_account()
    quota = account.get("SendQuota") or {}
    return {
        "max24HourSend": quota.get("Max24HourSend", 0),
        "maxSendRate": quota.get("MaxSendRate", 0),
        "sentLast24Hours": quota.get("SentLast24Hours", 0),
        "sendingEnabled": account.get("SendingEnabled", False),
        "productionAccess": account.get("ProductionAccessEnabled", False),
        "enforcementStatus": account.get("EnforcementStatus"),
    }


def _additional(item: dict[str, Any]) -> dict[str, Any]:
    raw = item.get("additionalData")
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def event_priority(item: dict[str, Any]) -> int:
    """Which event represents a message: complaint, hard bounce, delivery, soft bounce, send."""
    event_type = str(item.get("eventType", "")).lower()
    if event_type == "complaint":
        return 5
    if event_type == "bounce":
        bounce_type = str(_additional(item).get("bounceType", "")).lower()
        return 4 if bounce_type == "permanent" else 2
    if event_type == "delivery":
        return 3
    if event_type == "send":
        return 1
    return 0


def summarize_message(item: dict[str, Any]) -> dict[str, Any]:
    event_type = str(item.get("eventType", "")).lower()
    status = _STATUS_BY_EVENT.get(event_type, "failed" if item.get("errorMessage") else "sent")
    recipients = item.get("to") or []
    if isinstance(recipients, str):
        recipients = [recipients]
    return {
        "messageId": item.get("messageId"),
        "to": sorted(recipients),
        "from": item.get("from") or "unknown",
        "subject": item.get("subject") or "(no subject)",
        "status": status,
        "eventType": item.get("eventType"),
        "sentAt": item.get("sentAt"),
    }


def collapse_events(items: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    """One row per message, newest first, showing its most significant event."""
    chosen: dict[str, dict[str, Any]] = {}
    for item in items:
        message_id = item.get("messageId")
        if not message_id:
            continue
        existing = chosen.get(message_id)
        if existing is None or event_priority(item) > event_priority(existing):
            chosen[message_id] = item
    rows = [summarize_message(item) for item in chosen.values()]
    rows.sort(key=lambda row: row["sentAt"] or 0, reverse=True)
    return rows[:limit]


def fetch_email_log(
    dynamodb: Any,
    table_name: str,
    account_id: str | None = None,
    limit: int = DEFAULT_LOG_LIMIT,
    start_time: int | None = None,
    end_time: int | None = None,
) -> list[dict[str, Any]]:
    """Recent messages from the history table.

    With an account id the ``accountId-sentAt-index`` is queried newest first;
    without one the table is scanned.
    """
    if account_id:
        condition = "accountId = :accountId"
        values: dict[str, Any] = {":accountId": {"S": account_id}}
        if start_time is not None and end_time is not None:
            condition += " AND sentAt BETWEEN :start AND :end"
            values[":start"] = {"N": str(start_time)}
            values[":end"] = {"N": str(end_time)}
        elif start_time is not None:
            condition += " AND sentAt >= :start"
            values[":start"] = {"N": str(start_time)}
        response = dynamodb.query(
            TableName=table_name,
            IndexName=HISTORY_INDEX,
            KeyConditionExpression=condition,
            ExpressionAttributeValues=values,
            ScanIndexForward=False,
        )
    else:
        response = dynamodb.scan(TableName=table_name)

    raw_items = response.get("Items", [])
    items = [
        {key: _deserializer.deserialize(value) for key, value in raw.items()}
        for raw in raw_items
    ]
    logger.debug("Read %d history items from %s", len(items), table_name)
    return collapse_events(items, limit)
