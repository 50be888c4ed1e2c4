"""Lambda handler that stores SES delivery events in the history table.

Deployed as a single file, so it depends on nothing but the Lambda runtime
(boto3 included). Events arrive through the configuration set's SNS topic.
"""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from typing import Any

import boto3

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

DEFAULT_RETENTION_DAYS = 90

_table = None


def _parse_millis(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return default


def _event_details(event_type: str, message: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Return the event's own timestamp and its type-specific fields."""
    mail = message.get("mail") or {}
    if event_type == "Send":
        return None, {"tags": mail.get("tags") or {}}
    if event_type == "Delivery":
        detail = message.get("delivery") or {}
        return detail.get("timestamp"), {
            "processingTimeMillis": detail.get("processingTimeMillis"),
            "recipients": detail.get("recipients") or [],
            "smtpResponse": detail.get("smtpResponse"),
            "remoteMtaIp": detail.get("remoteMtaIp"),
        }
    if event_type == "Open":
        detail = message.get("open") or {}
        return detail.get("timestamp"), {
            "userAgent": detail.get("userAgent"),
            "ipAddress": detail.get("ipAddress"),
        }
    if event_type == "Click":
        detail = message.get("click") or {}
        return detail.get("timestamp"), {
            "link": detail.get("link"),
            "linkTags": detail.get("linkTags") or {},
            "userAgent": detail.get("userAgent"),
            "ipAddress": detail.get("ipAddress"),
        }
    if event_type == "Bounce":
        detail = message.get("bounce") or {}
        return detail.get("timestamp"), {
            "bounceType": detail.get("bounceType"),
            "bounceSubType": detail.get("bounceSubType"),
            "bouncedRecipients": detail.get("bouncedRecipients") or [],
            "feedbackId": detail.get("feedbackId"),
        }
    if event_type == "Complaint":
        detail = message.get("complaint") or {}
        return detail.get("timestamp"), {
            "complainedRecipients": detail.get("complainedRecipients") or [],
            "complaintFeedbackType": detail.get("complaintFeedbackType"),
            "feedbackId": detail.get("feedbackId"),
            "userAgent": detail.get("userAgent"),
        }
    if event_type == "Reject":
        detail = message.get("reject") or {}
        return None, {"reason": detail.get("reason")}
    if event_type == "Rendering Failure":
        detail = message.get("failure") or {}
        return None, {
            "errorMessage": detail.get("errorMessage"),
            "templateName": detail.get("templateName"),
        }
    if event_type == "DeliveryDelay":
        detail = message.get("deliveryDelay") or {}
        return detail.get("timestamp"), {
            "delayType": detail.get("delayType"),
            "expirationTime": detail.get("expirationTime"),
            "delayedRecipients": detail.get("delayedRecipients") or [],
        }
    if event_type == "Subscription":
        detail = message.get("subscription") or {}
        return detail.get("timestamp"), {
            "contactList": detail.get("contactList"),
            "source": detail.get("source"),
            "newTopicPreferences": detail.get("newTopicPreferences"),
            "oldTopicPreferences": detail.get("oldTopicPreferences"),
        }
    return None, {}


def normalize_event(
    message: dict[str, Any],
    account_id: str,
    now_millis: int | None = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> dict[str, Any]:
    """Map an SES event payload to a history-table item."""
    now_millis = now_millis if now_millis is not None else int(time.time() * 1000)
    event_type = message.get("eventType") or message.get("notificationType")
    mail = message.get("mail")
    if not event_type or not isinstance(mail, dict) or not mail.get("messageId"):
        raise ValueError("not an SES event: missing eventType or mail.messageId")

    mail_millis = _parse_millis(mail.get("timestamp"), now_millis)
    event_timestamp, additional = _event_details(event_type, message)
    headers = mail.get("commonHeaders") or {}

    return {
        "messageId": mail["messageId"],
        "sentAt": _parse_millis(event_timestamp, mail_millis),
        "accountId": account_id,
        "from": mail.get("source", ""),
        "to": list(mail.get("destination") or []),
        "subject": headers.get("subject", ""),
        "eventType": event_type,
        "eventData": json.dumps(message),
        "additionalData": json.dumps(additional),
        "createdAt": now_millis,
        "expiresAt": now_millis // 1000 + retention_days * 24 * 60 * 60,
    }


def record_message(record: dict[str, Any]) -> dict[str, Any]:
    """Unwrap the SES event carried by one SNS or SQS record."""
    if "Sns" in record:
        body = record["Sns"].get("Message", "")
    else:
        body = record.get("body", "")
    payload = json.loads(body) if isinstance(body, str) else body
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    # EventBridge envelopes carry the SES event under "detail".
    message = payload.get("detail", payload)
    if not isinstance(message, dict):
        raise ValueError("event detail is not a JSON object")
    return message


def _get_table():
    global _table
    if _table is None:
        _table = boto3.resource("dynamodb").Table(os.environ["TABLE_NAME"])
    return _table


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    table = _get_table()
    account_id = os.environ.get("ACCOUNT_ID", "unknown")
    retention_days = int(os.environ.get("RETENTION_DAYS", DEFAULT_RETENTION_DAYS))

    stored = 0
    failed = 0
    for record in event.get("Records", []):
        try:
            message = record_message(record)
            item = normalize_event(message, account_id, retention_days=retention_days)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            failed += 1
            logger.warning("Skipping malformed event: %s", exc)
            continue
        table.put_item(Item=item)
        stored += 1
        logger.info("Stored %s event for message %s", item["eventType"], item["messageId"])

    return {"stored": stored, "skipped": failed}
