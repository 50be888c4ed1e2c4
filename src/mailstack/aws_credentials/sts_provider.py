"""STS AssumeRole credential provider.

Cross-account reads from the dashboard assume the deployed role with an
external ID. The RoleSessionName is mandatory for CloudTrail traceability.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import botocore.session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporaryCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime
    assumed_role_arn: str
    assumed_role_id: str

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> "TemporaryCredentials":
        creds = response["Credentials"]
        user = response["AssumedRoleUser"]
        return cls(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds["SessionToken"],
            expiration=creds["Expiration"],
            assumed_role_arn=user["Arn"],
            assumed_role_id=user["AssumedRoleId"],
        )

    def __repr__(self) -> str:
        # Only a key prefix; secrets stay out of logs.
        return (
            f"TemporaryCredentials(role={self.assumed_role_arn}, "
            f"key={self.access_key_id[:8]}***, expires={self.expiration.isoformat()})"
        )

    def as_boto3_kwargs(self) -> dict[str, str]:
        return {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "aws_session_token": self.session_token,
        }


class STSCredentialError(Exception):
    """Raised when a role cannot be assumed; ``code`` is stable for callers."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code

    @classmethod
    def from_client_error(cls, exc: ClientError) -> "STSCredentialError":
        error = exc.response.get("Error", {})
        aws_code = error.get("Code", "Unknown")
        return cls(error.get("Message", str(exc)), code=_CODE_MAP.get(aws_code, "sts_error"))


_CODE_MAP = {
    "AccessDenied": "access_denied",
    "ExpiredToken": "token_expired",
    "ExpiredTokenException": "token_expired",
    "InvalidClientTokenId": "invalid_credentials",
    "MalformedPolicyDocument": "policy_error",
    "PackedPolicyTooLarge": "policy_too_large",
    "RegionDisabledException": "region_disabled",
}

_SESSION_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9=.@-]+")
_SESSION_NAME_MAX = 64


class STSCredentialProvider:
    """Calls ``sts:AssumeRole`` from the operator's base credentials."""

    def __init__(self, region: str = "us-east-1", profile: str | None = None) -> None:
        self._region = region
        self._profile = profile
        self._client: Any = None
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        with self._lock:
            if self._client is None:
                session = botocore.session.Session(profile=self._profile)
                self._client = session.create_client(
                    "sts",
                    region_name=self._region,
                    config=Config(connect_timeout=5, read_timeout=15, retries={"max_attempts": 2}),
                )
                logger.debug("Created STS client in %s", self._region)
            return self._client

    async def assume_role(
        self,
        role_arn: str,
        external_id: str | None,
        session_name: str,
        duration_seconds: int = 3600,
    ) -> TemporaryCredentials:
        """Assume ``role_arn`` off the event loop; raises ``STSCredentialError``."""
        return await asyncio.to_thread(
            self._assume_role_sync, role_arn, external_id, session_name, duration_seconds
        )

    def _assume_role_sync(
        self,
        role_arn: str,
        external_id: str | None,
        session_name: str,
        duration_seconds: int,
    ) -> TemporaryCredentials:
        request: dict[str, Any] = {
            "RoleArn": role_arn,
            "RoleSessionName": self._sanitize_session_name(session_name),
            "DurationSeconds": duration_seconds,
        }
        if external_id:
            request["ExternalId"] = external_id

        try:
            response = self._get_client().assume_role(**request)
        except ClientError as exc:
            error = STSCredentialError.from_client_error(exc)
            logger.warning("AssumeRole %s failed (%s): %s", role_arn, error.code, error)
            raise error from exc
        except NoCredentialsError as exc:
            raise STSCredentialError(
                "No base AWS credentials found to call STS", code="no_credentials"
            ) from exc
        except BotoCoreError as exc:
            raise STSCredentialError(str(exc), code="sts_error") from exc

        logger.info("Assumed %s as session %s", role_arn, request["RoleSessionName"])
        return TemporaryCredentials.from_response(response)

    def _sanitize_session_name(self, name: str) -> str:
        """STS accepts 2-64 characters from ``[a-zA-Z0-9=.@-]``."""
        safe = _SESSION_NAME_UNSAFE.sub("-", name).strip("-")
        if len(safe) < 2:
            safe = f"mailstack-{safe}".rstrip("-")
        if len(safe) > _SESSION_NAME_MAX:
            digest = hashlib.sha256(name.encode()).hexdigest()[:8]
            safe = f"{safe[:_SESSION_NAME_MAX - 9]}-{digest}"
        return safe
