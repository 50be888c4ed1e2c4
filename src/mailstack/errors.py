"""Error taxonomy for lifecycle commands.

Every error surfaced to the operator carries a stable ``code``, a one-line
``suggestion`` and optionally a ``docs_url``. The CLI prints those three and
exits non-zero; :class:`PartialApplyError` is the exception that is collected
as a diagnostic instead of aborting the command.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError, NoCredentialsError, NoRegionError

DOCS_BASE_URL = "https://mailstack.dev/docs"


class MailstackError(Exception):
    """Base class for errors reported to the operator."""

    default_code = "error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        suggestion: str | None = None,
        docs_url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.suggestion = suggestion
        self.docs_url = docs_url

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
            "docsUrl": self.docs_url,
        }


class CredentialError(MailstackError):
    default_code = "no_credentials"


class AuthorizationError(MailstackError):
    default_code = "access_denied"


class NotFoundError(MailstackError):
    default_code = "not_found"


class ConflictError(MailstackError):
    default_code = "conflict"


class ConfigurationError(MailstackError):
    default_code = "invalid_configuration"


class ProvisioningError(MailstackError):
    default_code = "provisioning_failed"


class InvariantError(MailstackError):
    default_code = "invariant_violation"


class CancelledByUser(MailstackError):
    default_code = "cancelled"


class PartialApplyError(MailstackError):
    """An optional resource group failed after earlier groups succeeded."""

    default_code = "partial_apply"

    def __init__(
        self,
        message: str,
        group: str,
        code: str | None = None,
        suggestion: str | None = None,
        docs_url: str | None = None,
        created: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, suggestion=suggestion, docs_url=docs_url)
        self.group = group
        self.created = created or {}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["group"] = self.group
        return data


def no_credentials() -> CredentialError:
    return CredentialError(
        "No usable AWS credentials were found",
        suggestion="Run 'aws configure' or set AWS_PROFILE / AWS_ACCESS_KEY_ID",
        docs_url=f"{DOCS_BASE_URL}/setup/credentials",
    )


def no_region() -> ConfigurationError:
    return ConfigurationError(
        "No AWS region was given and none is configured",
        code="no_region",
        suggestion="Pass --region or set AWS_REGION",
    )


def connection_not_found(account_id: str, region: str) -> NotFoundError:
    return NotFoundError(
        f"No deployment found for account {account_id} in {region}",
        code="connection_not_found",
        suggestion="Run 'mailstack init' or 'mailstack connect' first",
        docs_url=f"{DOCS_BASE_URL}/cli/init",
    )


def connection_exists(account_id: str, region: str) -> ConflictError:
    return ConflictError(
        f"A deployment already exists for account {account_id} in {region}",
        code="connection_exists",
        suggestion="Use 'mailstack upgrade' to add features or 'mailstack destroy' to start over",
    )


def unknown_provider(provider: str) -> ConfigurationError:
    return ConfigurationError(
        f"Unknown hosting provider: {provider}",
        code="unknown_provider",
        suggestion="Choose one of: vercel, aws, railway, other",
    )


_AUTHORIZATION_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "UnauthorizedOperation",
        "AuthorizationError",
    }
)
_CREDENTIAL_CODES = frozenset(
    {
        "ExpiredToken",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)
_NOT_FOUND_CODES = frozenset(
    {
        "NotFoundException",
        "ResourceNotFoundException",
        "NoSuchHostedZone",
        "NoSuchDistribution",
        "NoSuchEntity",
    }
)


def wrap_client_error(exc: Exception, action: str) -> MailstackError:
    """Translate a botocore failure into the operator-facing taxonomy."""
    if isinstance(exc, MailstackError):
        return exc
    if isinstance(exc, NoCredentialsError):
        return no_credentials()
    if isinstance(exc, NoRegionError):
        return no_region()
    if not isinstance(exc, ClientError):
        return ProvisioningError(f"{action} failed: {exc}", code="cloud_api_error")

    error = exc.response.get("Error", {})
    error_code = error.get("Code", "Unknown")
    message = f"{action} failed: {error.get('Message', str(exc))}"

    if error_code in _AUTHORIZATION_CODES:
        return AuthorizationError(
            message,
            suggestion=f"Grant the calling identity permission for {action}",
        )
    if error_code in _CREDENTIAL_CODES:
        return CredentialError(
            message,
            code="invalid_credentials",
            suggestion="Refresh your AWS session or credentials and retry",
        )
    if error_code in _NOT_FOUND_CODES:
        return NotFoundError(message, code="resource_not_found")
    return ProvisioningError(message, code=f"aws_{error_code}".lower())
