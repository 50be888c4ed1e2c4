"""AWS credential utilities."""

from mailstack.aws_credentials.broker import CredentialBroker
from mailstack.aws_credentials.cache import CacheKey, CredentialCache
from mailstack.aws_credentials.sts_provider import (
    STSCredentialError,
    STSCredentialProvider,
    TemporaryCredentials,
)

__all__ = [
    "CacheKey",
    "CredentialBroker",
    "CredentialCache",
    "STSCredentialError",
    "STSCredentialProvider",
    "TemporaryCredentials",
]
