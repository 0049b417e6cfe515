"""
Application secret store boundary.

This module provides:
- SecretsClient: Async interface for storing, reading and rotating named secrets
- AwsSecretsClient: AWS Secrets Manager implementation (boto3)
- InMemorySecretsClient: Versioned in-memory implementation for tests

Secrets are JSON values. This boundary is independent of the envelope
protocol.
"""

from __future__ import annotations

import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import boto3

from .aws import call_aws
from .config import DEFAULT_APPLICATION, Settings
from .errors import (
    DeserializationError,
    RemoteNotFoundError,
    RemoteServiceError,
    SerializationError,
)

logger = logging.getLogger(__name__)

VERSION_STAGE_CURRENT: str = "AWSCURRENT"


def _encode_secret(name: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        raise SerializationError(
            f"Secret {name} is not JSON-serializable", field="value"
        ) from None


def _decode_secret(name: str, text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        raise DeserializationError(f"Secret {name} is not valid JSON", field="value") from None


class SecretsClient(ABC):
    """Abstract secret store."""

    @abstractmethod
    async def store_secret(self, name: str, value: Any) -> None:
        """Create the secret, or add a new current version if it exists."""
        ...

    @abstractmethod
    async def get_secret(self, name: str) -> Any:
        """Read the current version of a secret."""
        ...

    @abstractmethod
    async def rotate_secret(self, name: str) -> None:
        """Rotate a secret immediately."""
        ...


class AwsSecretsClient(SecretsClient):
    """
    AWS Secrets Manager client.

    Args:
        client: boto3 ``secretsmanager`` client
        application: Name used in secret descriptions
    """

    def __init__(self, client, application: str = DEFAULT_APPLICATION) -> None:
        self._client = client
        self._application = application

    @classmethod
    def from_settings(cls, settings: Settings) -> AwsSecretsClient:
        return cls(
            boto3.client("secretsmanager", region_name=settings.region),
            application=settings.application,
        )

    async def store_secret(self, name: str, value: Any) -> None:
        secret_string = _encode_secret(name, value)
        try:
            await call_aws(
                self._client.create_secret,
                "CreateSecret",
                Name=name,
                SecretString=secret_string,
                Description=f"{self._application} application secret: {name}",
            )
        except RemoteServiceError as e:
            if e.code != "ResourceExistsException":
                raise
            await call_aws(
                self._client.put_secret_value,
                "PutSecretValue",
                SecretId=name,
                SecretString=secret_string,
            )
            logger.info("Stored new version of secret %s", name)
            return
        logger.info("Created secret %s", name)

    async def get_secret(self, name: str) -> Any:
        response = await call_aws(
            self._client.get_secret_value,
            "GetSecretValue",
            SecretId=name,
            VersionStage=VERSION_STAGE_CURRENT,
        )
        secret_string = response.get("SecretString")
        if secret_string is None:
            raise RemoteNotFoundError(f"Secret {name} has no string value")
        return _decode_secret(name, secret_string)

    async def rotate_secret(self, name: str) -> None:
        await call_aws(
            self._client.rotate_secret,
            "RotateSecret",
            SecretId=name,
            RotateImmediately=True,
        )
        logger.info("Rotation requested for secret %s", name)


def _random_secret(name: str, current: Any) -> Any:
    return secrets.token_urlsafe(32)


class InMemorySecretsClient(SecretsClient):
    """
    In-memory secret store keeping every version.

    Args:
        rotator: Produces the next value from (name, current value);
            defaults to a random URL-safe string
    """

    def __init__(self, rotator: Optional[Callable[[str, Any], Any]] = None) -> None:
        self._versions: Dict[str, List[str]] = {}
        self._rotator = rotator or _random_secret

    async def store_secret(self, name: str, value: Any) -> None:
        self._versions.setdefault(name, []).append(_encode_secret(name, value))

    async def get_secret(self, name: str) -> Any:
        versions = self._versions.get(name)
        if not versions:
            raise RemoteNotFoundError(f"Secret not found: {name}")
        return _decode_secret(name, versions[-1])

    async def rotate_secret(self, name: str) -> None:
        current = await self.get_secret(name)
        self._versions[name].append(_encode_secret(name, self._rotator(name, current)))
        logger.info("Rotated secret %s", name)

    def version_count(self, name: str) -> int:
        return len(self._versions.get(name, []))
