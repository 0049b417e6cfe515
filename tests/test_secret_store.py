"""
Tests for the application secret store clients.
"""

from __future__ import annotations

import json
from uuid import uuid4

import pytest
from botocore.stub import Stubber

from classified_envelope import (
    AwsSecretsClient,
    InMemorySecretsClient,
    PermissionDeniedError,
    RemoteNotFoundError,
    SerializationError,
)

SECRET = {"username": "api", "password": "s3cr3t"}


class TestInMemorySecretsClient:
    async def test_store_and_get(self):
        client = InMemorySecretsClient()
        await client.store_secret("db", SECRET)
        assert await client.get_secret("db") == SECRET

    async def test_store_adds_version(self):
        client = InMemorySecretsClient()
        await client.store_secret("db", SECRET)
        await client.store_secret("db", {"password": "new"})
        assert await client.get_secret("db") == {"password": "new"}
        assert client.version_count("db") == 2

    async def test_missing_secret(self):
        with pytest.raises(RemoteNotFoundError):
            await InMemorySecretsClient().get_secret("missing")

    async def test_rotate(self):
        client = InMemorySecretsClient(rotator=lambda name, current: dict(current, password="rotated"))
        await client.store_secret("db", SECRET)
        await client.rotate_secret("db")
        assert await client.get_secret("db") == {"username": "api", "password": "rotated"}
        assert client.version_count("db") == 2

    async def test_default_rotator_changes_value(self):
        client = InMemorySecretsClient()
        await client.store_secret("token", "initial")
        await client.rotate_secret("token")
        rotated = await client.get_secret("token")
        assert isinstance(rotated, str)
        assert rotated != "initial"

    async def test_rotate_missing_secret(self):
        with pytest.raises(RemoteNotFoundError):
            await InMemorySecretsClient().rotate_secret("missing")

    async def test_unserializable_value(self):
        with pytest.raises(SerializationError):
            await InMemorySecretsClient().store_secret("bad", object())


class TestAwsSecretsClient:
    @pytest.fixture
    def stubber(self, secrets_boto_client):
        with Stubber(secrets_boto_client) as stub:
            yield stub
            stub.assert_no_pending_responses()

    @pytest.fixture
    def client(self, secrets_boto_client) -> AwsSecretsClient:
        return AwsSecretsClient(secrets_boto_client, application="endcrypt-financial")

    async def test_store_creates_secret(self, stubber, client):
        stubber.add_response(
            "create_secret",
            {"Name": "db"},
            {
                "Name": "db",
                "SecretString": json.dumps(SECRET),
                "Description": "endcrypt-financial application secret: db",
            },
        )
        await client.store_secret("db", SECRET)

    async def test_store_existing_secret_puts_new_version(self, stubber, client):
        stubber.add_client_error(
            "create_secret", service_error_code="ResourceExistsException"
        )
        stubber.add_response(
            "put_secret_value",
            {"Name": "db", "VersionId": uuid4().hex},
            {"SecretId": "db", "SecretString": json.dumps(SECRET)},
        )
        await client.store_secret("db", SECRET)

    async def test_store_other_error_propagates(self, stubber, client):
        stubber.add_client_error(
            "create_secret", service_error_code="AccessDeniedException"
        )
        with pytest.raises(PermissionDeniedError):
            await client.store_secret("db", SECRET)

    async def test_get_secret(self, stubber, client):
        stubber.add_response(
            "get_secret_value",
            {"Name": "db", "SecretString": json.dumps(SECRET)},
            {"SecretId": "db", "VersionStage": "AWSCURRENT"},
        )
        assert await client.get_secret("db") == SECRET

    async def test_get_binary_secret(self, stubber, client):
        stubber.add_response(
            "get_secret_value",
            {"Name": "db", "SecretBinary": b"\x00\x01"},
            {"SecretId": "db", "VersionStage": "AWSCURRENT"},
        )
        with pytest.raises(RemoteNotFoundError):
            await client.get_secret("db")

    async def test_get_missing_secret(self, stubber, client):
        stubber.add_client_error(
            "get_secret_value", service_error_code="ResourceNotFoundException"
        )
        with pytest.raises(RemoteNotFoundError):
            await client.get_secret("db")

    async def test_rotate_secret(self, stubber, client):
        stubber.add_response(
            "rotate_secret",
            {"Name": "db", "VersionId": uuid4().hex},
            {"SecretId": "db", "RotateImmediately": True},
        )
        await client.rotate_secret("db")
