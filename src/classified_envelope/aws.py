"""
Helpers shared by the boto3-backed boundary clients.

boto3 clients are blocking, so calls run in a worker thread. botocore
failures are translated into the library's remote error classes so callers
can tell retryable failures from fatal ones.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
)

from .errors import (
    ContextMismatchError,
    EnvelopeError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteServiceError,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "KMSInternalException",
        "InternalServiceError",
        "InternalFailure",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "DependencyTimeoutException",
        "KeyUnavailableException",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)

PERMISSION_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "AccessDenied",
        "UnrecognizedClientException",
        "InvalidSignatureException",
        "ExpiredTokenException",
        "DisabledException",
        "KMSInvalidStateException",
        "InvalidKeyUsageException",
        "IncorrectKeyException",
    }
)

NOT_FOUND_ERROR_CODES = frozenset({"NotFoundException", "ResourceNotFoundException"})

# KMS reports a wrong encryption context as an invalid ciphertext
CONTEXT_ERROR_CODES = frozenset({"InvalidCiphertextException"})


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def translate_error(error: Exception, operation: str) -> EnvelopeError:
    """
    Map a botocore exception onto the remote error taxonomy.

    Messages carry the operation and error code only, never request data.
    """
    if isinstance(error, ClientError):
        code = error_code(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        message = f"{operation} failed: {code or 'unknown error'}"
        if code in CONTEXT_ERROR_CODES:
            return ContextMismatchError(message, field="encryptionContext")
        if code in NOT_FOUND_ERROR_CODES:
            return RemoteNotFoundError(message, code=code)
        if code in PERMISSION_ERROR_CODES:
            return PermissionDeniedError(message, code=code)
        if code in TRANSIENT_ERROR_CODES or status >= 500:
            return TransientRemoteError(message, code=code)
        return RemoteServiceError(message, code=code)
    if isinstance(error, (HTTPClientError, BotoConnectionError)):
        # Connection failures and read/connect timeouts
        return TransientRemoteError(f"{operation} failed: {type(error).__name__}")
    if isinstance(error, NoCredentialsError):
        return PermissionDeniedError(f"{operation} failed: no credentials")
    return RemoteServiceError(f"{operation} failed: {type(error).__name__}")


async def call_aws(
    method: Callable[..., Dict[str, Any]], operation: str, **params: Any
) -> Dict[str, Any]:
    """
    Run a boto3 client method off the event loop.

    Raises:
        EnvelopeError: Translated botocore failure
    """
    try:
        return await asyncio.to_thread(functools.partial(method, **params))
    except (ClientError, BotoCoreError) as e:
        translated = translate_error(e, operation)
        logger.warning(
            "AWS %s failed (%s, retryable=%s)",
            operation,
            translated.kind,
            translated.retryable,
        )
        raise translated from e
