"""
Reversible tokenization for the restricted tier.

Tokens look like ``TOKEN:<id>:<base64 payload>`` when no vault is configured.
That in-band form carries the original bytes inside the token and is only a
placeholder: it hides nothing from anyone who can read the token. With a
TokenVault the token is just ``TOKEN:<id>`` and the value lives in the vault.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional
from uuid import uuid4

from .errors import TokenizationError

logger = logging.getLogger(__name__)

TOKEN_PREFIX: str = "TOKEN:"


class TokenVault(ABC):
    """Out-of-band store mapping token ids to the values they replace."""

    @abstractmethod
    async def put(self, token_id: str, value: bytes) -> None:
        ...

    @abstractmethod
    async def get(self, token_id: str) -> Optional[bytes]:
        ...


class InMemoryTokenVault(TokenVault):
    """In-memory token vault for tests and single-process use."""

    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def put(self, token_id: str, value: bytes) -> None:
        async with self._lock:
            self._values[token_id] = bytes(value)

    async def get(self, token_id: str) -> Optional[bytes]:
        async with self._lock:
            return self._values.get(token_id)

    def __len__(self) -> int:
        return len(self._values)


class Tokenizer:
    """
    Substitutes sensitive bytes with a token and back.

    Args:
        vault: Optional out-of-band store; without it tokens embed the value
    """

    def __init__(self, vault: Optional[TokenVault] = None) -> None:
        self._vault = vault

    @property
    def in_band(self) -> bool:
        return self._vault is None

    async def tokenize(self, data: bytes) -> str:
        """Replace ``data`` with a fresh token."""
        token_id = str(uuid4())
        if self._vault is None:
            encoded = base64.standard_b64encode(data).decode("ascii")
            return f"{TOKEN_PREFIX}{token_id}:{encoded}"

        await self._vault.put(token_id, data)
        return f"{TOKEN_PREFIX}{token_id}"

    async def detokenize(self, token: str) -> bytes:
        """
        Resolve a token to the bytes it replaced.

        Untagged input is not a token and comes back unchanged (as UTF-8).

        Raises:
            TokenizationError: If a tagged token cannot be resolved
        """
        if not token.startswith(TOKEN_PREFIX):
            return token.encode("utf-8")

        parts = token[len(TOKEN_PREFIX) :].split(":", 1)
        token_id = parts[0]
        if not token_id:
            raise TokenizationError("Token has no identifier", field="token")

        if len(parts) == 2:
            try:
                return base64.b64decode(parts[1].encode("ascii"), validate=True)
            except (binascii.Error, UnicodeEncodeError):
                raise TokenizationError(
                    "Token payload is not valid base64", field="token"
                ) from None

        if self._vault is None:
            raise TokenizationError(
                "Token carries no value and no vault is configured", field="token"
            )
        value = await self._vault.get(token_id)
        if value is None:
            logger.warning("Token %s not found in vault", token_id)
            raise TokenizationError("Token not found in vault", field="token")
        return value
