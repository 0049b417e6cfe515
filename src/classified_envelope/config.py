"""
Runtime configuration.

Values come from the process environment, optionally seeded from a ``.env``
file. The root key id is the only required value.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_REGION: str = "eu-north-1"
DEFAULT_APPLICATION: str = "endcrypt-financial"
DEFAULT_ENVIRONMENT: str = "development"
DEFAULT_VERSION: str = "1.0.0"
DEFAULT_CACHE_TTL: timedelta = timedelta(minutes=15)


@dataclass(frozen=True)
class Settings:
    """Configuration consumed by the envelope service and its clients."""

    root_key_id: str
    region: str = DEFAULT_REGION
    account_id: Optional[str] = None
    key_alias: Optional[str] = None
    application: str = DEFAULT_APPLICATION
    environment: str = DEFAULT_ENVIRONMENT
    version: str = DEFAULT_VERSION
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    database_url: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.root_key_id:
            raise ConfigError("Root key id is required", field="root_key_id")
        if self.cache_ttl <= timedelta(0):
            raise ConfigError("Cache TTL must be positive", field="cache_ttl")

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Union[str, Path]] = None,
    ) -> Settings:
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of os.environ (no .env loading then)
            dotenv_path: Explicit .env file; defaults to searching upwards from cwd

        Returns:
            Settings instance

        Raises:
            ConfigError: If the root key id is missing or a value is malformed
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        ttl_raw = env.get("ENVELOPE_CACHE_TTL_SECONDS")
        try:
            cache_ttl = (
                timedelta(seconds=float(ttl_raw)) if ttl_raw else DEFAULT_CACHE_TTL
            )
        except ValueError:
            raise ConfigError(
                f"ENVELOPE_CACHE_TTL_SECONDS is not a number: {ttl_raw!r}",
                field="cache_ttl",
            ) from None

        return cls(
            root_key_id=env.get("ENVELOPE_ROOT_KEY_ID") or env.get("AWS_KMS_KEY_ID") or "",
            region=env.get("AWS_REGION") or DEFAULT_REGION,
            account_id=env.get("AWS_ACCOUNT_ID") or None,
            key_alias=env.get("ENVELOPE_KEY_ALIAS") or None,
            application=env.get("ENVELOPE_APPLICATION") or DEFAULT_APPLICATION,
            environment=env.get("ENVELOPE_ENVIRONMENT")
            or env.get("APP_ENV")
            or DEFAULT_ENVIRONMENT,
            version=env.get("ENVELOPE_VERSION") or DEFAULT_VERSION,
            cache_ttl=cache_ttl,
            database_url=env.get("DATABASE_URL") or None,
        )

    def encryption_context(self) -> Dict[str, str]:
        """Base encryption context bound to every root key operation."""
        return {
            "application": self.application,
            "environment": self.environment,
            "version": self.version,
            "keyAlias": self.key_alias or self.root_key_id,
            "region": self.region,
        }
