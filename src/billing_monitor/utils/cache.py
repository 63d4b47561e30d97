"""
In-memory credential cache.

Credentials are cached per profile with different lifetimes for temporary
(session token) and permanent credentials. Lookups for the same profile are
serialized so that concurrent account fetches sharing a profile trigger a
single provider call; different profiles resolve in parallel.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict

from ..models.account import Credentials
from .auth import CredentialProvider, ensure_credentials

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_KEY = "default"
SESSION_CREDENTIAL_TTL = timedelta(minutes=50)
PERMANENT_CREDENTIAL_TTL = timedelta(hours=24)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CachedCredentialEntry(BaseModel):
    """Credentials plus the time they were loaded."""

    model_config = ConfigDict(frozen=True)

    credentials: Credentials
    loaded_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.loaded_at

    def is_valid(
        self,
        now: datetime,
        session_ttl: timedelta = SESSION_CREDENTIAL_TTL,
        permanent_ttl: timedelta = PERMANENT_CREDENTIAL_TTL,
    ) -> bool:
        if self.credentials.is_expired_at(now):
            return False
        ttl = session_ttl if self.credentials.is_temporary else permanent_ttl
        return self.age(now) < ttl


class CredentialCache:
    """Per-profile credential cache in front of a CredentialProvider."""

    def __init__(
        self,
        provider: CredentialProvider,
        session_ttl: timedelta = SESSION_CREDENTIAL_TTL,
        permanent_ttl: timedelta = PERMANENT_CREDENTIAL_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the credential cache.

        Args:
            provider: Source of fresh credentials
            session_ttl: Lifetime of cached temporary credentials
            permanent_ttl: Lifetime of cached permanent credentials
            clock: Returns the current time (timezone-aware)
        """
        self.provider = provider
        self.session_ttl = session_ttl
        self.permanent_ttl = permanent_ttl
        self._clock = clock
        self._entries: dict[str, CachedCredentialEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def cache_key(profile: str | None) -> str:
        return profile or DEFAULT_PROFILE_KEY

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def resolve(self, profile: str | None = None) -> Credentials:
        """
        Get credentials for a profile, loading them if the cached entry is stale.

        Raises:
            CredentialsNotFound: If the provider returned no key pair
            ProviderError: If the provider invocation failed
        """
        key = self.cache_key(profile)

        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is not None and entry.is_valid(self._clock(), self.session_ttl, self.permanent_ttl):
                logger.debug(f"💾 AWS: Credential cache HIT for profile '{key}'")
                return entry.credentials

            logger.debug(f"💾 AWS: Credential cache MISS for profile '{key}'")
            credentials = ensure_credentials(await self.provider.resolve(profile))
            self._entries[key] = CachedCredentialEntry(credentials=credentials, loaded_at=self._clock())

            kind = "temporary" if credentials.is_temporary else "permanent"
            logger.info(f"🔵 AWS: Loaded {kind} credentials for profile '{key}'")
            return credentials

    def invalidate(self, profile: str | None = None) -> bool:
        """Drop the cached entry for one profile."""
        return self._entries.pop(self.cache_key(profile), None) is not None

    def invalidate_all(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        return {
            "entries": len(self._entries),
            "valid": sum(
                1
                for entry in self._entries.values()
                if entry.is_valid(now, self.session_ttl, self.permanent_ttl)
            ),
            "session_ttl_seconds": self.session_ttl.total_seconds(),
            "permanent_ttl_seconds": self.permanent_ttl.total_seconds(),
        }
