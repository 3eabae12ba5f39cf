"""Persistence for the session credential."""

from __future__ import annotations

from typing import Final, Protocol

from redis import asyncio as aioredis

from clinicdesk.core.config import Settings

_TOKEN_KEY: Final[str] = "clinicdesk:session:token"
_USERNAME_KEY: Final[str] = "clinicdesk:session:username"


class TokenStore(Protocol):
    async def load(self) -> tuple[str | None, str | None]: ...

    async def save(self, token: str, username: str | None) -> None: ...

    async def clear(self) -> None: ...

    async def aclose(self) -> None: ...


class MemoryTokenStore:
    """Keeps the credential for the lifetime of the process."""

    def __init__(self, token: str | None = None, username: str | None = None) -> None:
        self._token = token
        self._username = username

    async def load(self) -> tuple[str | None, str | None]:
        return self._token, self._username

    async def save(self, token: str, username: str | None) -> None:
        self._token = token
        self._username = username

    async def clear(self) -> None:
        self._token = None
        self._username = None

    async def aclose(self) -> None:
        return None


class RedisTokenStore:
    """Keeps the credential in Redis so it survives restarts until its TTL."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int) -> "RedisTokenStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True), ttl_seconds)

    async def load(self) -> tuple[str | None, str | None]:
        token = await self._client.get(_TOKEN_KEY)
        if not token:
            return None, None
        return token, await self._client.get(_USERNAME_KEY)

    async def save(self, token: str, username: str | None) -> None:
        await self._client.setex(_TOKEN_KEY, self._ttl_seconds, token)
        if username:
            await self._client.setex(_USERNAME_KEY, self._ttl_seconds, username)
        else:
            await self._client.delete(_USERNAME_KEY)

    async def clear(self) -> None:
        await self._client.delete(_TOKEN_KEY, _USERNAME_KEY)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_token_store(settings: Settings) -> TokenStore:
    """Return the token store selected by ``settings.token_store``."""

    if settings.token_store == "redis":
        return RedisTokenStore.from_url(settings.redis_url, settings.token_ttl_seconds)
    return MemoryTokenStore()
