"""Shared key/value store with per-key TTL for cross-instance short-lived state"""
import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from afauth.config import settings
from afauth.errors import EphemeralStoreError
from afauth.utils.logger import logger


class EphemeralStore(ABC):
    """Key/value store with TTL and atomic read-and-delete.

    Implementations must be shared by every process instance; an in-process
    map breaks OAuth state validation behind a load balancer.
    """

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get_and_delete(self, key: str) -> Optional[str]:
        """Return the value and remove it in one atomic step"""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class RedisEphemeralStore(EphemeralStore):
    """:class:`EphemeralStore` backed by Redis"""

    def __init__(
        self,
        url: str,
        operation_timeout: float = 3.0,
        connect_timeout: float = 5.0,
    ):
        self.operation_timeout = operation_timeout
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=operation_timeout,
        )

    async def _run(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.error(
                f"Ephemeral store {operation} failed",
                extra={"action": operation, "error": type(exc).__name__},
            )
            raise EphemeralStoreError(f"Ephemeral store {operation} failed") from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._run("set", self._client.set(key, value, ex=ttl_seconds))

    async def get_and_delete(self, key: str) -> Optional[str]:
        async def _transaction():
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.delete(key)
                value, _ = await pipe.execute()
                return value

        return await self._run("get_and_delete", _transaction())

    async def ping(self) -> bool:
        try:
            return bool(await self._run("ping", self._client.ping()))
        except EphemeralStoreError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


_store: Optional[EphemeralStore] = None


def get_ephemeral_store() -> EphemeralStore:
    """Return the process-wide store, connecting lazily on first use"""
    global _store
    if _store is None:
        _store = RedisEphemeralStore(
            settings.REDIS_URL,
            operation_timeout=settings.REDIS_OPERATION_TIMEOUT_SECONDS,
            connect_timeout=settings.REDIS_CONNECT_TIMEOUT_SECONDS,
        )
    return _store


async def close_ephemeral_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
        logger.info("Ephemeral store connection closed")
