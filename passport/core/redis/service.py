"""
RedisService - async Redis infrastructure for the Passport engine.

Purpose
-------
Singleton async Redis client plus the one primitive the engine needs from
it: a distributed lock. When several application processes share one
database, per-subject serialization must hold across processes, which an
in-process asyncio.Lock cannot guarantee.

Responsibilities
----------------
- Initialize / shut down the shared client
- Health check via PING
- `acquire_lock(key)`: SET NX EX with a UUID token, released by a Lua
  compare-and-delete so a lock that expired and was re-acquired by someone
  else is never deleted by the previous holder

Configuration
-------------
- Connection: Config.REDIS_URL / REDIS_SOCKET_TIMEOUT / REDIS_MAX_CONNECTIONS
- Lock defaults (ConfigManager): core.redis.lock.default_timeout_sec,
  wait_timeout_sec, retry_interval_sec
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import RedisError

from passport.core.config.config import Config
from passport.core.config.manager import ConfigManager
from passport.core.exceptions import RedisConnectionError
from passport.core.logging.logger import get_logger

logger = get_logger(__name__)


class RedisService:
    """Process-wide async Redis client and distributed lock helper."""

    _client: Optional[AsyncRedis] = None
    _init_lock: asyncio.Lock = asyncio.Lock()
    _is_healthy: bool = False

    # Atomic lock release (compare token + delete)
    _LUA_UNLOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE MANAGEMENT
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Create the client and verify it with PING. Idempotent.

        Raises
        ------
        RedisConnectionError
            If the server cannot be reached.
        """
        if cls._client is not None:
            logger.debug("RedisService already initialized, skipping")
            return

        async with cls._init_lock:
            if cls._client is not None:
                return

            url = url or Config.REDIS_URL
            socket_timeout = Config.REDIS_SOCKET_TIMEOUT
            max_connections = Config.REDIS_MAX_CONNECTIONS

            start_time = time.monotonic()
            client: AsyncRedis = AsyncRedis.from_url(
                url,
                socket_timeout=socket_timeout,
                encoding="utf-8",
                decode_responses=True,
                max_connections=max_connections,
                retry_on_timeout=False,
                health_check_interval=30,
            )

            try:
                await client.ping()  # type: ignore[misc]
            except (RedisError, OSError) as exc:
                await client.aclose()
                logger.critical(
                    "Failed to initialize RedisService",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "url_scheme": url.split("://")[0] if "://" in url else "unknown",
                    },
                    exc_info=True,
                )
                raise RedisConnectionError("initialize", exc) from exc

            cls._client = client
            cls._is_healthy = True

            logger.info(
                "RedisService initialized successfully",
                extra={
                    "url_scheme": url.split("://")[0] if "://" in url else "unknown",
                    "socket_timeout_seconds": socket_timeout,
                    "max_connections": max_connections,
                    "initialization_time_ms": round(
                        (time.monotonic() - start_time) * 1000, 2
                    ),
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Close the client. Safe to call when not initialized."""
        async with cls._init_lock:
            if cls._client is None:
                return
            try:
                await cls._client.aclose()
                logger.info("RedisService shutdown complete")
            finally:
                cls._client = None
                cls._is_healthy = False

    @classmethod
    async def health_check(cls) -> bool:
        if cls._client is None:
            return False
        try:
            await cls._client.ping()  # type: ignore[misc]
            cls._is_healthy = True
        except (RedisError, OSError) as exc:
            cls._is_healthy = False
            logger.warning(
                "Redis health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
        return cls._is_healthy

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._client is not None

    @classmethod
    def client(cls) -> AsyncRedis:
        """
        Return the singleton Redis client.

        Raises
        ------
        RuntimeError
            If RedisService has not been initialized.
        """
        if cls._client is None:
            raise RuntimeError(
                "RedisService not initialized. "
                "Call `await RedisService.initialize()` first."
            )
        return cls._client

    # ═══════════════════════════════════════════════════════════════════════
    # DISTRIBUTED LOCKING
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    @asynccontextmanager
    async def acquire_lock(
        cls,
        key: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None,
        retry_interval: Optional[float] = None,
        operation: Optional[str] = None,
    ) -> AsyncGenerator[None, None]:
        """
        Hold a distributed lock for the duration of the block.

        Parameters
        ----------
        key : str
            Lock identifier, e.g. "gamification:subject:u-42".
        timeout : Optional[int]
            Lock expiry in seconds; a crashed holder frees it after this.
        wait_timeout : Optional[float]
            Maximum time to wait for acquisition.
        retry_interval : Optional[float]
            Sleep between acquisition attempts.

        Raises
        ------
        TimeoutError
            If the lock cannot be acquired within `wait_timeout`.

        Example
        -------
        >>> async with RedisService.acquire_lock(f"gamification:subject:{subject_id}"):
        >>>     await engine.evaluate(...)
        """
        client = cls.client()

        if timeout is None:
            timeout = int(cls._lock_setting("default_timeout_sec", 30))
        if wait_timeout is None:
            wait_timeout = cls._lock_setting("wait_timeout_sec", 10.0)
        if retry_interval is None:
            retry_interval = cls._lock_setting("retry_interval_sec", 0.05)

        token = str(uuid.uuid4())
        start = time.monotonic()
        deadline = start + max(0.0, wait_timeout)
        acquired = False

        try:
            while True:
                try:
                    acquired = bool(
                        await client.set(name=key, value=token, nx=True, ex=timeout)
                    )
                except RedisError as exc:
                    logger.error(
                        "Redis lock acquisition error",
                        extra={
                            "lock_key": key,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                        exc_info=True,
                    )

                if acquired:
                    logger.debug(
                        "Redis lock acquired",
                        extra={
                            "lock_key": key,
                            "timeout_seconds": timeout,
                            "wait_ms": round((time.monotonic() - start) * 1000, 2),
                            "operation": operation,
                        },
                    )
                    break

                if time.monotonic() >= deadline:
                    logger.warning(
                        "Failed to acquire Redis lock within timeout",
                        extra={"lock_key": key, "wait_timeout_seconds": wait_timeout},
                    )
                    raise TimeoutError(
                        f"Failed to acquire Redis lock '{key}' within {wait_timeout}s"
                    )

                await asyncio.sleep(retry_interval)

            yield

        finally:
            if acquired:
                try:
                    released = await client.eval(  # type: ignore[misc]
                        cls._LUA_UNLOCK_SCRIPT,
                        1,
                        key,
                        token,
                    )
                    if released:
                        logger.debug("Redis lock released", extra={"lock_key": key})
                    else:
                        logger.warning(
                            "Redis lock already expired or stolen",
                            extra={"lock_key": key},
                        )
                except RedisError as exc:
                    logger.warning(
                        "Failed to release Redis lock (will expire automatically)",
                        extra={
                            "lock_key": key,
                            "timeout_seconds": timeout,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _lock_setting(name: str, default: float) -> float:
        val = ConfigManager.get(f"core.redis.lock.{name}")
        if isinstance(val, (int, float)) and not isinstance(val, bool):
            return float(val)
        return default
