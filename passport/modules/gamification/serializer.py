"""
Per-subject serialization.

All engine writes for one subject run under `SubjectSerializer.hold`, so two
events for the same subject never interleave their grants. Different
subjects never share a lock.

In-process: a keyed registry of `asyncio.Lock`, reference counted and
dropped when idle so the registry does not grow with the user base.

Across processes (`gamification.serialization.distributed_lock: true`): the
in-process lock additionally wraps `RedisService.acquire_lock` on
`gamification:subject:<id>`. A wait timeout surfaces as `SubjectLockError`.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional

from passport.core.exceptions import RedisConnectionError, SubjectLockError
from passport.core.logging.logger import get_logger
from passport.core.redis.service import RedisService

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager

LOCK_KEY_PREFIX = "gamification:subject:"


class SubjectSerializer:
    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._config = config_manager
        self.log = logger or get_logger(__name__)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def _get(self, key: str, default: Any) -> Any:
        if self._config is None:
            return default
        return self._config.get(key, default)

    @property
    def distributed(self) -> bool:
        return bool(self._get("gamification.serialization.distributed_lock", False))

    def active_subjects(self) -> int:
        """Number of subjects with a held or awaited lock."""
        return len(self._locks)

    def _checkout(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        self._holders[subject_id] = self._holders.get(subject_id, 0) + 1
        return lock

    def _release(self, subject_id: str) -> None:
        remaining = self._holders.get(subject_id, 1) - 1
        if remaining <= 0:
            self._holders.pop(subject_id, None)
            self._locks.pop(subject_id, None)
        else:
            self._holders[subject_id] = remaining

    @asynccontextmanager
    async def hold(self, subject_id: str) -> AsyncIterator[None]:
        """
        Serialize the block against other holders for `subject_id`.

        Raises:
            SubjectLockError: If the distributed lock is not acquired in time
            RedisConnectionError: If distributed locking is on without Redis
        """
        lock = self._checkout(subject_id)
        try:
            async with AsyncExitStack() as stack:
                await stack.enter_async_context(lock)
                if self.distributed:
                    await self._enter_distributed(stack, subject_id)
                yield
        finally:
            self._release(subject_id)

    async def _enter_distributed(self, stack: AsyncExitStack, subject_id: str) -> None:
        wait_timeout = float(
            self._get("gamification.serialization.lock_wait_timeout_seconds", 10.0)
        )
        timeout = int(self._get("gamification.serialization.lock_timeout_seconds", 30))
        if not RedisService.is_initialized():
            raise RedisConnectionError(
                "acquire_lock", RuntimeError("RedisService not initialized")
            )
        try:
            await stack.enter_async_context(
                RedisService.acquire_lock(
                    f"{LOCK_KEY_PREFIX}{subject_id}",
                    timeout=timeout,
                    wait_timeout=wait_timeout,
                    operation="gamification.process",
                )
            )
        except TimeoutError as exc:
            self.log.warning(
                "Subject lock wait timed out",
                extra={"subject_id": subject_id, "wait_timeout": wait_timeout},
            )
            raise SubjectLockError(subject_id, wait_timeout) from exc
