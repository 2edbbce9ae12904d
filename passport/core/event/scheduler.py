"""
Tiered listener execution for the EventBus.

- CRITICAL / HIGH: sequential, in registration order, timeout protected
- NORMAL: concurrent via asyncio.gather, awaited
- LOW: fire-and-forget tasks, tracked so they are not garbage collected

Listener failures are isolated: they are logged and the listener's result
is None. Sync callbacks run in the default executor.
"""

from __future__ import annotations

import asyncio
import inspect
from logging import Logger
from typing import Any, Optional

from passport.core.event.types import EventListener, EventPayload, ListenerPriority


class EventScheduler:
    def __init__(self) -> None:
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self.error_count: int = 0

    async def execute(
        self,
        *,
        event_name: str,
        payload: EventPayload,
        listeners: list[EventListener],
        logger: Logger,
        critical_timeout: Optional[float],
        high_timeout: Optional[float],
    ) -> list[Any]:
        """Run `listeners` by tier and return results of the awaited tiers."""
        by_tier: dict[ListenerPriority, list[EventListener]] = {tier: [] for tier in ListenerPriority}
        for listener in listeners:
            by_tier[listener.priority].append(listener)

        results: list[Any] = []

        for tier, timeout in (
            (ListenerPriority.CRITICAL, critical_timeout),
            (ListenerPriority.HIGH, high_timeout),
        ):
            for listener in by_tier[tier]:
                results.append(await self._run(listener, event_name, payload, logger, timeout))

        normal = by_tier[ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *[self._run(lst, event_name, payload, logger) for lst in normal]
                )
            )

        loop = asyncio.get_running_loop()
        for listener in by_tier[ListenerPriority.LOW]:
            task = loop.create_task(
                self._run(listener, event_name, payload, logger),
                name=f"eventbus-low-{event_name}-{listener.identifier}",
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
        timeout: Optional[float] = None,
    ) -> Any:
        log_extra = {
            "event_name": event_name,
            "listener_id": listener.identifier,
            "tier": listener.priority.name,
        }
        if inspect.iscoroutinefunction(listener.callback):
            call = listener.callback(payload)
        else:
            call = asyncio.get_running_loop().run_in_executor(None, listener.callback, payload)

        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(call, timeout=timeout)
            return await call
        except asyncio.TimeoutError:
            self.error_count += 1
            logger.error(
                "EventBus listener timeout", extra={**log_extra, "timeout_seconds": timeout}
            )
            return None
        except Exception as exc:
            self.error_count += 1
            logger.error(
                "EventBus listener failed",
                extra={**log_extra, "error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            return None

    async def drain(self) -> None:
        """Wait for outstanding LOW-tier tasks. Used on shutdown and in tests."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def get_background_task_count(self) -> int:
        return len(self._background_tasks)
