"""In-process queue fabric on asyncio queues, for local runs and tests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from instashorts.queue.base import EventFabric, Message, Stage, deliver

logger = logging.getLogger(__name__)


class LocalFabric(EventFabric):
    """Runs ``concurrency`` workers per registered stage inside the event loop.

    Backoff waits happen outside the worker slots, so a retrying message does
    not hold up the rest of its stage.
    """

    def __init__(self, policies=None):
        super().__init__(policies)
        self._queues: dict[Stage, asyncio.Queue] = {}
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self.emitted: list[Message] = []
        self.dead_letters: list[tuple[Message, BaseException]] = []

    def _queue(self, stage: Stage) -> asyncio.Queue:
        return self._queues.setdefault(stage, asyncio.Queue())

    async def emit(self, stage: Stage, payload: dict) -> None:
        stage = Stage(stage)
        if stage not in self.handlers:
            raise ValueError(f"No handler registered for stage {stage.value}")
        message = Message(stage=stage, payload=dict(payload))
        self.emitted.append(message)
        self._pending += 1
        self._idle.clear()
        await self._queue(stage).put(message)
        logger.debug("[%s] enqueued message %s", stage.value, message.id)

    async def start(self) -> None:
        for stage in self.handlers:
            for _ in range(self.policies[stage].concurrency):
                self._workers.append(asyncio.create_task(self._work(stage)))
        logger.info("Local fabric started %d workers", len(self._workers))

    async def _work(self, stage: Stage) -> None:
        queue = self._queue(stage)
        handler = self.handlers[stage]
        policy = self.policies[stage]
        while True:
            message = await queue.get()
            try:
                result = await deliver(handler, message, policy)
            finally:
                queue.task_done()

            if result.retry_in is not None:
                retry = replace(message, attempt=message.attempt + 1)
                timer = asyncio.create_task(self._requeue_later(retry, result.retry_in))
                self._timers.add(timer)
                timer.add_done_callback(self._timers.discard)
                continue

            if not result.ok:
                self.dead_letters.append((message, result.error))
            self._settle()

    async def _requeue_later(self, message: Message, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue(message.stage).put(message)

    def _settle(self) -> None:
        self._pending -= 1
        if self._pending == 0:
            self._idle.set()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every emitted message has succeeded or been dead-lettered."""
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def stop(self) -> None:
        tasks = [*self._workers, *self._timers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()

    async def __aenter__(self) -> LocalFabric:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
