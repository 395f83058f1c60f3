"""
Redis-backed queue fabric with reliable delivery, one set of keys per stage.

Uses the reliable-queue pattern so no trigger is lost when a worker dies:
  1. LPUSH  -> `instashorts:{stage}:pending`             (emit)
  2. BLMOVE -> `instashorts:{stage}:processing`          (claim, FIFO)
  3. LREM from processing on success                    (ack)
  4. Failure: ZADD `instashorts:{stage}:delayed` with the retry time,
     or LPUSH `instashorts:{stage}:dead` once the attempt budget is spent.

Claims are stamped in `instashorts:{stage}:claims`; `recover_stale()` moves
claims older than STALE_TASK_TIMEOUT back to pending. A processing entry with
no stamp (its worker died between BLMOVE and HSET) is stamped on the first
scan and recovered once that stamp goes stale. Entries that cannot be decoded
go straight to the dead list.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace

import redis.asyncio as redis

from instashorts.queue.base import EventFabric, Message, Stage, deliver

logger = logging.getLogger(__name__)

KEY_PREFIX = "instashorts"
STALE_TASK_TIMEOUT = 600  # seconds
PROMOTE_INTERVAL = 1.0
RECOVER_INTERVAL = 60.0


def _key(stage: Stage, kind: str) -> str:
    return f"{KEY_PREFIX}:{stage.value}:{kind}"


class RedisFabric(EventFabric):
    def __init__(self, client: redis.Redis, policies=None, block_timeout: int = 5):
        super().__init__(policies)
        self.client = client
        self.block_timeout = block_timeout

    @classmethod
    def from_url(cls, url: str, policies=None) -> RedisFabric:
        return cls(redis.from_url(url, decode_responses=True), policies)

    # ── Enqueue ──────────────────────────────────────────────────────────

    async def emit(self, stage: Stage, payload: dict) -> None:
        stage = Stage(stage)
        message = Message(stage=stage, payload=dict(payload))
        await self.client.lpush(_key(stage, "pending"), message.to_json())
        logger.info("[%s] enqueued message %s", stage.value, message.id)

    # ── Worker side ──────────────────────────────────────────────────────

    async def claim(self, stage: Stage) -> str | None:
        raw = await self.client.blmove(
            _key(stage, "pending"),
            _key(stage, "processing"),
            self.block_timeout,
            src="RIGHT",
            dest="LEFT",
        )
        if raw is not None:
            await self.client.hset(_key(stage, "claims"), raw, str(time.time()))
        return raw

    async def _release(self, stage: Stage, raw: str) -> None:
        await self.client.lrem(_key(stage, "processing"), 1, raw)
        await self.client.hdel(_key(stage, "claims"), raw)

    async def process_one(self, stage: Stage) -> bool:
        """Claim and handle a single message. Returns False on an empty poll."""
        raw = await self.claim(stage)
        if raw is None:
            return False

        try:
            message = Message.from_json(raw)
            handler = self.handlers[stage]
        except (ValueError, KeyError, TypeError) as exc:
            await self.client.lpush(_key(stage, "dead"), raw)
            await self._release(stage, raw)
            logger.error("[%s] undeliverable message moved to dead-letter queue: %r", stage.value, exc)
            return True

        result = await deliver(handler, message, self.policies[stage])

        if result.retry_in is not None:
            retry = replace(message, attempt=message.attempt + 1)
            await self.client.zadd(
                _key(stage, "delayed"), {retry.to_json(): time.time() + result.retry_in}
            )
        elif not result.ok:
            await self.client.lpush(_key(stage, "dead"), raw)
            logger.error("[%s] message %s moved to dead-letter queue", stage.value, message.id)

        await self._release(stage, raw)
        return True

    async def promote_due(self, stage: Stage) -> int:
        """Move delayed retries whose time has come back to pending."""
        delayed = _key(stage, "delayed")
        due = await self.client.zrangebyscore(delayed, "-inf", time.time())
        promoted = 0
        for raw in due:
            # ZREM decides which worker owns the promotion.
            if await self.client.zrem(delayed, raw):
                await self.client.lpush(_key(stage, "pending"), raw)
                promoted += 1
        return promoted

    async def recover_stale(self, stage: Stage) -> int:
        """Requeue in-flight messages whose worker appears to have died."""
        processing = _key(stage, "processing")
        claims_key = _key(stage, "claims")
        now = time.time()
        for raw in await self.client.lrange(processing, 0, -1):
            await self.client.hsetnx(claims_key, raw, str(now))

        claims = await self.client.hgetall(claims_key)
        recovered = 0
        for raw, claimed_at in claims.items():
            if now - float(claimed_at) <= STALE_TASK_TIMEOUT:
                continue
            if await self.client.lrem(processing, 1, raw):
                await self.client.lpush(_key(stage, "pending"), raw)
                recovered += 1
            await self.client.hdel(claims_key, raw)
        if recovered:
            logger.warning("[%s] recovered %d stale message(s)", stage.value, recovered)
        return recovered

    async def dead_letters(self, stage: Stage, limit: int = 50) -> list[Message]:
        items = await self.client.lrange(_key(stage, "dead"), 0, limit - 1)
        messages = []
        for raw in items:
            try:
                messages.append(Message.from_json(raw))
            except (ValueError, KeyError, TypeError):
                logger.warning("[%s] unreadable dead letter: %.80s", stage.value, raw)
        return messages

    async def _work(self, stage: Stage) -> None:
        while True:
            try:
                await self.process_one(stage)
            except redis.ConnectionError as exc:
                logger.error("[%s] redis connection error: %s", stage.value, exc)
                await asyncio.sleep(self.block_timeout)
            except Exception:
                logger.exception("[%s] worker error, continuing", stage.value)
                await asyncio.sleep(self.block_timeout)

    async def _promote_loop(self, stage: Stage) -> None:
        last_recovery = time.monotonic()
        while True:
            try:
                await self.promote_due(stage)
                if time.monotonic() - last_recovery >= RECOVER_INTERVAL:
                    last_recovery = time.monotonic()
                    await self.recover_stale(stage)
            except Exception:
                logger.exception("[%s] promote loop error, continuing", stage.value)
            await asyncio.sleep(PROMOTE_INTERVAL)

    async def run(self, stages: list[Stage] | None = None) -> None:
        """Run workers for ``stages`` (default: every registered stage) until cancelled."""
        stages = [Stage(s) for s in (stages or list(self.handlers))]
        tasks = []
        for stage in stages:
            await self.recover_stale(stage)
            tasks.append(asyncio.create_task(self._promote_loop(stage)))
            for _ in range(self.policies[stage].concurrency):
                tasks.append(asyncio.create_task(self._work(stage)))
        logger.info("Redis fabric running %d tasks for %s", len(tasks), [s.value for s in stages])
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
