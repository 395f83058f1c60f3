"""Daily series scheduler and the optional stuck-job sweep."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from instashorts.db import JobStore
from instashorts.jobs import create_video
from instashorts.models import GENERATING_STATUSES, Series
from instashorts.queue.base import EventFabric
from instashorts.scriptgen.generator import ScriptGenerator

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime | None = None) -> float:
    """Seconds from ``now`` until the next 00:00 UTC."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return (midnight - now).total_seconds()


class SeriesScheduler:
    def __init__(
        self,
        store: JobStore,
        fabric: EventFabric,
        scriptgen: ScriptGenerator,
        stuck_job_timeout_hours: float = 0.0,
    ):
        self.store = store
        self.fabric = fabric
        self.scriptgen = scriptgen
        self.stuck_job_timeout_hours = stuck_job_timeout_hours

    async def run_series(self, series: Series) -> str | None:
        if not series.theme.strip():
            logger.warning("Series %s has no theme, skipping", series.id)
            return None
        topic = (await self.scriptgen.generate_series_topic(series.theme)).strip()
        if not topic:
            logger.warning("Series %s: empty sub-topic generated, skipping", series.id)
            return None
        video_id = await create_video(
            self.store,
            self.fabric,
            topic,
            art_style=series.art_style,
            caption_highlight_color=series.caption_highlight_color,
            caption_position=series.caption_position,
            emoji_captions=series.emoji_captions,
            series_id=series.id,
            user_id=series.user_id,
        )
        logger.info("Series %s: started video %s on %r", series.id, video_id, topic)
        return video_id

    async def tick(self) -> list[str]:
        """Start one video for every active series. Returns the new video ids.

        A failing series is logged and does not stop the others.
        """
        active = await asyncio.to_thread(self.store.get_active_series)
        logger.info("Scheduler tick: %d active series", len(active))
        started = []
        for series in active:
            try:
                video_id = await self.run_series(series)
            except Exception:
                logger.exception("Series %s failed to start a video", series.id)
                continue
            if video_id:
                started.append(video_id)
        return started

    def sweep_stuck(self, max_age_hours: float) -> list[str]:
        """Fail videos stuck in a generating status for longer than ``max_age_hours``."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        failed = []
        for video in self.store.find_stuck_videos(GENERATING_STATUSES, cutoff):
            message = f"No progress for {max_age_hours:g}h in {video.status.value}"
            if self.store.mark_failed(video.id, message):
                logger.warning("Video %s marked FAILED: %s", video.id, message)
                failed.append(video.id)
        return failed

    async def run_forever(self) -> None:
        while True:
            delay = seconds_until_next_run()
            logger.info("Next series run in %.0fs", delay)
            await asyncio.sleep(delay)
            await self.tick()
            if self.stuck_job_timeout_hours > 0:
                await asyncio.to_thread(self.sweep_stuck, self.stuck_job_timeout_hours)
