from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.errors import PreconditionError
from instashorts.models import Video
from instashorts.queue.base import StageHandler

logger = logging.getLogger(__name__)


class JobStage(StageHandler):
    """A stage whose permanent failure fails the whole video job.

    ``JobStore`` is blocking sqlite, so stages reach it through
    ``asyncio.to_thread`` and leave the loop free for other workers.
    """

    def __init__(self, store: JobStore):
        self.store = store

    async def load_video(self, video_id: str | None) -> Video:
        if not video_id:
            raise PreconditionError("Message carries no video_id")
        video = await asyncio.to_thread(self.store.get_video, video_id)
        if video is None:
            raise PreconditionError(f"Video {video_id} not found")
        return video

    async def on_exhausted(self, payload: dict, exc: BaseException) -> None:
        video_id = payload.get("video_id")
        if not video_id:
            return
        failed = await asyncio.to_thread(
            self.store.mark_failed, video_id, f"{self.stage.value}: {exc}"
        )
        if failed:
            logger.error("[%s] video %s marked FAILED", self.stage.value, video_id)
