"""Fan-in check run after every voiceover or scene-image completion."""

from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.models import VideoStatus
from instashorts.queue.base import EventFabric, Stage

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Triggers the render stage once a video has every input it needs.

    Several completions may find a video ready at the same moment. Only the
    caller whose compare-and-set moves the video to QUEUED_FOR_RENDERING
    emits the render trigger, so render is triggered at most once.
    """

    def __init__(self, store: JobStore, fabric: EventFabric):
        self.store = store
        self.fabric = fabric

    def missing(self, video_id: str) -> str | None:
        """Describe the first missing render input, or None when ready."""
        video = self.store.get_video(video_id)
        if video is None:
            return "video not found"
        if not video.voiceover_url:
            return "voiceover not ready"
        if video.captions_processed is None:
            return "captions not ready"
        scenes = self.store.get_scenes(video_id)
        if not scenes:
            return "scenes not generated"
        pending = sum(1 for s in scenes if not s.image_url)
        if pending:
            return f"{pending}/{len(scenes)} scene images pending"
        return None

    async def check(self, video_id: str) -> bool:
        """Return True if this call queued the video for rendering."""
        reason = await asyncio.to_thread(self.missing, video_id)
        if reason:
            logger.info("Gate: video %s not ready (%s)", video_id, reason)
            return False

        queued = await asyncio.to_thread(
            self.store.advance_status, video_id, VideoStatus.QUEUED_FOR_RENDERING
        )
        if not queued:
            logger.info("Gate: video %s already queued for rendering", video_id)
            return False

        await self.fabric.emit(Stage.RENDER, {"video_id": video_id})
        logger.info("Gate: video %s queued for rendering", video_id)
        return True
