from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from instashorts.db import JobStore
from instashorts.errors import PreconditionError
from instashorts.models import Video, VideoStatus
from instashorts.queue.base import Stage
from instashorts.stages.base import JobStage
from instashorts.storage.base import BlobStore, final_video_path
from instashorts.video import assembler

logger = logging.getLogger(__name__)


class RenderStage(JobStage):
    """Composites the final video, uploads it and completes the job.

    Rendering is attempted once. Any error fails the video and is re-raised.
    """

    stage = Stage.RENDER

    def __init__(
        self,
        store: JobStore,
        blobs: BlobStore,
        bucket: str,
        fps: int = 30,
        duration_buffer: float = 0.5,
        timeout: float = 300.0,
    ):
        super().__init__(store)
        self.blobs = blobs
        self.bucket = bucket
        self.fps = fps
        self.duration_buffer = duration_buffer
        self.timeout = timeout

    async def run(self, payload: dict) -> None:
        video = await self.load_video(payload.get("video_id"))
        claimed = await asyncio.to_thread(
            self.store.advance_status,
            video.id,
            VideoStatus.RENDERING,
            expected=VideoStatus.QUEUED_FOR_RENDERING,
        )
        if not claimed:
            logger.info(
                "Video %s is %s, not claiming it for rendering", video.id, video.status.value
            )
            return

        try:
            await self._render(video)
        except Exception as exc:
            await asyncio.to_thread(
                self.store.mark_failed, video.id, f"{self.stage.value}: {exc}"
            )
            logger.error("Render failed for video %s: %s", video.id, exc)
            raise

    async def _render(self, video: Video) -> None:
        scenes = await asyncio.to_thread(self.store.get_scenes, video.id)
        if not video.voiceover_url or video.captions_processed is None:
            raise PreconditionError(f"Video {video.id} has no voiceover or captions")
        if not scenes or any(not s.image_url for s in scenes):
            raise PreconditionError(f"Video {video.id} has scenes without images")

        words = video.captions_processed.words
        duration = assembler.compute_duration(words, self.duration_buffer)
        work_dir = Path(tempfile.mkdtemp(prefix=f"render-{video.id}-"))
        try:
            output_path = await assembler.render_video(
                [s.image_url for s in scenes],
                video.voiceover_url,
                words,
                work_dir / "output.mp4",
                highlight_color=video.caption_highlight_color,
                position=video.caption_position,
                duration=duration,
                fps=self.fps,
                timeout=self.timeout,
            )
            await asyncio.to_thread(
                self.store.advance_status, video.id, VideoStatus.UPLOADING_FINAL_VIDEO
            )
            data = await asyncio.to_thread(output_path.read_bytes)
            url = await self.blobs.upload(
                self.bucket, data, final_video_path(video.id), "video/mp4"
            )
        finally:
            try:
                shutil.rmtree(work_dir)
            except OSError as exc:
                logger.warning("Could not remove render directory %s: %s", work_dir, exc)

        await asyncio.to_thread(
            self.store.advance_status,
            video.id,
            VideoStatus.COMPLETED,
            video_url=url,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info("Video %s completed: %s", video.id, url)
