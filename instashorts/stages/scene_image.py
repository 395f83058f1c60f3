from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.errors import PreconditionError
from instashorts.imagegen.generator import ImageGenerator
from instashorts.models import VideoStatus
from instashorts.queue.base import Stage, StageHandler
from instashorts.stages.gate import ReadinessGate
from instashorts.storage.base import BlobStore, scene_image_path

logger = logging.getLogger(__name__)


class SceneImageStage(StageHandler):
    """Generates the image for one scene, then runs the gate.

    Unlike the other generation stages, running out of attempts here does not
    fail the video: the message is dead-lettered and the video stays where it is.
    """

    stage = Stage.SCENE_IMAGE

    def __init__(
        self,
        store: JobStore,
        gate: ReadinessGate,
        images: ImageGenerator,
        blobs: BlobStore,
        bucket: str,
    ):
        self.store = store
        self.gate = gate
        self.images = images
        self.blobs = blobs
        self.bucket = bucket

    async def run(self, payload: dict) -> None:
        prompt = (payload.get("image_prompt") or "").strip()
        if not prompt:
            raise PreconditionError("Scene image needs a non-empty prompt")
        video_id = payload.get("video_id")
        scene = await asyncio.to_thread(self.store.get_scene, payload.get("scene_id") or "")
        if scene is None or scene.video_id != video_id:
            raise PreconditionError(f"Scene {payload.get('scene_id')} not found for video {video_id}")

        video = await asyncio.to_thread(self.store.get_video, video_id)
        if video is not None and video.status.is_terminal:
            logger.info("Video %s is %s, skipping scene %s", video_id, video.status.value, scene.id)
            return

        if scene.image_url:
            logger.info("Scene %s already has an image, skipping generation", scene.id)
        else:
            await asyncio.to_thread(self.store.advance_status, video_id, VideoStatus.GENERATING_IMAGES)
            data = await self.images.generate(prompt)
            url = await self.blobs.upload(
                self.bucket, data, scene_image_path(video_id, scene.id), "image/png"
            )
            await asyncio.to_thread(self.store.set_scene_image, scene.id, url)
            logger.info("Video %s: image saved for scene %d", video_id, scene.scene_index)

        await self.gate.check(video_id)

    async def on_exhausted(self, payload: dict, exc: BaseException) -> None:
        logger.error(
            "Scene %s of video %s permanently failed, video left as is: %s",
            payload.get("scene_id"), payload.get("video_id"), exc,
        )
