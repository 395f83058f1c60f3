from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.errors import PreconditionError
from instashorts.models import Scene, VideoStatus
from instashorts.queue.base import EventFabric, Stage
from instashorts.scriptgen.generator import ScriptGenerator
from instashorts.stages.base import JobStage

logger = logging.getLogger(__name__)

SHORT_SCRIPT_WORDS = 100
SHORT_SCENE_COUNT = 3
LONG_SCENE_COUNT = 10


def scene_count_for(script: str) -> int:
    """Number of scenes for a script: 3 under 100 words, otherwise 10."""
    if len(script.split()) < SHORT_SCRIPT_WORDS:
        return SHORT_SCENE_COUNT
    return LONG_SCENE_COUNT


class ScenesStage(JobStage):
    """Plans the scene images and fans out one image trigger per scene."""

    stage = Stage.SCENES

    def __init__(self, store: JobStore, fabric: EventFabric, scriptgen: ScriptGenerator):
        super().__init__(store)
        self.fabric = fabric
        self.scriptgen = scriptgen

    async def _emit_images(self, scenes: list[Scene]) -> None:
        await asyncio.gather(
            *(
                self.fabric.emit(
                    Stage.SCENE_IMAGE,
                    {
                        "video_id": scene.video_id,
                        "scene_id": scene.id,
                        "image_prompt": scene.image_prompt,
                    },
                )
                for scene in scenes
            )
        )

    async def run(self, payload: dict) -> None:
        script = (payload.get("script") or "").strip()
        if not script:
            raise PreconditionError("Scene generation needs a non-empty script")
        video = await self.load_video(payload.get("video_id"))
        if video.status.is_terminal:
            logger.info("Video %s is %s, skipping scenes", video.id, video.status.value)
            return

        existing = await asyncio.to_thread(self.store.get_scenes, video.id)
        if existing:
            missing = [s for s in existing if not s.image_url]
            logger.info(
                "Video %s already has %d scenes, re-emitting %d image triggers",
                video.id, len(existing), len(missing),
            )
            await self._emit_images(missing)
            return

        await asyncio.to_thread(self.store.advance_status, video.id, VideoStatus.GENERATING_SCENES)
        count = scene_count_for(script)
        theme = payload.get("theme") or video.theme
        art_style = payload.get("art_style") or video.art_style
        prompts = await self.scriptgen.generate_scene_prompts(script, theme, count, art_style)

        scenes = [
            Scene(video_id=video.id, scene_index=i, image_prompt=prompt)
            for i, prompt in enumerate(prompts)
        ]
        await asyncio.to_thread(self.store.create_scenes, scenes)
        logger.info("Video %s: %d scenes saved", video.id, len(scenes))
        await self._emit_images(scenes)
