from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.queue.base import EventFabric, Stage
from instashorts.scriptgen.generator import ScriptGenerator
from instashorts.stages.base import JobStage

logger = logging.getLogger(__name__)


class ScriptStage(JobStage):
    """Writes the narration script and title, then fans out to voiceover and scenes."""

    stage = Stage.SCRIPT

    def __init__(self, store: JobStore, fabric: EventFabric, scriptgen: ScriptGenerator):
        super().__init__(store)
        self.fabric = fabric
        self.scriptgen = scriptgen

    async def run(self, payload: dict) -> None:
        video = await self.load_video(payload.get("video_id"))
        if video.status.is_terminal:
            logger.info("Video %s is %s, skipping script generation", video.id, video.status.value)
            return

        if video.script and video.title:
            # Redelivery after the write landed: only the triggers may be missing
            logger.info("Video %s already has a script, re-emitting triggers", video.id)
            script = video.script
        else:
            logger.info("Generating script for video %s (theme %r)", video.id, video.theme)
            script, title = await asyncio.gather(
                self.scriptgen.generate_script(video.theme),
                self.scriptgen.generate_title(video.theme),
            )
            await asyncio.to_thread(self.store.update_video, video.id, script=script, title=title)
            logger.info("Video %s: script saved, title %r", video.id, title)

        await asyncio.gather(
            self.fabric.emit(Stage.VOICEOVER, {"video_id": video.id, "script": script}),
            self.fabric.emit(
                Stage.SCENES,
                {
                    "video_id": video.id,
                    "script": script,
                    "theme": video.theme,
                    "art_style": video.art_style,
                },
            ),
        )
