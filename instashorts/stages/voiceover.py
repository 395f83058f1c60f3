from __future__ import annotations

import asyncio
import logging

from instashorts.db import JobStore
from instashorts.errors import PreconditionError
from instashorts.models import ProcessedCaptions, VideoStatus
from instashorts.queue.base import Stage
from instashorts.scriptgen.generator import ScriptGenerator
from instashorts.stages.base import JobStage
from instashorts.stages.gate import ReadinessGate
from instashorts.storage.base import BlobStore, voiceover_path
from instashorts.video.captions import words_to_srt
from instashorts.voice.base import TTSProvider
from instashorts.voice.timestamps import characters_to_words

logger = logging.getLogger(__name__)


class VoiceoverStage(JobStage):
    """Narrates the script, derives word timings and captions, then runs the gate."""

    stage = Stage.VOICEOVER

    def __init__(
        self,
        store: JobStore,
        gate: ReadinessGate,
        tts: TTSProvider,
        blobs: BlobStore,
        scriptgen: ScriptGenerator,
        bucket: str,
        default_voice_id: str,
        max_words_per_block: int = 10,
    ):
        super().__init__(store)
        self.gate = gate
        self.tts = tts
        self.blobs = blobs
        self.scriptgen = scriptgen
        self.bucket = bucket
        self.default_voice_id = default_voice_id
        self.max_words_per_block = max_words_per_block

    def resolve_voice(self, series_id: str | None) -> str:
        if series_id:
            series = self.store.get_series(series_id)
            if series and series.voice_id:
                return series.voice_id
        return self.default_voice_id

    async def run(self, payload: dict) -> None:
        script = (payload.get("script") or "").strip()
        if not script:
            raise PreconditionError("Voiceover needs a non-empty script")
        video = await self.load_video(payload.get("video_id"))
        if video.status.is_terminal:
            logger.info("Video %s is %s, skipping voiceover", video.id, video.status.value)
            return
        if video.voiceover_url and video.captions_processed is not None:
            logger.info("Video %s already has a voiceover, skipping synthesis", video.id)
            await self.gate.check(video.id)
            return

        await asyncio.to_thread(self.store.advance_status, video.id, VideoStatus.GENERATING_VOICEOVER)
        voice_id = await asyncio.to_thread(self.resolve_voice, video.series_id)
        logger.info("Synthesizing voiceover for video %s with voice %s", video.id, voice_id)
        speech = await self.tts.synthesize(script, voice_id)

        words = characters_to_words(speech.alignment)
        if video.emoji_captions:
            words = await self.scriptgen.add_emojis(words, script, video.theme)
        captions = ProcessedCaptions(
            words=words, srt=words_to_srt(words, self.max_words_per_block)
        )

        url = await self.blobs.upload(
            self.bucket, speech.audio, voiceover_path(video.id), "audio/mpeg"
        )
        captions_raw = {"alignment": speech.alignment.to_dict()}
        if speech.normalized_alignment is not None:
            captions_raw["normalized_alignment"] = speech.normalized_alignment.to_dict()
        await asyncio.to_thread(
            self.store.update_video,
            video.id,
            voiceover_url=url,
            captions_raw=captions_raw,
            captions_processed=captions,
        )
        logger.info("Video %s: voiceover saved (%d words)", video.id, len(words))

        await self.gate.check(video.id)
