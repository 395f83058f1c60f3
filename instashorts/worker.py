"""Builds the stage graph from settings and binds it to a queue fabric."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from instashorts.db import JobStore
from instashorts.imagegen.generator import ImageGenerator
from instashorts.queue.base import EventFabric, policies_from_config
from instashorts.queue.local import LocalFabric
from instashorts.queue.redis_queue import RedisFabric
from instashorts.scheduler import SeriesScheduler
from instashorts.scriptgen.generator import ScriptGenerator
from instashorts.stages.gate import ReadinessGate
from instashorts.stages.render import RenderStage
from instashorts.stages.scene_image import SceneImageStage
from instashorts.stages.scenes import ScenesStage
from instashorts.stages.script import ScriptStage
from instashorts.stages.voiceover import VoiceoverStage
from instashorts.storage.base import BlobStore
from instashorts.voice.base import TTSProvider

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    store: JobStore
    fabric: EventFabric
    gate: ReadinessGate
    scheduler: SeriesScheduler
    script: ScriptStage
    voiceover: VoiceoverStage
    scenes: ScenesStage
    scene_image: SceneImageStage
    render: RenderStage


def make_fabric(config) -> EventFabric:
    policies = policies_from_config(config)
    if config.queue_backend == "redis":
        return RedisFabric.from_url(config.redis_url, policies)
    if config.queue_backend == "local":
        return LocalFabric(policies)
    raise ValueError(f"Unknown queue backend: {config.queue_backend}")


def build_pipeline(
    config,
    store: JobStore | None = None,
    fabric: EventFabric | None = None,
    scriptgen: ScriptGenerator | None = None,
    tts: TTSProvider | None = None,
    images: ImageGenerator | None = None,
    blobs: BlobStore | None = None,
) -> Pipeline:
    """Wire every stage to its collaborators and register it on the fabric.

    Anything not passed in is built from ``config``.
    """
    if store is None:
        store = JobStore(config.database_path)
        store.init_db()
    fabric = fabric or make_fabric(config)
    scriptgen = scriptgen or ScriptGenerator(model=config.text_model)
    tts = tts or TTSProvider.from_config(config)
    images = images or ImageGenerator(model=config.image_model, size=config.image_size)
    blobs = blobs or BlobStore.from_config(config)
    bucket = config.gcs_bucket_name

    gate = ReadinessGate(store, fabric)
    pipeline = Pipeline(
        store=store,
        fabric=fabric,
        gate=gate,
        scheduler=SeriesScheduler(store, fabric, scriptgen, config.stuck_job_timeout_hours),
        script=ScriptStage(store, fabric, scriptgen),
        voiceover=VoiceoverStage(
            store,
            gate,
            tts,
            blobs,
            scriptgen,
            bucket=bucket,
            default_voice_id=config.default_voice_id,
            max_words_per_block=config.max_words_per_block,
        ),
        scenes=ScenesStage(store, fabric, scriptgen),
        scene_image=SceneImageStage(store, gate, images, blobs, bucket=bucket),
        render=RenderStage(
            store,
            blobs,
            bucket=bucket,
            fps=config.render_fps,
            duration_buffer=config.render_duration_buffer,
            timeout=config.render_timeout,
        ),
    )

    for handler in (
        pipeline.script,
        pipeline.voiceover,
        pipeline.scenes,
        pipeline.scene_image,
        pipeline.render,
    ):
        fabric.register(handler)
    logger.info("Pipeline wired on %s", type(fabric).__name__)
    return pipeline
