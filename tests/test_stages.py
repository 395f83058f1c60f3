"""Tests for the pipeline stages with in-memory providers."""

import threading
from unittest.mock import AsyncMock, patch

import pytest

from instashorts.db import JobStore
from instashorts.errors import GenerationError, GenerationParseError, PreconditionError, RenderError
from instashorts.models import ProcessedCaptions, Scene, Series, Video, VideoStatus, WordTimestamp
from instashorts.queue.base import Stage
from instashorts.stages.gate import ReadinessGate
from instashorts.stages.render import RenderStage
from instashorts.stages.scene_image import SceneImageStage
from instashorts.stages.scenes import ScenesStage, scene_count_for
from instashorts.stages.script import ScriptStage
from instashorts.stages.voiceover import VoiceoverStage

from conftest import LONG_SCRIPT, SHORT_SCRIPT, FakeBlobs, FakeImages, FakeScriptGen, FakeTTS

BUCKET = "test-bucket"


def _voiceover_stage(store, fabric, tts=None, scriptgen=None):
    return VoiceoverStage(
        store,
        ReadinessGate(store, fabric),
        tts or FakeTTS(),
        FakeBlobs(),
        scriptgen or FakeScriptGen(),
        bucket=BUCKET,
        default_voice_id="default-voice",
        max_words_per_block=4,
    )


# ---------------------------------------------------------------------------
# Script
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_script_stage_fans_out_with_same_script(store, fabric, video):
    await ScriptStage(store, fabric, FakeScriptGen()).run({"video_id": video.id})

    got = store.get_video(video.id)
    assert got.script == SHORT_SCRIPT
    assert got.title == "When Rome Rose"

    (voiceover,) = fabric.payloads(Stage.VOICEOVER)
    (scenes,) = fabric.payloads(Stage.SCENES)
    assert voiceover == {"video_id": video.id, "script": SHORT_SCRIPT}
    assert scenes == {
        "video_id": video.id,
        "script": SHORT_SCRIPT,
        "theme": "Ancient Rome",
        "art_style": "cinematic",
    }


@pytest.mark.asyncio
async def test_script_stage_writes_nothing_if_title_fails(store, fabric, video):
    scriptgen = FakeScriptGen()
    scriptgen.generate_title = AsyncMock(side_effect=GenerationError("timeout"))

    with pytest.raises(GenerationError):
        await ScriptStage(store, fabric, scriptgen).run({"video_id": video.id})

    got = store.get_video(video.id)
    assert got.script is None and got.title is None
    assert fabric.emitted == []


@pytest.mark.asyncio
async def test_script_stage_missing_video(store, fabric):
    with pytest.raises(PreconditionError):
        await ScriptStage(store, fabric, FakeScriptGen()).run({"video_id": "missing"})


@pytest.mark.asyncio
async def test_script_stage_skips_terminal_video(store, fabric, video):
    store.mark_failed(video.id, "cancelled")
    scriptgen = FakeScriptGen()
    scriptgen.generate_script = AsyncMock()
    await ScriptStage(store, fabric, scriptgen).run({"video_id": video.id})
    scriptgen.generate_script.assert_not_awaited()
    assert fabric.emitted == []


@pytest.mark.asyncio
async def test_script_stage_redelivery_reuses_script(store, fabric, video):
    store.update_video(video.id, script="Existing script.", title="Existing")
    scriptgen = FakeScriptGen()
    scriptgen.generate_script = AsyncMock()
    await ScriptStage(store, fabric, scriptgen).run({"video_id": video.id})

    scriptgen.generate_script.assert_not_awaited()
    assert fabric.payloads(Stage.VOICEOVER)[0]["script"] == "Existing script."


@pytest.mark.asyncio
async def test_script_stage_exhaustion_fails_video(store, fabric, video):
    stage = ScriptStage(store, fabric, FakeScriptGen())
    await stage.on_exhausted({"video_id": video.id}, GenerationError("down"))
    got = store.get_video(video.id)
    assert got.status == VideoStatus.FAILED
    assert "down" in got.error


# ---------------------------------------------------------------------------
# Voiceover
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_voiceover_persists_audio_and_captions(store, fabric, video):
    stage = _voiceover_stage(store, fabric)
    await stage.run({"video_id": video.id, "script": SHORT_SCRIPT})

    got = store.get_video(video.id)
    assert got.status == VideoStatus.GENERATING_VOICEOVER
    assert got.voiceover_url.startswith(f"https://blobs.test/{BUCKET}/voiceovers/{video.id}/")
    assert got.captions_raw["alignment"]["characters"][:4] == list("Rome")
    words = got.captions_processed.words
    assert [w.word for w in words][:3] == ["Rome", "was", "not"]
    # "Rome was not built" hits the four-word limit
    assert got.captions_processed.srt.split("\n")[2] == "Rome was not built"
    (upload,) = stage.blobs.uploads
    assert upload[2] == "audio/mpeg"


@pytest.mark.asyncio
async def test_voiceover_before_scenes_does_not_render(store, fabric, video):
    await _voiceover_stage(store, fabric).run({"video_id": video.id, "script": SHORT_SCRIPT})
    assert fabric.payloads(Stage.RENDER) == []


@pytest.mark.asyncio
async def test_voiceover_empty_script_is_precondition_error(store, fabric, video):
    with pytest.raises(PreconditionError):
        await _voiceover_stage(store, fabric).run({"video_id": video.id, "script": "  "})
    assert store.get_video(video.id).voiceover_url is None


@pytest.mark.asyncio
async def test_voiceover_uses_series_voice(store, fabric):
    series = Series(theme="Space", voice_id="series-voice")
    store.create_series(series)
    v = Video(theme="Mars", series_id=series.id)
    store.create_video(v)
    tts = FakeTTS()

    await _voiceover_stage(store, fabric, tts=tts).run({"video_id": v.id, "script": "Mars."})
    assert tts.voices == ["series-voice"]


@pytest.mark.asyncio
async def test_voiceover_default_voice_and_emoji_flag(store, fabric):
    v = Video(theme="Mars", emoji_captions=True)
    store.create_video(v)
    tts, scriptgen = FakeTTS(), FakeScriptGen()

    await _voiceover_stage(store, fabric, tts=tts, scriptgen=scriptgen).run(
        {"video_id": v.id, "script": "Mars."}
    )
    assert tts.voices == ["default-voice"]
    assert scriptgen.emoji_calls == 1


@pytest.mark.asyncio
async def test_voiceover_without_emoji_flag_skips_enrichment(store, fabric, video):
    scriptgen = FakeScriptGen()
    await _voiceover_stage(store, fabric, scriptgen=scriptgen).run(
        {"video_id": video.id, "script": "Hi."}
    )
    assert scriptgen.emoji_calls == 0


@pytest.mark.asyncio
async def test_voiceover_tts_failure_leaves_video_untouched(store, fabric, video):
    tts = FakeTTS()
    tts.synthesize = AsyncMock(side_effect=GenerationError("429"))
    with pytest.raises(GenerationError):
        await _voiceover_stage(store, fabric, tts=tts).run({"video_id": video.id, "script": "Hi."})
    got = store.get_video(video.id)
    assert got.voiceover_url is None
    assert got.captions_processed is None


@pytest.mark.asyncio
async def test_voiceover_redelivery_skips_synthesis(store, fabric, video):
    captions = ProcessedCaptions(words=[WordTimestamp("Hi.", 0.0, 0.5)], srt="1\n")
    store.update_video(video.id, voiceover_url="https://a/first.mp3", captions_processed=captions)
    tts = FakeTTS()

    await _voiceover_stage(store, fabric, tts=tts).run({"video_id": video.id, "script": "Hi."})
    assert tts.voices == []
    assert store.get_video(video.id).voiceover_url == "https://a/first.mp3"


# ---------------------------------------------------------------------------
# Scenes
# ---------------------------------------------------------------------------


def test_scene_count_for():
    assert scene_count_for("") == 3
    assert scene_count_for(" ".join(["w"] * 99)) == 3
    assert scene_count_for(" ".join(["w"] * 100)) == 10
    assert scene_count_for(" ".join(["w"] * 500)) == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("script,expected", [(SHORT_SCRIPT, 3), (LONG_SCRIPT, 10)])
async def test_scenes_stage_inserts_and_fans_out(store, fabric, video, script, expected):
    scriptgen = FakeScriptGen()
    await ScenesStage(store, fabric, scriptgen).run(
        {"video_id": video.id, "script": script, "theme": "Ancient Rome", "art_style": "anime"}
    )

    assert scriptgen.scene_calls == [(script, "Ancient Rome", expected, "anime")]
    scenes = store.get_scenes(video.id)
    assert [s.scene_index for s in scenes] == list(range(expected))
    triggers = fabric.payloads(Stage.SCENE_IMAGE)
    assert len(triggers) == expected
    assert {t["scene_id"] for t in triggers} == {s.id for s in scenes}
    assert all(t["image_prompt"] and t["video_id"] == video.id for t in triggers)
    assert store.get_video(video.id).status == VideoStatus.GENERATING_SCENES


@pytest.mark.asyncio
async def test_scenes_malformed_output_leaves_no_rows(store, fabric, video):
    scriptgen = FakeScriptGen()
    scriptgen.generate_scene_prompts = AsyncMock(
        side_effect=GenerationParseError("Failed to parse scenes JSON")
    )
    with pytest.raises(GenerationParseError):
        await ScenesStage(store, fabric, scriptgen).run(
            {"video_id": video.id, "script": SHORT_SCRIPT, "theme": "Rome", "art_style": None}
        )
    assert store.get_scenes(video.id) == []
    assert fabric.emitted == []


@pytest.mark.asyncio
async def test_scenes_empty_script(store, fabric, video):
    with pytest.raises(PreconditionError):
        await ScenesStage(store, fabric, FakeScriptGen()).run({"video_id": video.id, "script": ""})


@pytest.mark.asyncio
async def test_scenes_redelivery_reemits_missing_images(store, fabric, video):
    scenes = [Scene(video_id=video.id, scene_index=i, image_prompt=f"p{i}") for i in range(3)]
    store.create_scenes(scenes)
    store.set_scene_image(scenes[0].id, "https://img/0.png")
    scriptgen = FakeScriptGen()

    await ScenesStage(store, fabric, scriptgen).run({"video_id": video.id, "script": SHORT_SCRIPT})

    assert scriptgen.scene_calls == []
    assert len(store.get_scenes(video.id)) == 3
    assert [t["scene_id"] for t in fabric.payloads(Stage.SCENE_IMAGE)] == [
        scenes[1].id,
        scenes[2].id,
    ]


@pytest.mark.asyncio
async def test_scenes_exhaustion_fails_video(store, fabric, video):
    await ScenesStage(store, fabric, FakeScriptGen()).on_exhausted(
        {"video_id": video.id}, GenerationParseError("bad json")
    )
    assert store.get_video(video.id).status == VideoStatus.FAILED


# ---------------------------------------------------------------------------
# Scene image
# ---------------------------------------------------------------------------


def _scene_image_stage(store, fabric, images=None, blobs=None):
    return SceneImageStage(
        store, ReadinessGate(store, fabric), images or FakeImages(), blobs or FakeBlobs(), bucket=BUCKET
    )


def _ready_for_images(store, video, n=3):
    captions = ProcessedCaptions(words=[WordTimestamp("Hi", 0.0, 0.5)], srt="1\n")
    store.update_video(video.id, voiceover_url="https://a/v.mp3", captions_processed=captions)
    scenes = [Scene(video_id=video.id, scene_index=i, image_prompt=f"p{i}") for i in range(n)]
    store.create_scenes(scenes)
    return scenes


def _image_payload(scene):
    return {"video_id": scene.video_id, "scene_id": scene.id, "image_prompt": scene.image_prompt}


@pytest.mark.asyncio
async def test_scene_image_sets_only_its_scene(store, fabric, video):
    scenes = _ready_for_images(store, video)
    blobs = FakeBlobs()
    await _scene_image_stage(store, fabric, blobs=blobs).run(_image_payload(scenes[1]))

    got = store.get_scenes(video.id)
    assert got[0].image_url is None and got[2].image_url is None
    assert got[1].image_url == f"https://blobs.test/{BUCKET}/scenes/{video.id}/{scenes[1].id}.png"
    assert blobs.uploads[0][2] == "image/png"
    assert store.get_video(video.id).status == VideoStatus.GENERATING_IMAGES
    assert fabric.payloads(Stage.RENDER) == []


@pytest.mark.asyncio
async def test_last_scene_image_triggers_render(store, fabric, video):
    scenes = _ready_for_images(store, video)
    stage = _scene_image_stage(store, fabric)
    for scene in scenes:
        await stage.run(_image_payload(scene))

    assert fabric.payloads(Stage.RENDER) == [{"video_id": video.id}]
    assert store.get_video(video.id).status == VideoStatus.QUEUED_FOR_RENDERING


@pytest.mark.asyncio
async def test_scene_image_redelivery_skips_generation(store, fabric, video):
    scenes = _ready_for_images(store, video, n=1)
    store.set_scene_image(scenes[0].id, "https://img/already.png")
    images = FakeImages()

    await _scene_image_stage(store, fabric, images=images).run(_image_payload(scenes[0]))
    assert images.prompts == []
    assert len(fabric.payloads(Stage.RENDER)) == 1


@pytest.mark.asyncio
async def test_scene_image_empty_prompt(store, fabric, video):
    scenes = _ready_for_images(store, video, n=1)
    payload = _image_payload(scenes[0]) | {"image_prompt": ""}
    with pytest.raises(PreconditionError):
        await _scene_image_stage(store, fabric).run(payload)


@pytest.mark.asyncio
async def test_scene_image_exhaustion_does_not_fail_video(store, fabric, video):
    scenes = _ready_for_images(store, video)
    store.advance_status(video.id, VideoStatus.GENERATING_IMAGES)
    await _scene_image_stage(store, fabric).on_exhausted(
        _image_payload(scenes[0]), GenerationError("content policy")
    )
    assert store.get_video(video.id).status == VideoStatus.GENERATING_IMAGES


# ---------------------------------------------------------------------------
# Render
# ---------------------------------------------------------------------------


def _queued_video(store, video):
    scenes = _ready_for_images(store, video)
    for scene in scenes:
        store.set_scene_image(scene.id, f"https://img/{scene.scene_index}.png")
    store.advance_status(video.id, VideoStatus.QUEUED_FOR_RENDERING)
    return scenes


class FakeRender:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def __call__(self, image_urls, audio_url, words, output_path, **kwargs):
        self.calls.append((image_urls, audio_url, output_path, kwargs))
        output_path.write_bytes(b"mp4-bytes")
        if self.error:
            raise self.error
        return output_path


@pytest.mark.asyncio
async def test_render_completes_video(store, video):
    _queued_video(store, video)
    blobs = FakeBlobs()
    fake = FakeRender()
    with patch("instashorts.stages.render.assembler.render_video", fake):
        await RenderStage(store, blobs, bucket=BUCKET).run({"video_id": video.id})

    got = store.get_video(video.id)
    assert got.status == VideoStatus.COMPLETED
    assert got.video_url.startswith(f"https://blobs.test/{BUCKET}/videos/{video.id}/")
    assert got.completed_at is not None

    image_urls, audio_url, output_path, kwargs = fake.calls[0]
    assert image_urls == ["https://img/0.png", "https://img/1.png", "https://img/2.png"]
    assert audio_url == "https://a/v.mp3"
    assert kwargs["duration"] == pytest.approx(1.0)
    assert kwargs["fps"] == 30
    assert kwargs["highlight_color"] == "#FFD700"
    assert not output_path.parent.exists()
    assert blobs.uploads[0][2] == "video/mp4"


@pytest.mark.asyncio
async def test_render_failure_fails_video_and_cleans_up(store, video):
    _queued_video(store, video)
    fake = FakeRender(error=RenderError("Render exceeded 300s"))
    with patch("instashorts.stages.render.assembler.render_video", fake):
        with pytest.raises(RenderError):
            await RenderStage(store, FakeBlobs(), bucket=BUCKET).run({"video_id": video.id})

    got = store.get_video(video.id)
    assert got.status == VideoStatus.FAILED
    assert "300s" in got.error
    assert not fake.calls[0][2].parent.exists()


@pytest.mark.asyncio
async def test_render_duplicate_delivery_is_noop(store, video):
    _queued_video(store, video)
    fake = FakeRender()
    with patch("instashorts.stages.render.assembler.render_video", fake):
        stage = RenderStage(store, FakeBlobs(), bucket=BUCKET)
        await stage.run({"video_id": video.id})
        await stage.run({"video_id": video.id})

    assert len(fake.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [VideoStatus.PENDING, VideoStatus.GENERATING_VOICEOVER, VideoStatus.GENERATING_IMAGES],
)
async def test_render_ignores_video_not_queued(store, video, status):
    _ready_for_images(store, video)
    if status is not VideoStatus.PENDING:
        store.advance_status(video.id, status)
    fake = FakeRender()
    with patch("instashorts.stages.render.assembler.render_video", fake):
        await RenderStage(store, FakeBlobs(), bucket=BUCKET).run({"video_id": video.id})

    assert fake.calls == []
    got = store.get_video(video.id)
    assert got.status == status
    assert got.error is None


@pytest.mark.asyncio
async def test_render_revalidates_inputs(store, video):
    scenes = _ready_for_images(store, video)
    store.set_scene_image(scenes[0].id, "https://img/0.png")
    # Queued without every image, e.g. by a manual status edit
    store.advance_status(video.id, VideoStatus.QUEUED_FOR_RENDERING)
    fake = FakeRender()
    with patch("instashorts.stages.render.assembler.render_video", fake):
        with pytest.raises(PreconditionError):
            await RenderStage(store, FakeBlobs(), bucket=BUCKET).run({"video_id": video.id})

    assert fake.calls == []
    assert store.get_video(video.id).status == VideoStatus.FAILED


# ---------------------------------------------------------------------------
# Event loop
# ---------------------------------------------------------------------------


class ThreadRecordingStore(JobStore):
    """Records the threads that open database connections."""

    def __init__(self, database_path):
        super().__init__(database_path)
        self.threads = set()

    def get_connection(self):
        self.threads.add(threading.get_ident())
        return super().get_connection()


@pytest.mark.asyncio
async def test_stages_keep_database_work_off_the_event_loop(tmp_path, fabric):
    loop_thread = threading.get_ident()
    store = ThreadRecordingStore(str(tmp_path / "threads.db"))
    store.init_db()
    video = Video(theme="Ancient Rome")
    store.create_video(video)

    store.threads.clear()
    await ScriptStage(store, fabric, FakeScriptGen()).run({"video_id": video.id})
    assert store.threads
    assert loop_thread not in store.threads

    _queued_video(store, video)
    store.threads.clear()
    with patch("instashorts.stages.render.assembler.render_video", FakeRender()):
        await RenderStage(store, FakeBlobs(), bucket=BUCKET).run({"video_id": video.id})
    render_threads = set(store.threads)
    assert render_threads
    assert loop_thread not in render_threads
    assert store.get_video(video.id).status == VideoStatus.COMPLETED
