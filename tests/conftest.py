"""Shared fixtures: a temp job store and in-memory stand-ins for every provider."""

import threading

import pytest

from instashorts.db import JobStore
from instashorts.models import CharacterAlignment, SpeechResult, Video
from instashorts.queue.base import EventFabric

LONG_SCRIPT = " ".join(f"word{i}" for i in range(120)) + "."
SHORT_SCRIPT = "Rome was not built in a day. It took centuries of work."


def alignment_for(text: str, step: float = 0.05) -> CharacterAlignment:
    return CharacterAlignment(
        characters=list(text),
        starts=[i * step for i in range(len(text))],
        ends=[(i + 1) * step for i in range(len(text))],
    )


class RecordingFabric(EventFabric):
    """Records emits instead of delivering them. Safe to share across threads."""

    def __init__(self):
        super().__init__()
        self.emitted: list[tuple] = []
        self._lock = threading.Lock()

    async def emit(self, stage, payload):
        with self._lock:
            self.emitted.append((stage, dict(payload)))

    def payloads(self, stage) -> list[dict]:
        return [p for s, p in self.emitted if s == stage]


class FakeScriptGen:
    def __init__(self, script=SHORT_SCRIPT, title="When Rome Rose", prompts=None):
        self.script = script
        self.title = title
        self.prompts = prompts
        self.scene_calls = []
        self.emoji_calls = 0

    async def generate_script(self, theme):
        return self.script

    async def generate_title(self, theme):
        return self.title

    async def generate_scene_prompts(self, script, theme, count, art_style=None):
        self.scene_calls.append((script, theme, count, art_style))
        if self.prompts is not None:
            return self.prompts
        return [f"{theme} scene {i}" for i in range(count)]

    async def add_emojis(self, words, script, theme):
        self.emoji_calls += 1
        return words

    async def generate_series_topic(self, theme):
        return f"A specific story about {theme}"


class FakeTTS:
    def __init__(self):
        self.voices = []

    async def synthesize(self, text, voice_id):
        self.voices.append(voice_id)
        return SpeechResult(audio=b"ID3-audio", alignment=alignment_for(text))


class FakeImages:
    def __init__(self):
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        return b"\x89PNG-fake"


class FakeBlobs:
    def __init__(self):
        self.uploads = []

    async def upload(self, bucket, data, path, content_type):
        self.uploads.append((bucket, path, content_type, len(data)))
        return f"https://blobs.test/{bucket}/{path}"


@pytest.fixture
def store(tmp_path):
    job_store = JobStore(str(tmp_path / "test.db"))
    job_store.init_db()
    return job_store


@pytest.fixture
def fabric():
    return RecordingFabric()


@pytest.fixture
def video(store):
    v = Video(theme="Ancient Rome", art_style="cinematic")
    store.create_video(v)
    return v
