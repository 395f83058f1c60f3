from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def new_id() -> str:
    return secrets.token_urlsafe(16)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING_VOICEOVER = "GENERATING_VOICEOVER"
    GENERATING_SCENES = "GENERATING_SCENES"
    GENERATING_IMAGES = "GENERATING_IMAGES"
    QUEUED_FOR_RENDERING = "QUEUED_FOR_RENDERING"
    RENDERING = "RENDERING"
    UPLOADING_FINAL_VIDEO = "UPLOADING_FINAL_VIDEO"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self) if self in _STATUS_ORDER else len(_STATUS_ORDER)

    def can_transition_to(self, new: VideoStatus) -> bool:
        if self.is_terminal:
            return False
        if new is VideoStatus.FAILED:
            return True
        return new.rank > self.rank

    @classmethod
    def allowed_predecessors(cls, new: VideoStatus) -> list[VideoStatus]:
        """Statuses a job may be in for a transition to ``new`` to be legal."""
        return [s for s in cls if s.can_transition_to(new)]


# Forward order of the state machine. FAILED sits outside it.
_STATUS_ORDER = [
    VideoStatus.PENDING,
    VideoStatus.GENERATING_VOICEOVER,
    VideoStatus.GENERATING_SCENES,
    VideoStatus.GENERATING_IMAGES,
    VideoStatus.QUEUED_FOR_RENDERING,
    VideoStatus.RENDERING,
    VideoStatus.UPLOADING_FINAL_VIDEO,
    VideoStatus.COMPLETED,
]

GENERATING_STATUSES = (
    VideoStatus.PENDING,
    VideoStatus.GENERATING_VOICEOVER,
    VideoStatus.GENERATING_SCENES,
    VideoStatus.GENERATING_IMAGES,
)


class CaptionPosition(str, Enum):
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


DEFAULT_HIGHLIGHT_COLOR = "#FFD700"


@dataclass
class WordTimestamp:
    word: str
    start: float
    end: float
    emoji: str | None = None

    def to_dict(self) -> dict:
        data = {"word": self.word, "start": self.start, "end": self.end}
        if self.emoji:
            data["emoji"] = self.emoji
        return data

    @classmethod
    def from_dict(cls, data: dict) -> WordTimestamp:
        return cls(
            word=data["word"],
            start=float(data["start"]),
            end=float(data["end"]),
            emoji=data.get("emoji"),
        )


@dataclass
class CharacterAlignment:
    characters: list[str]
    starts: list[float]
    ends: list[float]

    def __post_init__(self):
        if not (len(self.characters) == len(self.starts) == len(self.ends)):
            raise ValueError(
                f"alignment arrays differ in length: {len(self.characters)} chars, "
                f"{len(self.starts)} starts, {len(self.ends)} ends"
            )

    def to_dict(self) -> dict:
        return {
            "characters": self.characters,
            "character_start_times_seconds": self.starts,
            "character_end_times_seconds": self.ends,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CharacterAlignment:
        return cls(
            characters=list(data["characters"]),
            starts=[float(t) for t in data["character_start_times_seconds"]],
            ends=[float(t) for t in data["character_end_times_seconds"]],
        )


@dataclass
class SpeechResult:
    audio: bytes
    alignment: CharacterAlignment
    normalized_alignment: CharacterAlignment | None = None


@dataclass
class ProcessedCaptions:
    words: list[WordTimestamp]
    srt: str

    def to_dict(self) -> dict:
        return {"words": [w.to_dict() for w in self.words], "srt": self.srt}

    @classmethod
    def from_dict(cls, data: dict) -> ProcessedCaptions:
        return cls(
            words=[WordTimestamp.from_dict(w) for w in data.get("words", [])],
            srt=data.get("srt", ""),
        )


@dataclass
class Video:
    theme: str
    id: str = field(default_factory=new_id)
    status: VideoStatus = VideoStatus.PENDING
    title: str | None = None
    script: str | None = None
    voiceover_url: str | None = None
    captions_raw: dict | None = None
    captions_processed: ProcessedCaptions | None = None
    video_url: str | None = None
    art_style: str | None = None
    caption_highlight_color: str = DEFAULT_HIGHLIGHT_COLOR
    caption_position: CaptionPosition = CaptionPosition.BOTTOM
    emoji_captions: bool = False
    series_id: str | None = None
    user_id: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None


@dataclass
class Scene:
    video_id: str
    scene_index: int
    image_prompt: str
    id: str = field(default_factory=new_id)
    image_url: str | None = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class Series:
    theme: str
    id: str = field(default_factory=new_id)
    name: str | None = None
    art_style: str | None = None
    voice_id: str | None = None
    caption_highlight_color: str = DEFAULT_HIGHLIGHT_COLOR
    caption_position: CaptionPosition = CaptionPosition.BOTTOM
    emoji_captions: bool = False
    schedule: str = "daily"
    is_active: bool = True
    user_id: str | None = None
    created_at: datetime = field(default_factory=_now)
