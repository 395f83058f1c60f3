from __future__ import annotations

import edge_tts

from instashorts.errors import GenerationError
from instashorts.models import CharacterAlignment, SpeechResult
from instashorts.voice.base import TTSProvider

TICKS_PER_SECOND = 10_000_000  # edge-tts offsets are in 100ns units


def boundaries_to_alignment(boundaries: list[tuple[str, float, float]]) -> CharacterAlignment:
    """Spread each (word, start, end) boundary evenly over its characters.

    Words are joined by a single space spanning the silence between them.
    """
    chars: list[str] = []
    starts: list[float] = []
    ends: list[float] = []
    prev_end = 0.0

    for word, start, end in boundaries:
        if chars:
            chars.append(" ")
            starts.append(prev_end)
            ends.append(start)
        step = (end - start) / len(word) if word else 0.0
        for i, char in enumerate(word):
            chars.append(char)
            starts.append(start + i * step)
            ends.append(start + (i + 1) * step)
        prev_end = end

    return CharacterAlignment(characters=chars, starts=starts, ends=ends)


class EdgeTTS(TTSProvider):
    VOICE = "en-US-GuyNeural"

    def __init__(self, config):
        self.config = config

    async def synthesize(self, text: str, voice_id: str) -> SpeechResult:
        # Series voices are ElevenLabs ids; only edge voice names apply here.
        voice = voice_id if voice_id and voice_id.endswith("Neural") else self.VOICE
        communicate = edge_tts.Communicate(text, voice, boundary="WordBoundary")

        audio = bytearray()
        boundaries: list[tuple[str, float, float]] = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
            elif chunk["type"] == "WordBoundary":
                start = chunk["offset"] / TICKS_PER_SECOND
                end = (chunk["offset"] + chunk["duration"]) / TICKS_PER_SECOND
                boundaries.append((chunk["text"], start, end))

        if not audio:
            raise GenerationError("edge-tts returned no audio")
        return SpeechResult(audio=bytes(audio), alignment=boundaries_to_alignment(boundaries))
