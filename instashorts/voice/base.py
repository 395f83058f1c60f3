from abc import ABC, abstractmethod

from instashorts.models import SpeechResult


class TTSProvider(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice_id: str) -> SpeechResult:
        """Return audio bytes plus a per-character alignment of ``text``."""

    @classmethod
    def from_config(cls, config) -> "TTSProvider":
        from instashorts.voice.edge import EdgeTTS
        from instashorts.voice.elevenlabs import ElevenLabsTTS

        providers = {"edge": EdgeTTS, "elevenlabs": ElevenLabsTTS}
        return providers[config.tts_provider](config)
