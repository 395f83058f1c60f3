"""ElevenLabs text-to-speech with character-level timestamps."""

from __future__ import annotations

import base64
import logging

import httpx

from instashorts.errors import GenerationError
from instashorts.models import CharacterAlignment, SpeechResult
from instashorts.voice.base import TTSProvider

logger = logging.getLogger(__name__)

API_BASE = "https://api.elevenlabs.io/v1"
OUTPUT_FORMAT = "mp3_44100_128"


def parse_timestamp_response(data: dict) -> SpeechResult:
    """Build a SpeechResult from a ``with-timestamps`` JSON response."""
    try:
        audio = base64.b64decode(data["audio_base64"])
        alignment = CharacterAlignment.from_dict(data["alignment"])
        normalized = data.get("normalized_alignment")
        return SpeechResult(
            audio=audio,
            alignment=alignment,
            normalized_alignment=CharacterAlignment.from_dict(normalized) if normalized else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise GenerationError(f"Malformed ElevenLabs response: {exc}") from exc


class ElevenLabsTTS(TTSProvider):
    def __init__(self, config, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client

    async def synthesize(self, text: str, voice_id: str) -> SpeechResult:
        url = f"{API_BASE}/text-to-speech/{voice_id}/with-timestamps"
        payload = {"text": text, "model_id": self.config.elevenlabs_model}
        headers = {"xi-api-key": self.config.elevenlabs_api_key}

        logger.info("Synthesizing %d chars with ElevenLabs voice %s", len(text), voice_id)
        try:
            if self.client is not None:
                resp = await self.client.post(
                    url, json=payload, headers=headers, params={"output_format": OUTPUT_FORMAT}
                )
            else:
                async with httpx.AsyncClient(timeout=120) as client:
                    resp = await client.post(
                        url, json=payload, headers=headers, params={"output_format": OUTPUT_FORMAT}
                    )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GenerationError(f"ElevenLabs synthesis failed: {exc}") from exc

        result = parse_timestamp_response(data)
        logger.info(
            "Voiceover synthesized: %d bytes, %d aligned characters",
            len(result.audio),
            len(result.alignment.characters),
        )
        return result
