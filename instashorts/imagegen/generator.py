"""Scene image generation using the OpenAI Images API."""

from __future__ import annotations

import base64
import logging

import httpx
import openai

from instashorts.config import settings
from instashorts.errors import GenerationError

logger = logging.getLogger(__name__)


class ImageGenerator:
    def __init__(
        self,
        client: openai.AsyncOpenAI | None = None,
        model: str | None = None,
        size: str | None = None,
    ):
        self.client = client or openai.AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.image_model
        self.size = size or settings.image_size

    async def generate(self, prompt: str) -> bytes:
        """Generate one portrait image for ``prompt`` and return its bytes."""
        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1,
            )
        except openai.OpenAIError as exc:
            raise GenerationError(f"Image generation failed: {exc}") from exc

        if not response.data:
            raise GenerationError("Image generation returned no images")
        image = response.data[0]

        if image.b64_json:
            data = base64.b64decode(image.b64_json)
        elif image.url:
            data = await _download(image.url)
        else:
            raise GenerationError("Image generation returned neither data nor a URL")

        logger.info("Generated image: %d bytes", len(data))
        return data


async def _download(url: str) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=60) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.content
    except httpx.HTTPError as exc:
        raise GenerationError(f"Failed to fetch generated image: {exc}") from exc
