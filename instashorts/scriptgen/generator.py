"""Text generation using OpenAI: scripts, titles, scene prompts, emojis and series topics."""

from __future__ import annotations

import json
import logging
import re

import openai

from instashorts.config import settings
from instashorts.errors import GenerationError, GenerationParseError
from instashorts.models import WordTimestamp
from instashorts.scriptgen.prompts import (
    EMOJI_PROMPT,
    SCENES_PROMPT,
    SCRIPT_PROMPT,
    SERIES_TOPIC_PROMPT,
    TITLE_PROMPT,
    describe_art_style,
)

logger = logging.getLogger(__name__)

MAX_TITLE_WORDS = 10
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if the model added one."""
    return _FENCE_RE.sub("", text.strip()).strip()


def clean_title(text: str) -> str:
    """Drop punctuation and keep at most MAX_TITLE_WORDS words."""
    no_punct = re.sub(r"[^\w\s]", "", text)
    return " ".join(no_punct.split()[:MAX_TITLE_WORDS])


def parse_scene_prompts(raw: str, count: int) -> list[str]:
    """Parse the scene-generation response into exactly ``count`` prompts.

    Accepts either ``{"scenes": [...]}`` or a bare JSON array. Scene order is
    the array order; any ``sceneIndex`` the model returns is ignored.

    Raises:
        GenerationParseError: If the output is not valid JSON, has the wrong
            number of scenes, or contains an empty prompt.
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except ValueError as exc:
        raise GenerationParseError(
            f"Failed to parse scenes JSON: {exc}. Raw response: {raw[:200]}"
        ) from exc

    if isinstance(data, dict):
        data = data.get("scenes")
    if not isinstance(data, list):
        raise GenerationParseError(f"Scenes response is not a list: {raw[:200]}")
    if len(data) != count:
        raise GenerationParseError(f"Expected {count} scenes, got {len(data)}")

    prompts = []
    for i, scene in enumerate(data):
        prompt = scene.get("image_prompt") if isinstance(scene, dict) else None
        if not isinstance(prompt, str) or not prompt.strip():
            raise GenerationParseError(f"Scene {i} has no image_prompt")
        prompts.append(prompt.strip())
    return prompts


def apply_emojis(words: list[WordTimestamp], raw: str) -> list[WordTimestamp]:
    """Attach emojis from the enrichment response to the matching word indices."""
    data = json.loads(strip_code_fences(raw))
    emoji_map = {int(item["index"]): item["emoji"] for item in data["emojiWords"]}
    return [
        WordTimestamp(word=w.word, start=w.start, end=w.end, emoji=emoji_map.get(i) or w.emoji)
        for i, w in enumerate(words)
    ]


class ScriptGenerator:
    """All text-generation calls the pipeline makes. No retries happen here."""

    def __init__(self, client: openai.AsyncOpenAI | None = None, model: str | None = None):
        self.client = client or openai.AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.text_model

    async def _complete(
        self, prompt: str, *, json_mode: bool = False, temperature: float = 0.9
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                **kwargs,
            )
        except openai.OpenAIError as exc:
            raise GenerationError(f"Text generation failed: {exc}") from exc

        text = response.choices[0].message.content or ""
        if not text.strip():
            raise GenerationError("Text generation returned an empty response")
        return text

    async def generate_script(self, theme: str) -> str:
        logger.info("Generating script for theme %r", theme)
        script = (await self._complete(SCRIPT_PROMPT.format(theme=theme))).strip()
        logger.info("Script generated: %d words", len(script.split()))
        return script

    async def generate_title(self, theme: str) -> str:
        raw = await self._complete(TITLE_PROMPT.format(theme=theme), temperature=0.7)
        return clean_title(raw)

    async def generate_scene_prompts(
        self, script: str, theme: str, count: int, art_style: str | None = None
    ) -> list[str]:
        prompt = SCENES_PROMPT.format(
            count=count,
            script=script,
            theme=theme,
            art_style=describe_art_style(art_style),
        )
        raw = await self._complete(prompt, json_mode=True, temperature=0.8)
        prompts = parse_scene_prompts(raw, count)
        logger.info("Generated %d scene prompts (art style %s)", len(prompts), art_style)
        return prompts

    async def add_emojis(
        self, words: list[WordTimestamp], script: str, theme: str
    ) -> list[WordTimestamp]:
        """Attach emojis to 8-12 key words. Best effort: on any failure the
        words come back unchanged."""
        listing = "\n".join(
            f'{i}: "{w.word}" ({w.start}s - {w.end}s)' for i, w in enumerate(words)
        )
        prompt = EMOJI_PROMPT.format(script=script, theme=theme, words=listing)
        try:
            raw = await self._complete(prompt, json_mode=True, temperature=0.5)
            enriched = apply_emojis(words, raw)
        except (GenerationError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Emoji enrichment failed, using plain captions: %s", exc)
            return words
        logger.info("Added %d emojis to captions", sum(1 for w in enriched if w.emoji))
        return enriched

    async def generate_series_topic(self, theme: str) -> str:
        raw = await self._complete(SERIES_TOPIC_PROMPT.format(theme=theme))
        return raw.strip().strip('"').strip()
