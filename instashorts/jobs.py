"""Entry points that create work: single videos and recurring series."""

from __future__ import annotations

import asyncio
import logging
import re

from instashorts.db import JobStore
from instashorts.models import DEFAULT_HIGHLIGHT_COLOR, CaptionPosition, Series, Video
from instashorts.queue.base import EventFabric, Stage
from instashorts.scriptgen.prompts import ART_STYLES

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def validate_styling(art_style: str | None, highlight_color: str) -> None:
    """Raise ValueError for an unknown art style or a malformed ``#RRGGBB`` colour."""
    if art_style and art_style not in ART_STYLES:
        raise ValueError(
            f"Unknown art style {art_style!r}; choose from {', '.join(sorted(ART_STYLES))}"
        )
    if not _HEX_COLOR.match(highlight_color):
        raise ValueError(f"Highlight colour must look like #RRGGBB, got {highlight_color!r}")


async def start_video(fabric: EventFabric, video_id: str) -> None:
    """Emit the Script trigger that starts the pipeline for ``video_id``."""
    await fabric.emit(Stage.SCRIPT, {"video_id": video_id})


async def create_video(
    store: JobStore,
    fabric: EventFabric,
    theme: str,
    art_style: str | None = None,
    caption_highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
    caption_position: CaptionPosition | str = CaptionPosition.BOTTOM,
    emoji_captions: bool = False,
    series_id: str | None = None,
    user_id: str | None = None,
) -> str:
    """Create a PENDING video and start the pipeline for it.

    Args:
        store: Job store the video row is written to.
        fabric: Fabric that receives the Script trigger.
        theme: What the video is about. Must not be blank.
        art_style: Key of ``ART_STYLES``, or None for the default look.
        caption_highlight_color: Karaoke highlight colour as ``#RRGGBB``.
        caption_position: Where captions are drawn.
        emoji_captions: Whether to decorate key words with emojis.
        series_id: Series that produced this video, if any.
        user_id: Owner reference.

    Returns:
        The new video's id.

    Raises:
        ValueError: If the theme is blank or the styling is invalid.
    """
    theme = theme.strip()
    if not theme:
        raise ValueError("Theme must not be empty")
    validate_styling(art_style, caption_highlight_color)

    video = Video(
        theme=theme,
        art_style=art_style,
        caption_highlight_color=caption_highlight_color,
        caption_position=CaptionPosition(caption_position),
        emoji_captions=emoji_captions,
        series_id=series_id,
        user_id=user_id,
    )
    await asyncio.to_thread(store.create_video, video)
    logger.info("Created video %s (theme %r)", video.id, theme)
    await start_video(fabric, video.id)
    return video.id


def create_series(
    store: JobStore,
    theme: str,
    name: str | None = None,
    art_style: str | None = None,
    voice_id: str | None = None,
    caption_highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
    caption_position: CaptionPosition | str = CaptionPosition.BOTTOM,
    emoji_captions: bool = False,
    user_id: str | None = None,
) -> str:
    theme = theme.strip()
    if not theme:
        raise ValueError("Theme must not be empty")
    validate_styling(art_style, caption_highlight_color)

    series = Series(
        theme=theme,
        name=name or theme,
        art_style=art_style,
        voice_id=voice_id,
        caption_highlight_color=caption_highlight_color,
        caption_position=CaptionPosition(caption_position),
        emoji_captions=emoji_captions,
        user_id=user_id,
    )
    store.create_series(series)
    logger.info("Created series %s (theme %r)", series.id, theme)
    return series.id


def toggle_series(store: JobStore, series_id: str) -> bool:
    """Flip a series between active and paused. Returns the new state."""
    series = store.get_series(series_id)
    if series is None:
        raise KeyError(series_id)
    store.set_series_active(series_id, not series.is_active)
    logger.info("Series %s is now %s", series_id, "active" if not series.is_active else "paused")
    return not series.is_active
