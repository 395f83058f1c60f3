"""Caption formats: SRT blocks for storage and ASS karaoke subtitles for rendering."""

from __future__ import annotations

import logging
from pathlib import Path

from instashorts.models import CaptionPosition, WordTimestamp

logger = logging.getLogger(__name__)

# ASS file header for 9:16 vertical video (1080x1920)
ASS_HEADER = """\
[Script Info]
Title: InstaShorts Captions
ScriptType: v4.00+
PlayResX: 1080
PlayResY: 1920
WrapStyle: 0
ScaledBorderAndShadow: yes

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,Arial Black,64,{highlight},&H00FFFFFF,&H00000000,&H80000000,-1,0,0,0,100,100,0,0,1,4,1,{alignment},60,60,{margin_v},1

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""

WORDS_PER_PAGE = 5
SENTENCE_END = (".", "!", "?")

# Numpad-style ASS alignment, bottom-centre = 2
_ALIGNMENT = {
    CaptionPosition.TOP: (8, 220),
    CaptionPosition.MIDDLE: (5, 0),
    CaptionPosition.BOTTOM: (2, 300),
}


def format_srt_time(seconds: float) -> str:
    """Convert seconds to an SRT timestamp (HH:MM:SS,mmm), truncating to milliseconds."""
    # Round off float noise first so 1.001 stays 1001 ms
    total_ms = int(round(max(seconds, 0.0) * 1000, 6))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _group_blocks(words: list[WordTimestamp], max_words: int) -> list[list[WordTimestamp]]:
    blocks: list[list[WordTimestamp]] = []
    current: list[WordTimestamp] = []
    for word in words:
        current.append(word)
        if len(current) >= max_words or word.word.endswith(SENTENCE_END):
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def words_to_srt(words: list[WordTimestamp], max_words: int = 10) -> str:
    """Group word timings into numbered SRT blocks.

    A block closes when it holds ``max_words`` words or when a word ends a
    sentence (``.``, ``!`` or ``?``).
    """
    if max_words < 1:
        raise ValueError("max_words must be at least 1")

    entries = []
    for index, block in enumerate(_group_blocks(words, max_words), 1):
        text = " ".join(w.word for w in block)
        entries.append(
            f"{index}\n"
            f"{format_srt_time(block[0].start)} --> {format_srt_time(block[-1].end)}\n"
            f"{text}\n"
        )
    return "\n".join(entries)


def _format_ass_time(seconds: float) -> str:
    """Convert seconds to ASS timestamp format (H:MM:SS.cc)."""
    total_cs = int(round(max(seconds, 0.0) * 100))
    hours, rest = divmod(total_cs, 360_000)
    minutes, rest = divmod(rest, 6000)
    secs, centiseconds = divmod(rest, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centiseconds:02d}"


def hex_to_ass_color(color: str) -> str:
    """Convert ``#RRGGBB`` to the ASS ``&H00BBGGRR`` form."""
    value = color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected a #RRGGBB colour, got {color!r}")
    rr, gg, bb = value[0:2], value[2:4], value[4:6]
    return f"&H00{bb}{gg}{rr}".upper()


def generate_captions(
    words: list[WordTimestamp],
    output_path: Path,
    highlight_color: str = "#FFD700",
    position: CaptionPosition = CaptionPosition.BOTTOM,
) -> Path:
    """Write an ASS subtitle file with karaoke-style word-by-word highlighting.

    Words are shown a page of WORDS_PER_PAGE at a time; each word fills with
    the highlight colour while it is spoken, using ``\\kf`` tags. Words that
    carry an emoji get it appended.

    Returns:
        The output_path after writing the file.
    """
    logger.info("Generating captions from %d words", len(words))

    alignment, margin_v = _ALIGNMENT[CaptionPosition(position)]
    header = ASS_HEADER.format(
        highlight=hex_to_ass_color(highlight_color),
        alignment=alignment,
        margin_v=margin_v,
    )

    events: list[str] = []
    for i in range(0, len(words), WORDS_PER_PAGE):
        page = words[i : i + WORDS_PER_PAGE]

        karaoke_parts: list[str] = []
        for word_info in page:
            # \kf duration is in centiseconds
            duration_cs = max(int(round((word_info.end - word_info.start) * 100)), 1)
            text = word_info.word.strip()
            if word_info.emoji:
                text = f"{text} {word_info.emoji}"
            karaoke_parts.append(f"{{\\kf{duration_cs}}}{text}")

        events.append(
            f"Dialogue: 0,{_format_ass_time(page[0].start)},{_format_ass_time(page[-1].end)},"
            f"Default,,0,0,0,,{' '.join(karaoke_parts)}"
        )

    output_path.write_text(header + "\n".join(events) + "\n", encoding="utf-8")

    logger.info("Captions written to %s (%d pages)", output_path, len(events))
    return output_path
