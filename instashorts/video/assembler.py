"""FFmpeg-based compositor for InstaShorts videos."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import shutil
import subprocess
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from instashorts.errors import RenderError
from instashorts.models import CaptionPosition, WordTimestamp
from instashorts.video.captions import generate_captions

logger = logging.getLogger(__name__)

WIDTH = 1080
HEIGHT = 1920
EFFECTS = ("zoomIn", "zoomOut", "panLeft", "panRight")


def get_audio_duration(audio_path: Path) -> float:
    """Get the duration of an audio file in seconds using ffprobe.

    Raises:
        subprocess.CalledProcessError: If ffprobe fails.
        ValueError: If the duration cannot be parsed.
    """
    result = subprocess.run(
        [
            "ffprobe",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            str(audio_path),
        ],
        capture_output=True,
        text=True,
        check=True,
    )
    probe_data = json.loads(result.stdout)
    duration = float(probe_data["format"]["duration"])
    logger.info("Audio duration for %s: %.2fs", audio_path.name, duration)
    return duration


def compute_duration(words: list[WordTimestamp], buffer: float = 0.5) -> float | None:
    """Video length from the captions: last word's end plus a trailing buffer."""
    if not words:
        return None
    return words[-1].end + buffer


def split_frames(total_frames: int, scene_count: int) -> list[int]:
    """Divide frames evenly across scenes; the last scene takes the remainder."""
    per_scene = total_frames // scene_count
    frames = [per_scene] * scene_count
    frames[-1] += total_frames - per_scene * scene_count
    return frames


def _zoompan(effect: str, frames: int, fps: int) -> str:
    progress = f"on/{max(frames - 1, 1)}"
    centre_x = "iw/2-(iw/zoom/2)"
    centre_y = "ih/2-(ih/zoom/2)"
    if effect == "zoomIn":
        z, x, y = f"1+0.15*{progress}", centre_x, centre_y
    elif effect == "zoomOut":
        z, x, y = f"1.15-0.15*{progress}", centre_x, centre_y
    elif effect == "panLeft":
        z, x, y = "1.1", f"(iw-iw/zoom)*(1-{progress})", centre_y
    else:
        z, x, y = "1.1", f"(iw-iw/zoom)*{progress}", centre_y
    return f"zoompan=z='{z}':x='{x}':y='{y}':d={frames}:s={WIDTH}x{HEIGHT}:fps={fps}"


def build_render_command(
    image_paths: list[Path],
    audio_path: Path,
    captions_path: Path,
    output_path: Path,
    duration: float,
    fps: int = 30,
) -> list[str]:
    """Build the ffmpeg invocation for a slideshow of scenes with narration and captions.

    Each scene gets an equal share of the duration and one of the Ken Burns
    effects in EFFECTS, cycling by scene index. Output is 1080x1920 H.264 MP4
    with AAC audio.
    """
    if not image_paths:
        raise ValueError("At least one scene image is required")

    total_frames = math.ceil(duration * fps)
    frames = split_frames(total_frames, len(image_paths))

    cmd = ["ffmpeg", "-y"]
    for path in image_paths:
        cmd += ["-i", str(path)]
    cmd += ["-i", str(audio_path)]

    chains: list[str] = []
    for i, scene_frames in enumerate(frames):
        effect = EFFECTS[i % len(EFFECTS)]
        chains.append(
            f"[{i}:v]scale={WIDTH}:{HEIGHT}:force_original_aspect_ratio=increase,"
            f"crop={WIDTH}:{HEIGHT},{_zoompan(effect, scene_frames, fps)},setsar=1[v{i}]"
        )
    labels = "".join(f"[v{i}]" for i in range(len(frames)))
    chains.append(f"{labels}concat=n={len(frames)}:v=1:a=0[vcat]")

    # Escape colons and backslashes in the path for the ass filter
    ass_path_escaped = str(captions_path).replace("\\", "\\\\").replace(":", "\\:")
    chains.append(f"[vcat]ass='{ass_path_escaped}'[vout]")

    cmd += [
        "-filter_complex", ";".join(chains),
        "-map", "[vout]",
        "-map", f"{len(image_paths)}:a",
        # Video settings
        "-c:v", "libx264",
        "-preset", "medium",
        "-crf", "23",
        "-r", str(fps),
        "-pix_fmt", "yuv420p",
        # Audio settings
        "-c:a", "aac",
        "-b:a", "192k",
        "-t", f"{duration:.3f}",
        str(output_path),
    ]
    return cmd


async def fetch_asset(url: str, dest: Path) -> Path:
    """Download ``url`` to ``dest``. ``file://`` URLs and bare paths are copied."""
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            dest.write_bytes(resp.content)
    else:
        source = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        await asyncio.to_thread(shutil.copyfile, source, dest)
    return dest


async def render_video(
    image_urls: list[str],
    audio_url: str,
    words: list[WordTimestamp],
    output_path: Path,
    highlight_color: str = "#FFD700",
    position: CaptionPosition = CaptionPosition.BOTTOM,
    duration: float | None = None,
    fps: int = 30,
    timeout: float = 300.0,
) -> Path:
    """Render the final video into ``output_path``.

    Scene images and the narration are fetched next to ``output_path``, so
    callers only need to clean up that one directory.

    Args:
        image_urls: Scene image URLs in render order.
        audio_url: Narration audio URL.
        words: Word timings used for captions and, when ``duration`` is not
            given, for the video length.
        output_path: Path where the MP4 will be written.
        highlight_color: Caption highlight colour as ``#RRGGBB``.
        position: Caption placement.
        duration: Video length in seconds; derived from the audio if None.
        fps: Output frame rate.
        timeout: Wall-clock limit for the ffmpeg run in seconds.

    Returns:
        The output_path after writing the file.

    Raises:
        RenderError: If an asset cannot be fetched, ffmpeg fails, or the
            render exceeds ``timeout``.
    """
    work_dir = output_path.parent
    try:
        image_paths = await asyncio.gather(
            *(fetch_asset(url, work_dir / f"scene_{i:02d}.png") for i, url in enumerate(image_urls))
        )
        audio_path = await fetch_asset(audio_url, work_dir / "narration.mp3")
    except (httpx.HTTPError, OSError) as exc:
        raise RenderError(f"Failed to fetch render assets: {exc}") from exc

    if duration is None:
        duration = await asyncio.to_thread(get_audio_duration, audio_path)

    captions_path = generate_captions(words, work_dir / "captions.ass", highlight_color, position)
    cmd = build_render_command(list(image_paths), audio_path, captions_path, output_path, duration, fps)

    logger.info("Rendering %d scenes, %.1fs at %dfps", len(image_paths), duration, fps)
    logger.debug("ffmpeg command: %s", " ".join(cmd))
    try:
        await asyncio.to_thread(
            subprocess.run, cmd, check=True, capture_output=True, text=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        raise RenderError(f"Render exceeded {timeout:.0f}s") from exc
    except subprocess.CalledProcessError as exc:
        raise RenderError(f"ffmpeg failed: {(exc.stderr or '')[-500:]}") from exc

    logger.info("Video rendered: %s (%.1fs)", output_path, duration)
    return output_path
