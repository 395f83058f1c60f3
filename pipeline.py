"""instashorts CLI: themed short-form video pipeline."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from instashorts.config import settings
from instashorts.db import JobStore
from instashorts.jobs import create_series, create_video, toggle_series
from instashorts.models import CaptionPosition, VideoStatus
from instashorts.queue.local import LocalFabric
from instashorts.scriptgen.prompts import ART_STYLES
from instashorts.worker import Pipeline, build_pipeline

STATUS_ICONS = {
    VideoStatus.PENDING: " ",
    VideoStatus.QUEUED_FOR_RENDERING: "R",
    VideoStatus.RENDERING: "R",
    VideoStatus.UPLOADING_FINAL_VIDEO: "U",
    VideoStatus.COMPLETED: "+",
    VideoStatus.FAILED: "X",
}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def cli(ctx, verbose):
    """instashorts: automated themed Shorts pipeline.

    \b
        pipeline.py create "Ancient Rome"    # Make one video
        pipeline.py list                     # See videos and their status
        pipeline.py show <ID>                # Details for one video
        pipeline.py series create "Space"    # Daily video on a theme
        pipeline.py schedule                 # Run the daily series scheduler
        pipeline.py worker                   # Consume stage queues (redis backend)
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = JobStore(settings.database_path)
    store.init_db()
    Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
    ctx.obj = store


async def _run_to_completion(pipeline: Pipeline, start) -> None:
    """Run ``start`` on an in-process fabric and wait for every stage to settle."""
    async with pipeline.fabric:
        await start
        await pipeline.fabric.drain()


def _is_local(pipeline: Pipeline) -> bool:
    return isinstance(pipeline.fabric, LocalFabric)


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("theme")
@click.option("--art-style", type=click.Choice(sorted(ART_STYLES)), default=None, help="Scene art style.")
@click.option("--color", "highlight_color", default="#FFD700", help="Caption highlight colour (#RRGGBB).")
@click.option(
    "--position",
    type=click.Choice([p.value for p in CaptionPosition]),
    default=CaptionPosition.BOTTOM.value,
    help="Caption position.",
)
@click.option("--emoji", is_flag=True, help="Decorate key caption words with emojis.")
@click.pass_obj
def create(store, theme, art_style, highlight_color, position, emoji):
    """Create a video about THEME and start the pipeline."""
    pipeline = build_pipeline(settings, store=store)
    created: list[str] = []

    async def start():
        created.append(
            await create_video(
                store,
                pipeline.fabric,
                theme,
                art_style=art_style,
                caption_highlight_color=highlight_color,
                caption_position=position,
                emoji_captions=emoji,
            )
        )

    try:
        if _is_local(pipeline):
            asyncio.run(_run_to_completion(pipeline, start()))
        else:
            asyncio.run(start())
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    video = store.get_video(created[0])
    click.echo(f"Video {video.id}: {video.status.value}")
    if video.video_url:
        click.echo(f"  {video.video_url}")
    elif video.error:
        click.echo(f"  Error: {video.error}")


@cli.command("list")
@click.option("--series", "series_id", default=None, help="Only videos from this series.")
@click.option("--limit", default=20, help="Max videos to show.")
@click.pass_obj
def list_videos(store, series_id, limit):
    """Show videos and their statuses."""
    videos = store.list_videos(limit=limit, series_id=series_id)
    if not videos:
        click.echo("No videos yet. Run 'pipeline.py create <THEME>'.")
        return

    click.echo(f"{'':2} {'ID':<22} {'Status':<22} {'Created':<17} Theme")
    click.echo("-" * 90)
    for v in videos:
        icon = STATUS_ICONS.get(v.status, ".")
        created = v.created_at.strftime("%Y-%m-%d %H:%M")
        click.echo(f"{icon:2} {v.id:<22} {v.status.value:<22} {created:<17} {v.theme[:40]}")


@cli.command()
@click.argument("video_id")
@click.pass_obj
def show(store, video_id):
    """Show full details for a video."""
    video = store.get_video(video_id)
    if not video:
        click.echo(f"No video found with id '{video_id}'. Run 'list' to see IDs.")
        return

    click.echo(f"Theme:     {video.theme}")
    click.echo(f"Title:     {video.title or '-'}")
    click.echo(f"Status:    {video.status.value}")
    click.echo(f"Art style: {video.art_style or 'default'}")
    click.echo(f"Captions:  {video.caption_highlight_color} {video.caption_position.value}"
               f"{' +emoji' if video.emoji_captions else ''}")
    if video.series_id:
        click.echo(f"Series:    {video.series_id}")
    click.echo(f"Voiceover: {video.voiceover_url or '-'}")
    click.echo(f"Video:     {video.video_url or '-'}")
    if video.error:
        click.echo(f"Error:     {video.error}")

    scenes = store.get_scenes(video.id)
    if scenes:
        done = sum(1 for s in scenes if s.image_url)
        click.echo(f"\nScenes ({done}/{len(scenes)} images):")
        for s in scenes:
            mark = "+" if s.image_url else " "
            click.echo(f"  {mark} {s.scene_index:2}  {s.image_prompt[:70]}")

    if video.script:
        click.echo(f"\nScript:\n{video.script}")


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


@cli.group()
def series():
    """Manage recurring video series."""


@series.command("create")
@click.argument("theme")
@click.option("--name", default=None, help="Display name (defaults to the theme).")
@click.option("--art-style", type=click.Choice(sorted(ART_STYLES)), default=None, help="Scene art style.")
@click.option("--voice", "voice_id", default=None, help="Voice id for narration.")
@click.option("--color", "highlight_color", default="#FFD700", help="Caption highlight colour (#RRGGBB).")
@click.option(
    "--position",
    type=click.Choice([p.value for p in CaptionPosition]),
    default=CaptionPosition.BOTTOM.value,
    help="Caption position.",
)
@click.option("--emoji", is_flag=True, help="Decorate key caption words with emojis.")
@click.pass_obj
def series_create(store, theme, name, art_style, voice_id, highlight_color, position, emoji):
    """Create a series that gets a new video on THEME every day."""
    try:
        series_id = create_series(
            store,
            theme,
            name=name,
            art_style=art_style,
            voice_id=voice_id,
            caption_highlight_color=highlight_color,
            caption_position=position,
            emoji_captions=emoji,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    click.echo(f"Created series {series_id}")


@series.command("list")
@click.pass_obj
def series_list(store):
    """Show all series."""
    all_series = store.list_series()
    if not all_series:
        click.echo("No series yet. Run 'pipeline.py series create <THEME>'.")
        return
    for s in all_series:
        state = "active" if s.is_active else "paused"
        click.echo(f"{s.id:<22} {state:<7} {s.art_style or 'default':<16} {(s.name or s.theme)[:40]}")


@series.command("toggle")
@click.argument("series_id")
@click.pass_obj
def series_toggle(store, series_id):
    """Pause or resume a series."""
    try:
        active = toggle_series(store, series_id)
    except KeyError:
        click.echo(f"No series found with id '{series_id}'.")
        return
    click.echo(f"Series {series_id} is now {'active' if active else 'paused'}.")


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_obj
def worker(store):
    """Consume every stage queue until interrupted (redis backend)."""
    pipeline = build_pipeline(settings, store=store)
    if _is_local(pipeline):
        raise click.UsageError("The worker needs QUEUE_BACKEND=redis; 'create' runs in-process locally.")
    click.echo("Worker started. Ctrl-C to stop.")
    asyncio.run(pipeline.fabric.run())


@cli.command()
@click.option("--once", is_flag=True, help="Run a single scheduler tick now and exit.")
@click.pass_obj
def schedule(store, once):
    """Start a video for every active series, daily at 00:00 UTC."""
    pipeline = build_pipeline(settings, store=store)
    if once:
        if _is_local(pipeline):
            started: list[str] = []

            async def tick():
                started.extend(await pipeline.scheduler.tick())

            asyncio.run(_run_to_completion(pipeline, tick()))
        else:
            started = asyncio.run(pipeline.scheduler.tick())
        click.echo(f"Started {len(started)} videos.")
        return
    click.echo("Scheduler started. Ctrl-C to stop.")
    asyncio.run(pipeline.scheduler.run_forever())


@cli.command()
@click.option(
    "--hours",
    type=float,
    default=None,
    help="Age threshold (defaults to STUCK_JOB_TIMEOUT_HOURS).",
)
@click.pass_obj
def sweep(store, hours):
    """Mark videos stuck in a generating status as FAILED."""
    hours = hours if hours is not None else settings.stuck_job_timeout_hours
    if hours <= 0:
        click.echo("Stuck-job sweep is disabled (set STUCK_JOB_TIMEOUT_HOURS or pass --hours).")
        return
    pipeline = build_pipeline(settings, store=store)
    failed = pipeline.scheduler.sweep_stuck(hours)
    click.echo(f"Marked {len(failed)} stuck videos as FAILED.")


if __name__ == "__main__":
    cli()
