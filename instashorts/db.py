from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone

from instashorts.config import settings
from instashorts.models import (
    CaptionPosition,
    ProcessedCaptions,
    Scene,
    Series,
    Video,
    VideoStatus,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS series (
    id TEXT PRIMARY KEY,
    name TEXT,
    theme TEXT NOT NULL,
    art_style TEXT,
    voice_id TEXT,
    caption_highlight_color TEXT,
    caption_position TEXT,
    emoji_captions INTEGER DEFAULT 0,
    schedule TEXT DEFAULT 'daily',
    is_active INTEGER DEFAULT 1,
    user_id TEXT,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    theme TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    title TEXT,
    script TEXT,
    voiceover_url TEXT,
    captions_raw JSON,
    captions_processed JSON,
    video_url TEXT,
    art_style TEXT,
    caption_highlight_color TEXT,
    caption_position TEXT,
    emoji_captions INTEGER DEFAULT 0,
    series_id TEXT REFERENCES series(id),
    user_id TEXT,
    error TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS scenes (
    id TEXT PRIMARY KEY,
    video_id TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
    scene_index INTEGER NOT NULL,
    image_prompt TEXT NOT NULL,
    image_url TEXT,
    created_at TIMESTAMP,
    UNIQUE (video_id, scene_index)
);

CREATE INDEX IF NOT EXISTS idx_scenes_video ON scenes(video_id);
CREATE INDEX IF NOT EXISTS idx_videos_series ON videos(series_id);
"""

# Columns update_video may write. Status goes through advance_status.
VIDEO_FIELDS = {
    "theme",
    "title",
    "script",
    "voiceover_url",
    "captions_raw",
    "captions_processed",
    "video_url",
    "art_style",
    "caption_highlight_color",
    "caption_position",
    "emoji_captions",
    "series_id",
    "user_id",
    "error",
    "completed_at",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(value):
    if isinstance(value, ProcessedCaptions):
        return json.dumps(value.to_dict())
    if isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (VideoStatus, CaptionPosition)):
        return value.value
    return value


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class JobStore:
    """SQLite-backed store for videos, scenes and series.

    Every operation opens its own short-lived connection, so one store can be
    shared by concurrent workers (threads or processes) on the same file.
    Status changes are compare-and-set updates; the database is the only
    synchronization point between stages.
    """

    def __init__(self, database_path: str | None = None):
        self.database_path = database_path or settings.database_path

    def get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def init_db(self) -> None:
        conn = self.get_connection()
        conn.executescript(SCHEMA)
        conn.close()

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def create_video(self, video: Video) -> str:
        conn = self.get_connection()
        conn.execute(
            """
            INSERT INTO videos (
                id, theme, status, title, script, art_style, caption_highlight_color,
                caption_position, emoji_captions, series_id, user_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                video.id,
                video.theme,
                video.status.value,
                video.title,
                video.script,
                video.art_style,
                video.caption_highlight_color,
                video.caption_position.value,
                int(video.emoji_captions),
                video.series_id,
                video.user_id,
                video.created_at.isoformat(),
                video.updated_at.isoformat(),
            ),
        )
        conn.commit()
        conn.close()
        return video.id

    def get_video(self, video_id: str) -> Video | None:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
        conn.close()
        return _row_to_video(row) if row else None

    def list_videos(self, limit: int = 50, series_id: str | None = None) -> list[Video]:
        conn = self.get_connection()
        if series_id:
            rows = conn.execute(
                "SELECT * FROM videos WHERE series_id = ? ORDER BY created_at DESC LIMIT ?",
                (series_id, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM videos ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        conn.close()
        return [_row_to_video(r) for r in rows]

    def update_video(self, video_id: str, **kwargs) -> None:
        unknown = set(kwargs) - VIDEO_FIELDS
        if unknown:
            raise ValueError(f"Cannot update video fields: {', '.join(sorted(unknown))}")
        if not kwargs:
            return
        sets = [f"{k} = ?" for k in kwargs]
        vals = [_encode(v) for v in kwargs.values()]
        sets.append("updated_at = ?")
        vals.extend([_now(), video_id])
        conn = self.get_connection()
        conn.execute(f"UPDATE videos SET {', '.join(sets)} WHERE id = ?", vals)
        conn.commit()
        conn.close()

    def advance_status(
        self,
        video_id: str,
        status: VideoStatus,
        expected: VideoStatus | None = None,
        **kwargs,
    ) -> bool:
        """Move a video to ``status`` only if that is a legal forward transition.

        The check and the write are a single ``UPDATE ... WHERE status IN (...)``
        statement, so of several concurrent callers at most one sees ``True``.
        With ``expected`` the video must currently be in exactly that status.
        Extra keyword fields are written in the same statement.
        """
        unknown = set(kwargs) - VIDEO_FIELDS
        if unknown:
            raise ValueError(f"Cannot update video fields: {', '.join(sorted(unknown))}")
        allowed = VideoStatus.allowed_predecessors(status)
        if expected is not None:
            allowed = [s for s in allowed if s is expected]
        if not allowed:
            return False
        sets = ["status = ?", "updated_at = ?"] + [f"{k} = ?" for k in kwargs]
        vals = [status.value, _now()] + [_encode(v) for v in kwargs.values()]
        placeholders = ", ".join("?" for _ in allowed)
        conn = self.get_connection()
        cursor = conn.execute(
            f"UPDATE videos SET {', '.join(sets)} WHERE id = ? AND status IN ({placeholders})",
            [*vals, video_id, *(s.value for s in allowed)],
        )
        conn.commit()
        changed = cursor.rowcount == 1
        conn.close()
        return changed

    def mark_failed(self, video_id: str, error: str | None = None) -> bool:
        return self.advance_status(
            video_id, VideoStatus.FAILED, error=(error or "")[:1000] or None
        )

    def delete_video(self, video_id: str) -> None:
        conn = self.get_connection()
        conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
        conn.commit()
        conn.close()

    def find_stuck_videos(
        self, statuses: tuple[VideoStatus, ...], updated_before: datetime
    ) -> list[Video]:
        placeholders = ", ".join("?" for _ in statuses)
        conn = self.get_connection()
        rows = conn.execute(
            f"SELECT * FROM videos WHERE status IN ({placeholders}) AND updated_at < ?",
            [*(s.value for s in statuses), updated_before.isoformat()],
        ).fetchall()
        conn.close()
        return [_row_to_video(r) for r in rows]

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    def create_scenes(self, scenes: list[Scene]) -> None:
        """Insert all scene rows in one transaction; nothing is kept on error."""
        conn = self.get_connection()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO scenes (id, video_id, scene_index, image_prompt, image_url, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            s.id,
                            s.video_id,
                            s.scene_index,
                            s.image_prompt,
                            s.image_url,
                            s.created_at.isoformat(),
                        )
                        for s in scenes
                    ],
                )
        finally:
            conn.close()

    def get_scenes(self, video_id: str) -> list[Scene]:
        conn = self.get_connection()
        rows = conn.execute(
            "SELECT * FROM scenes WHERE video_id = ? ORDER BY scene_index",
            (video_id,),
        ).fetchall()
        conn.close()
        return [_row_to_scene(r) for r in rows]

    def get_scene(self, scene_id: str) -> Scene | None:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM scenes WHERE id = ?", (scene_id,)).fetchone()
        conn.close()
        return _row_to_scene(row) if row else None

    def set_scene_image(self, scene_id: str, image_url: str) -> bool:
        """Set a scene's image URL once. Returns False if it was already set."""
        conn = self.get_connection()
        cursor = conn.execute(
            "UPDATE scenes SET image_url = ? WHERE id = ? AND image_url IS NULL",
            (image_url, scene_id),
        )
        conn.commit()
        changed = cursor.rowcount == 1
        conn.close()
        return changed

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def create_series(self, series: Series) -> str:
        conn = self.get_connection()
        conn.execute(
            """
            INSERT INTO series (
                id, name, theme, art_style, voice_id, caption_highlight_color, caption_position,
                emoji_captions, schedule, is_active, user_id, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                series.id,
                series.name,
                series.theme,
                series.art_style,
                series.voice_id,
                series.caption_highlight_color,
                series.caption_position.value,
                int(series.emoji_captions),
                series.schedule,
                int(series.is_active),
                series.user_id,
                series.created_at.isoformat(),
            ),
        )
        conn.commit()
        conn.close()
        return series.id

    def get_series(self, series_id: str) -> Series | None:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM series WHERE id = ?", (series_id,)).fetchone()
        conn.close()
        return _row_to_series(row) if row else None

    def list_series(self) -> list[Series]:
        conn = self.get_connection()
        rows = conn.execute("SELECT * FROM series ORDER BY created_at DESC").fetchall()
        conn.close()
        return [_row_to_series(r) for r in rows]

    def get_active_series(self) -> list[Series]:
        conn = self.get_connection()
        rows = conn.execute(
            "SELECT * FROM series WHERE is_active = 1 ORDER BY created_at"
        ).fetchall()
        conn.close()
        return [_row_to_series(r) for r in rows]

    def set_series_active(self, series_id: str, is_active: bool) -> None:
        conn = self.get_connection()
        conn.execute(
            "UPDATE series SET is_active = ? WHERE id = ?", (int(is_active), series_id)
        )
        conn.commit()
        conn.close()


def _row_to_video(row: sqlite3.Row) -> Video:
    processed = json.loads(row["captions_processed"]) if row["captions_processed"] else None
    return Video(
        id=row["id"],
        theme=row["theme"],
        status=VideoStatus(row["status"]),
        title=row["title"],
        script=row["script"],
        voiceover_url=row["voiceover_url"],
        captions_raw=json.loads(row["captions_raw"]) if row["captions_raw"] else None,
        captions_processed=ProcessedCaptions.from_dict(processed) if processed else None,
        video_url=row["video_url"],
        art_style=row["art_style"],
        caption_highlight_color=row["caption_highlight_color"] or "#FFD700",
        caption_position=CaptionPosition(row["caption_position"] or "bottom"),
        emoji_captions=bool(row["emoji_captions"]),
        series_id=row["series_id"],
        user_id=row["user_id"],
        error=row["error"],
        created_at=_parse_ts(row["created_at"]) or datetime.now(timezone.utc),
        updated_at=_parse_ts(row["updated_at"]) or datetime.now(timezone.utc),
        completed_at=_parse_ts(row["completed_at"]),
    )


def _row_to_scene(row: sqlite3.Row) -> Scene:
    return Scene(
        id=row["id"],
        video_id=row["video_id"],
        scene_index=row["scene_index"],
        image_prompt=row["image_prompt"],
        image_url=row["image_url"],
        created_at=_parse_ts(row["created_at"]) or datetime.now(timezone.utc),
    )


def _row_to_series(row: sqlite3.Row) -> Series:
    return Series(
        id=row["id"],
        name=row["name"],
        theme=row["theme"],
        art_style=row["art_style"],
        voice_id=row["voice_id"],
        caption_highlight_color=row["caption_highlight_color"] or "#FFD700",
        caption_position=CaptionPosition(row["caption_position"] or "bottom"),
        emoji_captions=bool(row["emoji_captions"]),
        schedule=row["schedule"] or "daily",
        is_active=bool(row["is_active"]),
        user_id=row["user_id"],
        created_at=_parse_ts(row["created_at"]) or datetime.now(timezone.utc),
    )
