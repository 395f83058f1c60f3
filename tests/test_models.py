"""Tests for instashorts.models."""

import pytest

from instashorts.models import (
    CaptionPosition,
    CharacterAlignment,
    ProcessedCaptions,
    Video,
    VideoStatus,
    WordTimestamp,
)


def test_video_defaults():
    v = Video(theme="Ancient Rome")
    assert v.status == VideoStatus.PENDING
    assert v.caption_highlight_color == "#FFD700"
    assert v.caption_position == CaptionPosition.BOTTOM
    assert v.emoji_captions is False
    assert v.created_at.tzinfo is not None
    assert v.id


def test_status_moves_forward_only():
    assert VideoStatus.PENDING.can_transition_to(VideoStatus.GENERATING_VOICEOVER)
    assert VideoStatus.GENERATING_VOICEOVER.can_transition_to(VideoStatus.GENERATING_IMAGES)
    assert not VideoStatus.GENERATING_IMAGES.can_transition_to(VideoStatus.GENERATING_SCENES)
    assert not VideoStatus.RENDERING.can_transition_to(VideoStatus.RENDERING)


def test_failed_reachable_from_any_non_terminal():
    for status in VideoStatus:
        if status.is_terminal:
            assert not status.can_transition_to(VideoStatus.FAILED)
        else:
            assert status.can_transition_to(VideoStatus.FAILED)


def test_terminal_statuses_are_final():
    for new in VideoStatus:
        assert not VideoStatus.COMPLETED.can_transition_to(new)
        assert not VideoStatus.FAILED.can_transition_to(new)


def test_allowed_predecessors_for_render_queue():
    allowed = VideoStatus.allowed_predecessors(VideoStatus.QUEUED_FOR_RENDERING)
    assert VideoStatus.GENERATING_IMAGES in allowed
    assert VideoStatus.PENDING in allowed
    assert VideoStatus.QUEUED_FOR_RENDERING not in allowed
    assert VideoStatus.RENDERING not in allowed


def test_alignment_rejects_mismatched_arrays():
    with pytest.raises(ValueError):
        CharacterAlignment(characters=["a", "b"], starts=[0.0], ends=[0.1, 0.2])


def test_alignment_dict_keys():
    alignment = CharacterAlignment(characters=["h", "i"], starts=[0.0, 0.1], ends=[0.1, 0.2])
    data = alignment.to_dict()
    assert set(data) == {
        "characters",
        "character_start_times_seconds",
        "character_end_times_seconds",
    }
    assert CharacterAlignment.from_dict(data) == alignment


def test_processed_captions_keep_emoji():
    captions = ProcessedCaptions(
        words=[WordTimestamp("fire", 0.0, 0.4, emoji="🔥"), WordTimestamp("ok", 0.4, 0.6)],
        srt="1\n00:00:00,000 --> 00:00:00,600\nfire ok\n",
    )
    data = captions.to_dict()
    assert "emoji" not in data["words"][1]
    restored = ProcessedCaptions.from_dict(data)
    assert restored.words[0].emoji == "🔥"
    assert restored.srt == captions.srt
