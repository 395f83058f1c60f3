"""Tests for the blob stores."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from instashorts.errors import StorageError
from instashorts.storage.base import (
    BlobStore,
    final_video_path,
    scene_image_path,
    voiceover_path,
)
from instashorts.storage.gcs import GCSBlobStore
from instashorts.storage.local import LocalBlobStore


def test_paths_are_scoped_by_video():
    assert voiceover_path("vid").startswith("voiceovers/vid/")
    assert voiceover_path("vid").endswith(".mp3")
    assert scene_image_path("vid", "scene") == "scenes/vid/scene.png"
    assert final_video_path("vid").startswith("videos/vid/")
    assert voiceover_path("vid") != voiceover_path("vid")


@pytest.mark.asyncio
async def test_local_store_writes_file(tmp_path):
    store = LocalBlobStore(SimpleNamespace(output_dir=str(tmp_path)))
    url = await store.upload("bucket", b"data", "scenes/v/s.png", "image/png")

    assert url.startswith("file://")
    assert (tmp_path / "bucket" / "scenes" / "v" / "s.png").read_bytes() == b"data"


@pytest.mark.asyncio
async def test_gcs_upload_returns_public_url():
    service = MagicMock()
    request = service.objects.return_value.insert.return_value
    request.next_chunk.side_effect = [(None, None), (None, {"name": "videos/v/x.mp4"})]

    store = GCSBlobStore(SimpleNamespace(), service=service)
    url = await store.upload("my-bucket", b"mp4", "videos/v/x.mp4", "video/mp4")

    assert url == "https://storage.googleapis.com/my-bucket/videos/v/x.mp4"
    kwargs = service.objects.return_value.insert.call_args.kwargs
    assert kwargs["bucket"] == "my-bucket"
    assert kwargs["name"] == "videos/v/x.mp4"
    assert request.next_chunk.call_count == 2


@pytest.mark.asyncio
async def test_gcs_http_error_becomes_storage_error():
    service = MagicMock()
    resp = SimpleNamespace(status=503, reason="Service Unavailable")
    service.objects.return_value.insert.return_value.next_chunk.side_effect = HttpError(
        resp, b"unavailable"
    )
    store = GCSBlobStore(SimpleNamespace(), service=service)
    with pytest.raises(StorageError):
        await store.upload("b", b"x", "p", "image/png")


def test_blob_store_from_config(tmp_path):
    local = BlobStore.from_config(SimpleNamespace(storage_backend="local", output_dir=str(tmp_path)))
    assert isinstance(local, LocalBlobStore)
    gcs = BlobStore.from_config(SimpleNamespace(storage_backend="gcs"))
    assert isinstance(gcs, GCSBlobStore)


@pytest.mark.parametrize("project_id, expected", [("my-project", "my-project"), ("", None)])
def test_gcs_service_uses_configured_project(project_id, expected):
    creds = MagicMock()
    with patch("instashorts.storage.gcs.google.auth.default", return_value=(creds, "adc-project")) as default, \
            patch("instashorts.storage.gcs.build") as build:
        store = GCSBlobStore(SimpleNamespace(gcs_project_id=project_id))
        assert store.service is build.return_value
        assert store.service is build.return_value

    default.assert_called_once()
    assert default.call_args.kwargs["quota_project_id"] == expected
    build.assert_called_once_with("storage", "v1", credentials=creds, cache_discovery=False)
