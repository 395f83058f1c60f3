from abc import ABC, abstractmethod

from instashorts.models import new_id


class BlobStore(ABC):
    @abstractmethod
    async def upload(self, bucket: str, data: bytes, path: str, content_type: str) -> str:
        """Store ``data`` at ``path`` (overwriting) and return its public URL."""

    @classmethod
    def from_config(cls, config) -> "BlobStore":
        from instashorts.storage.gcs import GCSBlobStore
        from instashorts.storage.local import LocalBlobStore

        backends = {"gcs": GCSBlobStore, "local": LocalBlobStore}
        return backends[config.storage_backend](config)


def voiceover_path(video_id: str) -> str:
    return f"voiceovers/{video_id}/{new_id()}.mp3"


def scene_image_path(video_id: str, scene_id: str) -> str:
    return f"scenes/{video_id}/{scene_id}.png"


def final_video_path(video_id: str) -> str:
    return f"videos/{video_id}/{new_id()}.mp4"
