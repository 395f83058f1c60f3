"""Google Cloud Storage uploads via the Cloud Storage JSON API."""

from __future__ import annotations

import asyncio
import io
import logging

import google.auth
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from instashorts.errors import StorageError
from instashorts.storage.base import BlobStore

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MB
_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_write"]
PUBLIC_BASE = "https://storage.googleapis.com"


def public_url(bucket: str, path: str) -> str:
    return f"{PUBLIC_BASE}/{bucket}/{path}"


class GCSBlobStore(BlobStore):
    """Uploads with application-default credentials.

    The bucket is expected to be publicly readable at the bucket level, so the
    returned URL is the plain ``storage.googleapis.com`` object URL.
    """

    def __init__(self, config, service=None):
        self.config = config
        self._service = service

    @property
    def service(self):
        if self._service is None:
            # The project, when set, is billed for the requests
            creds, _ = google.auth.default(
                scopes=_SCOPES, quota_project_id=self.config.gcs_project_id or None
            )
            self._service = build("storage", "v1", credentials=creds, cache_discovery=False)
        return self._service

    def _upload_sync(self, bucket: str, data: bytes, path: str, content_type: str) -> str:
        media = MediaIoBaseUpload(
            io.BytesIO(data),
            mimetype=content_type,
            chunksize=_CHUNK_SIZE,
            resumable=True,
        )
        request = self.service.objects().insert(bucket=bucket, name=path, media_body=media)

        response = None
        while response is None:
            _, response = request.next_chunk()
        return public_url(bucket, response.get("name", path))

    async def upload(self, bucket: str, data: bytes, path: str, content_type: str) -> str:
        try:
            url = await asyncio.to_thread(self._upload_sync, bucket, data, path, content_type)
        except HttpError as exc:
            raise StorageError(f"GCS upload failed for {bucket}/{path}: {exc}") from exc
        logger.info("Uploaded %d bytes to %s", len(data), url)
        return url
