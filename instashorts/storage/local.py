from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from instashorts.storage.base import BlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Writes blobs under ``output_dir/<bucket>/<path>`` and returns file:// URLs."""

    def __init__(self, config):
        self.root = Path(config.output_dir)

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def upload(self, bucket: str, data: bytes, path: str, content_type: str) -> str:
        target = (self.root / bucket / path).resolve()
        await asyncio.to_thread(self._write, target, data)
        logger.info("Stored %d bytes (%s) at %s", len(data), content_type, target)
        return target.as_uri()
