"""
Base64 bridge between finalised media and the inference request.

Encoding runs on a worker thread and completes through a Future; ``encode``
simply waits on it. There is no size limit here: capture is already capped in
resolution and bitrate, and the backend rejects oversized payloads itself.
"""

from __future__ import annotations

import base64
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .media import MediaBlob, read_media_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedPayload:
    """Transport-safe media: base64 text plus the mime type it decodes to."""

    data: str
    mime_type: str
    byte_size: int

    def decode(self) -> bytes:
        return base64.b64decode(self.data)


def encode_blob(blob: MediaBlob) -> EncodedPayload:
    encoded = base64.b64encode(blob.data).decode("ascii")
    logger.debug("Encoded %d bytes of %s into %d base64 chars", blob.size, blob.mime_type, len(encoded))
    return EncodedPayload(data=encoded, mime_type=blob.base_mime_type, byte_size=blob.size)


class MediaEncoder:
    """Encodes blobs off the calling thread."""

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None, max_workers: int = 1):
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="media-encoder"
        )

    def submit(self, blob: MediaBlob) -> "Future[EncodedPayload]":
        return self._executor.submit(encode_blob, blob)

    def encode(self, blob: MediaBlob) -> EncodedPayload:
        return self.submit(blob).result()

    def encode_file(self, path: str, mime_type: Optional[str] = None) -> EncodedPayload:
        """Read an uploaded file and encode it."""
        return self.encode(read_media_file(path, mime_type))

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "MediaEncoder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = ["EncodedPayload", "encode_blob", "MediaEncoder"]
