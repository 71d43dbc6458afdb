# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Object sources for the file server.

The file server only needs "get the object stored under this raw key".
Two backends provide that:

- ``BucketObjectStore`` fetches from the S3-compatible store with a
  short-lived presigned GET (the store itself verifies that signature)
- ``DirectoryObjectStore`` serves files from a local directory, for
  development and tests
"""

import hashlib
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from r2sign.sigv4 import Presigner


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_FETCH_TTL_SECONDS = 60
_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class StoredObject:
    """An object ready to be sent to a client.

    Attributes:
        body: Object bytes.
        content_type: MIME type.
        etag: Quoted entity tag, if known.
    """

    body: bytes
    content_type: str = DEFAULT_CONTENT_TYPE
    etag: str | None = None

    @property
    def size(self) -> int:
        """Body length in bytes."""
        return len(self.body)


class ObjectStore(Protocol):
    """Read access to stored objects by raw key."""

    def get(self, key: str) -> StoredObject | None:
        """Return the object under *key*, or None if it does not exist."""
        ...


class DirectoryObjectStore:
    """Objects stored as files below a root directory.

    The key is interpreted as a relative path.  Keys that resolve
    outside the root (``..`` segments, symlinks) are treated as missing.
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def get(self, key: str) -> StoredObject | None:
        """Read the file for *key*."""
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root) or not path.is_file():
            return None
        body = path.read_bytes()
        content_type, _ = mimetypes.guess_type(path.name)
        return StoredObject(
            body=body,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            etag=f'"{hashlib.md5(body).hexdigest()}"',
        )


class BucketObjectStore:
    """Objects fetched from the bucket through presigned GET URLs."""

    def __init__(
        self,
        presigner: Presigner,
        bucket: str,
        ttl: int = _FETCH_TTL_SECONDS,
        timeout: float = _TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize bucket store.

        Args:
            presigner: Presigner for the store holding *bucket*.
            bucket: Bucket name.
            ttl: Validity of each internal presigned GET, in seconds.
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.presigner = presigner
        self.bucket = bucket
        self.ttl = ttl
        self.timeout = timeout
        self._transport = transport

    def get(self, key: str) -> StoredObject | None:
        """Fetch *key* from the bucket.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses other than 404.
            httpx.TransportError: On connection failures and timeouts.
        """
        url = self.presigner.presign_get(self.bucket, key, expires_in=self.ttl)
        with httpx.Client(
            timeout=self.timeout, transport=self._transport
        ) as client:
            response = client.get(url)

        if response.status_code == 404:
            logger.debug("Object not found in bucket: %s", key)
            return None
        response.raise_for_status()

        return StoredObject(
            body=response.content,
            content_type=response.headers.get(
                "content-type", DEFAULT_CONTENT_TYPE
            ),
            etag=response.headers.get("etag"),
        )
