# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for file server object stores."""

import hashlib
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from r2sign.fileserver import BucketObjectStore, DirectoryObjectStore
from r2sign.fileserver.store import DEFAULT_CONTENT_TYPE, StoredObject
from r2sign.sigv4 import Presigner
from tests.vectors import FIXED_AMZ_DATE, HOST


class TestStoredObject:
    """Tests for StoredObject."""

    def test_size(self) -> None:
        """Size is the body length."""
        assert StoredObject(body=b"12345").size == 5
        assert StoredObject(body=b"").content_type == DEFAULT_CONTENT_TYPE


class TestDirectoryObjectStore:
    """Tests for DirectoryObjectStore."""

    def test_reads_file(self, tmp_path: Path) -> None:
        """Existing files are returned with type and ETag."""
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "cv.pdf").write_bytes(b"%PDF")
        stored = DirectoryObjectStore(tmp_path).get("a/cv.pdf")

        assert stored is not None
        assert stored.body == b"%PDF"
        assert stored.content_type == "application/pdf"
        assert stored.etag == f'"{hashlib.md5(b"%PDF").hexdigest()}"'

    def test_unknown_type(self, tmp_path: Path) -> None:
        """Unknown extensions fall back to octet-stream."""
        (tmp_path / "blob.zzz-unknown").write_bytes(b"x")
        stored = DirectoryObjectStore(tmp_path).get("blob.zzz-unknown")
        assert stored is not None
        assert stored.content_type == DEFAULT_CONTENT_TYPE

    def test_missing(self, tmp_path: Path) -> None:
        """Missing files and directories are None."""
        (tmp_path / "dir").mkdir()
        store = DirectoryObjectStore(tmp_path)
        assert store.get("nope.png") is None
        assert store.get("dir") is None

    def test_escape_refused(self, tmp_path: Path) -> None:
        """Keys cannot climb out of the root."""
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("hidden")
        store = DirectoryObjectStore(root)
        assert store.get("../secret.txt") is None
        assert store.get(str(tmp_path / "secret.txt")) is None

    def test_symlink_escape_refused(self, tmp_path: Path) -> None:
        """Symlinks pointing outside the root are not followed."""
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("hidden")
        (root / "link.txt").symlink_to(tmp_path / "secret.txt")
        assert DirectoryObjectStore(root).get("link.txt") is None


class TestBucketObjectStore:
    """Tests for BucketObjectStore."""

    def _store(
        self,
        presigner: Presigner,
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> BucketObjectStore:
        return BucketObjectStore(
            presigner,
            "docs",
            transport=httpx.MockTransport(handler),
        )

    def test_fetches_with_presigned_get(self, presigner: Presigner) -> None:
        """Objects are fetched with a short-lived presigned GET."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                content=b"jpeg-bytes",
                headers={"content-type": "image/jpeg", "etag": '"abc"'},
            )

        stored = self._store(presigner, handler).get("a/b c.jpg")

        assert stored == StoredObject(
            body=b"jpeg-bytes", content_type="image/jpeg", etag='"abc"'
        )
        request = seen[0]
        assert request.method == "GET"
        assert request.url.host == HOST
        assert request.url.raw_path.startswith(b"/docs/a/b%20c.jpg?")
        assert request.url.params["X-Amz-Expires"] == "60"
        assert request.url.params["X-Amz-Date"] == FIXED_AMZ_DATE
        assert "X-Amz-Signature" in request.url.params

    def test_not_found(self, presigner: Presigner) -> None:
        """A 404 from the bucket is a missing object."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        assert self._store(presigner, handler).get("x.png") is None

    def test_missing_headers(self, presigner: Presigner) -> None:
        """Absent content type and ETag get defaults."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"x")

        stored = self._store(presigner, handler).get("x.bin")
        assert stored is not None
        assert stored.content_type == DEFAULT_CONTENT_TYPE
        assert stored.etag is None

    def test_other_errors_raise(self, presigner: Presigner) -> None:
        """A rejected signature surfaces as an HTTP error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403)

        with pytest.raises(httpx.HTTPStatusError):
            self._store(presigner, handler).get("x.png")
