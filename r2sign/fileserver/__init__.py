# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""File server edge: verifies signed links and serves stored objects."""

from r2sign.fileserver.server import FileServer
from r2sign.fileserver.store import (
    BucketObjectStore,
    DirectoryObjectStore,
    ObjectStore,
    StoredObject,
)


__all__ = [
    "BucketObjectStore",
    "DirectoryObjectStore",
    "FileServer",
    "ObjectStore",
    "StoredObject",
]
