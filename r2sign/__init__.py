# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Presigned object-store URLs and HMAC-signed file links.

Two independent signing schemes:

- ``r2sign.sigv4``: AWS SigV4 query-string presigning for direct
  uploads to (and downloads from) an S3-compatible object store
- ``r2sign.links``: HMAC-SHA256 tags gating read access through the
  file server edge (``r2sign.fileserver``)
"""

from r2sign.errors import (
    AuthorizationError,
    ConfigError,
    InvalidInputError,
    SigningError,
)
from r2sign.links import LinkSigner
from r2sign.sigv4 import Credential, Presigner, SigningRequest, presign


__all__ = [
    "AuthorizationError",
    "ConfigError",
    "Credential",
    "InvalidInputError",
    "LinkSigner",
    "Presigner",
    "SigningError",
    "SigningRequest",
    "presign",
]
