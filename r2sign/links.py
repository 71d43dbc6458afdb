# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HMAC-signed file links served through the file server edge.

A link has the form ``/files/<percent-encoded key>?signature=<tag>``
where the tag is the hex HMAC-SHA256 of the *raw* object key under a
shared secret.  The key is only encoded when it is embedded in the URL
path; the verifier decodes the path back to the identical raw string
before recomputing the tag.  Both sides must therefore agree on the
encoding:

- each path segment is encoded with the RFC 3986 unreserved set, so
  ``/`` separates segments and ``?``, ``#``, space and non-ASCII
  characters are always escaped
- decoding is plain ``%XX`` decoding; ``+`` is a literal plus and is
  never turned into a space

Usage:
    signer = LinkSigner(secret, base_url="https://files.example.com")
    url = signer.file_url("applications/app-1/ใบขับขี่.png")
    signer.verify_url(url)
"""

import logging
import urllib.parse

from r2sign.errors import AuthorizationError, ConfigError
from r2sign.hashing import constant_time_equals, hmac_sha256_hex
from r2sign.sigv4 import uri_encode


logger = logging.getLogger(__name__)

#: Path prefix under which the file server serves objects.
FILES_PREFIX = "/files/"

#: Query parameter carrying the link tag.
SIGNATURE_PARAM = "signature"


def sign(secret: str | bytes, raw_key: str) -> str:
    """Compute the link tag for *raw_key*.

    Args:
        secret: Shared secret.
        raw_key: Object key exactly as stored (not URL-encoded).

    Returns:
        64-character lowercase hex HMAC-SHA256.
    """
    return hmac_sha256_hex(secret, raw_key)


def verify(secret: str | bytes, raw_key: str, tag: str | None) -> bool:
    """Check *tag* against *raw_key* in constant time.

    Never raises: a missing or malformed tag is simply not a match.
    """
    if not tag:
        return False
    return constant_time_equals(sign(secret, raw_key), tag)


def require_valid(secret: str | bytes, raw_key: str, tag: str | None) -> None:
    """Raise unless *tag* is valid for *raw_key*.

    Raises:
        AuthorizationError: On any mismatch.  The message is the same
            for malformed and wrong tags and never includes the
            expected value.
    """
    if not verify(secret, raw_key, tag):
        raise AuthorizationError()


def encode_key_path(raw_key: str) -> str:
    """Percent-encode a key for use in a URL path, keeping separators."""
    return "/".join(uri_encode(segment) for segment in raw_key.split("/"))


def decode_key_path(path: str) -> str:
    """Inverse of :func:`encode_key_path`.

    Each segment is decoded on its own and the segments are rejoined
    with ``/``.  Invalid UTF-8 sequences are kept as replacement
    characters, which then simply fail verification.
    """
    return "/".join(
        urllib.parse.unquote(segment, errors="replace")
        for segment in path.split("/")
    )


def file_path(raw_key: str) -> str:
    """Path of the file server route for *raw_key* (no signature)."""
    return FILES_PREFIX + encode_key_path(raw_key)


def build_file_url(
    secret: str | bytes, raw_key: str, base_url: str | None = None
) -> str:
    """Build a signed file link.

    Args:
        secret: Shared secret.
        raw_key: Object key exactly as stored.
        base_url: Origin of the file server (e.g.
            ``https://files.example.com``).  When None a
            root-relative URL is returned.

    Returns:
        ``[base_url]/files/<encoded key>?signature=<tag>``.
    """
    path = file_path(raw_key)
    if base_url:
        path = base_url.rstrip("/") + path
    return f"{path}?{SIGNATURE_PARAM}={sign(secret, raw_key)}"


def parse_file_url(url: str) -> tuple[str, str | None]:
    """Extract ``(raw_key, signature)`` from a file link.

    Accepts absolute or root-relative URLs.

    Raises:
        AuthorizationError: If the path is not under ``/files/``.
    """
    parts = urllib.parse.urlsplit(url)
    if not parts.path.startswith(FILES_PREFIX):
        raise AuthorizationError()
    raw_key = decode_key_path(parts.path[len(FILES_PREFIX) :])
    query = urllib.parse.parse_qs(parts.query, keep_blank_values=True)
    values = query.get(SIGNATURE_PARAM)
    return raw_key, values[0] if values else None


def verify_file_url(secret: str | bytes, url: str) -> bool:
    """Verify a complete file link."""
    try:
        raw_key, signature = parse_file_url(url)
    except AuthorizationError:
        return False
    return verify(secret, raw_key, signature)


class LinkSigner:
    """Mints and checks file links with one shared secret.

    The secret is read once at construction and never mutated, so one
    instance may be shared between threads.
    """

    def __init__(
        self, secret: str | bytes, base_url: str | None = None
    ) -> None:
        """Initialize link signer.

        Args:
            secret: Shared secret, also configured on the file server.
            base_url: File server origin used for absolute links.

        Raises:
            ConfigError: If the secret is empty.
        """
        if not secret:
            raise ConfigError("Link signing secret is not configured")
        self._secret = secret
        self.base_url = base_url

    def __repr__(self) -> str:
        return f"LinkSigner(base_url={self.base_url!r})"

    def sign(self, raw_key: str) -> str:
        """Tag for *raw_key*."""
        return sign(self._secret, raw_key)

    def verify(self, raw_key: str, tag: str | None) -> bool:
        """Check a tag."""
        return verify(self._secret, raw_key, tag)

    def require_valid(self, raw_key: str, tag: str | None) -> None:
        """Raise ``AuthorizationError`` unless *tag* is valid."""
        require_valid(self._secret, raw_key, tag)

    def file_url(self, raw_key: str) -> str:
        """Signed link for *raw_key*."""
        url = build_file_url(self._secret, raw_key, self.base_url)
        logger.debug("Signed file link for %s", raw_key)
        return url

    def verify_url(self, url: str) -> bool:
        """Check a complete link."""
        return verify_file_url(self._secret, url)
