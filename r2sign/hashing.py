# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SHA-256 and HMAC-SHA256 helpers shared by both signing schemes."""

import hashlib
import hmac


def to_bytes(value: str | bytes) -> bytes:
    """Return *value* as bytes, UTF-8 encoding strings."""
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def sha256_hex(data: str | bytes) -> str:
    """Lowercase hex SHA-256 digest of *data*."""
    return hashlib.sha256(to_bytes(data)).hexdigest()


def hmac_sha256(key: str | bytes, msg: str | bytes) -> bytes:
    """Raw HMAC-SHA256 digest."""
    return hmac.new(to_bytes(key), to_bytes(msg), hashlib.sha256).digest()


def hmac_sha256_hex(key: str | bytes, msg: str | bytes) -> str:
    """Lowercase hex HMAC-SHA256 digest."""
    return hmac.new(to_bytes(key), to_bytes(msg), hashlib.sha256).hexdigest()


def constant_time_equals(expected: str, actual: str) -> bool:
    """Compare two ASCII strings without leaking where they differ.

    Strings of different length are rejected immediately; the length of
    a hex tag is public, so this reveals nothing about the secret.
    Non-ASCII input never matches.

    Args:
        expected: Locally computed value.
        actual: Value received from the caller.

    Returns:
        True only on an exact match.
    """
    if len(expected) != len(actual):
        return False
    try:
        expected_bytes = expected.encode("ascii")
        actual_bytes = actual.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected_bytes, actual_bytes)
