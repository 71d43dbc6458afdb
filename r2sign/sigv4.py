# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS SigV4 query-string presigning for S3-compatible object stores.

Mints time-limited URLs that let a client PUT (or GET) a single object
directly against the store, bypassing the application server.  The
output must match the store's own verifier bit for bit, so every
canonicalization rule below follows the S3 flavour of SigV4:

- path-style addressing (``/<bucket>/<key>``), single URI encoding,
  no dot-segment normalization
- ``UNSIGNED-PAYLOAD`` in place of a body hash
- only ``host`` and, when given, ``content-type`` / ``content-md5``
  are signed

No boto3/botocore dependency and no network access: presigning is a
pure function of the request, the credential and the clock.
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from r2sign.errors import ConfigError, InvalidInputError
from r2sign.hashing import hmac_sha256, hmac_sha256_hex, sha256_hex


logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

#: Region-agnostic region name used by R2 and similar stores.
DEFAULT_REGION = "auto"
DEFAULT_EXPIRES_IN = 600

AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

_DEFAULT_PORTS = {"http": 80, "https": 443}

#: Returns the current time as an aware datetime.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's specific rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - Every other byte of the UTF-8 encoding becomes %XX (uppercase hex)
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        ch = chr(byte)
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        elif ch == "/" and not encode_slash:
            result.append("/")
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def object_path(bucket: str, key: str) -> str:
    """Path-style request path for an object (unencoded).

    One leading slash on *key* is dropped so that ``/a.png`` and
    ``a.png`` address the same object.
    """
    if key.startswith("/"):
        key = key[1:]
    return f"/{bucket}/{key}"


def canonical_uri(path: str) -> str:
    """Build the canonical URI from an unencoded request path.

    Each segment is encoded on its own and the segments are rejoined
    with ``/``, so separators are never encoded.  S3 does not
    normalize paths: empty, ``.`` and ``..`` segments are kept as-is.

    Args:
        path: Raw request path, e.g. ``/bucket/a/b c.png``.

    Returns:
        Encoded canonical path.
    """
    if not path:
        return "/"
    return "/".join(uri_encode(segment) for segment in path.split("/"))


def canonical_query_string(params: Mapping[str, str]) -> str:
    """Build the canonical query string.

    Args:
        params: Query parameters (unencoded).

    Returns:
        Parameters encoded, sorted by encoded name then value, and
        joined with ``&``.
    """
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in params.items())
    return "&".join(f"{k}={v}" for k, v in encoded)


def _normalize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Lower-case names; trim values and collapse inner whitespace."""
    return {
        name.lower(): " ".join(value.split()) for name, value in headers.items()
    }


def canonical_headers_string(headers: Mapping[str, str]) -> str:
    """Build the canonical headers block.

    Args:
        headers: Headers to sign (name -> value).

    Returns:
        One ``name:value`` line per header, sorted by lower-cased name,
        each terminated by a newline.
    """
    normalized = _normalize_headers(headers)
    return "".join(
        f"{name}:{normalized[name]}\n" for name in sorted(normalized)
    )


def signed_headers_string(headers: Mapping[str, str]) -> str:
    """Sorted, semicolon-joined lower-cased header names."""
    return ";".join(sorted(name.lower() for name in headers))


def build_canonical_request(
    method: str,
    uri: str,
    query: Mapping[str, str],
    headers: Mapping[str, str],
    payload_hash: str = UNSIGNED_PAYLOAD,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        uri: Canonical (already encoded) URI.
        query: Query parameters to sign, excluding ``X-Amz-Signature``.
        headers: Headers to sign.
        payload_hash: Body hash, or ``UNSIGNED-PAYLOAD``.

    Returns:
        Canonical request string.
    """
    return "\n".join(
        [
            method,
            uri,
            canonical_query_string(query),
            canonical_headers_string(headers),
            signed_headers_string(headers),
            payload_hash,
        ]
    )


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def credential_scope(date: str, region: str, service: str = SERVICE) -> str:
    """Credential scope: ``date/region/service/aws4_request``."""
    return f"{date}/{region}/{service}/{TERMINATOR}"


def derive_sigv4_signing_key(
    secret_key: str, date: str, region: str, service: str = SERVICE
) -> bytes:
    """Derive the SigV4 signing key.

    Recomputed on every call; the cascade is four HMACs and signing is
    not a hot path.

    Args:
        secret_key: Secret access key.
        date: Date string (YYYYMMDD).
        region: Region name.
        service: Service name.

    Returns:
        Derived signing key bytes.
    """
    k_date = hmac_sha256("AWS4" + secret_key, date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, TERMINATOR)


def build_sigv4_string_to_sign(
    timestamp: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        timestamp: Signing time (``YYYYMMDDTHHMMSSZ``).
        scope: Credential scope (date/region/service/aws4_request).
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [ALGORITHM, timestamp, scope, sha256_hex(canonical_request)]
    )


def sigv4_sign(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the hex-encoded SigV4 signature."""
    return hmac_sha256_hex(signing_key, string_to_sign)


# ---------------------------------------------------------------------------
# Requests and credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """Long-lived access key pair.

    The secret is excluded from ``repr`` so it cannot end up in logs or
    tracebacks by accident.

    Raises:
        ConfigError: If either half is empty.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.access_key_id:
            raise ConfigError("Object storage access key ID is not configured")
        if not self.secret_access_key:
            raise ConfigError(
                "Object storage secret access key is not configured"
            )


def parse_endpoint(endpoint: str) -> tuple[str, str]:
    """Split an endpoint into ``(scheme, host)``.

    Accepts a full URL (``https://acct.r2.example.com``) or a bare
    host.  The scheme defaults to ``https``; default ports are dropped
    and the host is lower-cased, matching what HTTP clients send in the
    ``Host`` header.  IPv6 literals keep their brackets.  Any path on the
    endpoint is ignored.

    Raises:
        ConfigError: If the endpoint is empty or has no host.
    """
    if not endpoint:
        raise ConfigError("Object storage endpoint is not configured")
    if "://" not in endpoint:
        endpoint = f"https://{endpoint}"
    parts = urllib.parse.urlsplit(endpoint)
    if not parts.hostname:
        raise ConfigError(f"Invalid object storage endpoint: {endpoint!r}")
    scheme = parts.scheme.lower()
    host = parts.hostname
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(
            f"Invalid object storage endpoint: {endpoint!r}"
        ) from e
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    return scheme, host


@dataclass(frozen=True)
class SigningRequest:
    """Everything needed to presign one object operation.

    Values are normalized on construction: the method is upper-cased,
    one leading ``/`` is stripped from the key, an empty region becomes
    ``auto`` and the timestamp is converted to UTC at second precision
    (a naive timestamp is taken to be UTC).

    Raises:
        InvalidInputError: If method, bucket or key is empty, the bucket
            contains ``/``, or ``expires_in`` is not a positive integer.
    """

    method: str
    bucket: str
    key: str
    host: str
    timestamp: datetime
    region: str = DEFAULT_REGION
    expires_in: int = DEFAULT_EXPIRES_IN
    content_type: str | None = None
    content_md5: str | None = None
    scheme: str = "https"
    service: str = SERVICE

    def __post_init__(self) -> None:
        if not self.method or not self.method.strip():
            raise InvalidInputError("HTTP method must not be empty")
        if not self.bucket:
            raise InvalidInputError("Bucket must not be empty")
        if "/" in self.bucket:
            raise InvalidInputError(
                f"Bucket must not contain '/': {self.bucket!r}"
            )
        key = self.key[1:] if self.key.startswith("/") else self.key
        if not key:
            raise InvalidInputError("Object key must not be empty")
        if (
            isinstance(self.expires_in, bool)
            or not isinstance(self.expires_in, int)
            or self.expires_in <= 0
        ):
            raise InvalidInputError(
                f"Expiry must be a positive number of seconds: "
                f"{self.expires_in!r}"
            )

        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        timestamp = timestamp.astimezone(UTC).replace(microsecond=0)

        object.__setattr__(self, "method", self.method.strip().upper())
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "region", self.region or DEFAULT_REGION)
        object.__setattr__(self, "timestamp", timestamp)

    @property
    def amz_date(self) -> str:
        """Signing time as ``YYYYMMDDTHHMMSSZ``."""
        return self.timestamp.strftime(AMZ_DATE_FORMAT)

    @property
    def date_stamp(self) -> str:
        """Signing date as ``YYYYMMDD``."""
        return self.amz_date[:8]

    @property
    def scope(self) -> str:
        """Credential scope for this request."""
        return credential_scope(self.date_stamp, self.region, self.service)

    @property
    def canonical_uri(self) -> str:
        """Encoded path-style object path."""
        return canonical_uri(object_path(self.bucket, self.key))

    @property
    def headers(self) -> dict[str, str]:
        """Headers covered by the signature."""
        headers = {"host": self.host}
        if self.content_type:
            headers["content-type"] = self.content_type
        if self.content_md5:
            headers["content-md5"] = self.content_md5
        return headers

    def query_params(self, access_key_id: str) -> dict[str, str]:
        """Presign query parameters, excluding the signature itself."""
        return {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{access_key_id}/{self.scope}",
            "X-Amz-Date": self.amz_date,
            "X-Amz-Expires": str(self.expires_in),
            "X-Amz-SignedHeaders": signed_headers_string(self.headers),
        }


def presign_request(request: SigningRequest, credential: Credential) -> str:
    """Presign *request* with *credential* and return the full URL.

    The signed parameters appear in canonical (sorted) order and
    ``X-Amz-Signature`` is appended last.
    """
    query = request.query_params(credential.access_key_id)
    uri = request.canonical_uri
    creq = build_canonical_request(
        request.method, uri, query, request.headers, UNSIGNED_PAYLOAD
    )
    string_to_sign = build_sigv4_string_to_sign(
        request.amz_date, request.scope, creq
    )
    signing_key = derive_sigv4_signing_key(
        credential.secret_access_key,
        request.date_stamp,
        request.region,
        request.service,
    )
    signature = sigv4_sign(signing_key, string_to_sign)
    return (
        f"{request.scheme}://{request.host}{uri}"
        f"?{canonical_query_string(query)}&X-Amz-Signature={signature}"
    )


class Presigner:
    """Presigns object URLs against one endpoint with one credential.

    Holds no mutable state; a single instance may be shared between
    threads.
    """

    def __init__(
        self,
        credential: Credential,
        endpoint: str,
        region: str | None = DEFAULT_REGION,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize presigner.

        Args:
            credential: Access key pair.
            endpoint: Store endpoint URL or host.
            region: Signing region; ``None`` or empty means ``auto``.
            clock: Time source for the signing timestamp.

        Raises:
            ConfigError: If the endpoint is missing or invalid.
        """
        self.credential = credential
        self.scheme, self.host = parse_endpoint(endpoint)
        self.region = region or DEFAULT_REGION
        self._clock = clock

    def presign(
        self,
        method: str,
        bucket: str,
        key: str,
        *,
        expires_in: int | None = None,
        content_type: str | None = None,
        content_md5: str | None = None,
    ) -> str:
        """Return a presigned URL for one operation on *key*.

        Args:
            method: HTTP method the URL will be used with.
            bucket: Bucket name.
            key: Object key (raw, unencoded).
            expires_in: Validity in seconds; ``None`` means 600.
            content_type: Content-Type the client must send, if any.
            content_md5: Content-MD5 the client must send, if any.

        Returns:
            Absolute presigned URL.

        Raises:
            InvalidInputError: On empty method/bucket/key or bad expiry.
        """
        request = SigningRequest(
            method=method,
            bucket=bucket,
            key=key,
            host=self.host,
            timestamp=self._clock(),
            region=self.region,
            expires_in=(
                DEFAULT_EXPIRES_IN if expires_in is None else expires_in
            ),
            content_type=content_type,
            content_md5=content_md5,
            scheme=self.scheme,
        )
        url = presign_request(request, self.credential)
        logger.debug(
            "Presigned %s %s/%s (expires in %ds)",
            request.method,
            request.bucket,
            request.key,
            request.expires_in,
        )
        return url

    def presign_put(
        self,
        bucket: str,
        key: str,
        *,
        expires_in: int | None = None,
        content_type: str | None = None,
        content_md5: str | None = None,
    ) -> str:
        """Presign a direct upload."""
        return self.presign(
            "PUT",
            bucket,
            key,
            expires_in=expires_in,
            content_type=content_type,
            content_md5=content_md5,
        )

    def presign_get(
        self, bucket: str, key: str, *, expires_in: int | None = None
    ) -> str:
        """Presign a direct download."""
        return self.presign("GET", bucket, key, expires_in=expires_in)


def presign(
    *,
    bucket: str,
    key: str,
    access_key_id: str,
    secret_access_key: str,
    endpoint: str,
    method: str = "PUT",
    region: str | None = DEFAULT_REGION,
    expires_in: int | None = DEFAULT_EXPIRES_IN,
    content_type: str | None = None,
    content_md5: str | None = None,
    clock: Clock = utc_now,
) -> str:
    """One-shot presign with explicit credentials.

    Credentials and endpoint are checked first, so a missing credential
    surfaces as ``ConfigError`` even when other inputs are also bad.

    Raises:
        ConfigError: Missing access key, secret or endpoint.
        InvalidInputError: Empty method/bucket/key or bad expiry.
    """
    credential = Credential(access_key_id, secret_access_key)
    presigner = Presigner(credential, endpoint, region=region, clock=clock)
    return presigner.presign(
        method,
        bucket,
        key,
        expires_in=expires_in,
        content_type=content_type,
        content_md5=content_md5,
    )


# ---------------------------------------------------------------------------
# Presigned URL helpers
# ---------------------------------------------------------------------------


def parse_presigned_url_params(
    query: str,
) -> dict[str, str] | None:
    """Parse presigned URL query parameters.

    Args:
        query: Query string (without leading ?).

    Returns:
        Dict of all query parameters if this is a presigned URL,
        None otherwise.
    """
    params = dict(urllib.parse.parse_qsl(query, keep_blank_values=True))
    if "X-Amz-Credential" not in params:
        return None
    return params


def presigned_url_expiry(url: str) -> datetime:
    """Return the moment a presigned URL stops being accepted.

    Raises:
        InvalidInputError: If *url* is not a well-formed presigned URL.
    """
    params = parse_presigned_url_params(urllib.parse.urlsplit(url).query)
    if params is None:
        raise InvalidInputError("Not a presigned URL")
    try:
        issued = datetime.strptime(
            params["X-Amz-Date"], AMZ_DATE_FORMAT
        ).replace(tzinfo=UTC)
        expires_in = int(params["X-Amz-Expires"])
    except (KeyError, ValueError) as e:
        raise InvalidInputError(f"Malformed presigned URL: {e}") from e
    return issued + timedelta(seconds=expires_in)


# ---------------------------------------------------------------------------
# Clock skew detection
# ---------------------------------------------------------------------------


def check_clock_skew(
    amz_date: str, clock: Clock = utc_now
) -> tuple[bool, int]:
    """Check if a signing timestamp differs significantly from *clock*.

    The store rejects presigned URLs whose issue time is too far from
    its own clock, so large drift on the signing host shows up as
    otherwise unexplained 403s.

    Args:
        amz_date: Timestamp in ``YYYYMMDDTHHMMSSZ`` form.
        clock: Reference time source.

    Returns:
        Tuple of (is_skewed, drift_minutes). is_skewed is True if
        drift exceeds 5 minutes.
    """
    try:
        request_time = datetime.strptime(amz_date, AMZ_DATE_FORMAT).replace(
            tzinfo=UTC
        )
        drift = abs((clock() - request_time).total_seconds())
        drift_minutes = int(drift / 60)
        return drift_minutes > 5, drift_minutes
    except (ValueError, TypeError):
        return False, 0
