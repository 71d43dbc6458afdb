# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Upload tickets: object key layout, upload policy and presigning.

An upload ticket is what the application hands to a browser that wants
to store a document: a presigned PUT URL plus the object key it will
land under.  The browser sends the file straight to the object store,
so the policy checks (MIME type and size) happen here, before the URL
is minted, and the declared Content-Type (and Content-MD5, when given)
are bound into the signature.

Key layout::

    applications/<application id>/<doc type>/<ms>_<doc type>_<rand>.<ext>
    daily-reports/<email segment>/<YYYY-MM-DD>/<slot>/<ms>-<file name>
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime

from r2sign.errors import InvalidInputError
from r2sign.sigv4 import Clock, Presigner, utc_now


logger = logging.getLogger(__name__)

MB = 1024 * 1024

DAILY_REPORT_SLOT_IDS = (
    "check-in",
    "pre-delivery",
    "check-out",
    "post-delivery",
    "suspension",
    "payment-proof",
)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PATH_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SUFFIX_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


@dataclass(frozen=True)
class UploadPolicy:
    """Accepted MIME types and size limits for one upload flow.

    Attributes:
        accepted_mimes: MIME types the flow accepts.
        max_image_size: Byte limit for ``image/*`` uploads.
        max_pdf_size: Byte limit for ``application/pdf`` uploads.
    """

    accepted_mimes: frozenset[str]
    max_image_size: int = 5 * MB
    max_pdf_size: int = 10 * MB

    def check(self, mime: str, size: int) -> None:
        """Validate a declared upload.

        Raises:
            InvalidInputError: Unsupported type, bad size, or too large.
        """
        if mime not in self.accepted_mimes:
            accepted = ", ".join(sorted(self.accepted_mimes))
            raise InvalidInputError(
                f"Invalid file type {mime!r}. Accepted: {accepted}"
            )
        if size <= 0:
            raise InvalidInputError(f"File size must be positive: {size}")
        if mime.startswith("image/") and size > self.max_image_size:
            raise InvalidInputError(
                f"Image size cannot exceed {self.max_image_size // MB}MB"
            )
        if mime == "application/pdf" and size > self.max_pdf_size:
            raise InvalidInputError(
                f"PDF size cannot exceed {self.max_pdf_size // MB}MB"
            )


APPLICANT_POLICY = UploadPolicy(
    accepted_mimes=frozenset(
        {
            "image/jpeg",
            "image/png",
            "image/webp",
            "image/heic",
            "image/heif",
            "application/pdf",
        }
    ),
)

DAILY_REPORT_POLICY = UploadPolicy(
    accepted_mimes=frozenset(
        {"image/jpeg", "image/png", "image/webp", "image/heic"}
    ),
)


# ---------------------------------------------------------------------------
# Key layout
# ---------------------------------------------------------------------------


def sanitize_email_for_path(email: str) -> str:
    """Lower-case *email* and replace every non-alphanumeric with ``-``."""
    return re.sub(r"[^a-z0-9]", "-", email.strip().lower())


def normalize_file_name(file_name: str) -> str:
    """Reduce a user-supplied file name to ``[a-z0-9._-]``.

    Whitespace runs become ``-``; everything else outside the allowed
    set is dropped.
    """
    name = re.sub(r"\s+", "-", file_name.strip())
    name = re.sub(r"[^a-zA-Z0-9._-]", "", name)
    return name.lower()


def file_extension(file_name: str) -> str:
    """Lower-cased extension of *file_name*, ``bin`` if there is none."""
    if "." not in file_name:
        return "bin"
    ext = file_name.rsplit(".", 1)[1].lower()
    return ext or "bin"


def random_suffix(length: int = 6) -> str:
    """Short random tag that keeps same-millisecond keys distinct."""
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def _epoch_millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _require_path_id(value: str, name: str) -> None:
    if not _PATH_ID_RE.match(value):
        raise InvalidInputError(f"Invalid {name}: {value!r}")


def application_document_key(
    application_id: str,
    doc_type: str,
    file_name: str,
    now: datetime,
    suffix: str | None = None,
) -> str:
    """Object key for an applicant's document.

    The user's file name contributes only its extension.

    Raises:
        InvalidInputError: If the id or document type is not a plain
            ``[A-Za-z0-9_-]`` token.
    """
    _require_path_id(application_id, "application id")
    _require_path_id(doc_type, "document type")
    if suffix is None:
        suffix = random_suffix()
    ext = file_extension(file_name)
    name = f"{_epoch_millis(now)}_{doc_type}_{suffix}.{ext}"
    return f"applications/{application_id}/{doc_type}/{name}"


def daily_report_key(
    email: str,
    date: str,
    slot_id: str,
    file_name: str,
    now: datetime,
) -> str:
    """Object key for a daily report photo.

    Raises:
        InvalidInputError: Bad email, date (``YYYY-MM-DD``) or slot id.
    """
    if not _EMAIL_RE.match(email.strip()):
        raise InvalidInputError(f"Invalid email address: {email!r}")
    if not _DATE_RE.match(date):
        raise InvalidInputError(f"Date must be YYYY-MM-DD: {date!r}")
    if slot_id not in DAILY_REPORT_SLOT_IDS:
        raise InvalidInputError(f"Unknown daily report slot: {slot_id!r}")
    name = normalize_file_name(file_name) or "upload"
    return (
        f"daily-reports/{sanitize_email_for_path(email)}/{date}/{slot_id}/"
        f"{_epoch_millis(now)}-{name}"
    )


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadTicket:
    """Presigned upload handed to a client.

    Attributes:
        url: Presigned PUT URL.
        key: Object key the upload will be stored under.
        expires_in: URL validity in seconds.
    """

    url: str
    key: str
    expires_in: int

    def to_dict(self) -> dict[str, object]:
        """Serialize for a JSON response."""
        return {"url": self.url, "key": self.key, "expiresIn": self.expires_in}


class UploadSigner:
    """Issues upload tickets and download URLs for one bucket."""

    def __init__(
        self,
        presigner: Presigner,
        bucket: str,
        put_ttl: int,
        get_ttl: int,
        clock: Clock = utc_now,
    ) -> None:
        self.presigner = presigner
        self.bucket = bucket
        self.put_ttl = put_ttl
        self.get_ttl = get_ttl
        self._clock = clock

    def _ticket(
        self, key: str, mime: str, content_md5: str | None
    ) -> UploadTicket:
        url = self.presigner.presign_put(
            self.bucket,
            key,
            expires_in=self.put_ttl,
            content_type=mime,
            content_md5=content_md5,
        )
        logger.info("Issued upload ticket for %s", key)
        return UploadTicket(url=url, key=key, expires_in=self.put_ttl)

    def sign_applicant_upload(
        self,
        application_id: str,
        doc_type: str,
        file_name: str,
        mime: str,
        size: int,
        content_md5: str | None = None,
    ) -> UploadTicket:
        """Ticket for an applicant document upload.

        Raises:
            InvalidInputError: Policy or key validation failed.
        """
        APPLICANT_POLICY.check(mime, size)
        key = application_document_key(
            application_id, doc_type, file_name, self._clock()
        )
        return self._ticket(key, mime, content_md5)

    def sign_daily_report_upload(
        self,
        email: str,
        date: str,
        slot_id: str,
        file_name: str,
        mime: str,
        size: int,
        content_md5: str | None = None,
    ) -> UploadTicket:
        """Ticket for a daily report photo upload.

        Raises:
            InvalidInputError: Policy or key validation failed.
        """
        DAILY_REPORT_POLICY.check(mime, size)
        key = daily_report_key(email, date, slot_id, file_name, self._clock())
        return self._ticket(key, mime, content_md5)

    def sign_download(self, key: str) -> str:
        """Presigned GET URL for a stored object."""
        return self.presigner.presign_get(
            self.bucket, key, expires_in=self.get_ttl
        )
