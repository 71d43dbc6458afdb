# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for upload tickets and object key layout."""

import re
import urllib.parse

import pytest

from r2sign.errors import InvalidInputError
from r2sign.sigv4 import Presigner, parse_presigned_url_params
from r2sign.uploads import (
    APPLICANT_POLICY,
    DAILY_REPORT_POLICY,
    MB,
    UploadSigner,
    UploadTicket,
    application_document_key,
    daily_report_key,
    file_extension,
    normalize_file_name,
    random_suffix,
    sanitize_email_for_path,
)
from tests.vectors import FIXED_NOW, HOST, fixed_clock


FIXED_MILLIS = 1704110400000


@pytest.fixture
def upload_signer(presigner: Presigner) -> UploadSigner:
    """Upload signer for bucket ``docs`` with a fixed clock."""
    return UploadSigner(
        presigner, "docs", put_ttl=600, get_ttl=300, clock=fixed_clock
    )


class TestUploadPolicy:
    """Tests for UploadPolicy.check."""

    def test_accepts_image_and_pdf(self) -> None:
        """Applicant uploads accept images and PDFs within limits."""
        APPLICANT_POLICY.check("image/png", 5 * MB)
        APPLICANT_POLICY.check("application/pdf", 10 * MB)

    def test_unknown_type(self) -> None:
        """Types outside the accepted set are rejected."""
        with pytest.raises(InvalidInputError, match="Invalid file type"):
            APPLICANT_POLICY.check("text/html", 10)

    def test_daily_report_rejects_pdf(self) -> None:
        """Daily reports are photos only."""
        with pytest.raises(InvalidInputError):
            DAILY_REPORT_POLICY.check("application/pdf", 10)

    def test_image_too_large(self) -> None:
        """Images are capped at 5MB."""
        with pytest.raises(InvalidInputError, match="5MB"):
            APPLICANT_POLICY.check("image/jpeg", 5 * MB + 1)

    def test_pdf_too_large(self) -> None:
        """PDFs are capped at 10MB."""
        with pytest.raises(InvalidInputError, match="10MB"):
            APPLICANT_POLICY.check("application/pdf", 10 * MB + 1)

    @pytest.mark.parametrize("size", [0, -5])
    def test_non_positive_size(self, size: int) -> None:
        """Empty uploads are rejected."""
        with pytest.raises(InvalidInputError):
            APPLICANT_POLICY.check("image/png", size)


class TestKeyHelpers:
    """Tests for the key building helpers."""

    def test_sanitize_email(self) -> None:
        """Email addresses become lower-case dash-separated segments."""
        assert sanitize_email_for_path(" A.B@Example.com ") == (
            "a-b-example-com"
        )

    def test_normalize_file_name(self) -> None:
        """Whitespace becomes dashes and other symbols are dropped."""
        assert normalize_file_name("My Photo (1).JPG") == "my-photo-1.jpg"
        assert normalize_file_name("ภาพถ่าย.png") == ".png"

    @pytest.mark.parametrize(
        ("name", "ext"),
        [("cv.PDF", "pdf"), ("archive.tar.gz", "gz"), ("README", "bin")],
    )
    def test_file_extension(self, name: str, ext: str) -> None:
        """The last extension, lower-cased, or bin."""
        assert file_extension(name) == ext

    def test_trailing_dot(self) -> None:
        """A trailing dot has no extension."""
        assert file_extension("name.") == "bin"

    def test_random_suffix(self) -> None:
        """Suffixes are short lower-case alphanumerics."""
        suffix = random_suffix()
        assert re.fullmatch(r"[a-z0-9]{6}", suffix)


class TestApplicationDocumentKey:
    """Tests for application_document_key."""

    def test_layout(self) -> None:
        """Only the extension of the user's file name is kept."""
        key = application_document_key(
            "app-1",
            "id_card",
            "บัตร ประชาชน.JPG",
            FIXED_NOW,
            suffix="abc123",
        )
        assert key == (
            f"applications/app-1/id_card/{FIXED_MILLIS}_id_card_abc123.jpg"
        )

    def test_random_suffix_by_default(self) -> None:
        """Two keys minted in the same millisecond differ."""
        one = application_document_key("a", "cv", "cv.pdf", FIXED_NOW)
        two = application_document_key("a", "cv", "cv.pdf", FIXED_NOW)
        assert one != two

    @pytest.mark.parametrize(
        ("application_id", "doc_type"),
        [("../x", "cv"), ("a", "cv/../../x"), ("", "cv"), ("a", "")],
    )
    def test_rejects_path_tricks(
        self, application_id: str, doc_type: str
    ) -> None:
        """Ids and document types must be plain tokens."""
        with pytest.raises(InvalidInputError):
            application_document_key(
                application_id, doc_type, "cv.pdf", FIXED_NOW
            )


class TestDailyReportKey:
    """Tests for daily_report_key."""

    def test_layout(self) -> None:
        """Email, date and slot become path segments."""
        key = daily_report_key(
            "A.B@Example.com",
            "2024-01-01",
            "check-in",
            "My Photo (1).JPG",
            FIXED_NOW,
        )
        assert key == (
            "daily-reports/a-b-example-com/2024-01-01/check-in/"
            f"{FIXED_MILLIS}-my-photo-1.jpg"
        )

    def test_empty_name_falls_back(self) -> None:
        """A name with nothing usable becomes ``upload``."""
        key = daily_report_key(
            "a@b.com", "2024-01-01", "check-out", "()", FIXED_NOW
        )
        assert key.endswith(f"/{FIXED_MILLIS}-upload")

    @pytest.mark.parametrize(
        ("email", "date", "slot"),
        [
            ("not-an-email", "2024-01-01", "check-in"),
            ("a@b.com", "01/01/2024", "check-in"),
            ("a@b.com", "2024-01-01", "lunch"),
        ],
    )
    def test_rejects_bad_fields(
        self, email: str, date: str, slot: str
    ) -> None:
        """Email, date and slot are validated."""
        with pytest.raises(InvalidInputError):
            daily_report_key(email, date, slot, "x.jpg", FIXED_NOW)


class TestUploadSigner:
    """Tests for UploadSigner."""

    def test_applicant_ticket(self, upload_signer: UploadSigner) -> None:
        """The ticket URL uploads to the returned key."""
        ticket = upload_signer.sign_applicant_upload(
            "app-1", "cv", "My CV.pdf", "application/pdf", 2 * MB
        )
        parts = urllib.parse.urlsplit(ticket.url)
        assert parts.netloc == HOST
        assert urllib.parse.unquote(parts.path) == f"/docs/{ticket.key}"
        assert ticket.key.startswith(f"applications/app-1/cv/{FIXED_MILLIS}_")
        assert ticket.expires_in == 600

    def test_content_type_bound(self, upload_signer: UploadSigner) -> None:
        """The declared MIME type is part of the signature."""
        ticket = upload_signer.sign_daily_report_upload(
            "a@b.com", "2024-01-01", "check-in", "x.jpg", "image/jpeg", 1024
        )
        params = parse_presigned_url_params(
            urllib.parse.urlsplit(ticket.url).query
        )
        assert params is not None
        assert params["X-Amz-SignedHeaders"] == "content-type;host"
        assert params["X-Amz-Expires"] == "600"

    def test_content_md5_bound(self, upload_signer: UploadSigner) -> None:
        """A declared checksum is signed too."""
        ticket = upload_signer.sign_applicant_upload(
            "app-1",
            "cv",
            "cv.pdf",
            "application/pdf",
            1024,
            content_md5="1B2M2Y8AsgTpgAmY7PhCfg==",
        )
        assert "X-Amz-SignedHeaders=content-md5%3Bcontent-type%3Bhost" in (
            ticket.url
        )

    def test_policy_enforced(self, upload_signer: UploadSigner) -> None:
        """No URL is minted for a rejected upload."""
        with pytest.raises(InvalidInputError):
            upload_signer.sign_daily_report_upload(
                "a@b.com",
                "2024-01-01",
                "check-in",
                "x.pdf",
                "application/pdf",
                1,
            )

    def test_download(self, upload_signer: UploadSigner) -> None:
        """Downloads use the GET TTL."""
        url = upload_signer.sign_download("applications/app-1/cv/x.pdf")
        assert "X-Amz-Expires=300" in url
        assert "/docs/applications/app-1/cv/x.pdf?" in url

    def test_ticket_to_dict(self) -> None:
        """Tickets serialize with the JSON field names."""
        ticket = UploadTicket(url="https://u", key="k", expires_in=600)
        assert ticket.to_dict() == {
            "url": "https://u",
            "key": "k",
            "expiresIn": 600,
        }
