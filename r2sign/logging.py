# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging configuration with secret and signature redaction.

Two kinds of values must never reach log output:

- registered secrets (the storage secret access key, the link secret),
  replaced with ``[REDACTED]``
- signatures embedded in URLs (``X-Amz-Signature=...`` and
  ``signature=...``): a logged presigned URL or file link is a working
  capability until it expires, so the signature value is replaced

Usage:
    # In entry points
    from r2sign.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
"""

import logging
import re
from typing import ClassVar


_SIGNATURE_RE = re.compile(
    r"(?P<name>(?:X-Amz-Signature|signature)=)[0-9a-fA-F]+"
)


def redact_signatures(text: str) -> str:
    """Replace URL signature values in *text* with ``[REDACTED]``."""
    return _SIGNATURE_RE.sub(r"\g<name>[REDACTED]", text)


class SecretFilter(logging.Filter):
    """Logging filter that redacts secrets and URL signatures.

    Secrets are registered at runtime (normally by the config loader)
    and shared by every filter instance.

    Example:
        SecretFilter.register_secret("wJalrXUtnFEMI")
        logger.addFilter(SecretFilter())
        logger.info("secret=%s", "wJalrXUtnFEMI")
        # Output: "secret=[REDACTED]"
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact the record in place.

        Args:
            record: The log record to filter.

        Returns:
            Always True (records are modified, never suppressed).
        """
        record.msg = self._redact(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    @classmethod
    def _redact(cls, text: str) -> str:
        if cls._pattern is not None:
            text = cls._pattern.sub("[REDACTED]", text)
        return redact_signatures(text)

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty strings are ignored.
        """
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        # Longest first so a secret containing another is fully masked.
        if cls._secrets:
            ordered = sorted(cls._secrets, key=len, reverse=True)
            escaped = [re.escape(s) for s in ordered]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure the root logger.

    Installs a single stream handler, replacing any existing handlers.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        add_secret_filter: Whether to attach ``SecretFilter``.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)
