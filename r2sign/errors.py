# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception hierarchy for signing and verification.

All failures raised by this package are synchronous and local: nothing
here performs network or disk I/O, so none of them are retryable.
"""


class SigningError(Exception):
    """Base exception for all r2sign errors."""


class ConfigError(SigningError):
    """A required credential, secret or endpoint is missing or invalid.

    Raised before any cryptographic work is attempted.
    """


class InvalidInputError(SigningError, ValueError):
    """A caller-supplied argument failed a precondition.

    Examples: empty bucket, key or method; non-positive expiry.
    """


class AuthorizationError(SigningError):
    """A link signature is missing, malformed or does not match.

    The message is fixed so that callers cannot tell a
    malformed signature apart from a wrong one.
    """

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message)
