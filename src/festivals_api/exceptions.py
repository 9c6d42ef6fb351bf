"""Exception hierarchy for festivals_api.

All exceptions inherit from :class:`FestivalsAPIError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`festivals_api.exit_codes`. Library callers catch the specific
subclasses; the ``festivals`` CLI catches the base class and exits with the
mapped code.

Subclass hierarchy::

    FestivalsAPIError           (exit 1)
    +-- ConfigError             (exit 1)
    +-- CredentialError         (exit 3)
    +-- TrustError              (exit 6, internal to TLS evaluation)
    +-- RequestFailedError      (exit 6)
    +-- ServiceError            (exit 5)
    +-- ParsingFailedError      (exit 7)
    +-- RecordDoesNotExistError (exit 4)

Cache failures never appear here: disk errors inside
:class:`~festivals_api.cache.ResponseCache` degrade to cache misses.
"""

from __future__ import annotations

import enum
from typing import Optional

from festivals_api.exit_codes import (
    EXIT_CREDENTIAL_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_PARSING_FAILED,
    EXIT_REQUEST_FAILED,
    EXIT_SERVICE_ERROR,
)


class FestivalsAPIError(Exception):
    """Base exception for all festivals_api errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(FestivalsAPIError):
    """Raised for configuration problems (invalid JSON, unresolvable credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class CredentialErrorReason(str, enum.Enum):
    """Why a client credential container could not be turned into trust material."""

    DECODE_FAILED = "decode_failed"
    MISSING_IDENTITY = "missing_identity"
    MISSING_ROOT = "missing_root"


class CredentialError(FestivalsAPIError):
    """Raised when the PKCS#12 container or the pinned root certificate is unusable.

    Always raised synchronously while a client is being constructed, never
    deferred to the first request.

    Args:
        message: Human-readable error description.
        reason: The :class:`CredentialErrorReason` classifying the failure.
    """

    exit_code = EXIT_CREDENTIAL_ERROR

    def __init__(self, message: str, reason: CredentialErrorReason):
        super().__init__(message)
        self.reason = reason


class TrustError(FestivalsAPIError):
    """Raised when a server certificate chain does not validate to the pinned root.

    Internal to TLS evaluation. The dispatcher converts it into a
    :class:`RequestFailedError` before it reaches the caller.
    """

    exit_code = EXIT_REQUEST_FAILED


class RequestFailedError(FestivalsAPIError):
    """Raised when no HTTP response was obtained (network, TLS rejection, timeout)."""

    exit_code = EXIT_REQUEST_FAILED


class ServiceError(FestivalsAPIError):
    """Raised when a response arrived but its ``{data}``/``{error}`` envelope is unusable.

    Args:
        message: Human-readable error description.
        status_code: The HTTP status of the response, when known.
    """

    exit_code = EXIT_SERVICE_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParsingFailedError(FestivalsAPIError):
    """Raised when the envelope parsed but its records do not match the entity schema."""

    exit_code = EXIT_PARSING_FAILED


class RecordDoesNotExistError(FestivalsAPIError):
    """Raised when a request succeeded but the single expected record is absent."""

    exit_code = EXIT_NOT_FOUND
