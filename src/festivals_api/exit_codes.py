"""Numeric process exit codes used by the ``festivals`` command line tool.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~festivals_api.exceptions.FestivalsAPIError` subclass.
Shell scripts can inspect the exit code to tell a TLS or network failure
apart from a missing record without parsing stderr.

Example::

    $ festivals fetch festival --id 42
    $ echo $?
    4   # EXIT_NOT_FOUND, festival 42 does not exist
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CREDENTIAL_ERROR = 3
"""The client certificate container or root certificate could not be loaded."""

EXIT_NOT_FOUND = 4
"""The request succeeded but the expected record does not exist."""

EXIT_SERVICE_ERROR = 5
"""The web service answered with an error or an unreadable envelope."""

EXIT_REQUEST_FAILED = 6
"""No response was obtained (timeout, DNS failure, TLS rejection)."""

EXIT_PARSING_FAILED = 7
"""The response records could not be decoded into entities."""
