"""Decoding of the web service's JSON envelope.

Every response body is a JSON object carrying either ``{"data": [...]}``
or ``{"error": ...}``. A ``null`` data member means an empty result set.
The response cache stores raw bytes, so cached payloads go through
:func:`decode_envelope` exactly like fresh ones.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from festivals_api.exceptions import RecordDoesNotExistError, ServiceError


def decode_envelope(payload: bytes, status_code: Optional[int] = None) -> list[Any]:
    """Return the ``data`` records of an envelope.

    Args:
        payload: Raw response body.
        status_code: HTTP status of the response, attached to errors.

    Returns:
        The list of raw records (dicts), empty for ``"data": null``.

    Raises:
        ServiceError: If the payload is not JSON, not an object, carries an
            ``error`` member, or its ``data`` member is not a list.
    """
    try:
        document = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ServiceError(
            f"The service response is not valid JSON: {exc}", status_code
        ) from exc

    if not isinstance(document, dict):
        raise ServiceError("The service response is not a JSON object", status_code)

    if "data" in document:
        data = document["data"]
        if data is None:
            return []
        if isinstance(data, list):
            return data
        raise ServiceError("The service response data is not a list", status_code)

    if "error" in document:
        raise ServiceError(f"The service reported an error: {document['error']}", status_code)
    raise ServiceError("The service response carries neither data nor error", status_code)


def decode_response(response: httpx.Response) -> list[Any]:
    """Decode *response*, treating any non-2xx status as a service error."""
    if not response.is_success:
        detail = _error_detail(response)
        prefix = f"HTTP {response.status_code}"
        raise ServiceError(
            f"{prefix}: {detail}" if detail else prefix, response.status_code
        )
    return decode_envelope(response.content, response.status_code)


def single_record(records: list[Any], description: str) -> Any:
    """Return the first record, or raise when the result set is empty.

    Raises:
        RecordDoesNotExistError: If *records* is empty.
    """
    if not records:
        raise RecordDoesNotExistError(f"{description} does not exist")
    return records[0]


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json()
    except ValueError:
        return response.text[:200] if response.text else ""
    if isinstance(detail, dict):
        return str(detail.get("error") or detail.get("message") or "")
    return str(detail)
