"""
Low-level HTTP request library for the hosted backend.
This module sends single HTTP requests, decodes their JSON bodies, and decides
which failures are worth retrying. Retrying itself lives in retry.py.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from .const import REQUEST_TIMEOUT
from .errors import RetryableError, TerminalError

_LOGGER = logging.getLogger(__name__)

# HTTP statuses that are worth another attempt
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class ApiResponseError(Exception):
    """Exception raised when the backend returns an error response."""

    def __init__(self, status: int, error_json: dict | None = None, url: str = ""):
        self.status = status
        self.error_json = error_json or {}
        self.url = url
        message = self.error_json.get("message") or self.error_json.get("error") or self.error_json
        super().__init__(f"API Error {status}: {message}")

    @property
    def code(self) -> str | None:
        return self.error_json.get("code")

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


def classify_error(exc: BaseException) -> bool:
    """
    Return True if exc is a transient failure that may succeed on retry.

    Terminal errors (validation, stale writes, 4xx responses) are never
    retried. Unknown exception types are treated as transient.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, TerminalError):
        return False
    if isinstance(exc, RetryableError):
        return True
    if isinstance(exc, ApiResponseError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiohttp.ClientConnectionError, ConnectionError)):
        return True
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status in RETRYABLE_STATUSES
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return False
    return True


async def make_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    headers: dict,
    payload=None,
    params: dict | None = None,
    timeout: float = REQUEST_TIMEOUT,
):
    """
    Make a single HTTP request and return the decoded JSON body.

    Args:
        session: Open aiohttp session owned by the caller
        method: HTTP method (GET, POST, PATCH, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PATCH requests (optional)
        params: URL query parameters (optional)
        timeout: Total timeout in seconds

    Returns:
        Parsed JSON response, or None for an empty (204) response

    Raises:
        asyncio.TimeoutError: If the request times out
        ApiResponseError: If the backend answers with an error status
        ValueError: If a successful response is not JSON
    """
    method = method.upper()
    if method not in ("GET", "POST", "PATCH", "PUT", "DELETE"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    timeout_config = aiohttp.ClientTimeout(total=timeout)
    async with session.request(
        method, url, headers=headers, json=payload, params=params, timeout=timeout_config
    ) as response:
        return await _process_response(response, url)


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response or None

    Raises:
        ValueError: If a successful response has unexpected content type
        ApiResponseError: For error statuses
    """
    content_type = response.headers.get("Content-Type", "")

    if 200 <= response.status < 300:
        if response.status == 204:
            return None
        if "json" in content_type:
            return await response.json(content_type=None)
        text = await response.text()
        if not text.strip():
            return None
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url,
        )
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    if "json" in content_type:
        try:
            error_json = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s)",
                url, e, response.status,
            )
            error_json = None
        if not isinstance(error_json, dict):
            error_json = {"error": error_json}
        raise ApiResponseError(response.status, error_json, url)

    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200],
    )
    raise ApiResponseError(response.status, {"error": text[:200]}, url)
