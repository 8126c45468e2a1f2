"""
HTTP helpers.

This module centralizes the minimal HTTP client logic used by the marketplace
adapters (RapidAPI Amazon search, eBay OAuth + Browse).

Design goals:
- Small surface area (GET JSON, POST form).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so adapters can turn failures into a source-scoped error.
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "nearbuy/0.1.0 (+https://local)"


def _merge_headers(headers: dict[str, str] | None) -> dict[str, str]:
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
    if headers:
        request_headers.update(headers)
    return request_headers


def get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """GET `url` and return the decoded JSON response.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.get(url, params=params, headers=_merge_headers(headers))
        resp.raise_for_status()
        return resp.json()


def post_form(
    url: str,
    *,
    data: dict[str, Any],
    headers: dict[str, str] | None = None,
    auth: tuple[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """POST `data` as a form-encoded body and return the decoded JSON response.

    Used by the eBay OAuth client-credentials flow (`auth` is sent as HTTP Basic).

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.post(url, data=data, headers=_merge_headers(headers), auth=auth)
        resp.raise_for_status()
        return resp.json()


def describe_http_error(exc: Exception) -> str:
    """Return a short, user-facing description of an HTTP failure."""
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from {exc.request.url.host}"
    if isinstance(exc, httpx.TimeoutException):
        return "request timed out"
    if isinstance(exc, httpx.HTTPError):
        return f"network error: {exc.__class__.__name__}"
    return str(exc) or exc.__class__.__name__
