from __future__ import annotations

from typing import Any

import httpx

from .errors import AuthError, BadRequestError, NotFoundError, ScrapeError, TransientError


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return (response.text or "").strip() or response.reason_phrase


def _payload_message(payload: Any) -> str:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    if isinstance(payload, str):
        return payload
    return ""


def provider_status_error(
    code: int,
    *,
    operation: str,
    payload: Any = None,
    reason: str = "",
) -> ScrapeError:
    """
    Map a non-2xx provider status onto the scrape error taxonomy.

    - 401/403 -> AuthError
    - 404 -> NotFoundError
    - 400 -> BadRequestError with the provider's validation payload
    - anything else -> TransientError
    """
    detail = _payload_message(payload)

    if code in (401, 403):
        suffix = f": {detail}" if detail else ""
        return AuthError(
            f"{operation}: provider token invalid or not authorized (HTTP {code}){suffix}"
        )

    if code == 404:
        return NotFoundError(
            f"{operation}: resource not found (HTTP 404); check the configured actor id"
        )

    if code == 400:
        return BadRequestError(
            f"{operation}: bad request (HTTP 400): {detail or payload}",
            payload=payload,
        )

    label = f"HTTP {code} {reason}".strip()
    return TransientError(f"{operation}: request failed ({label})", status_code=code)


def raise_for_provider_status(response: httpx.Response, *, operation: str) -> None:
    code = response.status_code
    if 200 <= code < 300:
        return
    raise provider_status_error(
        code,
        operation=operation,
        payload=_response_payload(response),
        reason=response.reason_phrase,
    )


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = (response.headers.get("retry-after") or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def is_retryable_http_exception(exc: BaseException) -> tuple[bool, float | None, str | None]:
    """
    Retry policy for plain HTTP fetches (the image proxy):
    - network/connection errors and timeouts
    - HTTP 500+
    - HTTP 429
    """
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code == 429:
            return True, _retry_after_seconds(exc.response), "http_429"
        if code >= 500:
            return True, None, f"http_{code}"
        return False, None, f"http_{code}"

    if isinstance(exc, httpx.TimeoutException):
        return True, None, "timeout"

    if isinstance(exc, httpx.TransportError):
        return True, None, "network_error"

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True, None, "network_error"

    return False, None, None
