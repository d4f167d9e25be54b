"""Thin HTTP client wrapping requests.Session with default headers, error mapping, and retry."""

import logging
import time
from typing import Any

import requests

from ._exceptions import TransportError

logger = logging.getLogger(__name__)

# Retry config
_MAX_RETRIES = 3
_INITIAL_BACKOFF = 0.5  # seconds
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _raise_for_status(resp: requests.Response, *, method: str = "", url: str = "") -> None:
    """Map HTTP error responses to TransportError."""
    message = f"HTTP {resp.status_code}"
    try:
        body = resp.json()
        error_obj = body.get("error", {}) if isinstance(body, dict) else {}
        if isinstance(error_obj, dict):
            message = error_obj.get("message", body.get("detail", message))
        else:
            message = str(error_obj)
    except (ValueError, AttributeError):
        logger.debug("Failed to parse error body: %s", resp.text[:200] if resp.text else "empty")
        message = resp.text or message

    resp.close()
    raise TransportError(message, status_code=resp.status_code, method=method, url=url)


class HTTPClient:
    """Minimal HTTP client with default headers, error mapping, and automatic retry.

    Retries only cover establishing the response; once an event stream is being
    read, a dropped connection is reported to the caller instead.
    """

    def __init__(self, headers: dict[str, str] | None = None, timeout: float = 300):
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        self._session.headers["Accept"] = "text/event-stream"
        if headers:
            self._session.headers.update(headers)
        self._timeout = timeout

    def _request_with_retry(
        self, method: str, url: str, *, is_stream: bool = False, **kwargs: Any
    ) -> requests.Response:
        """Send request with retry on 429/5xx. Respects Retry-After header."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._session.request(
                    method, url, timeout=self._timeout, stream=is_stream, **kwargs
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                last_exc = e
                logger.warning("Request failed (attempt %d/%d): %s", attempt + 1, _MAX_RETRIES, e)
                if attempt < _MAX_RETRIES - 1:
                    time.sleep(_INITIAL_BACKOFF * (2**attempt))
                    continue
                raise TransportError(str(e), method=method, url=url) from e

            if resp.ok:
                return resp

            if resp.status_code not in _RETRYABLE_STATUS or attempt == _MAX_RETRIES - 1:
                _raise_for_status(resp, method=method, url=url)

            # Retry after delay
            retry_after = resp.headers.get("Retry-After")
            if retry_after and resp.status_code == 429:
                try:
                    delay = float(retry_after)
                except ValueError:
                    logger.debug("Unparseable Retry-After header: %s", retry_after)
                    delay = _INITIAL_BACKOFF * (2**attempt)
            else:
                delay = _INITIAL_BACKOFF * (2**attempt)
            resp.close()
            logger.debug(
                "Retrying %s %s (attempt %d, delay %.1fs)", method, url, attempt + 1, delay
            )
            time.sleep(delay)

        if last_exc:
            raise TransportError(str(last_exc), method=method, url=url) from last_exc
        raise TransportError("Max retries exceeded", method=method, url=url)

    def stream(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send request with stream=True for SSE parsing."""
        return self._request_with_retry(method, url, is_stream=True, **kwargs)

    def close(self) -> None:
        self._session.close()
