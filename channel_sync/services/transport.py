"""
Resilient Transport

Outbound HTTP for every channel connector:
- Per-request timeout (default 30s)
- Exponential backoff: min(base_delay * 2^attempt, max_delay)
- 400/401/403/404 are permanent and never retried
- Timeouts, network faults, 5xx and other non-2xx responses are retried
- JSON responses parsed, everything else (XML/SOAP) returned as text
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..utils.sanitization import redact

logger = logging.getLogger(__name__)


# Permanent / auth errors - first occurrence short-circuits the retry loop
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404})


@dataclass
class TransportResponse:
    """Parsed 2xx response from a channel endpoint"""
    status_code: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)
    attempts: int = 1
    duration_ms: int = 0


class TransportError(Exception):
    """
    Request failed: non-2xx status, timeout or network fault.

    status_code is None when no response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None, attempts: int = 1):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.status_code not in NON_RETRYABLE_STATUSES


class ResilientTransport:
    """
    httpx-based request executor with timeout, retry and backoff.

    `client` and `sleep` are injectable so tests can swap in
    httpx.MockTransport and a recording sleep. Without an injected client one
    httpx.Client is created on first use and reused, so connections are pooled
    across requests and retries. close() releases it.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        config: Optional[Settings] = None
    ):
        config = config or default_settings
        self.client = client
        self._owns_client = client is None
        self._client_lock = threading.Lock()
        self.sleep = sleep
        self.timeout = timeout if timeout is not None else config.transport_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else config.transport_max_retries
        self.base_delay_ms = base_delay_ms if base_delay_ms is not None else config.transport_base_delay_ms
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else config.transport_max_delay_ms

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before retry number `attempt` (0-based)"""
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None
    ) -> TransportResponse:
        """
        Execute a request, retrying transient failures.

        Raises TransportError once retries are exhausted, or immediately for
        400/401/403/404.
        """
        timeout = timeout if timeout is not None else self.timeout
        max_retries = max_retries if max_retries is not None else self.max_retries
        method = method.upper()
        start_time = time.time()

        last_error: Optional[TransportError] = None

        for attempt in range(max_retries + 1):
            try:
                response = self._send(method, endpoint, headers or {}, body, timeout)
            except httpx.TimeoutException as e:
                last_error = TransportError(f"Request timed out after {timeout}s: {e}", attempts=attempt + 1)
            except httpx.HTTPError as e:
                last_error = TransportError(f"Network error: {e}", attempts=attempt + 1)
            else:
                data = self._parse_body(response)

                if 200 <= response.status_code < 300:
                    return TransportResponse(
                        status_code=response.status_code,
                        data=data,
                        headers=dict(response.headers),
                        attempts=attempt + 1,
                        duration_ms=int((time.time() - start_time) * 1000)
                    )

                last_error = TransportError(
                    f"HTTP {response.status_code}: {self._preview(data)}",
                    status_code=response.status_code,
                    body=data,
                    attempts=attempt + 1
                )

                if not last_error.retryable:
                    logger.warning(f"{method} {endpoint} failed with {response.status_code}, not retrying")
                    raise last_error

            if attempt < max_retries:
                delay_ms = self.backoff_delay_ms(attempt)
                logger.warning(
                    f"{method} {endpoint} attempt {attempt + 1}/{max_retries + 1} failed "
                    f"({last_error.message}), retrying in {delay_ms}ms"
                )
                self.sleep(delay_ms / 1000.0)

        logger.error(f"{method} {endpoint} failed after {max_retries + 1} attempts: {last_error.message}")
        raise last_error

    def _send(self, method, url, headers, body, timeout) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = body

        return self._get_client().request(method, url, **kwargs)

    def _get_client(self) -> httpx.Client:
        if self.client is None:
            with self._client_lock:
                if self.client is None:
                    self.client = httpx.Client()
        return self.client

    def close(self) -> None:
        """Close the pooled client if this transport created it"""
        with self._client_lock:
            if self._owns_client and self.client is not None:
                self.client.close()
                self.client = None

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type.lower():
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    @staticmethod
    def _preview(data: Any, limit: int = 200) -> str:
        # Error bodies end up in logs and channel error messages
        text = data if isinstance(data, str) else str(redact(data))
        return text[:limit]
