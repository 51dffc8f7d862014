"""Async HTTP transport for the backend's storage, record and auth APIs.

Each call handles one request/response exchange:

1. Attach the ``apikey`` header and, unless ``auth=False``, a
   ``Authorization: Bearer`` header from the token provider.
2. Send the request with the configured timeout.
3. On ``2xx`` -- return the response (or its parsed JSON body).
4. On any ``httpx`` transport failure (timeout, connect, protocol,
   proxy) or ``408`` / ``429`` / ``5xx`` -- raise
   :class:`TransportError`.  The transport never retries by itself;
   retries and fallbacks belong to the upload layer.
5. On any other ``4xx`` -- raise the matching typed error.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from campusnotes.config import CampusNotesConfig
from campusnotes.errors import (
    BackendValidationError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    UnauthenticatedError,
)
from campusnotes.observability import NoopMetricsHook, get_logger

log = get_logger("campusnotes.transport")

TokenProvider = Callable[[], Awaitable[str | None]]

_RETRYABLE_STATUSES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or response.text[:500]
    else:
        message = response.text[:500]
    return str(message), body


def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
    """Raise the :class:`CampusNotesError` subclass matching a non-2xx
    response.
    """
    status = response.status_code
    message, body = _error_message(response)
    ctx: dict[str, Any] = {"method": method, "path": path, "status_code": status}

    if status in _RETRYABLE_STATUSES:
        raise TransportError(
            message=f"Server error {status} on {method} {path}: {message}",
            context=ctx,
        )
    if status == 401:
        raise UnauthenticatedError(
            message=f"Authentication failed on {method} {path}: {message}",
            context=ctx,
        )
    if status == 403:
        raise PermissionDeniedError(
            message=f"Permission denied on {method} {path}: {message}",
            context=ctx,
        )
    if status == 404:
        raise NotFoundError(
            message=f"Resource not found on {method} {path}: {message}",
            context={**ctx, "resource_type": "http", "resource_id": path},
        )
    raise BackendValidationError(
        message=f"Client error {status} on {method} {path}: {message}",
        context={**ctx, "body": body},
    )


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class BackendTransport:
    """Asynchronous HTTP transport shared by every backend API wrapper.

    Parameters
    ----------
    config:
        A :class:`CampusNotesConfig` controlling base URL, key and timeouts.
    token_provider:
        Coroutine function returning the current access token.  When it is
        absent or yields ``None`` the API key is used as the bearer token.
    client:
        Optional pre-built ``httpx.AsyncClient`` (tests pass one with a
        ``MockTransport``).
    """

    def __init__(
        self,
        config: CampusNotesConfig,
        token_provider: TokenProvider | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self.token_provider = token_provider
        self._metrics = config.metrics if config.metrics is not None else NoopMetricsHook()

        if client is None:
            client = httpx.AsyncClient(
                base_url=config.base_url,
                timeout=httpx.Timeout(config.timeout_seconds),
                proxy=config.http_proxy,
            )
        client.headers["apikey"] = config.api_key
        self._client = client

    @property
    def base_url(self) -> str:
        return self._config.base_url

    @property
    def http_client(self) -> httpx.AsyncClient:
        """The shared ``httpx.AsyncClient`` (proxy and timeouts applied)."""
        return self._client

    async def bearer_token(self) -> str:
        """Return the token sent in ``Authorization`` headers."""
        token: str | None = None
        if self.token_provider is not None:
            token = await self.token_provider()
        return token or self._config.api_key

    # -- public API --------------------------------------------------------

    async def send(
        self,
        method: str,
        path: str,
        *,
        auth: bool = True,
        bearer: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and return the successful ``httpx.Response``.

        Parameters
        ----------
        method:
            HTTP method.
        path:
            Path relative to ``base_url``, or an absolute URL.
        auth:
            Attach an ``Authorization`` header.  Signed upload URLs are
            sent with ``auth=False``.
        bearer:
            Explicit bearer token overriding the token provider.
        headers:
            Extra request headers.
        timeout:
            Per-request timeout override in seconds.
        **kwargs:
            Forwarded to ``httpx.AsyncClient.request`` (``json``,
            ``content``, ``files``, ``data``, ``params``).

        Raises
        ------
        TransportError
            Any ``httpx.TransportError`` (timeout, network, protocol or proxy
            failure) or a retryable status.
        UnauthenticatedError, PermissionDeniedError, NotFoundError,
        BackendValidationError
            Non-retryable ``4xx`` responses.
        """
        request_headers: dict[str, str] = dict(headers or {})
        if auth:
            token = bearer or await self.bearer_token()
            request_headers["Authorization"] = f"Bearer {token}"
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        t0 = time.monotonic()
        try:
            response = await self._client.request(
                method, path, headers=request_headers, **kwargs,
            )
        except httpx.TransportError as exc:
            self._metrics.increment(
                "campusnotes.requests_total",
                tags={"method": method, "status": "error"},
            )
            log.warning(
                "Request transport error",
                extra={
                    "extra_fields": {
                        "op": "request",
                        "method": method,
                        "path": _loggable_path(path),
                        "error": type(exc).__name__,
                    }
                },
            )
            raise TransportError(
                message=f"Network error on {method} {_loggable_path(path)}: {exc}",
                context={"method": method, "path": _loggable_path(path)},
                cause=exc,
            ) from exc
        elapsed_ms = (time.monotonic() - t0) * 1000

        status = str(response.status_code)
        self._metrics.increment(
            "campusnotes.requests_total",
            tags={"method": method, "status": status},
        )
        self._metrics.timing(
            "campusnotes.request_duration_ms",
            elapsed_ms,
            tags={"method": method, "status": status},
        )
        self._emit_debug_dump(method, path, request_headers, kwargs, response)

        if not 200 <= response.status_code < 300:
            _raise_for_status(response, method, _loggable_path(path))
        return response

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Like :meth:`send` but return the parsed JSON body (``{}`` when
        the response is empty).
        """
        response = await self.send(method, path, **kwargs)
        return _parse_body(response)

    async def close(self) -> None:
        """Close the underlying async HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> BackendTransport:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- internals ---------------------------------------------------------

    def _emit_debug_dump(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        kwargs: dict[str, Any],
        response: httpx.Response,
    ) -> None:
        if not self._config.debug_dump_payload:
            return
        from campusnotes.utils.redact import redact

        dump: dict[str, Any] = {
            "method": method,
            "url": path,
            "request_headers": headers,
            "response_status": response.status_code,
        }
        for key in ("json", "content", "params"):
            if key in kwargs:
                dump[f"request_{key}"] = kwargs[key]
        try:
            dump["response_body"] = response.json()
        except ValueError:
            dump["response_body"] = response.content
        token = headers.get("Authorization", "").removeprefix("Bearer ")
        log.debug(
            "Backend exchange",
            extra={"extra_fields": redact(dump, self._config.api_key, token)},
        )


def _loggable_path(path: str) -> str:
    """Strip query strings (signed URL tokens) from a path before logging."""
    return path.split("?", 1)[0]
