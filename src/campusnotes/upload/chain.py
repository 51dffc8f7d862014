"""Chain-of-responsibility executor over :class:`UploadStrategy` objects.

For each strategy, in order:

1. Run ``strategy.upload`` under the per-attempt timeout.  Expiry cancels
   the attempt and counts as a :class:`TransportError`.
2. Retry transport failures with exponential backoff (``with_retry``).
3. On success -- stop and return the :class:`UploadResult`.
4. On transport failure after the last retry -- move to the next strategy.
5. On any other failure (validation, auth, unsupported type) -- stop: a
   weaker strategy cannot fix it.

All strategies write the same path with ``x-upsert: false``.  Once a
transport failure has been seen on that path, the object may already be
stored even though the reply was lost, so:

* an "already exists" rejection on a later attempt counts as success;
* when the chain gives up, the path is deleted (best-effort) before
  :class:`UploadExhaustedError` is raised.

Only when every strategy has been abandoned does the chain raise
:class:`UploadExhaustedError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from campusnotes.backend.storage import StorageClient
from campusnotes.config import CampusNotesConfig
from campusnotes.errors import BackendValidationError, TransportError, UploadExhaustedError
from campusnotes.models import FileKind, UploadResult
from campusnotes.observability import NoopMetricsHook, get_logger

from .retry import with_retry
from .strategies import UploadStrategy

log = get_logger("campusnotes.upload")

_DEFAULT_CONTENT_TYPES: dict[FileKind, str] = {
    FileKind.PDF: "application/pdf",
    FileKind.IMAGE: "application/octet-stream",
}


def _is_transport_error(exc: Exception) -> bool:
    return isinstance(exc, TransportError)


def _is_already_exists(exc: BackendValidationError) -> bool:
    """True for the storage API's duplicate-object rejection.

    The backend answers either ``409`` or ``400`` with ``statusCode: "409"``
    in the body.
    """
    if exc.context.get("status_code") == 409:
        return True
    body = exc.context.get("body")
    return isinstance(body, dict) and str(body.get("statusCode")) == "409"


class _PathAttempts:
    """Per-upload record of whether the path may hold a partial write."""

    def __init__(self) -> None:
        self.transport_failed = False


class UploadStrategyChain:
    """Try upload strategies in order until one succeeds.

    Parameters
    ----------
    strategies:
        Strategies in order of preference.
    config:
        Supplies retry and timeout settings and the metrics hook.
    sleep:
        Awaitable sleep used between retries (injectable for tests).
    storage:
        Storage client behind the strategies.  Needed to recognise an object
        stored by an attempt whose reply was lost, and to remove it when the
        chain gives up.  Without it neither happens.
    """

    def __init__(
        self,
        strategies: Sequence[UploadStrategy],
        config: CampusNotesConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        *,
        storage: StorageClient | None = None,
    ) -> None:
        if not strategies:
            raise ValueError("UploadStrategyChain needs at least one strategy")
        self._strategies = list(strategies)
        self._config = config
        self._sleep = sleep
        self._storage = storage
        self._metrics = config.metrics if config.metrics is not None else NoopMetricsHook()

    @property
    def strategies(self) -> list[UploadStrategy]:
        return list(self._strategies)

    async def upload(
        self,
        data: bytes,
        path: str,
        kind: FileKind,
        content_type: str | None = None,
    ) -> UploadResult:
        """Upload *data* to *path* with the first strategy that works.

        Raises
        ------
        UploadExhaustedError
            All strategies failed, or one failed non-transiently.
        """
        content_type = content_type or _DEFAULT_CONTENT_TYPES[kind]
        failures: dict[str, str] = {}
        last_error: Exception | None = None
        attempts = _PathAttempts()

        for index, strategy in enumerate(self._strategies):
            try:
                url = await with_retry(
                    lambda s=strategy: self._attempt(s, data, path, content_type, attempts),
                    max_attempts=self._config.retry_max_attempts,
                    base_delay=self._config.retry_base_delay,
                    max_delay=self._config.retry_max_delay,
                    jitter=self._config.retry_jitter,
                    retry_on=_is_transport_error,
                    sleep=self._sleep,
                    on_retry=lambda attempt, exc, delay, s=strategy: self._log_retry(
                        s.name, path, attempt, exc, delay,
                    ),
                )
            except TransportError as exc:
                failures[strategy.name] = str(exc)
                last_error = exc
                remaining = len(self._strategies) - index - 1
                log.warning(
                    "Upload strategy exhausted",
                    extra={
                        "extra_fields": {
                            "op": "upload",
                            "strategy": strategy.name,
                            "path": path,
                            "attempts": self._config.retry_max_attempts,
                            "error": str(exc),
                            "next": self._strategies[index + 1].name if remaining else None,
                        }
                    },
                )
                if remaining:
                    self._metrics.increment(
                        "campusnotes.strategy_fallthrough_total",
                        tags={"strategy": strategy.name},
                    )
                continue
            except Exception as exc:
                failures[strategy.name] = str(exc)
                self._metrics.increment(
                    "campusnotes.upload_failure_total",
                    tags={"strategy": strategy.name, "reason": "non_transport"},
                )
                log.error(
                    "Upload strategy failed non-transiently; not trying weaker strategies",
                    extra={
                        "extra_fields": {
                            "op": "upload",
                            "strategy": strategy.name,
                            "path": path,
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        }
                    },
                )
                partial_removed = await self._discard_partial(path, attempts)
                raise UploadExhaustedError(
                    message=f"Upload of {path} rejected by {strategy.name}: {exc}",
                    context={"path": path, "failures": failures, "short_circuit": True,
                             "partial_removed": partial_removed},
                    cause=exc,
                ) from exc

            self._metrics.increment(
                "campusnotes.upload_success_total",
                tags={"strategy": strategy.name, "kind": kind.value},
            )
            log.info(
                "Upload complete",
                extra={
                    "extra_fields": {
                        "op": "upload",
                        "strategy": strategy.name,
                        "path": path,
                        "size_bytes": len(data),
                    }
                },
            )
            return UploadResult(
                remote_url=url,
                storage_path=path,
                file_kind=kind,
                content_type=content_type,
                strategy=strategy.name,
            )

        self._metrics.increment(
            "campusnotes.upload_failure_total",
            tags={"reason": "exhausted"},
        )
        partial_removed = await self._discard_partial(path, attempts)
        raise UploadExhaustedError(
            message=f"All {len(self._strategies)} upload strategies failed for {path}",
            context={"path": path, "failures": failures, "short_circuit": False,
                     "partial_removed": partial_removed},
            cause=last_error,
        )

    async def _attempt(
        self,
        strategy: UploadStrategy,
        data: bytes,
        path: str,
        content_type: str,
        attempts: _PathAttempts,
    ) -> str:
        timeout = self._config.strategy_timeout_seconds
        self._metrics.increment(
            "campusnotes.upload_attempts_total",
            tags={"strategy": strategy.name},
        )
        try:
            return await asyncio.wait_for(
                strategy.upload(data, path, content_type, timeout=timeout),
                timeout,
            )
        except asyncio.TimeoutError as exc:
            attempts.transport_failed = True
            raise TransportError(
                message=f"{strategy.name} upload timed out after {timeout}s",
                context={"path": path, "strategy": strategy.name, "timeout": timeout},
                cause=exc,
            ) from exc
        except TransportError:
            attempts.transport_failed = True
            raise
        except BackendValidationError as exc:
            if not (attempts.transport_failed and self._storage is not None
                    and _is_already_exists(exc)):
                raise
            log.info(
                "Object already stored by an earlier attempt",
                extra={"extra_fields": {"op": "upload", "strategy": strategy.name,
                                        "path": path}},
            )
            return self._storage.public_url(path)

    async def _discard_partial(self, path: str, attempts: _PathAttempts) -> bool | None:
        """Delete *path* if an earlier attempt may have stored it.

        Returns ``None`` when nothing needed removing, else whether the
        delete succeeded.
        """
        if not attempts.transport_failed or self._storage is None:
            return None
        try:
            await self._storage.delete(path)
        except Exception as exc:
            self._metrics.increment(
                "campusnotes.compensations_total",
                tags={"reason": "upload_abandoned", "outcome": "failed"},
            )
            log.error(
                "Could not remove possibly stored object",
                extra={"extra_fields": {"op": "upload", "path": path,
                                        "error_type": type(exc).__name__, "error": str(exc)}},
            )
            return False
        self._metrics.increment(
            "campusnotes.compensations_total",
            tags={"reason": "upload_abandoned", "outcome": "deleted"},
        )
        return True

    def _log_retry(
        self,
        strategy: str,
        path: str,
        attempt: int,
        exc: Exception,
        delay: float,
    ) -> None:
        log.warning(
            "Upload attempt failed; backing off",
            extra={
                "extra_fields": {
                    "op": "upload",
                    "strategy": strategy,
                    "path": path,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                }
            },
        )
