"""Metrics hook protocol and no-op default implementation.

campusnotes emits counters and timings at key points of the upload
pipeline.  By default a :class:`NoopMetricsHook` is used so there is zero
overhead; pass any object satisfying :class:`MetricsHook` as
``CampusNotesConfig.metrics`` to route them elsewhere.

Emitted metric names:

* ``campusnotes.requests_total``             -- counter
* ``campusnotes.request_duration_ms``        -- timing
* ``campusnotes.upload_attempts_total``      -- counter
* ``campusnotes.upload_success_total``       -- counter
* ``campusnotes.upload_failure_total``       -- counter
* ``campusnotes.strategy_fallthrough_total`` -- counter
* ``campusnotes.compensations_total``        -- counter
* ``campusnotes.counter_failures_total``     -- counter
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsHook(Protocol):
    """Protocol that any metrics backend must satisfy.

    All methods accept an optional *tags* dict of string keys and values.
    """

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Increment a counter metric."""
        ...

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a duration in milliseconds."""
        ...


class NoopMetricsHook:
    """Default metrics implementation that silently discards all data points."""

    __slots__ = ()

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass
