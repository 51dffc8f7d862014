"""Network reachability probe run before any network-bound upload work.

The probe distinguishes two outcomes:

* the check ran and reported the device offline -> ``False``;
* the check itself failed (timed out, raised) -> ``True``.

The second case is an optimistic default: a flaky reachability check must
not block an upload that might well succeed.  The cost is that a truly
offline upload fails later, at the transport layer, instead of here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from campusnotes.observability import get_logger

log = get_logger("campusnotes.connectivity")

ReachabilityCheck = Callable[[], Awaitable[bool]]


class HttpReachabilityCheck:
    """Reachability source issuing a ``HEAD`` request to a health URL.

    Any HTTP response, whatever its status, proves the network path works.
    A refused or unroutable connection reports the device offline.  Other
    failures propagate so :class:`ConnectivityProbe` can treat them as a
    failed probe.

    Parameters
    ----------
    url:
        Absolute URL to probe.
    client:
        Optional ``httpx.AsyncClient``; a short-lived one is created per
        check otherwise.
    """

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client

    async def __call__(self) -> bool:
        try:
            if self._client is not None:
                await self._client.head(self._url)
            else:
                async with httpx.AsyncClient() as client:
                    await client.head(self._url)
        except httpx.ConnectError:
            return False
        return True


class ConnectivityProbe:
    """Bounded connectivity check with an optimistic failure default.

    Parameters
    ----------
    check:
        Coroutine function answering "is the device online?".
    timeout:
        Upper bound (seconds) on the check.
    """

    def __init__(self, check: ReachabilityCheck, timeout: float = 3.0) -> None:
        self._check = check
        self._timeout = timeout

    async def is_connected(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self._check(), self._timeout))
        except asyncio.TimeoutError:
            log.warning(
                "Connectivity probe timed out; assuming connected",
                extra={"extra_fields": {"op": "probe", "timeout": self._timeout}},
            )
        except Exception as exc:
            log.warning(
                "Connectivity probe failed; assuming connected",
                extra={"extra_fields": {"op": "probe", "error": repr(exc)}},
            )
        return True
