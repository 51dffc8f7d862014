"""Identity and session providers.

The coordinator and the multipart upload strategy only ever ask two
questions: *who is calling* and *which bearer token do I send*.  Both are
answered by a :class:`SessionProvider`:

* :class:`StaticSession` -- fixed identity and token (service jobs, tests).
* :class:`BackendSession` -- a session issued by the backend's token
  endpoint, refreshed transparently shortly before it expires.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from campusnotes.config import CampusNotesConfig
from campusnotes.errors import CampusNotesError, UnauthenticatedError
from campusnotes.models import Session, UserIdentity
from campusnotes.observability import get_logger

from .transport import BackendTransport

log = get_logger("campusnotes.auth")


@runtime_checkable
class SessionProvider(Protocol):
    """Read-only view of the caller's identity and access token."""

    async def current_user(self) -> UserIdentity | None:
        ...

    async def access_token(self) -> str | None:
        ...


class StaticSession:
    """A session that never changes.

    Parameters
    ----------
    user:
        The caller, or ``None`` for an anonymous session.
    token:
        Bearer token returned by :meth:`access_token`.
    """

    def __init__(self, user: UserIdentity | None, token: str | None = None) -> None:
        self._user = user
        self._token = token

    async def current_user(self) -> UserIdentity | None:
        return self._user

    async def access_token(self) -> str | None:
        return self._token


def _session_from_payload(
    payload: dict[str, Any],
    now: float,
    previous: Session | None = None,
) -> Session:
    user = payload.get("user") or {}
    identity = (
        UserIdentity(id=str(user["id"]), email=user.get("email"))
        if user.get("id")
        else previous.user if previous is not None
        else UserIdentity(id="")
    )
    expires_at = payload.get("expires_at")
    if expires_at is None:
        expires_at = now + float(payload.get("expires_in") or 3600)
    return Session(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=float(expires_at),
        user=identity,
    )


class BackendSession:
    """Session backed by the backend's ``/auth/v1/token`` endpoint.

    Parameters
    ----------
    transport:
        Transport used for sign-in and refresh calls.  Those calls are sent
        without a user bearer token.
    config:
        Supplies ``token_refresh_margin_seconds``.
    session:
        An existing session to start from, if any.
    clock:
        Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        transport: BackendTransport,
        config: CampusNotesConfig,
        session: Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._margin = config.token_refresh_margin_seconds
        self._session = session
        self._clock = clock

    @property
    def session(self) -> Session | None:
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> UserIdentity:
        """Exchange credentials for a session.

        Raises
        ------
        UnauthenticatedError
            If the backend rejects the credentials.
        """
        try:
            payload = await self._transport.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                auth=False,
            )
        except CampusNotesError as exc:
            raise UnauthenticatedError(
                message=f"Sign-in failed: {exc.message}",
                context={"operation": "sign_in"},
                cause=exc,
            ) from exc
        self._session = _session_from_payload(payload, self._clock())
        return self._session.user

    def sign_out(self) -> None:
        self._session = None

    async def current_user(self) -> UserIdentity | None:
        if await self.access_token() is None or self._session is None:
            return None
        return self._session.user

    async def access_token(self) -> str | None:
        """Return a valid access token, refreshing it when it expires within
        the configured margin.  ``None`` when there is no usable session.
        """
        session = self._session
        if session is None:
            return None
        if session.expires_at - self._clock() >= self._margin:
            return session.access_token
        if not session.refresh_token:
            log.warning(
                "Session expiring and no refresh token available",
                extra={"extra_fields": {"op": "refresh", "user_id": session.user.id}},
            )
            return None
        try:
            await self._refresh(session.refresh_token)
        except CampusNotesError as exc:
            log.error(
                "Failed to refresh session",
                extra={
                    "extra_fields": {
                        "op": "refresh",
                        "user_id": session.user.id,
                        "error_code": exc.code,
                    }
                },
            )
            return None
        return self._session.access_token if self._session else None

    async def _refresh(self, refresh_token: str) -> None:
        payload = await self._transport.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            auth=False,
        )
        self._session = _session_from_payload(payload, self._clock(), self._session)
        log.info(
            "Session refreshed",
            extra={"extra_fields": {"op": "refresh", "user_id": self._session.user.id}},
        )
