"""Asynchronous campusnotes client.

:class:`AsyncNotesClient` wires the backend transport, the session, the
storage and record wrappers and the connectivity probe into a
:class:`~campusnotes.coordinator.RecordCoordinator`, and exposes the note
operations a screen needs.

Usage::

    import asyncio
    from campusnotes import AsyncNotesClient, FileReference, NoteMetadata

    async def main():
        async with AsyncNotesClient(
            base_url="https://<ref>.supabase.co",
            api_key="<anon key>",
        ) as client:
            await client.sign_in("student@example.edu", "hunter2")
            note = await client.create_note_with_file(
                NoteMetadata(title="Thermo unit 3", subject="Physics"),
                FileReference.from_uri("file:///tmp/thermo.pdf"),
            )
            print(note.remote_url)

    asyncio.run(main())
"""

from __future__ import annotations

from typing import Any

import httpx

from campusnotes.backend import (
    BackendSession,
    BackendTransport,
    RecordAPI,
    SessionProvider,
    StorageAPI,
)
from campusnotes.config import CampusNotesConfig
from campusnotes.coordinator import RecordCoordinator
from campusnotes.models import (
    FileReference,
    NoteFilters,
    NoteMetadata,
    NoteRecord,
    NoteUpdate,
    UserIdentity,
)
from campusnotes.upload import BlobMaterializer, ConnectivityProbe, HttpReachabilityCheck


class AsyncNotesClient:
    """Asynchronous client for uploading and managing notes.

    Parameters
    ----------
    config:
        A ready :class:`CampusNotesConfig`.  When omitted, *kwargs* are
        forwarded to :class:`CampusNotesConfig`.
    session:
        Identity provider.  Defaults to a :class:`BackendSession` bound to
        this client's transport; call :meth:`sign_in` to populate it.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` used for every backend
        request, the connectivity check and remote file fetches.
    """

    def __init__(
        self,
        config: CampusNotesConfig | None = None,
        *,
        session: SessionProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        self._config = config if config is not None else CampusNotesConfig(**kwargs)
        self._transport = BackendTransport(self._config, client=http_client)
        if session is None:
            session = BackendSession(self._transport, self._config)
        self._session = session
        self._transport.token_provider = session.access_token

        self._storage = StorageAPI(
            self._transport,
            bucket=self._config.bucket,
            cache_control=self._config.cache_control,
        )
        self._records = RecordAPI(self._transport, counter_rpc=self._config.counter_rpc)
        probe = ConnectivityProbe(
            HttpReachabilityCheck(
                self._config.base_url + self._config.probe_path,
                client=self._transport.http_client,
            ),
            timeout=self._config.probe_timeout_seconds,
        )
        materializer = BlobMaterializer(
            max_bytes=self._config.max_upload_bytes,
            timeout=self._config.timeout_seconds,
            client=self._transport.http_client,
        )
        self._coordinator = RecordCoordinator(
            self._storage,
            self._records,
            self._session,
            probe,
            self._config,
            materializer=materializer,
        )

    @property
    def config(self) -> CampusNotesConfig:
        return self._config

    @property
    def coordinator(self) -> RecordCoordinator:
        return self._coordinator

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> UserIdentity:
        """Sign in with email and password.

        Raises
        ------
        TypeError
            If the client was built with a custom session provider.
        UnauthenticatedError
            If the backend rejects the credentials.
        """
        if not isinstance(self._session, BackendSession):
            raise TypeError("sign_in requires the built-in BackendSession")
        return await self._session.sign_in_with_password(email, password)

    def sign_out(self) -> None:
        if isinstance(self._session, BackendSession):
            self._session.sign_out()

    async def current_user(self) -> UserIdentity | None:
        return await self._session.current_user()

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def create_note_with_file(
        self,
        metadata: NoteMetadata,
        file: FileReference,
    ) -> NoteRecord:
        """Upload *file* and create a note pointing at it.

        See :meth:`RecordCoordinator.create_with_file` for the failure
        contract.
        """
        return await self._coordinator.create_with_file(metadata, file)

    async def update_note_with_file(
        self,
        note_id: str,
        file: FileReference,
        metadata: NoteUpdate | None = None,
    ) -> NoteRecord:
        """Replace the file of an owned note, optionally editing metadata."""
        return await self._coordinator.update_with_file(note_id, metadata or NoteUpdate(), file)

    async def update_note(self, note_id: str, metadata: NoteUpdate) -> NoteRecord:
        """Edit the metadata of an owned note without touching its file."""
        return await self._coordinator.update_note(note_id, metadata)

    async def delete_note(self, note_id: str) -> None:
        await self._coordinator.delete_note(note_id)

    async def download_note_file(self, note_id: str) -> bytes:
        """Return the file bytes of a note; counts one download."""
        return await self._coordinator.download_file(note_id)

    async def like_note(self, note_id: str) -> None:
        await self._coordinator.like_note(note_id)

    async def get_note(self, note_id: str) -> NoteRecord | None:
        return await self._coordinator.get_note(note_id)

    async def list_notes(
        self,
        filters: NoteFilters | None = None,
        limit: int | None = None,
    ) -> list[NoteRecord]:
        return await self._coordinator.list_notes(filters, limit=limit)

    async def trending_notes(self, limit: int = 10) -> list[NoteRecord]:
        return await self._coordinator.trending_notes(limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._transport.close()

    async def __aenter__(self) -> AsyncNotesClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
