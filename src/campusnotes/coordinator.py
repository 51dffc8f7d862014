"""Keep note rows and their storage objects consistent.

:class:`RecordCoordinator` owns every operation that touches both stores.
The backend offers no transaction spanning object storage and the record
store, so each operation orders its steps so that a note row never
references a missing object, and undoes its own storage write when the row
write fails:

* **create** -- upload, then insert; delete the upload if the insert fails.
* **update** -- upload the new file, update the row, then delete the old
  object; delete the new upload if the update fails.  Metadata-only edits
  touch the row alone.
* **delete** -- delete the object (best-effort), then the row.
* **download** -- read the object, then bump the download counter; a failed
  counter update never fails the download.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import unquote

from campusnotes.backend.auth import SessionProvider
from campusnotes.backend.records import RecordStore
from campusnotes.backend.storage import StorageClient
from campusnotes.config import IMAGE_EXTENSION_MIMES, CampusNotesConfig
from campusnotes.errors import (
    CampusNotesError,
    NoConnectivityError,
    NotFoundError,
    PermissionDeniedError,
    RecordWriteError,
    TransportError,
    UnauthenticatedError,
)
from campusnotes.models import (
    CreateState,
    FileKind,
    FileReference,
    NoteFilters,
    NoteMetadata,
    NoteRecord,
    NoteUpdate,
    UploadResult,
    UserIdentity,
)
from campusnotes.observability import NoopMetricsHook, get_logger
from campusnotes.upload import (
    BlobMaterializer,
    ConnectivityProbe,
    CreateStateMachine,
    PathNamer,
    UploadStrategyChain,
    default_strategies,
    resolve_file_type,
    with_retry,
)

log = get_logger("campusnotes.coordinator")

_EXTENSION_FOR_MIME: dict[str, str] = {"application/pdf": ".pdf"}
for _ext, _mime in IMAGE_EXTENSION_MIMES.items():
    _EXTENSION_FOR_MIME.setdefault(_mime, _ext)

DOWNLOAD_COUNTER = "downloads"
LIKE_COUNTER = "likes"

# Note rows with the author's public profile embedded under ``user``.
NOTE_COLUMNS = "*,user:profiles(full_name,branch,year)"


def _fallback_name(kind: FileKind, content_type: str) -> str:
    ext = _EXTENSION_FOR_MIME.get(content_type, ".pdf" if kind is FileKind.PDF else ".jpg")
    return f"{'document' if kind is FileKind.PDF else 'image'}{ext}"


def storage_path_of(note: NoteRecord, bucket: str) -> str | None:
    """Return the object key backing *note*.

    Rows written before ``storage_path`` existed only carry the public URL;
    for those the key is recovered from the URL's ``/<bucket>/`` segment.
    """
    if note.storage_path:
        return note.storage_path
    if not note.remote_url:
        return None
    marker = f"/{bucket}/"
    url_path = note.remote_url.split("?", 1)[0]
    if marker in url_path:
        return unquote(url_path.split(marker, 1)[1])
    return unquote("/".join(url_path.split("/")[-2:]))


class RecordCoordinator:
    """Orchestrate uploads and note rows as single logical operations.

    Parameters
    ----------
    storage:
        Object-storage client for the notes bucket.
    records:
        Record-store client.
    session:
        Identity and token provider.
    probe:
        Connectivity probe consulted before each upload.
    config:
        Table names, retry settings and the metrics hook.
    chain:
        Upload strategy chain.  Defaults to native SDK -> multipart form ->
        pre-signed PUT over *storage*.
    materializer:
        Converts file references into bytes.
    namer:
        Derives storage paths.
    sleep:
        Awaitable sleep used between retries (injectable for tests).
    """

    def __init__(
        self,
        storage: StorageClient,
        records: RecordStore,
        session: SessionProvider,
        probe: ConnectivityProbe,
        config: CampusNotesConfig,
        *,
        chain: UploadStrategyChain | None = None,
        materializer: BlobMaterializer | None = None,
        namer: PathNamer | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._records = records
        self._session = session
        self._probe = probe
        self._config = config
        self._sleep = sleep
        self._chain = chain or UploadStrategyChain(
            default_strategies(storage, session), config, sleep=sleep, storage=storage,
        )
        self._materializer = materializer or BlobMaterializer(
            max_bytes=config.max_upload_bytes,
            timeout=config.timeout_seconds,
        )
        self._namer = namer or PathNamer()
        self._metrics = config.metrics if config.metrics is not None else NoopMetricsHook()
        self.last_create_state: CreateStateMachine | None = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def _require_user(self, operation: str) -> UserIdentity:
        user = await self._session.current_user()
        if user is None or not user.id:
            raise UnauthenticatedError(
                message=f"User not authenticated for {operation}",
                context={"operation": operation},
            )
        return user

    async def ensure_profile(self, user_id: str) -> bool:
        """Make sure a profile row exists for *user_id*.

        Best-effort and idempotent: look the row up, insert a minimal one,
        and fall back to an upsert.  Returns ``False`` (after logging) when
        every attempt failed; the caller carries on and lets the note insert
        surface any real constraint violation.
        """
        table = self._config.profiles_table
        try:
            if await self._records.select_one(table, {"id": user_id}) is not None:
                return True
            try:
                await self._records.insert(table, {"id": user_id})
            except CampusNotesError as exc:
                log.warning(
                    "Profile insert failed; retrying as upsert",
                    extra={"extra_fields": {"op": "ensure_profile", "user_id": user_id,
                                            "error": str(exc)}},
                )
                await self._records.upsert(table, {"id": user_id})
            log.info(
                "Profile created",
                extra={"extra_fields": {"op": "ensure_profile", "user_id": user_id}},
            )
            return True
        except CampusNotesError as exc:
            log.warning(
                "Could not ensure profile exists",
                extra={"extra_fields": {"op": "ensure_profile", "user_id": user_id,
                                        "error_code": exc.code, "error": str(exc)}},
            )
            return False

    # ------------------------------------------------------------------
    # Upload pipeline
    # ------------------------------------------------------------------

    async def upload_file(self, owner_id: str, file_ref: FileReference) -> UploadResult:
        """Probe, materialise, classify, name and transfer one file.

        Raises
        ------
        NoConnectivityError, FileFetchError, UnsupportedFileTypeError,
        UploadExhaustedError
        """
        if not await self._probe.is_connected():
            raise NoConnectivityError(
                message="No internet connection. Please check your network and try again.",
                context={"owner_id": owner_id},
            )

        data = await self._materializer.materialize(file_ref)
        kind, content_type = resolve_file_type(file_ref, data)
        name = file_ref.display_name or _fallback_name(kind, content_type)
        path = self._namer.derive_path(owner_id, name)

        log.debug(
            "Uploading file",
            extra={"extra_fields": {"op": "upload_file", "path": path, "kind": kind.value,
                                    "content_type": content_type, "size_bytes": len(data)}},
        )
        return await self._chain.upload(data, path, kind, content_type)

    async def _delete_object_quietly(self, path: str, reason: str) -> bool:
        """Delete *path*; log instead of raising on failure."""
        try:
            await self._storage.delete(path)
        except Exception as exc:
            self._metrics.increment(
                "campusnotes.compensations_total",
                tags={"reason": reason, "outcome": "failed"},
            )
            log.error(
                "Storage object delete failed",
                extra={"extra_fields": {"op": "delete_object", "path": path, "reason": reason,
                                        "error_code": getattr(exc, "code", type(exc).__name__),
                                        "error": str(exc)}},
            )
            return False
        self._metrics.increment(
            "campusnotes.compensations_total",
            tags={"reason": reason, "outcome": "deleted"},
        )
        return True

    def _note_row(self, owner_id: str, metadata: NoteMetadata, upload: UploadResult) -> dict[str, Any]:
        row = metadata.to_row()
        row.update({
            "user_id": owner_id,
            "storage_path": upload.storage_path,
            "file_url": upload.remote_url,
            "file_type": upload.file_kind.value,
        })
        return row

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create_with_file(
        self,
        metadata: NoteMetadata,
        file_ref: FileReference,
    ) -> NoteRecord:
        """Upload *file_ref* and create the note row that references it.

        Raises
        ------
        UnauthenticatedError
            No caller identity.
        NoConnectivityError, FileFetchError, UnsupportedFileTypeError,
        UploadExhaustedError
            The upload failed; nothing was written.
        RecordWriteError
            The insert failed after the upload; the uploaded object was
            deleted (``context["compensated"]`` says whether that worked).
        """
        machine = CreateStateMachine(label=metadata.title or "note")
        self.last_create_state = machine

        try:
            user = await self._require_user("create_note")
        except UnauthenticatedError:
            machine.transition(CreateState.FAILED)
            raise

        await self.ensure_profile(user.id)
        machine.transition(CreateState.PROFILE_ENSURED)

        machine.transition(CreateState.UPLOADING)
        try:
            upload = await self.upload_file(user.id, file_ref)
        except BaseException:
            machine.transition(CreateState.FAILED)
            raise
        machine.transition(CreateState.UPLOADED)

        try:
            row = await self._records.insert(
                self._config.notes_table,
                self._note_row(user.id, metadata, upload),
            )
            note = NoteRecord.from_row(row)
        except Exception as exc:
            machine.transition(CreateState.COMPENSATING_DELETE)
            compensated = await self._delete_object_quietly(upload.storage_path, "insert_failed")
            machine.transition(CreateState.FAILED)
            log.error(
                "Note insert failed after upload",
                extra={"extra_fields": {"op": "create_note", "path": upload.storage_path,
                                        "compensated": compensated, "error": str(exc)}},
            )
            raise RecordWriteError(
                message=f"Failed to create note: {exc}",
                context={"operation": "insert", "storage_path": upload.storage_path,
                         "compensated": compensated},
                cause=exc,
            ) from exc

        machine.transition(CreateState.RECORD_INSERTED)
        log.info(
            "Note created",
            extra={"extra_fields": {"op": "create_note", "note_id": note.id,
                                    "path": upload.storage_path, "strategy": upload.strategy}},
        )
        return note

    async def _owned_note(self, note_id: str, user: UserIdentity) -> NoteRecord:
        note = await self.get_note(note_id)
        if note is None:
            raise NotFoundError(
                message=f"Note {note_id} not found",
                context={"resource_type": "note", "resource_id": note_id},
            )
        if note.owner_id != user.id:
            raise PermissionDeniedError(
                message=f"Note {note_id} is not owned by the caller",
                context={"note_id": note_id, "owner_id": note.owner_id, "caller_id": user.id},
            )
        return note

    async def update_with_file(
        self,
        note_id: str,
        metadata: NoteUpdate,
        file_ref: FileReference,
    ) -> NoteRecord:
        """Replace a note's file (and optionally its metadata).

        The old object is deleted only after the row points at the new one.

        Raises
        ------
        UnauthenticatedError, NotFoundError, PermissionDeniedError
            Before anything is uploaded.
        NoConnectivityError, FileFetchError, UnsupportedFileTypeError,
        UploadExhaustedError
            The upload failed; the note is unchanged.
        RecordWriteError
            The row update failed; the new object was deleted.
        """
        user = await self._require_user("update_note")
        current = await self._owned_note(note_id, user)
        old_path = storage_path_of(current, self._config.bucket)

        upload = await self.upload_file(user.id, file_ref)
        patch = metadata.to_row()
        patch.update({
            "storage_path": upload.storage_path,
            "file_url": upload.remote_url,
            "file_type": upload.file_kind.value,
        })

        failure: Exception | None = None
        rows: list[dict[str, Any]] = []
        try:
            rows = await self._records.update(
                self._config.notes_table,
                {"id": note_id, "user_id": user.id},
                patch,
            )
        except Exception as exc:
            failure = exc
        if failure is not None or not rows:
            compensated = await self._delete_object_quietly(upload.storage_path, "update_failed")
            reason = str(failure) if failure is not None else "no matching row"
            raise RecordWriteError(
                message=f"Failed to update note {note_id}: {reason}",
                context={"operation": "update", "storage_path": upload.storage_path,
                         "compensated": compensated},
                cause=failure,
            ) from failure

        updated = NoteRecord.from_row(rows[0])
        if old_path and old_path != upload.storage_path:
            await self._delete_object_quietly(old_path, "replaced")
        log.info(
            "Note file replaced",
            extra={"extra_fields": {"op": "update_note", "note_id": note_id,
                                    "path": upload.storage_path, "old_path": old_path}},
        )
        return updated

    async def update_note(self, note_id: str, metadata: NoteUpdate) -> NoteRecord:
        """Edit an owned note's metadata; its file is left alone.

        Raises
        ------
        UnauthenticatedError, NotFoundError, PermissionDeniedError
        RecordWriteError
            The row update failed or matched nothing.
        """
        user = await self._require_user("update_note")
        current = await self._owned_note(note_id, user)
        patch = metadata.to_row()
        if not patch:
            return current

        try:
            rows = await self._records.update(
                self._config.notes_table,
                {"id": note_id, "user_id": user.id},
                patch,
            )
        except Exception as exc:
            raise RecordWriteError(
                message=f"Failed to update note {note_id}: {exc}",
                context={"operation": "update", "note_id": note_id},
                cause=exc,
            ) from exc
        if not rows:
            raise RecordWriteError(
                message=f"Failed to update note {note_id}: no matching row",
                context={"operation": "update", "note_id": note_id},
            )
        log.info(
            "Note updated",
            extra={"extra_fields": {"op": "update_note", "note_id": note_id,
                                    "fields": sorted(patch)}},
        )
        return NoteRecord.from_row(rows[0])

    async def delete_note(self, note_id: str) -> None:
        """Delete a note's object (best-effort) and then its row.

        Raises
        ------
        UnauthenticatedError, NotFoundError, PermissionDeniedError
        RecordWriteError
            The row delete failed.
        """
        user = await self._require_user("delete_note")
        note = await self._owned_note(note_id, user)

        path = storage_path_of(note, self._config.bucket)
        storage_deleted = False
        if path:
            storage_deleted = await self._delete_object_quietly(path, "note_deleted")

        try:
            await self._records.delete(
                self._config.notes_table,
                {"id": note_id, "user_id": user.id},
            )
        except Exception as exc:
            raise RecordWriteError(
                message=f"Failed to delete note {note_id}: {exc}",
                context={"operation": "delete", "storage_path": path,
                         "storage_deleted": storage_deleted},
                cause=exc,
            ) from exc
        log.info(
            "Note deleted",
            extra={"extra_fields": {"op": "delete_note", "note_id": note_id, "path": path}},
        )

    # ------------------------------------------------------------------
    # Download / counters
    # ------------------------------------------------------------------

    async def download_file(self, note_id: str) -> bytes:
        """Return the bytes of a note's file and count the download once.

        Raises
        ------
        NotFoundError
            The note, or its object, does not exist.
        TransportError
            The object could not be fetched after retries.
        """
        note = await self.get_note(note_id)
        if note is None:
            raise NotFoundError(
                message=f"Note {note_id} not found",
                context={"resource_type": "note", "resource_id": note_id},
            )
        path = storage_path_of(note, self._config.bucket)
        if not path:
            raise NotFoundError(
                message=f"Note {note_id} has no file",
                context={"resource_type": "storage_object", "resource_id": note_id},
            )

        data = await with_retry(
            lambda: self._storage.get(path),
            max_attempts=self._config.retry_max_attempts,
            base_delay=self._config.retry_base_delay,
            max_delay=self._config.retry_max_delay,
            jitter=self._config.retry_jitter,
            retry_on=lambda exc: isinstance(exc, TransportError),
            sleep=self._sleep,
        )

        try:
            await self._records.increment(self._config.notes_table, note.id, DOWNLOAD_COUNTER)
        except Exception as exc:
            self._metrics.increment(
                "campusnotes.counter_failures_total",
                tags={"counter": DOWNLOAD_COUNTER},
            )
            log.warning(
                "Download counter update failed",
                extra={"extra_fields": {"op": "download", "note_id": note.id,
                                        "error_code": getattr(exc, "code", type(exc).__name__), "error": str(exc)}},
            )
        return data

    async def like_note(self, note_id: str) -> None:
        """Atomically add one like to a note.

        Raises
        ------
        UnauthenticatedError
        RecordWriteError
            The increment failed.
        """
        await self._require_user("like_note")
        try:
            await self._records.increment(self._config.notes_table, note_id, LIKE_COUNTER)
        except Exception as exc:
            raise RecordWriteError(
                message=f"Failed to like note {note_id}: {exc}",
                context={"operation": "like", "note_id": note_id},
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_note(self, note_id: str) -> NoteRecord | None:
        row = await self._records.select_one(
            self._config.notes_table, {"id": note_id}, columns=NOTE_COLUMNS,
        )
        return NoteRecord.from_row(row) if row else None

    async def list_notes(
        self,
        filters: NoteFilters | None = None,
        limit: int | None = None,
        order: str = "created_at.desc",
    ) -> list[NoteRecord]:
        """List notes, newest first, narrowed by *filters*.

        ``tags`` matches notes sharing at least one tag; ``search`` is a
        case-insensitive substring match on title and description.  Each
        note carries its author's profile as ``owner``.
        """
        filters = filters or NoteFilters()
        equal: dict[str, Any] = {}
        for column, value in (
            ("subject", filters.subject),
            ("branch", filters.branch),
            ("semester", filters.semester),
            ("user_id", filters.owner_id),
        ):
            if value:
                equal[column] = value

        params: dict[str, str] = {}
        if filters.tags:
            params["tags"] = "ov.{" + ",".join(filters.tags) + "}"
        if filters.search:
            term = filters.search.replace(",", " ").replace("(", " ").replace(")", " ")
            params["or"] = f"(title.ilike.*{term}*,description.ilike.*{term}*)"

        rows = await self._records.select(
            self._config.notes_table,
            equal,
            params=params,
            order=order,
            limit=limit,
            columns=NOTE_COLUMNS,
        )
        return [NoteRecord.from_row(row) for row in rows]

    async def trending_notes(self, limit: int = 10) -> list[NoteRecord]:
        """Most liked, then most downloaded notes."""
        return await self.list_notes(limit=limit, order="likes.desc,downloads.desc")
