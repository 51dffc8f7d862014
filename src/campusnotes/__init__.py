"""campusnotes -- File uploads and note records for a college-notes backend.

Public re-exports
-----------------

* **Client:** :class:`AsyncNotesClient`
* **Orchestration:** :class:`RecordCoordinator`
* **Configuration:** :class:`CampusNotesConfig`
* **Errors:** Every :class:`CampusNotesError` subclass, :class:`ErrorCode`
  and :func:`user_message`
* **Models:** All note, file and session dataclasses and enums

Usage::

    from campusnotes import AsyncNotesClient, FileReference, NoteMetadata

    async with AsyncNotesClient(base_url="https://<ref>.supabase.co",
                                api_key="<anon key>") as client:
        await client.sign_in("student@example.edu", "hunter2")
        note = await client.create_note_with_file(
            NoteMetadata(title="Thermo unit 3", subject="Physics"),
            FileReference.from_uri("file:///tmp/thermo.pdf"),
        )
"""

from __future__ import annotations

# ── Client ─────────────────────────────────────────────────────────────
from campusnotes.async_client import AsyncNotesClient

# ── Configuration ───────────────────────────────────────────────────────
from campusnotes.config import CampusNotesConfig
from campusnotes.coordinator import RecordCoordinator

# ── Errors ──────────────────────────────────────────────────────────────
from campusnotes.errors import (
    BackendValidationError,
    CampusNotesError,
    ErrorCode,
    FileFetchError,
    NoConnectivityError,
    NotFoundError,
    PermissionDeniedError,
    RecordWriteError,
    TransportError,
    UnauthenticatedError,
    UnsupportedFileTypeError,
    UploadExhaustedError,
    user_message,
)

# ── Models ──────────────────────────────────────────────────────────────
from campusnotes.models import (
    CreateState,
    FileKind,
    FileReference,
    NoteFilters,
    NoteMetadata,
    NoteRecord,
    NoteUpdate,
    OwnerProfile,
    Session,
    UploadResult,
    UserIdentity,
)

# ── Public surface ──────────────────────────────────────────────────────

__all__ = [
    # Client
    "AsyncNotesClient",
    "RecordCoordinator",
    # Configuration
    "CampusNotesConfig",
    # Error base + code enum
    "CampusNotesError",
    "ErrorCode",
    "user_message",
    # Auth / backend errors
    "UnauthenticatedError",
    "PermissionDeniedError",
    "NotFoundError",
    "BackendValidationError",
    "TransportError",
    # Upload errors
    "UnsupportedFileTypeError",
    "FileFetchError",
    "NoConnectivityError",
    "UploadExhaustedError",
    "RecordWriteError",
    # Models
    "FileKind",
    "CreateState",
    "FileReference",
    "UploadResult",
    "NoteMetadata",
    "NoteUpdate",
    "NoteRecord",
    "OwnerProfile",
    "NoteFilters",
    "UserIdentity",
    "Session",
]
