"""Public data models for the campusnotes client.

This module contains every result type, enum, and supporting dataclass
referenced by the public API surface.  All types are plain dataclasses
with no behaviour beyond row mapping and structural equality.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import unquote, urlparse


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FileKind(str, Enum):
    """Canonical kind of a note file."""

    PDF = "pdf"
    IMAGE = "image"


class CreateState(str, Enum):
    """Lifecycle states of a single ``create_with_file`` call."""

    INIT = "init"
    """Nothing has happened yet."""

    PROFILE_ENSURED = "profile_ensured"
    """The owner's profile row is present (or the attempt was logged)."""

    UPLOADING = "uploading"
    """The file is being probed, materialised, classified and transferred."""

    UPLOADED = "uploaded"
    """The storage object exists; the note row has not been written."""

    RECORD_INSERTED = "record_inserted"
    """The note row references the storage object.  Terminal success."""

    COMPENSATING_DELETE = "compensating_delete"
    """The row write failed; the uploaded object is being removed."""

    FAILED = "failed"
    """Terminal failure."""


# ---------------------------------------------------------------------------
# File references and upload results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileReference:
    """Handle to a user-selected file, consumed by one upload.

    Exactly one of *data* or *uri* is set.  Prefer the
    :meth:`from_bytes` / :meth:`from_uri` constructors.

    Attributes
    ----------
    data:
        In-memory file contents.
    uri:
        Platform-local reference (``file://`` URI, filesystem path,
        ``data:`` URI or ``http(s)://`` URL).
    name:
        Declared file name, used for type inference and the storage path.
    content_type:
        Declared MIME type.  Platforms sometimes misreport it; see
        :func:`campusnotes.upload.classify.resolve_file_type`.
    """

    data: bytes | None = None
    uri: str | None = None
    name: str | None = None
    content_type: str | None = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.uri is None):
            raise ValueError("FileReference needs exactly one of data or uri")

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        content_type: str | None,
        name: str | None = None,
    ) -> FileReference:
        return cls(data=data, name=name, content_type=content_type)

    @classmethod
    def from_uri(
        cls,
        uri: str,
        name: str | None = None,
        content_type: str | None = None,
    ) -> FileReference:
        return cls(uri=uri, name=name, content_type=content_type)

    @property
    def display_name(self) -> str | None:
        """Declared name, else the last segment of the URI, else ``None``."""
        if self.name:
            return self.name
        if self.uri and not self.uri.startswith("data:"):
            segment = PurePosixPath(unquote(urlparse(self.uri).path)).name
            return segment or None
        return None


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a successful transfer to object storage.

    Attributes
    ----------
    remote_url:
        Public URL of the stored object.
    storage_path:
        Object key inside the bucket (``{owner}/{millis}_{name}``).
    file_kind:
        Classified kind of the file.
    content_type:
        Canonical MIME type the object was stored with.
    strategy:
        Name of the upload strategy that succeeded.
    """

    remote_url: str
    storage_path: str
    file_kind: FileKind
    content_type: str = ""
    strategy: str = ""


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OwnerProfile:
    """Public profile fields of a note's author, joined onto note rows."""

    full_name: str | None = None
    branch: str | None = None
    year: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> OwnerProfile:
        return cls(
            full_name=row.get("full_name"),
            branch=row.get("branch"),
            year=row.get("year"),
        )


@dataclass
class NoteMetadata:
    """User-supplied fields of a new note."""

    title: str
    subject: str
    description: str | None = None
    semester: str | None = None
    branch: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "subject": self.subject,
            "description": self.description,
            "semester": self.semester,
            "branch": self.branch,
            "tags": list(self.tags),
        }


@dataclass
class NoteUpdate:
    """Partial metadata update.  Only fields that are not ``None`` are sent."""

    title: str | None = None
    subject: str | None = None
    description: str | None = None
    semester: str | None = None
    branch: str | None = None
    tags: list[str] | None = None

    def to_row(self) -> dict[str, Any]:
        row = {
            "title": self.title,
            "subject": self.subject,
            "description": self.description,
            "semester": self.semester,
            "branch": self.branch,
            "tags": list(self.tags) if self.tags is not None else None,
        }
        return {k: v for k, v in row.items() if v is not None}


@dataclass
class NoteRecord:
    """A note row as stored in the record store.

    The backend column names differ from the attribute names; use
    :meth:`from_row` and :meth:`to_row` to convert.  *owner* is only set
    when the row was read with the author's profile embedded under
    ``user``; it is never written back.
    """

    id: str
    owner_id: str
    title: str
    subject: str
    storage_path: str
    remote_url: str
    file_kind: FileKind
    description: str | None = None
    semester: str | None = None
    branch: str | None = None
    tags: list[str] = field(default_factory=list)
    like_count: int = 0
    download_count: int = 0
    created_at: str | None = None
    owner: OwnerProfile | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> NoteRecord:
        profile = row.get("user")
        return cls(
            id=str(row["id"]),
            owner_id=str(row["user_id"]),
            title=row.get("title") or "",
            subject=row.get("subject") or "",
            storage_path=row.get("storage_path") or "",
            remote_url=row.get("file_url") or "",
            file_kind=FileKind(row.get("file_type") or FileKind.PDF.value),
            description=row.get("description"),
            semester=row.get("semester"),
            branch=row.get("branch"),
            tags=list(row.get("tags") or []),
            like_count=int(row.get("likes") or 0),
            download_count=int(row.get("downloads") or 0),
            created_at=row.get("created_at"),
            owner=OwnerProfile.from_row(profile) if isinstance(profile, dict) else None,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "subject": self.subject,
            "description": self.description,
            "semester": self.semester,
            "branch": self.branch,
            "tags": list(self.tags),
            "storage_path": self.storage_path,
            "file_url": self.remote_url,
            "file_type": self.file_kind.value,
            "likes": self.like_count,
            "downloads": self.download_count,
            "created_at": self.created_at,
        }


@dataclass
class NoteFilters:
    """Equality / overlap / text filters for :meth:`list_notes`."""

    subject: str | None = None
    branch: str | None = None
    semester: str | None = None
    owner_id: str | None = None
    tags: list[str] | None = None
    search: str | None = None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserIdentity:
    """The authenticated caller."""

    id: str
    email: str | None = None


@dataclass
class Session:
    """An auth session as issued by the backend's token endpoint.

    Attributes
    ----------
    access_token:
        Bearer token for storage and record requests.
    refresh_token:
        Token exchanged for a new access token near expiry.
    expires_at:
        Unix timestamp (seconds) at which *access_token* expires.
    user:
        The identity the session belongs to.
    """

    access_token: str
    refresh_token: str | None
    expires_at: float
    user: UserIdentity
