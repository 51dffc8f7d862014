"""Tests for RecordCoordinator.

Covers:
- create_with_file end to end, including profile creation
- Compensating delete when the insert fails (no orphaned objects)
- Failures before upload never touch storage or the record store
- update_with_file ordering (new object, row update, old object delete)
- delete_note best-effort storage removal
- download_file increments the counter exactly once, and tolerates
  counter failures
- update_note edits metadata of owned notes only
- Compensation stays best-effort whatever the delete raises
- like_note, get_note, list_notes query building and the author embed
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from campusnotes.coordinator import NOTE_COLUMNS
from campusnotes.errors import (
    BackendValidationError,
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
)
from campusnotes.models import (
    CreateState,
    FileKind,
    FileReference,
    NoteFilters,
    NoteMetadata,
    NoteRecord,
    NoteUpdate,
    OwnerProfile,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
PDF = b"%PDF-1.7\n" + b"0" * 32
META = NoteMetadata(title="Thermodynamics unit 3", subject="Physics", semester="4", tags=["heat"])


def _seed_note(records, storage, *, note_id="n1", owner="u1", path="u1/1_old.pdf", **extra):
    storage.objects[path] = PDF
    row = {
        "id": note_id,
        "user_id": owner,
        "title": "Old",
        "subject": "Physics",
        "storage_path": path,
        "file_url": storage.public_url(path),
        "file_type": "pdf",
        "likes": 0,
        "downloads": 0,
    }
    row.update(extra)
    records.rows("notes")[note_id] = row
    return row


class TestCreateWithFile:
    async def test_image_end_to_end(self, make_coordinator, storage, records):
        coordinator = make_coordinator()
        ref = FileReference.from_bytes(PNG, "image/png", "photo.png")

        note = await coordinator.create_with_file(META, ref)

        assert isinstance(note, NoteRecord)
        assert note.file_kind is FileKind.IMAGE
        assert note.owner_id == "u1"
        assert note.storage_path == "u1/1700000000000_photo.png"
        assert note.remote_url == storage.public_url(note.storage_path)
        assert storage.objects[note.storage_path] == PNG
        assert records.rows("notes")[note.id]["file_type"] == "image"
        assert records.rows("notes")[note.id]["tags"] == ["heat"]
        assert coordinator.last_create_state.state is CreateState.RECORD_INSERTED

    async def test_pdf_misreported_as_text_plain(self, make_coordinator, storage):
        ref = FileReference.from_bytes(PDF, "text/plain;charset=UTF-8", "Lecture 1.pdf")
        note = await make_coordinator().create_with_file(META, ref)
        assert note.file_kind is FileKind.PDF
        assert storage.content_types[note.storage_path] == "application/pdf"
        assert note.storage_path.endswith("_lecture_1.pdf")

    async def test_unnamed_file_gets_fallback_name(self, make_coordinator):
        ref = FileReference.from_bytes(PNG, "image/png")
        note = await make_coordinator().create_with_file(META, ref)
        assert note.storage_path == "u1/1700000000000_image.png"

    async def test_creates_missing_profile(self, make_coordinator, records):
        await make_coordinator().create_with_file(META, FileReference.from_bytes(PNG, "image/png"))
        assert records.rows("profiles") == {"u1": {"id": "u1"}}

    async def test_existing_profile_untouched(self, make_coordinator, records):
        records.rows("profiles")["u1"] = {"id": "u1", "full_name": "Asha"}
        await make_coordinator().create_with_file(META, FileReference.from_bytes(PNG, "image/png"))
        assert [table for table, _ in records.ops("insert")] == ["notes"]
        assert records.rows("profiles")["u1"]["full_name"] == "Asha"

    async def test_profile_insert_failure_falls_back_to_upsert(self, make_coordinator, records):
        records.fail["insert:profiles"] = BackendValidationError(message="duplicate key")
        await make_coordinator().create_with_file(META, FileReference.from_bytes(PNG, "image/png"))
        assert [table for table, _ in records.ops("upsert")] == ["profiles"]

    async def test_profile_failure_does_not_block_create(self, make_coordinator, records):
        records.fail["select:profiles"] = TransportError(message="timeout")
        note = await make_coordinator().create_with_file(
            META, FileReference.from_bytes(PNG, "image/png"),
        )
        assert note.id in records.rows("notes")

    async def test_insert_failure_deletes_uploaded_object(self, make_coordinator, storage, records, metrics):
        records.fail["insert:notes"] = BackendValidationError(message="violates foreign key")
        coordinator = make_coordinator()

        with pytest.raises(RecordWriteError) as exc_info:
            await coordinator.create_with_file(META, FileReference.from_bytes(PNG, "image/png", "a.png"))

        err = exc_info.value
        assert err.code == ErrorCode.RECORD_WRITE_ERROR
        assert err.context["compensated"] is True
        assert storage.ops("delete") == [err.context["storage_path"]]
        assert storage.objects == {}
        assert records.rows("notes") == {}
        assert coordinator.last_create_state.history[-2:] == [
            CreateState.COMPENSATING_DELETE, CreateState.FAILED,
        ]
        assert {"name": "campusnotes.compensations_total", "value": 1,
                "tags": {"reason": "insert_failed", "outcome": "deleted"}} in metrics.increments

    async def test_failed_compensation_reported(self, make_coordinator, storage, records):
        records.fail["insert:notes"] = BackendValidationError(message="bad row")
        storage.fail["delete"] = [TransportError(message="gone offline")]

        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().create_with_file(META, FileReference.from_bytes(PNG, "image/png"))

        assert exc_info.value.context["compensated"] is False
        assert isinstance(exc_info.value.cause, BackendValidationError)

    async def test_compensation_raising_raw_error_stays_quiet(self, make_coordinator, storage, records):
        records.fail["insert:notes"] = BackendValidationError(message="bad row")
        storage.fail["delete"] = [httpx.RemoteProtocolError("Server disconnected")]

        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().create_with_file(META, FileReference.from_bytes(PNG, "image/png"))

        assert exc_info.value.context["compensated"] is False

    async def test_unauthenticated_touches_nothing(self, make_coordinator, storage, records):
        coordinator = make_coordinator(identity=None)
        with pytest.raises(UnauthenticatedError):
            await coordinator.create_with_file(META, FileReference.from_bytes(PNG, "image/png"))
        assert storage.calls == []
        assert records.calls == []
        assert coordinator.last_create_state.state is CreateState.FAILED

    async def test_offline_raises_before_upload(self, make_coordinator, storage, records):
        with pytest.raises(NoConnectivityError):
            await make_coordinator(connected=False).create_with_file(
                META, FileReference.from_bytes(PNG, "image/png"),
            )
        assert storage.calls == []
        assert records.ops("insert") == [("profiles", {"id": "u1"})]

    async def test_zero_bytes_never_reaches_storage(self, make_coordinator, storage, records):
        with pytest.raises(FileFetchError):
            await make_coordinator().create_with_file(META, FileReference.from_bytes(b"", "application/pdf"))
        assert storage.calls == []
        assert records.rows("notes") == {}

    async def test_unsupported_type_never_reaches_storage(self, make_coordinator, storage):
        ref = FileReference.from_bytes(b"just text", "text/plain", "notes.txt")
        with pytest.raises(UnsupportedFileTypeError):
            await make_coordinator().create_with_file(META, ref)
        assert storage.calls == []

    async def test_exhausted_upload_writes_no_row(self, make_coordinator, storage, records):
        for op in ("put", "put_multipart", "create_signed_upload_url"):
            storage.fail[op] = [TransportError(message="reset") for _ in range(3)]
        coordinator = make_coordinator()

        with pytest.raises(UploadExhaustedError):
            await coordinator.create_with_file(META, FileReference.from_bytes(PNG, "image/png"))

        assert records.rows("notes") == {}
        assert storage.objects == {}
        assert coordinator.last_create_state.state is CreateState.FAILED


class TestUpdateWithFile:
    async def test_replaces_file_then_deletes_old(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        coordinator = make_coordinator()

        note = await coordinator.update_with_file(
            "n1", NoteUpdate(title="New title"), FileReference.from_bytes(PNG, "image/png", "board.png"),
        )

        assert note.title == "New title"
        assert note.file_kind is FileKind.IMAGE
        assert note.storage_path == "u1/1700000000000_board.png"
        assert "u1/1_old.pdf" not in storage.objects
        assert storage.objects[note.storage_path] == PNG
        op_order = [op for op, _ in storage.calls]
        assert op_order.index("put") < op_order.index("delete")
        assert records.ops("update")[0][1][0] == {"id": "n1", "user_id": "u1"}

    async def test_update_failure_removes_new_object_keeps_old(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        records.fail["update:notes"] = TransportError(message="timeout")

        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().update_with_file(
                "n1", NoteUpdate(), FileReference.from_bytes(PNG, "image/png", "b.png"),
            )

        assert exc_info.value.context["compensated"] is True
        assert set(storage.objects) == {"u1/1_old.pdf"}
        assert records.rows("notes")["n1"]["storage_path"] == "u1/1_old.pdf"

    async def test_unexpected_update_error_still_compensates(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        boom = RuntimeError("connection pool closed")
        records.fail["update:notes"] = boom

        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().update_with_file(
                "n1", NoteUpdate(), FileReference.from_bytes(PNG, "image/png", "b.png"),
            )

        assert exc_info.value.__cause__ is boom
        assert exc_info.value.context["compensated"] is True
        assert set(storage.objects) == {"u1/1_old.pdf"}

    async def test_update_matching_no_row_compensates(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        coordinator = make_coordinator()

        async def no_rows(table, filters, patch):
            return []

        records.update = no_rows
        with pytest.raises(RecordWriteError) as exc_info:
            await coordinator.update_with_file(
                "n1", NoteUpdate(), FileReference.from_bytes(PNG, "image/png", "b.png"),
            )
        assert exc_info.value.__cause__ is None
        assert set(storage.objects) == {"u1/1_old.pdf"}

    async def test_not_owner(self, make_coordinator, storage, records):
        _seed_note(records, storage, owner="someone-else", path="someone-else/1_x.pdf")
        with pytest.raises(PermissionDeniedError):
            await make_coordinator().update_with_file(
                "n1", NoteUpdate(), FileReference.from_bytes(PNG, "image/png"),
            )
        assert storage.ops("put") == []

    async def test_missing_note(self, make_coordinator, storage):
        with pytest.raises(NotFoundError):
            await make_coordinator().update_with_file(
                "nope", NoteUpdate(), FileReference.from_bytes(PNG, "image/png"),
            )
        assert storage.calls == []

    async def test_legacy_row_without_storage_path(self, make_coordinator, storage, records):
        _seed_note(records, storage, path="u1/1_old.pdf", storage_path=None)
        await make_coordinator().update_with_file(
            "n1", NoteUpdate(), FileReference.from_bytes(PNG, "image/png"),
        )
        assert "u1/1_old.pdf" in storage.ops("delete")


class TestUpdateNote:
    async def test_updates_owned_note_metadata(self, make_coordinator, storage, records):
        _seed_note(records, storage)

        note = await make_coordinator().update_note("n1", NoteUpdate(title="Revised", tags=["exam"]))

        assert note.title == "Revised"
        assert note.tags == ["exam"]
        assert records.ops("update") == [
            ("notes", ({"id": "n1", "user_id": "u1"}, {"title": "Revised", "tags": ["exam"]})),
        ]
        assert storage.ops("put") == []
        assert storage.ops("delete") == []

    async def test_empty_update_writes_nothing(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        note = await make_coordinator().update_note("n1", NoteUpdate())
        assert note.title == "Old"
        assert records.ops("update") == []

    async def test_other_owner_rejected(self, make_coordinator, storage, records):
        _seed_note(records, storage, owner="u2", path="u2/1_x.pdf")
        with pytest.raises(PermissionDeniedError):
            await make_coordinator().update_note("n1", NoteUpdate(title="Mine now"))
        assert records.rows("notes")["n1"]["title"] == "Old"

    async def test_missing_note(self, make_coordinator):
        with pytest.raises(NotFoundError):
            await make_coordinator().update_note("nope", NoteUpdate(title="x"))

    async def test_requires_user(self, make_coordinator, records):
        with pytest.raises(UnauthenticatedError):
            await make_coordinator(identity=None).update_note("n1", NoteUpdate(title="x"))
        assert records.calls == []

    async def test_write_failure_wrapped(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        records.fail["update:notes"] = TransportError(message="timeout")
        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().update_note("n1", NoteUpdate(title="x"))
        assert isinstance(exc_info.value.__cause__, TransportError)


class TestDeleteNote:
    async def test_deletes_object_then_row(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        await make_coordinator().delete_note("n1")
        assert storage.objects == {}
        assert records.rows("notes") == {}

    async def test_storage_failure_still_deletes_row(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        storage.fail["delete"] = [TransportError(message="flaky")]
        await make_coordinator().delete_note("n1")
        assert records.rows("notes") == {}

    async def test_row_failure_raises(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        records.fail["delete:notes"] = PermissionDeniedError(message="rls")
        with pytest.raises(RecordWriteError) as exc_info:
            await make_coordinator().delete_note("n1")
        assert exc_info.value.context["storage_deleted"] is True

    async def test_other_owner_rejected(self, make_coordinator, storage, records):
        _seed_note(records, storage, owner="u2", path="u2/1_x.pdf")
        with pytest.raises(PermissionDeniedError):
            await make_coordinator().delete_note("n1")
        assert storage.ops("delete") == []


class TestDownloadFile:
    async def test_returns_bytes_and_counts_once(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        data = await make_coordinator().download_file("n1")
        assert data == PDF
        assert records.ops("increment") == [("notes", ("n1", "downloads"))]
        assert records.rows("notes")["n1"]["downloads"] == 1

    async def test_counter_failure_does_not_fail_download(self, make_coordinator, storage, records, metrics):
        _seed_note(records, storage)
        records.fail["increment"] = TransportError(message="rpc down")
        assert await make_coordinator().download_file("n1") == PDF
        assert "campusnotes.counter_failures_total" in metrics.names()

    async def test_transient_get_is_retried(self, make_coordinator, storage, records, sleeper):
        _seed_note(records, storage)
        storage.fail["get"] = [TransportError(message="reset")]
        assert await make_coordinator().download_file("n1") == PDF
        assert sleeper.delays == [1.0]
        assert len(records.ops("increment")) == 1

    async def test_fetch_failure_does_not_count(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        storage.objects.clear()
        with pytest.raises(NotFoundError):
            await make_coordinator().download_file("n1")
        assert records.ops("increment") == []

    async def test_unknown_note(self, make_coordinator):
        with pytest.raises(NotFoundError):
            await make_coordinator().download_file("missing")


    async def test_concurrent_downloads_each_count_once(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        coordinator = make_coordinator()

        results = await asyncio.gather(
            coordinator.download_file("n1"), coordinator.download_file("n1"),
        )

        assert results == [PDF, PDF]
        assert records.ops("increment") == [("notes", ("n1", "downloads"))] * 2
        assert records.rows("notes")["n1"]["downloads"] == 2

    async def test_raw_counter_error_does_not_fail_download(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        records.fail["increment"] = httpx.RemoteProtocolError("Server disconnected")
        assert await make_coordinator().download_file("n1") == PDF


class TestCountersAndReads:
    async def test_like_increments(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        await make_coordinator().like_note("n1")
        assert records.rows("notes")["n1"]["likes"] == 1

    async def test_like_requires_user(self, make_coordinator):
        with pytest.raises(UnauthenticatedError):
            await make_coordinator(identity=None).like_note("n1")

    async def test_like_failure_wrapped(self, make_coordinator, records):
        records.fail["increment"] = TransportError(message="down")
        with pytest.raises(RecordWriteError):
            await make_coordinator().like_note("n1")

    async def test_get_note(self, make_coordinator, storage, records):
        _seed_note(records, storage)
        coordinator = make_coordinator()
        assert (await coordinator.get_note("n1")).storage_path == "u1/1_old.pdf"
        assert await coordinator.get_note("n2") is None

    async def test_list_notes_builds_query(self, make_coordinator, records):
        await make_coordinator().list_notes(
            NoteFilters(subject="Physics", tags=["exam", "unit3"], search="heat, work"),
            limit=20,
        )
        _, query = records.ops("select")[0]
        assert query["filters"] == {"subject": "Physics"}
        assert query["params"] == {
            "tags": "ov.{exam,unit3}",
            "or": "(title.ilike.*heat  work*,description.ilike.*heat  work*)",
        }
        assert query["order"] == "created_at.desc"
        assert query["limit"] == 20

    async def test_trending_order(self, make_coordinator, records):
        await make_coordinator().trending_notes(5)
        _, query = records.ops("select")[0]
        assert query["order"] == "likes.desc,downloads.desc"
        assert query["limit"] == 5

    async def test_reads_embed_author_profile(self, make_coordinator, storage, records):
        _seed_note(records, storage, user={"full_name": "Asha Rao", "branch": "ME", "year": "3"})
        coordinator = make_coordinator()

        note = await coordinator.get_note("n1")
        listed = await coordinator.list_notes()

        assert note.owner == OwnerProfile(full_name="Asha Rao", branch="ME", year="3")
        assert listed[0].owner == note.owner
        assert {query["columns"] for _, query in records.ops("select")} == {NOTE_COLUMNS}
