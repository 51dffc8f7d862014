"""Shared test fixtures for the campusnotes test suite.

The in-memory fakes below satisfy the ``StorageClient``, ``RecordStore`` and
``MetricsHook`` protocols so coordinator and chain tests run without HTTP.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Any

import pytest

from campusnotes.backend.auth import StaticSession
from campusnotes.config import CampusNotesConfig
from campusnotes.coordinator import RecordCoordinator
from campusnotes.errors import NotFoundError
from campusnotes.models import UserIdentity
from campusnotes.upload import ConnectivityProbe, PathNamer

PUBLIC_PREFIX = "https://example.supabase.co/storage/v1/object/public/notes/"


class FakeStorage:
    """Dict-backed object store recording every call.

    ``fail`` maps an operation name (``put``, ``put_multipart``,
    ``create_signed_upload_url``, ``put_signed``, ``get``, ``delete``) to a
    list of exceptions raised, one per call, before the call succeeds.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[str, list[Exception]] = {}
        self.content_types: dict[str, str] = {}
        self._signed: dict[str, str] = {}

    def _maybe_fail(self, op: str) -> None:
        pending = self.fail.get(op)
        if pending:
            raise pending.pop(0)

    async def put(self, path: str, data: bytes, content_type: str, timeout=None) -> str:
        self.calls.append(("put", path))
        self._maybe_fail("put")
        self.objects[path] = data
        self.content_types[path] = content_type
        return self.public_url(path)

    async def put_multipart(
        self, path: str, data: bytes, content_type: str, access_token: str, timeout=None,
    ) -> str:
        self.calls.append(("put_multipart", path))
        self._maybe_fail("put_multipart")
        self.objects[path] = data
        self.content_types[path] = content_type
        return self.public_url(path)

    async def create_signed_upload_url(self, path: str) -> str:
        self.calls.append(("create_signed_upload_url", path))
        self._maybe_fail("create_signed_upload_url")
        url = f"https://example.supabase.co/storage/v1/upload/{path}?token=signed"
        self._signed[url] = path
        return url

    async def put_signed(self, signed_url: str, data: bytes, content_type: str, timeout=None) -> None:
        path = self._signed[signed_url]
        self.calls.append(("put_signed", path))
        self._maybe_fail("put_signed")
        self.objects[path] = data
        self.content_types[path] = content_type

    async def get(self, path: str) -> bytes:
        self.calls.append(("get", path))
        self._maybe_fail("get")
        if path not in self.objects:
            raise NotFoundError(message=f"object {path} not found")
        return self.objects[path]

    async def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        self._maybe_fail("delete")
        self.objects.pop(path, None)

    def public_url(self, path: str) -> str:
        return PUBLIC_PREFIX + path

    def ops(self, name: str) -> list[str]:
        return [path for op, path in self.calls if op == name]


class FakeRecords:
    """Dict-backed record store keyed by table then row id.

    ``fail`` maps ``"<op>"`` or ``"<op>:<table>"`` to an exception raised
    on every matching call.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail: dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def _maybe_fail(self, op: str, table: str) -> None:
        exc = self.fail.get(f"{op}:{table}") or self.fail.get(op)
        if exc is not None:
            raise exc

    def rows(self, table: str) -> dict[str, dict[str, Any]]:
        return self.tables.setdefault(table, {})

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
        return all(row.get(key) == value for key, value in filters.items())

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", table, row))
        self._maybe_fail("insert", table)
        stored = dict(row)
        stored.setdefault("id", f"note-{next(self._ids)}")
        if table == "notes":
            stored.setdefault("likes", 0)
            stored.setdefault("downloads", 0)
            stored.setdefault("created_at", "2026-10-19T09:00:00Z")
        self.rows(table)[stored["id"]] = stored
        return dict(stored)

    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("upsert", table, row))
        self._maybe_fail("upsert", table)
        stored = self.rows(table).setdefault(row["id"], {})
        stored.update(row)
        return dict(stored)

    async def update(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        self.calls.append(("update", table, (filters, patch)))
        self._maybe_fail("update", table)
        updated = []
        for row in self.rows(table).values():
            if self._matches(row, filters):
                row.update(patch)
                updated.append(dict(row))
        return updated

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        self.calls.append(("delete", table, filters))
        self._maybe_fail("delete", table)
        rows = self.rows(table)
        for row_id in [rid for rid, row in rows.items() if self._matches(row, filters)]:
            del rows[row_id]

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        params: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table, {"filters": filters, "params": params,
                                             "order": order, "limit": limit,
                                             "columns": columns}))
        self._maybe_fail("select", table)
        found = [dict(row) for row in self.rows(table).values()
                 if self._matches(row, filters or {})]
        return found[:limit] if limit is not None else found

    async def select_one(
        self, table: str, filters: dict[str, Any], *, columns: str = "*",
    ) -> dict[str, Any] | None:
        rows = await self.select(table, filters, limit=1, columns=columns)
        return rows[0] if rows else None

    async def increment(self, table: str, row_id: str, counter: str) -> Any:
        self.calls.append(("increment", table, (row_id, counter)))
        self._maybe_fail("increment", table)
        row = self.rows(table)[row_id]
        row[counter] = int(row.get(counter) or 0) + 1
        return row[counter]

    def ops(self, name: str) -> list[tuple[str, Any]]:
        return [(table, arg) for op, table, arg in self.calls if op == name]


class RecordingMetricsHook:
    """A metrics backend that records all calls for assertion."""

    def __init__(self) -> None:
        self.increments: list[dict[str, Any]] = []
        self.timings: list[dict[str, Any]] = []

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.increments.append({"name": name, "value": value, "tags": tags})

    def timing(self, name: str, ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.append({"name": name, "ms": ms, "tags": tags})

    def names(self) -> list[str]:
        return [entry["name"] for entry in self.increments]


class SleepRecorder:
    """Drop-in for ``asyncio.sleep`` that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_config(**overrides: Any) -> CampusNotesConfig:
    """Return a CampusNotesConfig tuned for fast, deterministic tests."""
    defaults: dict[str, Any] = dict(
        base_url="https://example.supabase.co",
        api_key="anon-key-1234",
        retry_max_attempts=3,
        retry_base_delay=1.0,
        retry_max_delay=30.0,
        retry_jitter=False,
        strategy_timeout_seconds=5.0,
    )
    defaults.update(overrides)
    return CampusNotesConfig(**defaults)


@pytest.fixture
def metrics() -> RecordingMetricsHook:
    return RecordingMetricsHook()


@pytest.fixture
def config(metrics: RecordingMetricsHook) -> CampusNotesConfig:
    """Default test configuration wired to a recording metrics hook."""
    return make_config(metrics=metrics)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def records() -> FakeRecords:
    return FakeRecords()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def user() -> UserIdentity:
    return UserIdentity(id="u1", email="student@example.edu")


@pytest.fixture
def make_coordinator(
    storage: FakeStorage,
    records: FakeRecords,
    config: CampusNotesConfig,
    sleeper: SleepRecorder,
    user: UserIdentity,
) -> Callable[..., RecordCoordinator]:
    """Factory building a RecordCoordinator over the in-memory fakes."""

    def factory(
        *,
        identity: UserIdentity | None = user,
        token: str | None = "user-token",
        connected: bool = True,
        clock_ms: int = 1_700_000_000_000,
        **kwargs: Any,
    ) -> RecordCoordinator:
        async def check() -> bool:
            return connected

        kwargs.setdefault("namer", PathNamer(clock=lambda: clock_ms))
        return RecordCoordinator(
            storage,
            records,
            StaticSession(identity, token),
            ConnectivityProbe(check, timeout=1.0),
            config,
            sleep=sleeper,
            **kwargs,
        )

    return factory
