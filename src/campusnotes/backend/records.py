"""Record-store API wrapper.

Provides :class:`RecordAPI`, an async wrapper over the backend's
PostgREST-style row endpoints (``/rest/v1/<table>``) plus the remote
procedure used for atomic counter increments.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .transport import BackendTransport

_REST_PREFIX = "/rest/v1"


def eq_filters(filters: dict[str, Any]) -> dict[str, str]:
    """Translate ``{"column": value}`` pairs into ``eq.`` query params."""
    return {column: f"eq.{value}" for column, value in filters.items()}


def _first(rows: Any) -> dict[str, Any] | None:
    if isinstance(rows, list):
        return rows[0] if rows else None
    if isinstance(rows, dict) and rows:
        return rows
    return None


@runtime_checkable
class RecordStore(Protocol):
    """Row operations the coordinator relies on."""

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any],
    ) -> list[dict[str, Any]]: ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None: ...

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        params: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]: ...

    async def select_one(
        self, table: str, filters: dict[str, Any], *, columns: str = "*",
    ) -> dict[str, Any] | None: ...

    async def increment(self, table: str, row_id: str, counter: str) -> Any: ...


class RecordAPI:
    """Async wrapper for table rows and RPC calls.

    Parameters
    ----------
    transport:
        A configured :class:`BackendTransport`.
    counter_rpc:
        Name of the function that atomically increments a counter column.
    """

    def __init__(self, transport: BackendTransport, counter_rpc: str = "increment_counter") -> None:
        self._transport = transport
        self._counter_rpc = counter_rpc

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        rows = await self._transport.request(
            "POST",
            f"{_REST_PREFIX}/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        return _first(rows) or dict(row)

    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert or merge one row on its primary key."""
        rows = await self._transport.request(
            "POST",
            f"{_REST_PREFIX}/{table}",
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return _first(rows) or dict(row)

    async def update(
        self,
        table: str,
        filters: dict[str, Any],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Patch every row matching *filters*; return the updated rows."""
        rows = await self._transport.request(
            "PATCH",
            f"{_REST_PREFIX}/{table}",
            params=eq_filters(filters),
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        return rows if isinstance(rows, list) else []

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete every row matching *filters*."""
        await self._transport.request(
            "DELETE",
            f"{_REST_PREFIX}/{table}",
            params=eq_filters(filters),
        )

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
        """Return rows matching *filters* (equality) and raw *params*
        (any PostgREST operator).

        *columns* is the ``select`` list and may embed related rows
        (``*,user:profiles(full_name)``).
        """
        query: dict[str, str] = {"select": columns}
        query.update(eq_filters(filters or {}))
        query.update(params or {})
        if order is not None:
            query["order"] = order
        if limit is not None:
            query["limit"] = str(limit)
        rows = await self._transport.request(
            "GET",
            f"{_REST_PREFIX}/{table}",
            params=query,
        )
        return rows if isinstance(rows, list) else []

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        columns: str = "*",
    ) -> dict[str, Any] | None:
        """Return the first row matching *filters*, or ``None``."""
        rows = await self.select(table, filters, limit=1, columns=columns)
        return rows[0] if rows else None

    async def increment(self, table: str, row_id: str, counter: str) -> Any:
        """Atomically add one to *counter* of row *row_id* server-side."""
        return await self._transport.request(
            "POST",
            f"{_REST_PREFIX}/rpc/{self._counter_rpc}",
            json={"table_name": table, "row_id": row_id, "counter": counter},
        )
