"""Transport layer for the remote table store.

Defines the TableStore protocol and implementations:
- SupabaseTransport: Production transport speaking PostgREST over httpx
- InMemoryTransport: Test transport keeping tables in process memory
"""

from __future__ import annotations

import asyncio
import ssl
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import certifi
import httpx

from extragrid.exceptions import (
    APIError,
    AuthenticationError,
    NotFoundError,
    TransportError,
)
from extragrid.models import (
    Row,
    RowOrigin,
    Table,
    column_from_dict,
    column_to_dict,
    row_from_record,
    values_to_json,
)

if TYPE_CHECKING:
    from extragrid.models import CellValue, Column

DEFAULT_TIMEOUT = 60


class TableStore(ABC):
    """Abstract base class for the table store.

    Every call may fail independently; there is no multi-row transaction.
    """

    @abstractmethod
    async def get_table(self, table_id: str) -> Table:
        """Fetch a table with its columns and durable rows.

        Raises:
            NotFoundError: If the table does not exist
        """
        ...

    @abstractmethod
    async def create_row(self, table_id: str, values: dict[str, CellValue]) -> Row:
        """Create a row and return it with its store-assigned id."""
        ...

    @abstractmethod
    async def update_row(self, row_id: str, values: dict[str, CellValue]) -> None:
        """Merge ``values`` into the stored row; other columns are kept."""
        ...

    @abstractmethod
    async def delete_row(self, row_id: str) -> None:
        """Delete a row."""
        ...

    @abstractmethod
    async def update_table(self, table_id: str, columns: list[Column]) -> None:
        """Replace the table's column list."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


class SupabaseTransport(TableStore):
    """Production transport for a Supabase (PostgREST) backend.

    Tables live in ``tables`` (``columns`` is JSONB) and rows in
    ``table_rows`` (``data`` is JSONB keyed by column id).
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: int = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            api_key: Service or anon key
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self._base = f"{url.rstrip('/')}/rest/v1"
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            transport=transport,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    async def get_table(self, table_id: str) -> Table:
        records = await self._request(
            "GET", "/tables", params={"id": f"eq.{table_id}", "select": "*"}
        )
        if not records:
            raise NotFoundError(table_id, f"Table not found: {table_id}")
        meta = records[0]

        rows = await self._request(
            "GET",
            "/table_rows",
            params={
                "table_id": f"eq.{table_id}",
                "select": "*",
                "order": "created_at.asc",
            },
        )
        columns = [column_from_dict(c, i) for i, c in enumerate(meta.get("columns") or [])]
        columns.sort(key=lambda c: c.order)
        return Table(
            id=str(meta["id"]),
            name=meta.get("name") or "",
            description=meta.get("description") or "",
            columns=columns,
            rows=[row_from_record(r) for r in rows or []],
        )

    async def create_row(self, table_id: str, values: dict[str, CellValue]) -> Row:
        records = await self._request(
            "POST",
            "/table_rows",
            json={"table_id": table_id, "data": values_to_json(values)},
            prefer="return=representation",
        )
        if not records:
            raise APIError(500, "Row insert returned no representation")
        return row_from_record(records[0])

    async def update_row(self, row_id: str, values: dict[str, CellValue]) -> None:
        # PATCH replaces the whole JSONB column, so merge onto the stored data.
        records = await self._request(
            "GET", "/table_rows", params={"id": f"eq.{row_id}", "select": "data"}
        )
        if not records:
            raise NotFoundError(row_id, f"Row not found: {row_id}")
        merged = {**(records[0].get("data") or {}), **values_to_json(values)}
        await self._request(
            "PATCH",
            "/table_rows",
            params={"id": f"eq.{row_id}"},
            json={"data": merged},
        )

    async def delete_row(self, row_id: str) -> None:
        await self._request("DELETE", "/table_rows", params={"id": f"eq.{row_id}"})

    async def update_table(self, table_id: str, columns: list[Column]) -> None:
        await self._request(
            "PATCH",
            "/tables",
            params={"id": f"eq.{table_id}"},
            json={"columns": [column_to_dict(c) for c in columns]},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Make a PostgREST request and return the decoded body (or None)."""
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(
                method, f"{self._base}{path}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise AuthenticationError("Invalid or expired API key") from e
            if status == 403:
                raise AuthenticationError(
                    "Access denied. Check the key and row level security policies."
                ) from e
            if status == 404:
                raise NotFoundError(path, f"Not found: {path}") from e
            raise APIError(status, e.response.text) from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e
        except ValueError as e:
            raise TransportError(f"Invalid response from {path}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class InMemoryTransport(TableStore):
    """Test transport keeping durable tables in memory.

    Every call is appended to ``calls`` as ``(operation, target, payload)``.
    ``fail(operation, times)`` makes the next ``times`` calls of that
    operation raise ``APIError``; ``fail_rows`` makes every update or delete
    of the listed row ids fail.
    """

    def __init__(self, tables: list[Table] | None = None, latency: float = 0.0) -> None:
        self._tables: dict[str, Table] = {t.id: t.copy() for t in tables or []}
        self._latency = latency
        self._failures: dict[str, int] = {}
        self.fail_rows: set[str] = set()
        self.calls: list[tuple[str, str, Any]] = []
        self.closed = False

    def fail(self, operation: str, times: int = 1) -> None:
        self._failures[operation] = self._failures.get(operation, 0) + times

    def calls_of(self, operation: str) -> list[tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] == operation]

    def stored(self, table_id: str) -> Table:
        """Current stored state of a table (a copy)."""
        return self._tables[table_id].copy()

    async def get_table(self, table_id: str) -> Table:
        await self._enter("get_table", table_id, None)
        if table_id not in self._tables:
            raise NotFoundError(table_id, f"Table not found: {table_id}")
        return self._tables[table_id].copy()

    async def create_row(self, table_id: str, values: dict[str, CellValue]) -> Row:
        await self._enter("create_row", table_id, dict(values))
        table = self._tables.get(table_id)
        if table is None:
            raise NotFoundError(table_id, f"Table not found: {table_id}")
        row = Row(id=str(uuid.uuid4()), values=dict(values), origin=RowOrigin.DURABLE)
        self._tables[table_id] = table.with_rows([*table.rows, row])
        return row.copy()

    async def update_row(self, row_id: str, values: dict[str, CellValue]) -> None:
        await self._enter("update_row", row_id, dict(values))
        for table_id, table in self._tables.items():
            row = table.find_row(row_id)
            if row is not None:
                self._tables[table_id] = table.replace_row(row.with_values(values))
                return
        raise NotFoundError(row_id, f"Row not found: {row_id}")

    async def delete_row(self, row_id: str) -> None:
        await self._enter("delete_row", row_id, None)
        for table_id, table in self._tables.items():
            if table.find_row(row_id) is not None:
                self._tables[table_id] = table.with_rows(
                    [r for r in table.rows if r.id != row_id]
                )
                return

    async def update_table(self, table_id: str, columns: list[Column]) -> None:
        await self._enter("update_table", table_id, list(columns))
        table = self._tables.get(table_id)
        if table is None:
            raise NotFoundError(table_id, f"Table not found: {table_id}")
        self._tables[table_id] = table.with_columns(list(columns))

    async def close(self) -> None:
        self.closed = True

    async def _enter(self, operation: str, target: str, payload: Any) -> None:
        self.calls.append((operation, target, payload))
        await asyncio.sleep(self._latency)
        if self._failures.get(operation, 0) > 0:
            self._failures[operation] -= 1
            raise APIError(500, f"injected {operation} failure")
        if target in self.fail_rows and operation in ("update_row", "delete_row"):
            raise APIError(500, f"injected {operation} failure for {target}")
