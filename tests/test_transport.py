"""Tests for the table store transports."""

import json

import httpx
import pytest

from extragrid.exceptions import APIError, AuthenticationError, NotFoundError, TransportError
from extragrid.models import Column, ColumnType, RowOrigin
from extragrid.transport import InMemoryTransport, SupabaseTransport
from tests.fakes import build_table, durable

SUPABASE_URL = "https://demo.supabase.co"

TABLE_RECORD = {
    "id": "tbl_1",
    "name": "Leads",
    "description": None,
    "columns": [
        {"id": "revenue", "name": "売上", "type": "number", "order": 1},
        {"id": "company_name", "name": "会社名", "type": "text", "order": 0},
    ],
}

ROW_RECORDS = [
    {"id": "r1", "table_id": "tbl_1", "data": {"company_name": "Acme", "revenue": 100}},
    {"id": "r2", "table_id": "tbl_1", "data": {"company_name": "Globex", "tags": ["a"]}},
]


class FakePostgrest:
    """Minimal PostgREST stand-in answering /tables and /table_rows."""

    def __init__(self):
        self.requests = []
        self.rows = {r["id"]: dict(r) for r in ROW_RECORDS}
        self.status = None

    def __call__(self, request):
        self.requests.append(request)
        if self.status is not None:
            return httpx.Response(self.status, text="nope")
        path = request.url.path
        params = request.url.params
        if path.endswith("/tables") and request.method == "GET":
            if params.get("id") == "eq.tbl_1":
                return httpx.Response(200, json=[TABLE_RECORD])
            return httpx.Response(200, json=[])
        if path.endswith("/tables") and request.method == "PATCH":
            return httpx.Response(204)
        if path.endswith("/table_rows"):
            if request.method == "GET":
                if "id" in params:
                    row = self.rows.get(params["id"].removeprefix("eq."))
                    return httpx.Response(200, json=[row] if row else [])
                return httpx.Response(200, json=list(self.rows.values()))
            if request.method == "POST":
                body = json.loads(request.content)
                record = {"id": "new-uuid", **body}
                self.rows["new-uuid"] = record
                return httpx.Response(201, json=[record])
            if request.method == "PATCH":
                row_id = params["id"].removeprefix("eq.")
                self.rows[row_id]["data"] = json.loads(request.content)["data"]
                return httpx.Response(204)
            if request.method == "DELETE":
                self.rows.pop(params["id"].removeprefix("eq."), None)
                return httpx.Response(204)
        return httpx.Response(404)


@pytest.fixture
def postgrest():
    return FakePostgrest()


@pytest.fixture
async def supabase(postgrest):
    transport = SupabaseTransport(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(postgrest))
    yield transport
    await transport.close()


class TestSupabaseTransport:
    async def test_get_table(self, supabase, postgrest):
        table = await supabase.get_table("tbl_1")
        assert [c.id for c in table.columns] == ["company_name", "revenue"]
        assert table.columns[1].type is ColumnType.NUMBER
        assert table.description == ""
        assert table.rows[1].get("tags") == ("a",)
        assert all(r.origin is RowOrigin.DURABLE for r in table.rows)

        request = postgrest.requests[0]
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"
        assert request.url.path == "/rest/v1/tables"
        assert postgrest.requests[1].url.params["order"] == "created_at.asc"

    async def test_missing_table(self, supabase):
        with pytest.raises(NotFoundError):
            await supabase.get_table("other")

    async def test_create_row(self, supabase, postgrest):
        row = await supabase.create_row("tbl_1", {"company_name": "Initech", "tags": ("x",)})
        assert row.id == "new-uuid"
        assert row.origin is RowOrigin.DURABLE
        request = postgrest.requests[-1]
        assert request.headers["prefer"] == "return=representation"
        assert json.loads(request.content) == {
            "table_id": "tbl_1",
            "data": {"company_name": "Initech", "tags": ["x"]},
        }

    async def test_update_row_merges(self, supabase, postgrest):
        await supabase.update_row("r1", {"revenue": 120})
        assert postgrest.rows["r1"]["data"] == {"company_name": "Acme", "revenue": 120}

    async def test_update_missing_row(self, supabase):
        with pytest.raises(NotFoundError):
            await supabase.update_row("gone", {"revenue": 1})

    async def test_delete_and_update_table(self, supabase, postgrest):
        await supabase.delete_row("r2")
        assert "r2" not in postgrest.rows
        await supabase.update_table("tbl_1", [Column(id="a", title="A")])
        body = json.loads(postgrest.requests[-1].content)
        assert body["columns"][0]["name"] == "A"

    @pytest.mark.parametrize(
        ("status", "error"),
        [(401, AuthenticationError), (403, AuthenticationError), (404, NotFoundError), (500, APIError)],
    )
    async def test_status_errors(self, supabase, postgrest, status, error):
        postgrest.status = status
        with pytest.raises(error):
            await supabase.delete_row("r1")

    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        transport = SupabaseTransport(SUPABASE_URL, "k", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="Invalid response"):
            await transport.get_table("tbl_1")
        await transport.close()

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        transport = SupabaseTransport(SUPABASE_URL, "k", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError):
            await transport.get_table("tbl_1")
        await transport.close()


class TestInMemoryTransport:
    async def test_round_trip_and_calls(self):
        store = InMemoryTransport([build_table([durable("r1", company_name="Acme")])])
        row = await store.create_row("tbl_1", {"company_name": "New"})
        await store.update_row("r1", {"revenue": 3})
        await store.delete_row(row.id)

        stored = store.stored("tbl_1")
        assert [r.id for r in stored.rows] == ["r1"]
        assert stored.rows[0].values == {"company_name": "Acme", "revenue": 3}
        assert [c[0] for c in store.calls] == ["create_row", "update_row", "delete_row"]

    async def test_injected_failures(self):
        store = InMemoryTransport([build_table([durable("r1")])])
        store.fail("update_row", times=2)
        for _ in range(2):
            with pytest.raises(APIError):
                await store.update_row("r1", {"a": 1})
        await store.update_row("r1", {"a": 1})

    async def test_delete_missing_row_is_noop(self):
        store = InMemoryTransport([build_table([])])
        await store.delete_row("nope")
        assert store.calls_of("delete_row") == [("delete_row", "nope", None)]

    async def test_get_missing_table(self):
        with pytest.raises(NotFoundError):
            await InMemoryTransport().get_table("x")

    async def test_stored_is_a_copy(self):
        store = InMemoryTransport([build_table([durable("r1", a="x")])])
        store.stored("tbl_1").rows[0].values["a"] = "changed"
        assert store.stored("tbl_1").rows[0].get("a") == "x"
