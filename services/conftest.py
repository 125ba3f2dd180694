"""Shared fixtures: an in-memory stand-in for the hosted PostgREST tables."""

import asyncio
import json
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from shared.errors import NotFound
from shared.models import CreateMemoInput, DailyPlan, Memo, UpdateMemoInput, next_completion_status
from services.sync_service.adapters.base import MODE_CLOUD, BackendAdapter

FAKE_URL = "https://fake.supabase.co"

MEMO_DEFAULTS = {
    "category": "daily",
    "target_date": None,
    "completion_status": "pending",
    "content": "",
    "pinned": False,
    "archived": False,
}


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class FakePostgrest:
    """Serves ``/rest/v1/<table>`` requests from Python lists through httpx.MockTransport."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {"memo": [], "daily_plan": []}
        self.requests: List[httpx.Request] = []
        self.failures: List[int] = []
        self.before_patch: Optional[Callable[[httpx.Request], None]] = None
        self._next_id = 1

    def seed(self, table: str, **row) -> Dict[str, Any]:
        if table == "memo":
            row = {**MEMO_DEFAULTS, "uid": f"uid-{self._next_id}", "created_ts": 1000,
                   "updated_ts": row.get("created_ts", 1000), **row}
        row.setdefault("id", self._next_id)
        self._next_id = max(self._next_id, row["id"]) + 1
        self.tables[table].append(row)
        return row

    def client(self, api_key: str = "anon-key") -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{FAKE_URL}/rest/v1",
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            transport=httpx.MockTransport(self.handler),
        )

    def _matches(self, row: Dict[str, Any], params: httpx.QueryParams) -> bool:
        for key, value in params.multi_items():
            if key in ("select", "order", "limit", "offset", "or"):
                continue
            if value.startswith("eq."):
                if _as_text(row.get(key)) != value[3:]:
                    return False
            elif value.startswith("ilike."):
                needle = value[len("ilike."):].strip("*").lower()
                if needle not in str(row.get(key) or "").lower():
                    return False
        return True

    def _select(self, rows: List[Dict[str, Any]], params: httpx.QueryParams) -> List[Dict[str, Any]]:
        order = params.get("order")
        if order:
            for clause in reversed(order.split(",")):
                field, _, direction = clause.partition(".")
                rows = sorted(rows, key=lambda r: r.get(field) or 0, reverse=direction == "desc")
        offset = int(params.get("offset", 0))
        if "limit" in params:
            rows = rows[offset:offset + int(params["limit"])]
        else:
            rows = rows[offset:]
        select = params.get("select", "*")
        if select != "*":
            columns = select.split(",")
            rows = [{c: r.get(c) for c in columns} for r in rows]
        return [dict(r) for r in rows]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return httpx.Response(self.failures.pop(0), json={"message": "injected failure"})

        table = request.url.path.rsplit("/", 1)[-1]
        if table not in self.tables:
            return httpx.Response(404, json={"message": f"relation {table} does not exist"})

        rows = self.tables[table]
        params = request.url.params
        wants_rows = "return=representation" in request.headers.get("Prefer", "")

        if request.method == "GET":
            matched = [r for r in rows if self._matches(r, params)]
            return httpx.Response(200, json=self._select(matched, params))

        if request.method == "POST":
            body = json.loads(request.content)
            created = [self.seed(table, **item) for item in (body if isinstance(body, list) else [body])]
            return httpx.Response(201, json=created) if wants_rows else httpx.Response(201)

        if request.method == "PATCH":
            if self.before_patch is not None:
                self.before_patch(request)
            changes = json.loads(request.content)
            matched = [r for r in rows if self._matches(r, params)]
            for row in matched:
                row.update(changes)
            return httpx.Response(200, json=[dict(r) for r in matched]) if wants_rows else httpx.Response(204)

        if request.method == "DELETE":
            matched = [r for r in rows if self._matches(r, params)]
            self.tables[table] = [r for r in rows if r not in matched]
            return httpx.Response(200, json=matched) if wants_rows else httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def fake_cloud():
    return FakePostgrest()


class FakeAdapter(BackendAdapter):
    """
    In-memory backend.

    ``fail[name]`` makes the named method raise; ``gates[name]`` makes it wait
    on an asyncio.Event, so tests can interleave operations.
    """

    def __init__(self, mode: str = MODE_CLOUD):
        self.mode = mode
        self.rows: Dict[int, Memo] = {}
        self.plans: Dict[str, List[DailyPlan]] = {}
        self.fail: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.closed = False
        self._next_id = 100

    def add(self, content: str, **fields) -> Memo:
        memo_id = fields.pop("id", self._next_id)
        self._next_id = max(self._next_id, memo_id) + 1
        memo = Memo(
            id=memo_id,
            uid=f"uid-{memo_id}",
            created_ts=fields.pop("created_ts", 1000 + memo_id),
            updated_ts=fields.pop("updated_ts", 1000 + memo_id),
            content=content,
            **fields
        )
        self.rows[memo.id] = memo
        return replace(memo)

    async def _enter(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.fail.get(name)
        if error is not None:
            raise error

    def _get(self, memo_id: int) -> Memo:
        if memo_id not in self.rows:
            raise NotFound(f"Memo {memo_id} not found")
        return self.rows[memo_id]

    async def list_memos(self, limit=100, offset=0, category=None):
        await self._enter("list_memos", limit, offset)
        visible = [m for m in self.rows.values() if not m.archived]
        visible.sort(key=lambda m: (m.pinned, m.created_ts), reverse=True)
        return [replace(m) for m in visible[offset:offset + limit]]

    async def create_memo(self, data: CreateMemoInput):
        await self._enter("create_memo", data.content)
        return self.add(data.content, category=data.category or "daily", target_date=data.target_date,
                        created_ts=5000, updated_ts=5000)

    async def update_memo(self, data: UpdateMemoInput):
        await self._enter("update_memo", data.id)
        memo = replace(self._get(data.id), **data.changes())
        memo.updated_ts += 1
        self.rows[memo.id] = memo
        return replace(memo)

    async def delete_memo(self, memo_id: int):
        await self._enter("delete_memo", memo_id)
        self._get(memo_id)
        del self.rows[memo_id]

    async def toggle_memo_status(self, memo_id: int):
        await self._enter("toggle_memo_status", memo_id)
        memo = self._get(memo_id)
        memo.completion_status = next_completion_status(memo.completion_status)
        memo.updated_ts += 1
        return replace(memo)

    async def list_plans_by_date(self, plan_date: str):
        await self._enter("list_plans_by_date", plan_date)
        return [replace(p) for p in self.plans.get(plan_date, [])]

    async def search_memos(self, query: str, limit: int = 50):
        await self._enter("search_memos", query)
        return [replace(m) for m in self.rows.values() if query.lower() in m.content.lower()][:limit]

    async def list_memos_by_date(self, day: str):
        await self._enter("list_memos_by_date", day)
        return [replace(m) for m in self.rows.values() if m.target_date == day]

    async def aclose(self):
        self.closed = True

    def count(self, name: str) -> int:
        return len([call for call in self.calls if call[0] == name])


@pytest.fixture
def make_adapter():
    return FakeAdapter
