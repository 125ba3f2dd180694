"""Adapter for the hosted table backend (PostgREST-style REST interface)."""

import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

import httpx

from shared.config import get_http_timeout
from shared.errors import (
    BackendError, BackendUnavailable, ConfigurationError, ConflictError, NotFound, Unauthorized
)
from shared.models import (
    DEFAULT_CATEGORY, STATUS_PENDING, CreateMemoInput, DailyPlan, Memo, UpdateMemoInput,
    next_completion_status
)
from services.sync_service.adapters.base import MODE_CLOUD, BackendAdapter

logger = logging.getLogger(__name__)

RETURN_REPRESENTATION = {"Prefer": "return=representation"}
RETURN_MINIMAL = {"Prefer": "return=minimal"}
UID_PAGE_SIZE = 1000


def _now_ts() -> int:
    return int(time.time())


class CloudAdapter(BackendAdapter):
    """Talks to the ``memo`` and ``daily_plan`` tables over authenticated HTTPS."""

    mode = MODE_CLOUD

    def __init__(self, client: httpx.AsyncClient, toggle_attempts: int = 3):
        """
        Initialize the cloud adapter.

        Args:
            client: HTTP client with base URL ``<project>/rest/v1`` and the
                    apikey/Authorization header pair set
            toggle_attempts: Compare-and-set attempts for status toggles
        """
        self.client = client
        self.toggle_attempts = toggle_attempts

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        try:
            response = await self.client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.TransportError as e:
            logger.error(f"Cloud request {method} {table} failed: {e}")
            raise BackendUnavailable(f"Cloud backend unreachable: {e}")

        if response.status_code in (401, 403):
            raise Unauthorized(f"Cloud backend rejected credentials (HTTP {response.status_code})")
        if response.status_code == 404:
            raise NotFound(f"Cloud resource {table} not found")
        if response.status_code >= 500:
            raise BackendUnavailable(f"Cloud backend error HTTP {response.status_code}: {response.text}")
        if response.status_code >= 400:
            raise BackendError(
                f"Cloud backend rejected {method} {table}: HTTP {response.status_code}",
                {"body": response.text}
            )

        if not response.content:
            return None
        return response.json()

    async def _select_memo(self, memo_id: int) -> Memo:
        rows = await self._request("GET", "memo", params={"select": "*", "id": f"eq.{memo_id}"})
        if not rows:
            raise NotFound(f"Memo {memo_id} not found", {"id": memo_id})
        return Memo.from_dict(rows[0])

    async def list_memos(self, limit: int = 100, offset: int = 0, category: Optional[str] = None) -> List[Memo]:
        params = {
            "select": "*",
            "archived": "eq.false",
            "order": "pinned.desc,created_ts.desc",
            "limit": limit,
            "offset": offset,
        }
        if category:
            params["category"] = f"eq.{category}"

        rows = await self._request("GET", "memo", params=params)
        return [Memo.from_dict(row) for row in rows or []]

    async def create_memo(self, data: CreateMemoInput) -> Memo:
        ts = _now_ts()
        payload = {
            "uid": str(uuid4()),
            "created_ts": ts,
            "updated_ts": ts,
            "category": data.category or DEFAULT_CATEGORY,
            "target_date": data.target_date,
            "completion_status": STATUS_PENDING,
            "content": data.content,
            "pinned": False,
            "archived": False,
        }
        rows = await self._request("POST", "memo", json=payload, headers=RETURN_REPRESENTATION)
        if not rows:
            raise BackendError("Cloud backend did not return the created memo")
        return Memo.from_dict(rows[0])

    async def update_memo(self, data: UpdateMemoInput) -> Memo:
        payload = {"updated_ts": _now_ts(), **data.changes()}
        rows = await self._request(
            "PATCH", "memo",
            params={"id": f"eq.{data.id}"},
            json=payload,
            headers=RETURN_REPRESENTATION
        )
        if not rows:
            raise NotFound(f"Memo {data.id} not found", {"id": data.id})
        return Memo.from_dict(rows[0])

    async def delete_memo(self, memo_id: int) -> None:
        rows = await self._request(
            "DELETE", "memo",
            params={"id": f"eq.{memo_id}"},
            headers=RETURN_REPRESENTATION
        )
        if not rows:
            raise NotFound(f"Memo {memo_id} not found", {"id": memo_id})

    async def toggle_memo_status(self, memo_id: int) -> Memo:
        """
        Advance the status with a conditional update.

        The PATCH only matches while the row still has the status that was
        read, so a concurrent writer makes it match nothing; the read is then
        repeated. After ``toggle_attempts`` lost races a ConflictError is raised.
        """
        for attempt in range(self.toggle_attempts):
            current = await self._select_memo(memo_id)
            rows = await self._request(
                "PATCH", "memo",
                params={
                    "id": f"eq.{memo_id}",
                    "completion_status": f"eq.{current.completion_status}",
                },
                json={
                    "completion_status": next_completion_status(current.completion_status),
                    "updated_ts": _now_ts(),
                },
                headers=RETURN_REPRESENTATION
            )
            if rows:
                return Memo.from_dict(rows[0])

            logger.warning(
                f"Status of memo {memo_id} changed concurrently "
                f"(attempt {attempt + 1}/{self.toggle_attempts})"
            )

        raise ConflictError(f"Memo {memo_id} status kept changing, toggle abandoned", {"id": memo_id})

    async def list_plans_by_date(self, plan_date: str) -> List[DailyPlan]:
        rows = await self._request("GET", "daily_plan", params={
            "select": "*",
            "plan_date": f"eq.{plan_date}",
            "order": "priority.desc,created_ts.asc",
        })
        return [DailyPlan.from_dict(row) for row in rows or []]

    async def search_memos(self, query: str, limit: int = 50) -> List[Memo]:
        rows = await self._request("GET", "memo", params={
            "select": "*",
            "content": f"ilike.*{query}*",
            "archived": "eq.false",
            "order": "created_ts.desc",
            "limit": limit,
        })
        return [Memo.from_dict(row) for row in rows or []]

    async def list_memos_by_date(self, day: str) -> List[Memo]:
        start = datetime.combine(date.fromisoformat(day), datetime.min.time())
        start_ts = int(start.timestamp())
        end_ts = int((start + timedelta(days=1)).timestamp())
        rows = await self._request("GET", "memo", params={
            "select": "*",
            "archived": "eq.false",
            "or": f"(target_date.eq.{day},and(created_ts.gte.{start_ts},created_ts.lt.{end_ts}))",
            "order": "pinned.desc,created_ts.desc",
        })
        return [Memo.from_dict(row) for row in rows or []]

    # Bulk helpers used by the migration tool

    async def ping(self) -> None:
        """Raise if the memo table cannot be read."""
        await self._request("GET", "memo", params={"select": "id", "limit": 1})

    async def fetch_memo_uids(self) -> Set[str]:
        """All memo uids currently stored in the hosted table."""
        uids: Set[str] = set()
        offset = 0
        while True:
            rows = await self._request("GET", "memo", params={
                "select": "uid",
                "order": "id.asc",
                "limit": UID_PAGE_SIZE,
                "offset": offset,
            }) or []
            for row in rows:
                if row and isinstance(row.get("uid"), str) and row["uid"]:
                    uids.add(row["uid"])
            if len(rows) < UID_PAGE_SIZE:
                return uids
            offset += UID_PAGE_SIZE

    async def has_plans(self) -> bool:
        rows = await self._request("GET", "daily_plan", params={"select": "id", "limit": 1})
        return bool(rows)

    async def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> None:
        """Bulk insert without reading the rows back."""
        if rows:
            await self._request("POST", table, json=rows, headers=RETURN_MINIMAL)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_cloud_client(url: Optional[str], api_key: Optional[str], timeout: Optional[float] = None) -> httpx.AsyncClient:
    """
    Create the authenticated HTTP client for the hosted backend.

    Raises:
        ConfigurationError: If the URL or API key is missing
    """
    if not url or not api_key:
        raise ConfigurationError("Missing cloud configuration: SUPABASE_URL / SUPABASE_ANON_KEY")

    return httpx.AsyncClient(
        base_url=f"{url.rstrip('/')}/rest/v1",
        headers={
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        timeout=timeout if timeout is not None else get_http_timeout()
    )


def build_cloud_adapter(url: Optional[str], api_key: Optional[str], timeout: Optional[float] = None) -> CloudAdapter:
    return CloudAdapter(build_cloud_client(url, api_key, timeout))
