"""Adapter for the embedded local store, reached through named command calls."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from shared.config import get_http_timeout, get_local_store_url
from shared.db_operations import DatabaseOperations
from shared.errors import BackendError, BackendUnavailable, error_from_payload
from shared.models import CreateMemoInput, DailyPlan, Memo, UpdateMemoInput
from services.sync_service.adapters.base import MODE_LOCAL, BackendAdapter

logger = logging.getLogger(__name__)

EMBEDDED_BASE_URL = "http://local-store"


class LocalAdapter(BackendAdapter):
    """Dispatches adapter calls as commands to the local store's invoke endpoint."""

    mode = MODE_LOCAL

    def __init__(self, client: httpx.AsyncClient):
        """
        Initialize the local adapter.

        Args:
            client: HTTP client whose base URL (or transport) reaches the local store
        """
        self.client = client

    async def invoke(self, command: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a named command on the local store.

        Raises:
            BackendUnavailable: If the store process cannot be reached
            NotFound, BackendError: For structured errors returned by the store
        """
        try:
            response = await self.client.post(f"/invoke/{command}", json=arguments or {})
        except httpx.TransportError as e:
            logger.error(f"Local store unreachable for {command}: {e}")
            raise BackendUnavailable(f"Local store unreachable: {e}")

        if response.status_code >= 400:
            try:
                payload = response.json().get("error") or {}
            except ValueError:
                payload = {}

            if payload:
                raise error_from_payload(payload)
            if response.status_code >= 500:
                raise BackendUnavailable(f"Local store failed with HTTP {response.status_code}")
            raise BackendError(f"Local store rejected {command}: HTTP {response.status_code}")

        return response.json().get("result")

    async def list_memos(self, limit: int = 100, offset: int = 0, category: Optional[str] = None) -> List[Memo]:
        arguments = {"limit": limit, "offset": offset}
        if category:
            arguments["category"] = category
        rows = await self.invoke("get_memos", arguments)
        return [Memo.from_dict(row) for row in rows]

    async def create_memo(self, data: CreateMemoInput) -> Memo:
        row = await self.invoke("create_memo", {
            "content": data.content,
            "category": data.category,
            "target_date": data.target_date,
        })
        return Memo.from_dict(row)

    async def update_memo(self, data: UpdateMemoInput) -> Memo:
        row = await self.invoke("update_memo", {"id": data.id, **data.changes()})
        return Memo.from_dict(row)

    async def delete_memo(self, memo_id: int) -> None:
        await self.invoke("delete_memo", {"id": memo_id})

    async def toggle_memo_status(self, memo_id: int) -> Memo:
        # The store advances the status inside one transaction.
        row = await self.invoke("toggle_memo_status", {"id": memo_id})
        return Memo.from_dict(row)

    async def list_plans_by_date(self, plan_date: str) -> List[DailyPlan]:
        rows = await self.invoke("get_plans_by_date", {"date": plan_date})
        return [DailyPlan.from_dict(row) for row in rows]

    async def search_memos(self, query: str, limit: int = 50) -> List[Memo]:
        rows = await self.invoke("search_memos", {"query": query, "limit": limit})
        return [Memo.from_dict(row) for row in rows]

    async def list_memos_by_date(self, day: str) -> List[Memo]:
        rows = await self.invoke("get_memos_by_date", {"date": day})
        return [Memo.from_dict(row) for row in rows]

    async def aclose(self) -> None:
        await self.client.aclose()


def build_local_adapter(
    db_ops: Optional[DatabaseOperations] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None
) -> LocalAdapter:
    """
    Create a LocalAdapter.

    With ``LOCAL_STORE_URL`` (or ``base_url``) set, commands go to a sidecar
    store process. Otherwise the store application is embedded in this
    process and reached through an in-process ASGI transport.
    """
    from services.local_store.main import create_app

    timeout = timeout if timeout is not None else get_http_timeout()
    base_url = base_url or get_local_store_url()

    if base_url:
        logger.info(f"Using local store at {base_url}")
        return LocalAdapter(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    if db_ops is None:
        db_ops = DatabaseOperations()
        db_ops.create_tables()

    logger.info(f"Embedding local store for {db_ops.database_url}")
    transport = httpx.ASGITransport(app=create_app(db_ops))
    return LocalAdapter(httpx.AsyncClient(transport=transport, base_url=EMBEDDED_BASE_URL, timeout=timeout))
