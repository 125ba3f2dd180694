"""Backend adapter contract shared by the local and cloud implementations."""

from abc import ABC, abstractmethod
from typing import List, Optional

from shared.models import CreateMemoInput, DailyPlan, Memo, UpdateMemoInput

MODE_LOCAL = "local"
MODE_CLOUD = "cloud"


class BackendAdapter(ABC):
    """
    Operations the sync orchestrator needs from a persistence backend.

    Implementations raise the errors from ``shared.errors``:
    ``BackendUnavailable`` when the store cannot be reached, ``Unauthorized``
    for bad or missing credentials and ``NotFound`` for unknown ids.
    """

    mode: str = ""

    @abstractmethod
    async def list_memos(
        self,
        limit: int = 100,
        offset: int = 0,
        category: Optional[str] = None
    ) -> List[Memo]:
        """Non-archived memos, pinned first, then newest first."""

    @abstractmethod
    async def create_memo(self, data: CreateMemoInput) -> Memo:
        """Create a memo; the backend assigns id, uid and timestamps."""

    @abstractmethod
    async def update_memo(self, data: UpdateMemoInput) -> Memo:
        """Apply a partial update and refresh ``updated_ts``."""

    @abstractmethod
    async def delete_memo(self, memo_id: int) -> None:
        """Delete a memo. May raise ``NotFound`` if it is already gone."""

    @abstractmethod
    async def toggle_memo_status(self, memo_id: int) -> Memo:
        """Advance the completion status by one step of the 3-cycle."""

    @abstractmethod
    async def list_plans_by_date(self, plan_date: str) -> List[DailyPlan]:
        """Plans for a date, highest priority first, then oldest first."""

    @abstractmethod
    async def search_memos(self, query: str, limit: int = 50) -> List[Memo]:
        """Case-insensitive content search over non-archived memos."""

    @abstractmethod
    async def list_memos_by_date(self, day: str) -> List[Memo]:
        """Memos targeted at or created on ``day``."""

    async def aclose(self) -> None:
        """Release the underlying transport."""
