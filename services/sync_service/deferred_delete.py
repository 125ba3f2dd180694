"""Deferred (undoable) memo deletion."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from shared.models import Memo

logger = logging.getLogger(__name__)

STATE_PENDING = "pending"
STATE_CANCELLED = "cancelled"
STATE_COMMITTED = "committed"
STATE_FAILED = "failed"


@dataclass
class PendingDeletion:
    """A memo hidden from the list while its delete waits out the grace window."""
    memo: Memo
    index: int
    handle: Optional[asyncio.TimerHandle] = None
    state: str = STATE_PENDING
    task: Optional[asyncio.Task] = None

    @property
    def memo_id(self) -> int:
        return self.memo.id


class DeferredDeleteManager:
    """
    Owns the pending-deletion map.

    Each entry moves from ``pending`` to exactly one of ``cancelled`` (undo)
    or ``committed`` (timer fired and the backend call was made). A commit
    that fails ends in ``failed`` and the entry is handed to ``on_failure``
    so the caller can put the memo back.
    """

    def __init__(
        self,
        commit: Callable[[int], Awaitable[None]],
        on_failure: Callable[[PendingDeletion, Exception], None],
        grace_seconds: float = 3.5
    ):
        """
        Args:
            commit: Coroutine function performing the real delete for a memo id
            on_failure: Called with the entry and error when ``commit`` raises
            grace_seconds: Undo window before the delete is committed
        """
        self._commit = commit
        self._on_failure = on_failure
        self.grace_seconds = grace_seconds
        self._pending: Dict[int, PendingDeletion] = {}
        self._tasks: Set[asyncio.Task] = set()

    def __contains__(self, memo_id: int) -> bool:
        return memo_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def get(self, memo_id: int) -> Optional[PendingDeletion]:
        return self._pending.get(memo_id)

    @property
    def pending_ids(self) -> Set[int]:
        """Ids that must stay hidden, including deletes currently being committed."""
        return set(self._pending)

    def schedule(self, memo: Memo, index: int) -> PendingDeletion:
        """
        Start the grace window for ``memo``, removed from list position ``index``.

        A memo that is already pending keeps its original entry and timer, so
        the backend is still called at most once.
        """
        existing = self._pending.get(memo.id)
        if existing is not None:
            logger.debug(f"Delete of memo {memo.id} already pending")
            return existing

        loop = asyncio.get_running_loop()
        entry = PendingDeletion(memo=memo, index=index)
        entry.handle = loop.call_later(self.grace_seconds, self._fire, memo.id)
        self._pending[memo.id] = entry
        logger.info(f"Memo {memo.id} scheduled for deletion in {self.grace_seconds}s")
        return entry

    def cancel(self, memo_id: int) -> Optional[PendingDeletion]:
        """
        Cancel a pending delete. Returns the entry, or None when there is
        nothing left to cancel (unknown id, already cancelled or already firing).
        """
        entry = self._pending.get(memo_id)
        if entry is None or entry.state != STATE_PENDING:
            return None

        if entry.handle is not None:
            entry.handle.cancel()
            entry.handle = None
        entry.state = STATE_CANCELLED
        del self._pending[memo_id]
        logger.info(f"Deletion of memo {memo_id} cancelled")
        return entry

    def cancel_all(self) -> List[PendingDeletion]:
        """Cancel every delete still inside its grace window."""
        return [
            entry for entry in (self.cancel(memo_id) for memo_id in list(self._pending))
            if entry is not None
        ]

    async def wait_idle(self) -> None:
        """Wait for commits that are already running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, memo_id: int) -> None:
        entry = self._pending.get(memo_id)
        if entry is None or entry.state != STATE_PENDING:
            return

        entry.state = STATE_COMMITTED
        entry.handle = None
        entry.task = asyncio.ensure_future(self._run_commit(entry))
        self._tasks.add(entry.task)
        entry.task.add_done_callback(self._tasks.discard)

    async def _run_commit(self, entry: PendingDeletion) -> None:
        try:
            await self._commit(entry.memo_id)
        except Exception as e:
            entry.state = STATE_FAILED
            self._pending.pop(entry.memo_id, None)
            logger.error(f"Deleting memo {entry.memo_id} failed: {e}")
            self._on_failure(entry, e)
        else:
            self._pending.pop(entry.memo_id, None)
            logger.info(f"Memo {entry.memo_id} deleted")
