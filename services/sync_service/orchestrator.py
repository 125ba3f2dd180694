"""Sync orchestration logic: optimistic memo state over a backend adapter."""

import asyncio
import logging
import re
import time
from dataclasses import replace
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from shared.config import get_delete_grace_seconds
from shared.errors import NotesError, NotFound, ValidationError
from shared.models import (
    CATEGORIES, COMPLETION_STATUSES, DEFAULT_CATEGORY, CreateMemoInput, DailyPlan, Memo,
    SyncStatus, UpdateMemoInput, next_completion_status
)
from services.sync_service.adapters.base import MODE_CLOUD, BackendAdapter
from services.sync_service.deferred_delete import DeferredDeleteManager, PendingDeletion
from services.sync_service.notifications import NotificationService

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Refreshes the user asked for (directly or by navigating) report failures;
# background ones only log.
USER_TRIGGERS = ("initial", "manual", "date")


def describe_error(error: Exception) -> str:
    """Human-readable description of a failure."""
    if isinstance(error, NotesError):
        return error.message
    return str(error) or error.__class__.__name__


class SyncOrchestrator:
    """
    Owns the memo and plan lists shown to the user.

    Every mutation is applied to the in-memory list first, then sent to the
    backend adapter. Success reconciles the list with the backend's answer,
    failure rolls the change back and reports it. Reconciliation compares
    against the list as it is when the call completes, so overlapping
    operations only ever undo or overwrite the fields they wrote themselves.
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        notifications: Optional[NotificationService] = None,
        page_size: int = 100,
        delete_grace_seconds: Optional[float] = None,
        selected_date: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the sync orchestrator.

        Args:
            adapter: Active backend adapter (local or cloud)
            notifications: Sink for user-visible notices
            page_size: Number of memos fetched per refresh
            delete_grace_seconds: Undo window for deletes
            selected_date: Calendar date (YYYY-MM-DD) whose plans are shown
            clock: Time source, in epoch seconds
        """
        self.adapter = adapter
        self.mode = adapter.mode
        self.notifications = notifications or NotificationService()
        self.page_size = page_size
        self.selected_date = selected_date or date.today().isoformat()
        self.status = SyncStatus()
        self.has_loaded_once = False
        self.is_initial_loading = False
        self._clock = clock
        self._memos: List[Memo] = []
        self._plans: List[DailyPlan] = []
        self._placeholder_seq = 0
        # memo id -> mutation sequence of its last local change
        self._mutation_seq = 0
        self._touched: Dict[int, int] = {}
        self._in_flight: Dict[int, int] = {}
        self._refresh_starts: List[int] = []
        self.deletions = DeferredDeleteManager(
            commit=self._commit_deletion,
            on_failure=self._deletion_failed,
            grace_seconds=delete_grace_seconds if delete_grace_seconds is not None else get_delete_grace_seconds()
        )

    # State accessors

    @property
    def tracks_sync(self) -> bool:
        """Only cloud operations drive the pending/error badge."""
        return self.mode == MODE_CLOUD

    @property
    def memos(self) -> List[Memo]:
        return [replace(memo) for memo in self._memos]

    @property
    def plans(self) -> List[DailyPlan]:
        return [replace(plan) for plan in self._plans]

    def get_memo(self, memo_id: int) -> Optional[Memo]:
        index = self._index_of(memo_id)
        return replace(self._memos[index]) if index is not None else None

    def _index_of(self, memo_id: int) -> Optional[int]:
        for index, memo in enumerate(self._memos):
            if memo.id == memo_id:
                return index
        return None

    def _require_memo(self, memo_id: int) -> Tuple[int, Memo]:
        index = self._index_of(memo_id)
        if index is None:
            raise NotFound(f"Memo {memo_id} is not in the current list", {"id": memo_id})
        memo = self._memos[index]
        if memo.is_placeholder:
            raise ValidationError("Memo is still being saved, try again in a moment", {"id": memo_id})
        return index, memo

    def _now(self) -> int:
        return int(self._clock())

    # Sync tracking

    def _begin(self) -> None:
        if not self.tracks_sync:
            return
        self.status.pending_operations += 1
        self.status.last_error = None

    def _end(self, error: Optional[Exception] = None) -> None:
        if error is None:
            self.status.last_success_at = self._clock()
        if not self.tracks_sync:
            return
        self.status.pending_operations = max(0, self.status.pending_operations - 1)
        if error is not None:
            self.status.last_error = describe_error(error)

    async def _dispatch(self, call: Callable[[], Awaitable[T]]) -> T:
        self._begin()
        try:
            result = await call()
        except Exception as e:
            self._end(e)
            raise
        self._end()
        return result

    def _touch(self, *memo_ids: int) -> None:
        """Record a local change so a refresh fetched earlier does not undo it."""
        for memo_id in memo_ids:
            if memo_id > 0:
                self._mutation_seq += 1
                self._touched[memo_id] = self._mutation_seq

    def _hold(self, memo_id: int) -> None:
        self._in_flight[memo_id] = self._in_flight.get(memo_id, 0) + 1

    def _release(self, memo_id: int) -> None:
        remaining = self._in_flight.get(memo_id, 0) - 1
        if remaining > 0:
            self._in_flight[memo_id] = remaining
        else:
            self._in_flight.pop(memo_id, None)

    def _report_failure(self, message: str, error: Exception) -> None:
        logger.error(f"{message}: {describe_error(error)}")
        if self.tracks_sync:
            self.notifications.error(message)
        else:
            self.notifications.alert(f"{message} ({describe_error(error)})")

    # Create

    def _next_placeholder_id(self) -> int:
        self._placeholder_seq += 1
        return -self._placeholder_seq

    async def create_memo(
        self,
        content: str,
        category: Optional[str] = None,
        target_date: Optional[str] = None
    ) -> Memo:
        """
        Create a memo optimistically.

        A placeholder with a negative id is shown at the top of the list
        straight away and swapped for the backend's memo once it answers.

        Raises:
            ValidationError: Blank content or unknown category (nothing is shown)
            NotesError: Backend failure, after the placeholder was removed
        """
        if not content or not content.strip():
            raise ValidationError("Memo content must not be empty")
        _validate_category(category)
        _validate_date(target_date)

        ts = self._now()
        placeholder = Memo(
            id=self._next_placeholder_id(),
            uid="",
            created_ts=ts,
            updated_ts=ts,
            category=category or DEFAULT_CATEGORY,
            target_date=target_date,
            content=content,
        )
        self._memos.insert(0, placeholder)

        try:
            created = await self._dispatch(
                lambda: self.adapter.create_memo(CreateMemoInput(content, category, target_date))
            )
        except Exception as e:
            self._memos = [memo for memo in self._memos if memo.id != placeholder.id]
            self._report_failure("Failed to create memo, please try again later", e)
            raise

        # A refresh may already have brought the new row in.
        self._memos = [memo for memo in self._memos if memo.id != created.id]
        index = self._index_of(placeholder.id)
        if index is not None:
            self._memos[index] = created
        else:
            self._memos.insert(0, created)
        self._touch(created.id)
        return replace(created)

    # Update, toggle, pin

    async def update_memo(
        self,
        memo_id: int,
        content: Optional[str] = None,
        category: Optional[str] = None,
        target_date: Optional[str] = None,
        completion_status: Optional[str] = None,
        pinned: Optional[bool] = None
    ) -> Memo:
        """Partially update a memo; only the given fields change."""
        data = UpdateMemoInput(
            id=memo_id,
            content=content,
            category=category,
            target_date=target_date,
            completion_status=completion_status,
            pinned=pinned,
        )
        changes = data.changes()
        if not changes:
            raise ValidationError("Nothing to update", {"id": memo_id})
        if content is not None and not content.strip():
            raise ValidationError("Memo content must not be empty", {"id": memo_id})
        _validate_category(category)
        _validate_date(target_date)
        if completion_status is not None and completion_status not in COMPLETION_STATUSES:
            raise ValidationError(f"Unknown completion status '{completion_status}'")

        return await self._apply_update(
            memo_id,
            changes,
            lambda: self.adapter.update_memo(data),
            "Update failed, please try again later"
        )

    async def edit_content(self, memo_id: int, content: str) -> Memo:
        return await self.update_memo(memo_id, content=content)

    async def toggle_pin(self, memo_id: int) -> Memo:
        _, memo = self._require_memo(memo_id)
        return await self.update_memo(memo_id, pinned=not memo.pinned)

    async def toggle_status(self, memo_id: int) -> Memo:
        """Advance pending → completed → incomplete → pending."""
        _, memo = self._require_memo(memo_id)
        return await self._apply_update(
            memo_id,
            {"completion_status": next_completion_status(memo.completion_status)},
            lambda: self.adapter.toggle_memo_status(memo_id),
            "Failed to change status"
        )

    async def _apply_update(
        self,
        memo_id: int,
        changes: Dict[str, Any],
        call: Callable[[], Awaitable[Memo]],
        failure_message: str
    ) -> Memo:
        index, memo = self._require_memo(memo_id)
        written = dict(changes, updated_ts=self._now())
        before = {name: getattr(memo, name) for name in written}
        self._memos[index] = replace(memo, **written)
        self._touch(memo_id)

        self._hold(memo_id)
        try:
            result = await self._dispatch(call)
        except Exception as e:
            self._merge_fields(memo_id, written, before)
            self._report_failure(failure_message, e)
            raise
        finally:
            self._release(memo_id)

        self._merge_fields(memo_id, written, {name: getattr(result, name) for name in written})
        return replace(result)

    def _merge_fields(self, memo_id: int, written: Dict[str, Any], values: Dict[str, Any]) -> None:
        """Set ``values`` on fields that still hold what this operation wrote."""
        index = self._index_of(memo_id)
        self._touch(memo_id)
        if index is None:
            return
        current = self._memos[index]
        updates = {
            name: values[name]
            for name, value in written.items()
            if getattr(current, name) == value
        }
        if updates:
            self._memos[index] = replace(current, **updates)

    # Archive

    async def set_archived(self, memo_id: int, archived: bool = True) -> Memo:
        """
        Archive or unarchive a memo.

        Archived memos leave the visible list straight away. Unarchiving is
        not optimistic, since the memo is not in the list to begin with; it
        shows up once the backend confirms.
        """
        call = lambda: self.adapter.update_memo(UpdateMemoInput(id=memo_id, archived=archived))

        if not archived:
            if memo_id < 0:
                raise ValidationError("Memo is still being saved, try again in a moment", {"id": memo_id})
            self._hold(memo_id)
            try:
                result = await self._dispatch(call)
            except Exception as e:
                self._report_failure("Failed to restore memo from the archive", e)
                raise
            finally:
                self._release(memo_id)
            if self._index_of(result.id) is None:
                self._memos.insert(0, result)
            self._touch(result.id)
            return replace(result)

        index, memo = self._require_memo(memo_id)
        del self._memos[index]
        self._touch(memo_id)

        self._hold(memo_id)
        try:
            result = await self._dispatch(call)
        except Exception as e:
            self._reinsert(memo, index)
            self._report_failure("Failed to archive memo", e)
            raise
        finally:
            self._release(memo_id)
        self._touch(memo_id)
        return replace(result)

    # Deferred delete

    def delete_memo(self, memo_id: int) -> PendingDeletion:
        """
        Hide a memo now and delete it after the grace window unless undone.

        Must be called from the running event loop.
        """
        existing = self.deletions.get(memo_id)
        if existing is not None:
            return existing

        index, memo = self._require_memo(memo_id)
        del self._memos[index]
        self._touch(memo_id)
        entry = self.deletions.schedule(memo, index)
        self.notifications.info("Memo deleted", action={"type": "undo_delete", "memo_id": memo_id})
        return entry

    def undo_delete(self, memo_id: int) -> bool:
        """Restore a memo whose delete is still pending. The backend is not called."""
        entry = self.deletions.cancel(memo_id)
        if entry is None:
            return False
        self._reinsert(entry.memo, entry.index)
        self.notifications.success("Delete undone")
        return True

    async def _commit_deletion(self, memo_id: int) -> None:
        async def call() -> None:
            try:
                await self.adapter.delete_memo(memo_id)
            except NotFound:
                logger.info(f"Memo {memo_id} was already gone at the backend")

        await self._dispatch(call)
        self._touch(memo_id)

    def _deletion_failed(self, entry: PendingDeletion, error: Exception) -> None:
        self._reinsert(entry.memo, entry.index)
        self._report_failure("Delete failed, the memo was restored", error)

    def _reinsert(self, memo: Memo, index: int) -> None:
        self._touch(memo.id)
        if self._index_of(memo.id) is not None:
            return
        self._memos.insert(min(index, len(self._memos)), memo)

    # Refresh

    async def refresh_all(self, trigger: str = "manual") -> List[Memo]:
        """
        Reload memos and the selected date's plans from the backend.

        On success the lists are replaced with the backend's, except for memos
        changed locally while the fetch was running or still being written:
        those keep their in-memory state, including being absent. Memos with
        a pending delete stay hidden and unconfirmed placeholders stay on top.
        On failure the current lists are kept and the error is raised.
        """
        first_load = not self.has_loaded_once
        if first_load:
            self.is_initial_loading = True
        plan_date = self.selected_date
        started = self._mutation_seq
        self._refresh_starts.append(started)

        try:
            memos, plans = await asyncio.gather(
                self.adapter.list_memos(limit=self.page_size, offset=0),
                self.adapter.list_plans_by_date(plan_date),
            )
        except Exception as e:
            if self.tracks_sync:
                self.status.last_error = describe_error(e)
            if first_load or trigger in USER_TRIGGERS:
                self._report_failure("Failed to load data, please check the network", e)
            else:
                logger.warning(f"Background refresh ({trigger}) failed: {describe_error(e)}")
            raise
        finally:
            if first_load:
                self.is_initial_loading = False
                self.has_loaded_once = True
            self._refresh_starts.remove(started)

        self._memos = self._overlay(memos, started)
        self._forget_touches()
        if plan_date == self.selected_date:
            self._plans = plans
        self.status.last_success_at = self._clock()
        logger.debug(f"Refreshed ({trigger}): {len(self._memos)} memos, {len(plans)} plans")
        return self.memos

    def _overlay(self, fetched: List[Memo], started: int) -> List[Memo]:
        hidden = self.deletions.pending_ids
        local = {memo_id for memo_id, seq in self._touched.items() if seq > started}
        local.update(self._in_flight)
        current = {memo.id: memo for memo in self._memos if not memo.is_placeholder}

        merged = []
        for memo in fetched:
            if memo.id in hidden:
                continue
            if memo.id not in local:
                merged.append(memo)
            elif memo.id in current:
                merged.append(current[memo.id])
        seen = {memo.id for memo in merged}
        fresh = [
            memo for memo_id, memo in current.items()
            if memo_id in local and memo_id not in seen and memo_id not in hidden
        ]
        placeholders = [memo for memo in self._memos if memo.is_placeholder]
        return placeholders + fresh + merged

    def _forget_touches(self) -> None:
        floor = min(self._refresh_starts) if self._refresh_starts else self._mutation_seq
        self._touched = {memo_id: seq for memo_id, seq in self._touched.items() if seq > floor}

    async def select_date(self, day: str) -> List[Memo]:
        """Change the selected calendar date and reload."""
        _validate_date(day, required=True)
        self.selected_date = day
        return await self.refresh_all("date")

    # Read-only queries

    async def search_memos(self, query: str) -> List[Memo]:
        if not query or not query.strip():
            return []
        return await self.adapter.search_memos(query.strip())

    async def memos_for_date(self, day: str) -> List[Memo]:
        _validate_date(day, required=True)
        hidden = self.deletions.pending_ids
        return [memo for memo in await self.adapter.list_memos_by_date(day) if memo.id not in hidden]

    def close(self) -> List[PendingDeletion]:
        """Cancel deletes still waiting; those memos are kept."""
        cancelled = self.deletions.cancel_all()
        if cancelled:
            logger.info(f"Dropped {len(cancelled)} pending deletion(s) on close")
        return cancelled


def _validate_category(category: Optional[str]) -> None:
    if category is not None and category not in CATEGORIES:
        raise ValidationError(f"Unknown category '{category}'", {"allowed": list(CATEGORIES)})


def _validate_date(day: Optional[str], required: bool = False) -> None:
    if day is None:
        if required:
            raise ValidationError("A date is required")
        return
    if not DATE_PATTERN.match(day):
        raise ValidationError(f"Invalid date '{day}', expected YYYY-MM-DD")
    try:
        date.fromisoformat(day)
    except ValueError:
        raise ValidationError(f"Invalid date '{day}', expected YYYY-MM-DD")
