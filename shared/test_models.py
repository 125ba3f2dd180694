"""Tests for shared data models."""

import pytest

from shared.models import (
    CATEGORIES, DEFAULT_CATEGORY, STATUS_COMPLETED, STATUS_INCOMPLETE, STATUS_PENDING,
    DailyPlan, Memo, SyncStatus, UpdateMemoInput, next_completion_status
)


@pytest.mark.parametrize("current,expected", [
    (STATUS_PENDING, STATUS_COMPLETED),
    (STATUS_COMPLETED, STATUS_INCOMPLETE),
    (STATUS_INCOMPLETE, STATUS_PENDING),
    ("archived", STATUS_PENDING),
    ("", STATUS_PENDING),
])
def test_next_completion_status(current, expected):
    assert next_completion_status(current) == expected


def test_three_toggles_return_to_start():
    status = STATUS_PENDING
    for _ in range(3):
        status = next_completion_status(status)
    assert status == STATUS_PENDING


def test_memo_from_sqlite_row():
    """Integer flags from sqlite become booleans and defaults are filled in."""
    memo = Memo.from_dict({
        "id": 7,
        "uid": "abc",
        "created_ts": 1700000000,
        "updated_ts": None,
        "category": None,
        "target_date": "",
        "completion_status": None,
        "content": "buy milk",
        "pinned": 1,
        "archived": 0,
    })

    assert memo.pinned is True
    assert memo.archived is False
    assert memo.updated_ts == 1700000000
    assert memo.category == DEFAULT_CATEGORY
    assert memo.target_date is None
    assert memo.completion_status == STATUS_PENDING
    assert memo.is_placeholder is False


def test_memo_placeholder_and_to_dict():
    memo = Memo(id=-1, uid="", created_ts=1, updated_ts=1, content="draft")

    assert memo.is_placeholder is True
    data = memo.to_dict()
    assert data["id"] == -1
    assert data["content"] == "draft"
    assert data["pinned"] is False


def test_daily_plan_from_dict():
    plan = DailyPlan.from_dict({
        "id": 3,
        "plan_date": "2026-03-01",
        "title": "Run 5k",
        "created_ts": 10,
        "updated_ts": 12,
        "completed": 1,
        "priority": None,
        "completed_ts": "12",
    })

    assert plan.completed is True
    assert plan.priority == 0
    assert plan.completed_ts == 12
    assert plan.category == DEFAULT_CATEGORY


def test_update_input_changes_only_lists_provided_fields():
    data = UpdateMemoInput(id=1, content="new", pinned=False)

    assert data.changes() == {"content": "new", "pinned": False}
    assert UpdateMemoInput(id=1).changes() == {}


def test_sync_status_defaults():
    assert SyncStatus().to_dict() == {
        "pending_operations": 0,
        "last_error": None,
        "last_success_at": None,
    }


def test_categories_include_default():
    assert DEFAULT_CATEGORY in CATEGORIES
    assert len(CATEGORIES) == 8
