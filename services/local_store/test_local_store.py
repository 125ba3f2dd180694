"""Tests for the embedded local store command surface."""

import pytest
from fastapi.testclient import TestClient

from shared.db_operations import DatabaseOperations
from services.local_store.commands import CommandDispatcher, InvalidArguments, UnknownCommand
from services.local_store.main import create_app


@pytest.fixture
def db_ops():
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


@pytest.fixture
def client(db_ops):
    return TestClient(create_app(db_ops))


def invoke(client, command, arguments=None):
    return client.post(f"/invoke/{command}", json=arguments)


class TestCommandDispatcher:
    """Tests for CommandDispatcher."""

    def test_unknown_command(self, db_ops):
        with pytest.raises(UnknownCommand):
            CommandDispatcher(db_ops).invoke("drop_everything", {})

    def test_invalid_arguments_lists_fields(self, db_ops):
        with pytest.raises(InvalidArguments) as exc_info:
            CommandDispatcher(db_ops).invoke("get_memos_by_date", {"date": "March 1"})

        assert exc_info.value.details["errors"][0]["field"] == "date"

    def test_results_are_plain_dicts(self, db_ops):
        dispatcher = CommandDispatcher(db_ops)

        created = dispatcher.invoke("create_memo", {"content": "hello"})
        listed = dispatcher.invoke("get_memos", None)

        assert isinstance(created, dict)
        assert listed == [created]
        assert dispatcher.invoke("delete_memo", {"id": created["id"]}) is None

    def test_command_names(self, db_ops):
        names = CommandDispatcher(db_ops).command_names

        for name in ("get_memos", "create_memo", "update_memo", "delete_memo",
                     "toggle_memo_status", "get_plans_by_date"):
            assert name in names


class TestLocalStoreApp:
    """Tests for the local store HTTP endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "get_memos" in response.json()["commands"]

    def test_create_update_and_list(self, client):
        created = invoke(client, "create_memo", {"content": "Charge car", "category": "planning"})
        assert created.status_code == 200
        memo = created.json()["result"]
        assert memo["category"] == "planning"

        updated = invoke(client, "update_memo", {"id": memo["id"], "pinned": True})
        assert updated.json()["result"]["pinned"] is True
        assert updated.json()["result"]["content"] == "Charge car"

        listed = invoke(client, "get_memos", {"limit": 100, "offset": 0})
        assert [m["id"] for m in listed.json()["result"]] == [memo["id"]]

    def test_toggle_status(self, client):
        memo = invoke(client, "create_memo", {"content": "x"}).json()["result"]

        response = invoke(client, "toggle_memo_status", {"id": memo["id"]})

        assert response.json()["result"]["completion_status"] == "completed"

    def test_missing_row_is_structured_not_found(self, client):
        response = invoke(client, "delete_memo", {"id": 404})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_unknown_command_is_404(self, client):
        response = invoke(client, "explode")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "unknown_command"

    def test_bad_arguments_are_422(self, client):
        response = invoke(client, "update_memo", {"content": "no id"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "invalid_arguments"

    def test_plans_by_date(self, client):
        invoke(client, "create_plan", {"plan_date": "2026-03-01", "title": "Gym", "priority": 1})
        invoke(client, "create_plan", {"plan_date": "2026-03-01", "title": "Top priority", "priority": 3})

        response = invoke(client, "get_plans_by_date", {"date": "2026-03-01"})

        assert [p["title"] for p in response.json()["result"]] == ["Top priority", "Gym"]
