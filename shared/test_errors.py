"""Tests for the error taxonomy."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from shared.errors import (
    ERRORS_BY_CODE, BackendError, BackendUnavailable, ConflictError, NotesError, NotFound,
    Unauthorized, ValidationError, error_from_payload, notes_exception_handler
)


def test_to_dict_includes_details_only_when_present():
    assert NotFound("Memo 3 not found").to_dict() == {"code": "not_found", "message": "Memo 3 not found"}
    assert NotFound("Memo 3 not found", {"id": 3}).to_dict()["details"] == {"id": 3}


@pytest.mark.parametrize("error_cls,status_code", [
    (BackendUnavailable, 503),
    (Unauthorized, 401),
    (NotFound, 404),
    (ValidationError, 422),
    (ConflictError, 409),
    (BackendError, 502),
])
def test_http_status(error_cls, status_code):
    assert error_cls("x").http_status == status_code


def test_error_from_payload_restores_class():
    error = error_from_payload({"code": "unauthorized", "message": "bad key", "details": {"status": 401}})

    assert isinstance(error, Unauthorized)
    assert error.message == "bad key"
    assert error.details == {"status": 401}


def test_error_from_payload_unknown_code_is_backend_error():
    error = error_from_payload({"code": "unknown_command", "message": "no such command"})

    assert isinstance(error, BackendError)
    assert error.message == "no such command"


def test_every_code_is_unique():
    assert len(ERRORS_BY_CODE) == 7
    assert all(issubclass(cls, NotesError) for cls in ERRORS_BY_CODE.values())


def test_exception_handler_renders_error():
    app = FastAPI()
    app.add_exception_handler(NotesError, notes_exception_handler)

    @app.get("/boom")
    async def boom():
        raise ConflictError("Status changed concurrently", {"id": 1})

    response = TestClient(app).get("/boom")

    assert response.status_code == 409
    assert response.json() == {
        "code": "conflict",
        "message": "Status changed concurrently",
        "details": {"id": 1},
    }
