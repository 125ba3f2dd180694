"""Tests for backend mode resolution."""

import os
from unittest.mock import patch

import pytest

from shared.db_operations import ClientStateOperations
from shared.errors import ConfigurationError, ValidationError
from services.sync_service.selector import (
    MODE_STORAGE_KEY, ModePreferenceStore, detect_runtime, parse_mode, resolve_mode
)


@pytest.fixture
def store():
    client_state = ClientStateOperations(database_url="sqlite:///:memory:")
    client_state.create_tables()
    return ModePreferenceStore(client_state)


@pytest.mark.parametrize("preference,runtime,expected", [
    ("local", "desktop", "local"),
    ("cloud", "desktop", "cloud"),
    ("cloud", "browser", "cloud"),
    ("auto", "desktop", "local"),
    ("auto", "browser", "cloud"),
    (None, "desktop", "local"),
    ("garbage", "browser", "cloud"),
    (" CLOUD ", "desktop", "cloud"),
])
def test_resolve_mode(preference, runtime, expected):
    assert resolve_mode(preference, runtime) == expected


def test_local_outside_desktop_is_configuration_error():
    with pytest.raises(ConfigurationError):
        resolve_mode("local", "browser")


def test_parse_mode_ignores_unknown_values():
    assert parse_mode("Local") == "local"
    assert parse_mode("sqlite") is None
    assert parse_mode(None) is None


def test_detect_runtime_prefers_explicit_setting():
    with patch.dict(os.environ, {"NOTES_RUNTIME": "browser", "LOCAL_STORE_URL": "http://localhost:8010"}):
        assert detect_runtime() == "browser"


def test_detect_runtime_from_local_store_config():
    with patch.dict(os.environ, {"LOCAL_DATABASE_URL": "sqlite:///notes.db"}, clear=True):
        assert detect_runtime() == "desktop"
    with patch.dict(os.environ, {}, clear=True):
        assert detect_runtime() == "browser"


def test_preference_defaults_to_auto(store):
    with patch.dict(os.environ, {}, clear=True):
        assert store.get_stored() is None
        assert store.get_current() == "auto"


def test_preference_falls_back_to_environment(store):
    with patch.dict(os.environ, {"NOTES_DATA_MODE": "cloud"}):
        assert store.get_current() == "cloud"


def test_stored_preference_wins(store):
    store.set_preferred("local")

    with patch.dict(os.environ, {"NOTES_DATA_MODE": "cloud"}):
        assert store.get_current() == "local"
    assert store.client_state.get_setting(MODE_STORAGE_KEY) == "local"


def test_invalid_stored_value_is_ignored(store):
    store.client_state.set_setting(MODE_STORAGE_KEY, "floppy")

    with patch.dict(os.environ, {}, clear=True):
        assert store.get_current() == "auto"


def test_set_preferred_rejects_unknown_mode(store):
    with pytest.raises(ValidationError):
        store.set_preferred("floppy")


def test_clear_preferred(store):
    store.set_preferred("cloud")
    store.clear_preferred()

    assert store.get_stored() is None
