"""Backend mode resolution and the persisted mode preference."""

import logging
import os
from typing import Optional

from shared.config import get_env
from shared.db_operations import ClientStateOperations
from shared.errors import ConfigurationError, ValidationError
from services.sync_service.adapters.base import MODE_CLOUD, MODE_LOCAL

logger = logging.getLogger(__name__)

MODE_AUTO = "auto"
DATA_MODES = (MODE_AUTO, MODE_LOCAL, MODE_CLOUD)
MODE_STORAGE_KEY = "tesla_data_mode"

RUNTIME_DESKTOP = "desktop"
RUNTIME_BROWSER = "browser"


def parse_mode(raw: Optional[str]) -> Optional[str]:
    """Normalise a stored or configured mode string; unknown values give None."""
    value = (raw or "").strip().lower()
    return value if value in DATA_MODES else None


def detect_runtime() -> str:
    """
    Work out whether we run inside the desktop shell.

    ``NOTES_RUNTIME`` wins when set. Otherwise a configured local store
    (``LOCAL_STORE_URL`` or ``LOCAL_DATABASE_URL``) means desktop.
    """
    runtime = (os.getenv("NOTES_RUNTIME") or "").strip().lower()
    if runtime in (RUNTIME_DESKTOP, RUNTIME_BROWSER):
        return runtime
    if os.getenv("LOCAL_STORE_URL") or os.getenv("LOCAL_DATABASE_URL"):
        return RUNTIME_DESKTOP
    return RUNTIME_BROWSER


def resolve_mode(preference: Optional[str], runtime: str) -> str:
    """
    Choose the effective backend.

    Args:
        preference: ``local``, ``cloud`` or ``auto`` (anything else counts as auto)
        runtime: ``desktop`` or ``browser``

    Returns:
        ``local`` or ``cloud``

    Raises:
        ConfigurationError: If ``local`` is requested outside the desktop runtime
    """
    mode = parse_mode(preference) or MODE_AUTO

    if mode == MODE_LOCAL:
        if runtime != RUNTIME_DESKTOP:
            raise ConfigurationError(
                "Local mode needs the desktop runtime; switch to cloud mode instead.",
                {"preference": mode, "runtime": runtime}
            )
        return MODE_LOCAL

    if mode == MODE_CLOUD:
        return MODE_CLOUD

    return MODE_LOCAL if runtime == RUNTIME_DESKTOP else MODE_CLOUD


class ModePreferenceStore:
    """Reads and writes the user's backend preference in client-local storage."""

    def __init__(self, client_state: ClientStateOperations):
        self.client_state = client_state

    def get_stored(self) -> Optional[str]:
        return parse_mode(self.client_state.get_setting(MODE_STORAGE_KEY))

    def get_current(self) -> str:
        """Stored preference, else ``NOTES_DATA_MODE``, else ``auto``."""
        return self.get_stored() or parse_mode(get_env("NOTES_DATA_MODE")) or MODE_AUTO

    def set_preferred(self, mode: str) -> str:
        parsed = parse_mode(mode)
        if parsed is None:
            raise ValidationError(f"Unknown data mode '{mode}'", {"allowed": list(DATA_MODES)})
        self.client_state.set_setting(MODE_STORAGE_KEY, parsed)
        logger.info(f"Preferred data mode set to {parsed}")
        return parsed

    def clear_preferred(self) -> None:
        self.client_state.delete_setting(MODE_STORAGE_KEY)
