"""Session wiring: selector → adapter → orchestrator → notifier."""

import asyncio
import logging
from typing import Callable, List, Optional

from shared.config import get_cloud_config, get_delete_grace_seconds, get_poll_interval
from shared.db_operations import ClientStateOperations, DatabaseOperations
from shared.encryption import EncryptionService
from shared.errors import ConfigurationError, ValidationError
from services.sync_service.adapters.base import MODE_CLOUD, BackendAdapter
from services.sync_service.adapters.cloud import build_cloud_adapter
from services.sync_service.adapters.local import build_local_adapter
from services.sync_service.notifications import NotificationService
from services.sync_service.notifier import ChangeNotifier, RefreshCallback, build_notifier
from services.sync_service.orchestrator import SyncOrchestrator
from services.sync_service.selector import (
    DATA_MODES, ModePreferenceStore, detect_runtime, parse_mode, resolve_mode
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], BackendAdapter]
NotifierFactory = Callable[[str, RefreshCallback], ChangeNotifier]


class NotesSession:
    """One backend mode, its orchestrator and its live change subscription."""

    def __init__(
        self,
        mode: str,
        adapter: BackendAdapter,
        orchestrator: SyncOrchestrator,
        notifier_factory: NotifierFactory
    ):
        self.mode = mode
        self.adapter = adapter
        self.orchestrator = orchestrator
        self._notifier_factory = notifier_factory
        self.notifier: Optional[ChangeNotifier] = None
        self.closed = False

    def _subscribe(self) -> None:
        self.notifier = self._notifier_factory(self.mode, self.orchestrator.refresh_all)
        self.notifier.start()

    async def _unsubscribe(self) -> None:
        notifier, self.notifier = self.notifier, None
        if notifier is not None:
            await notifier.unsubscribe()

    async def open(self) -> None:
        """Run the initial load, then start listening for changes."""
        try:
            await self.orchestrator.refresh_all("initial")
        except Exception as e:
            logger.warning(f"Initial load in {self.mode} mode failed: {e}")
        self._subscribe()

    async def notify_focus(self) -> None:
        if self.notifier is not None:
            await self.notifier.notify_focus()

    async def select_date(self, day: str):
        """Switch the selected date, re-subscribing around the reload."""
        await self._unsubscribe()
        try:
            return await self.orchestrator.select_date(day)
        finally:
            if not self.closed:
                self._subscribe()

    async def close(self) -> None:
        """Drop pending deletes, stop the notifier and release the adapter."""
        if self.closed:
            return
        self.closed = True
        self.orchestrator.close()
        await self._unsubscribe()
        await self.orchestrator.deletions.wait_idle()
        await self.adapter.aclose()
        logger.info(f"Closed {self.mode} session")


class NotesApplication:
    """
    Owns the active session and rebuilds it when the backend mode changes.

    A mode switch builds the new adapter first, so a bad mode or missing
    credentials leave the current session running. It then persists the
    preference and closes the current session completely before opening the
    next one, which starts with fresh lists and zeroed sync counters.
    """

    def __init__(
        self,
        client_state: ClientStateOperations,
        encryption_service: Optional[EncryptionService] = None,
        db_ops: Optional[DatabaseOperations] = None,
        runtime: Optional[str] = None,
        notifications: Optional[NotificationService] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        notifier_factory: Optional[NotifierFactory] = None,
        delete_grace_seconds: Optional[float] = None
    ):
        """
        Args:
            client_state: Client-local settings store (mode preference, credentials)
            encryption_service: Decrypts stored cloud credentials
            db_ops: Embedded store database for local mode
            runtime: ``desktop`` or ``browser``; detected when omitted
            notifications: Notice sink shared by every session
            adapter_factory: Builds the adapter for a resolved mode
            notifier_factory: Builds the change notifier for a mode and refresh callback
            delete_grace_seconds: Undo window for deletes
        """
        self.client_state = client_state
        self.encryption_service = encryption_service
        self.db_ops = db_ops
        self.runtime = runtime or detect_runtime()
        self.notifications = notifications or NotificationService()
        self.preferences = ModePreferenceStore(client_state)
        self._adapter_factory = adapter_factory or self._build_adapter
        self._notifier_factory = notifier_factory or self._build_notifier
        self.delete_grace_seconds = (
            delete_grace_seconds if delete_grace_seconds is not None else get_delete_grace_seconds()
        )
        self.session: Optional[NotesSession] = None
        self._switch_lock = asyncio.Lock()

    @property
    def active_session(self) -> NotesSession:
        if self.session is None:
            raise ConfigurationError("No active session")
        return self.session

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self.active_session.orchestrator

    def available_modes(self) -> List[str]:
        modes = ["auto", "cloud"]
        if self.runtime == "desktop":
            modes.insert(1, "local")
        return modes

    def _cloud_credentials(self) -> dict:
        config = get_cloud_config()
        if config["url"] and config["api_key"]:
            return config
        if self.encryption_service is not None:
            stored = self.client_state.get_cloud_credentials(self.encryption_service)
            if stored:
                logger.info("Using stored cloud credentials")
                return stored
        return config

    def _build_adapter(self, mode: str) -> BackendAdapter:
        if mode == MODE_CLOUD:
            credentials = self._cloud_credentials()
            return build_cloud_adapter(credentials["url"], credentials["api_key"])
        return build_local_adapter(self.db_ops)

    def _build_notifier(self, mode: str, refresh: RefreshCallback) -> ChangeNotifier:
        credentials = self._cloud_credentials() if mode == MODE_CLOUD else {}
        return build_notifier(
            mode,
            refresh,
            changes_url=credentials.get("changes_url"),
            api_key=credentials.get("api_key"),
            poll_interval=get_poll_interval()
        )

    async def _open_session(self, mode: str, adapter: BackendAdapter) -> NotesSession:
        orchestrator = SyncOrchestrator(
            adapter,
            notifications=self.notifications,
            delete_grace_seconds=self.delete_grace_seconds
        )
        session = NotesSession(mode, adapter, orchestrator, self._notifier_factory)
        logger.info(f"Opening session in {mode} mode (runtime: {self.runtime})")
        await session.open()
        return session

    async def start(self) -> Optional[NotesSession]:
        """
        Open a session for the preferred mode unless one is already open.

        Returns None when the mode cannot be served yet, for instance cloud
        mode without credentials; the user is told, and storing credentials
        or switching mode opens the session later.
        """
        async with self._switch_lock:
            if self.session is None:
                try:
                    mode = resolve_mode(self.preferences.get_current(), self.runtime)
                    adapter = self._adapter_factory(mode)
                except ConfigurationError as e:
                    logger.warning(f"No session opened: {e.message}")
                    self.notifications.error(e.message)
                    return None
                self.session = await self._open_session(mode, adapter)
            return self.session

    async def store_cloud_credentials(
        self,
        url: str,
        api_key: str,
        changes_url: Optional[str] = None
    ) -> Optional[NotesSession]:
        """Save hosted backend credentials and open a session if none is running."""
        if self.encryption_service is None:
            self.encryption_service = EncryptionService()
        self.client_state.store_cloud_credentials(
            url,
            api_key,
            self.encryption_service,
            changes_url=changes_url
        )
        logger.info("Cloud credentials updated")
        if self.session is not None:
            return self.session
        return await self.start()

    async def switch_mode(self, preference: str) -> NotesSession:
        """
        Persist a new mode preference and reinitialise.

        Raises:
            ValidationError: Unknown mode string
            ConfigurationError: ``local`` requested outside the desktop runtime,
                or cloud credentials missing; the current session is left untouched
        """
        async with self._switch_lock:
            if parse_mode(preference) is None:
                raise ValidationError(f"Unknown data mode '{preference}'", {"allowed": list(DATA_MODES)})
            mode = resolve_mode(preference, self.runtime)
            adapter = self._adapter_factory(mode)
            self.preferences.set_preferred(preference)

            if self.session is not None:
                await self.session.close()
                self.session = None
            self.session = await self._open_session(mode, adapter)
            return self.session

    async def close(self) -> None:
        async with self._switch_lock:
            if self.session is not None:
                await self.session.close()
                self.session = None
