"""Change notifiers: tell the orchestrator that upstream data may have changed."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx

from shared.config import get_poll_interval
from services.sync_service.adapters.base import MODE_CLOUD
from services.sync_service.retry import ExponentialBackoff

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[str], Awaitable[Any]]

WATCHED_TABLES = ("memo", "daily_plan")
CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")


class ChangeNotifier(ABC):
    """
    Fires a shared refresh callback when something changed upstream.

    The callback receives the trigger label (``poll``, ``focus`` or ``push``).
    Refresh failures are logged here and never stop the notifier.
    """

    def __init__(self, refresh: RefreshCallback):
        self.refresh = refresh
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. Calling it twice is harmless."""
        if self._closed:
            raise RuntimeError(f"{self.__class__.__name__} was unsubscribed and cannot be restarted")
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())

    async def notify_focus(self) -> None:
        """The application regained focus."""
        if not self._closed:
            await self._fire("focus")

    async def unsubscribe(self) -> None:
        """Stop the notifier and wait until its loop has exited. Safe to call repeatedly."""
        self._closed = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"{self.__class__.__name__} loop had stopped with an error: {e}", exc_info=True)
        logger.info(f"{self.__class__.__name__} unsubscribed")

    async def _fire(self, trigger: str) -> None:
        try:
            await self.refresh(trigger)
        except Exception as e:
            logger.warning(f"Refresh triggered by {trigger} failed: {e}")

    @abstractmethod
    async def _run(self) -> None:
        pass


class PollingChangeNotifier(ChangeNotifier):
    """Refreshes on a fixed interval and on focus."""

    def __init__(self, refresh: RefreshCallback, interval: Optional[float] = None):
        super().__init__(refresh)
        self.interval = interval if interval is not None else get_poll_interval()

    async def _run(self) -> None:
        logger.info(f"Polling for changes every {self.interval}s")
        while True:
            await asyncio.sleep(self.interval)
            await self._fire("poll")


class PushChangeNotifier(ChangeNotifier):
    """
    Listens to the hosted backend's change feed.

    The feed is an event stream whose ``data:`` lines carry JSON objects such
    as ``{"table": "memo", "type": "UPDATE"}``. Insert, update and delete
    events on the watched tables fire the refresh callback. A dropped stream
    is reopened with exponential backoff.
    """

    def __init__(
        self,
        refresh: RefreshCallback,
        client: httpx.AsyncClient,
        changes_url: str,
        tables: Iterable[str] = WATCHED_TABLES,
        backoff: Optional[ExponentialBackoff] = None
    ):
        """
        Args:
            refresh: Callback fired with ``"push"`` or ``"focus"``
            client: Authenticated client; owned by the notifier and closed on unsubscribe
            changes_url: Absolute URL of the change feed
            tables: Tables whose events trigger a refresh
            backoff: Reconnect delay policy
        """
        super().__init__(refresh)
        self.client = client
        self.changes_url = changes_url
        self.tables = tuple(tables)
        self.backoff = backoff or ExponentialBackoff(initial_delay=1.0, max_delay=60.0)

    def is_change(self, event: Dict[str, Any]) -> bool:
        """Whether a decoded feed message should trigger a refresh."""
        if not isinstance(event, dict):
            return False
        event_type = str(event.get("type") or event.get("eventType") or "").upper()
        return event.get("table") in self.tables and event_type in CHANGE_EVENTS

    async def handle_line(self, line: str) -> bool:
        """Process one line of the stream; returns True if a refresh was fired."""
        if not line.startswith("data:"):
            return False
        raw = line[len("data:"):].strip()
        if not raw:
            return False
        try:
            event = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed change event: {raw[:200]}")
            return False
        if not self.is_change(event):
            return False
        logger.debug(f"Change event: {event}")
        await self._fire("push")
        return True

    async def _run(self) -> None:
        while True:
            try:
                async with self.client.stream(
                    "GET",
                    self.changes_url,
                    params={"tables": ",".join(self.tables)},
                    headers={"Accept": "text/event-stream"}
                ) as response:
                    response.raise_for_status()
                    logger.info(f"Subscribed to change feed for {', '.join(self.tables)}")
                    self.backoff.reset()
                    async for line in response.aiter_lines():
                        await self.handle_line(line)
                logger.info("Change feed closed by server")
            except httpx.HTTPError as e:
                logger.warning(f"Change feed connection failed: {e}")

            delay = self.backoff.next_delay()
            logger.info(f"Reconnecting to change feed in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def unsubscribe(self) -> None:
        await super().unsubscribe()
        if not self.client.is_closed:
            await self.client.aclose()


def build_push_client(api_key: str) -> httpx.AsyncClient:
    """Client for the change feed; reads never time out on a live stream."""
    return httpx.AsyncClient(
        headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
        timeout=httpx.Timeout(10.0, read=None)
    )


def build_notifier(
    mode: str,
    refresh: RefreshCallback,
    changes_url: Optional[str] = None,
    api_key: Optional[str] = None,
    poll_interval: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None
) -> ChangeNotifier:
    """
    Pick the notifier for a backend mode.

    Cloud mode with a configured change feed gets push; everything else polls.
    """
    if mode == MODE_CLOUD and changes_url and (api_key or client is not None):
        return PushChangeNotifier(refresh, client or build_push_client(api_key), changes_url)
    return PollingChangeNotifier(refresh, interval=poll_interval)
