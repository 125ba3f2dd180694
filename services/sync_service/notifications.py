"""User-visible notices: toasts for cloud mode, one-off alerts for local mode."""

import logging
import time
from collections import deque
from typing import Callable, Dict, List, Optional

from shared.models import Notice

logger = logging.getLogger(__name__)

LEVEL_INFO = "info"
LEVEL_SUCCESS = "success"
LEVEL_ERROR = "error"
LEVEL_ALERT = "alert"


class NotificationService:
    """Collects notices for the UI shell and fans them out to listeners."""

    def __init__(self, max_notices: int = 50):
        """
        Initialize notification service.

        Args:
            max_notices: How many recent notices are kept for polling clients
        """
        self._notices = deque(maxlen=max_notices)
        self._listeners: List[Callable[[Notice], None]] = []

    def subscribe(self, listener: Callable[[Notice], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, level: str, message: str, action: Optional[Dict] = None) -> Notice:
        notice = Notice(level=level, message=message, created_at=time.time(), action=action)
        self._notices.append(notice)

        if level in (LEVEL_ERROR, LEVEL_ALERT):
            logger.warning(f"User notice ({level}): {message}")
        else:
            logger.info(f"User notice ({level}): {message}")

        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}", exc_info=True)

        return notice

    def info(self, message: str, action: Optional[Dict] = None) -> Notice:
        return self.notify(LEVEL_INFO, message, action)

    def success(self, message: str) -> Notice:
        return self.notify(LEVEL_SUCCESS, message)

    def error(self, message: str) -> Notice:
        """Toast-style error, used while the sync badge is visible."""
        return self.notify(LEVEL_ERROR, message)

    def alert(self, message: str) -> Notice:
        """Blocking alert, used in local mode where there is no sync badge."""
        return self.notify(LEVEL_ALERT, message)

    def recent(self) -> List[Notice]:
        return list(self._notices)

    def drain(self) -> List[Notice]:
        """Return and forget all queued notices."""
        notices = list(self._notices)
        self._notices.clear()
        return notices
