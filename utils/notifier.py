"""
Notification dispatch for workflow transitions.

The workflow decides *what* to send; a Notifier adapter decides *how*. All
dispatch is best-effort: failures are logged and counted, never raised into
the calling transition.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, Optional

from db.record_store import RecordStore
from models.status import NotificationPriority
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Abstract interface for notification delivery."""

    @abstractmethod
    def notify(
        self,
        recipient_id: int,
        title: str,
        message: str,
        priority: str = NotificationPriority.MEDIUM,
    ) -> None:
        """Queue a notification. Must return without waiting for delivery."""

    def shutdown(self, wait: bool = True) -> None:
        """Release delivery resources."""


class LoggingNotifier(Notifier):
    """Notifier that only writes notifications to the log."""

    def notify(self, recipient_id, title, message, priority=NotificationPriority.MEDIUM):
        logger.info(
            "Notification to user %s [%s]: %s - %s",
            recipient_id,
            NotificationPriority(priority).value,
            title,
            message,
        )


class InAppNotifier(Notifier):
    """
    Notifier that stores in-app notification rows from a worker pool.

    Each delivery opens its own store connection, so a slow or failing write
    never holds up the transition that queued it.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        max_workers: int = 2,
        busy_timeout: Optional[float] = None,
    ):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="intakeflow-notifier"
        )
        self._pending = set()
        self._lock = threading.Lock()

    def notify(self, recipient_id, title, message, priority=NotificationPriority.MEDIUM):
        future = self._executor.submit(
            self._deliver, recipient_id, title, message, NotificationPriority(priority).value
        )
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _deliver(self, recipient_id: int, title: str, message: str, priority: str) -> None:
        with RecordStore(self.db_path, busy_timeout=self.busy_timeout) as store:
            with store.transaction():
                store.create(
                    "notification",
                    {
                        "recipient_id": recipient_id,
                        "title": title,
                        "message": message,
                        "priority": priority,
                        "is_read": 0,
                        "created_at": get_current_utc_timestamp(),
                    },
                )

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.warning("In-app notification delivery failed: %s", error)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued deliveries to finish."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception:
                # Already logged by _on_done
                continue

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class NotificationOutcome:
    """Counts of queued and failed notifications for one operation."""

    def __init__(self):
        self.queued = 0
        self.failed = 0

    def to_dict(self) -> Dict[str, int]:
        return {"queued": self.queued, "failed": self.failed}


def dispatch(
    notifier: Notifier,
    outcome: NotificationOutcome,
    recipient_ids: Iterable[Optional[int]],
    title: str,
    message: str,
    priority: str = NotificationPriority.MEDIUM,
) -> None:
    """
    Fan a notification out to recipients without ever raising.

    None recipients and duplicates are skipped.
    """
    seen = set()
    for recipient_id in recipient_ids:
        if recipient_id is None or recipient_id in seen:
            continue
        seen.add(recipient_id)
        try:
            notifier.notify(recipient_id, title, message, priority)
            outcome.queued += 1
        except Exception as e:
            outcome.failed += 1
            logger.warning("Failed to queue notification '%s' for user %s: %s", title, recipient_id, e)
