from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from prepadi.offline.client import QuizAPIClient, SubmissionError
from prepadi.offline.connectivity import ConnectivityMonitor
from prepadi.offline.quiz import pending_attempt_payload
from prepadi.offline.storage import OfflineStorageError, OfflineStore

logger = structlog.get_logger()

Notifier = Callable[[str, str], None]


def _log_notify(level: str, message: str) -> None:
    getattr(logger, level, logger.info)("sync_notice", message=message)


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0


class SyncManager:
    """Replays queued offline attempts against the quiz API."""

    def __init__(self, store: OfflineStore, client: QuizAPIClient, notify: Optional[Notifier] = None):
        self.store = store
        self.client = client
        self.notify = notify or _log_notify

    def attach(self, monitor: ConnectivityMonitor) -> None:
        monitor.on_online(self.sync)

    def sync(self) -> SyncResult:
        result = SyncResult()
        try:
            pending = self.store.get_pending_attempts()
        except OfflineStorageError as e:
            logger.error("offline_queue_unreadable", error=str(e))
            self.notify("error", "Offline attempts could not be read from local storage")
            return result
        if not pending:
            return result

        self.notify("info", f"Syncing {len(pending)} offline attempt(s)...")
        for attempt in pending:
            try:
                response = self.client.submit(pending_attempt_payload(attempt))
            except SubmissionError as e:
                result.failed += 1
                logger.warning("offline_attempt_sync_failed", attempt_id=attempt.id, error=str(e))
                continue
            try:
                self.store.remove_pending_attempt(attempt.id)
            except OfflineStorageError as e:
                # accepted upstream but still queued locally
                result.failed += 1
                logger.error("offline_attempt_not_dequeued", attempt_id=attempt.id, error=str(e))
                continue
            result.synced += 1
            logger.info("offline_attempt_synced", attempt_id=attempt.id, server_attempt_id=response.get("attemptId"))

        if result.synced:
            self.notify("info", f"Synced {result.synced} offline attempt(s)")
        if result.failed:
            self.notify("error", f"{result.failed} offline attempt(s) could not be synced and will be retried")
        return result
