"""
Local store for downloaded exam bundles and queued offline attempts.

Two key/value tables hold JSON documents: ``exams`` keyed by bundle id and
``pending_attempts`` keyed by a generated id. An attempt may point at an exam
key that has since been deleted; readers treat that as "no details".
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError

from prepadi.schemas import OfflineExamBundle, PendingAttempt

logger = structlog.get_logger()

DB_NAME = "prepadi-offline-db"
DB_VERSION = 1

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS exams (id TEXT PRIMARY KEY, saved_at TEXT NOT NULL, doc TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS pending_attempts (id TEXT PRIMARY KEY, created_at TEXT NOT NULL, doc TEXT NOT NULL)",
)


class OfflineStorageError(Exception):
    pass


class OfflineStore:
    def __init__(self, path: str = f"{DB_NAME}.sqlite3"):
        self.path = path
        try:
            self._conn = sqlite3.connect(path)
            self._migrate()
        except sqlite3.Error as e:
            logger.error("offline_store_open_failed", path=path, error=str(e))
            raise OfflineStorageError(f"Could not open offline store: {e}") from e

    def _migrate(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version < DB_VERSION:
            with self._conn:
                for stmt in SCHEMA:
                    self._conn.execute(stmt)
                self._conn.execute(f"PRAGMA user_version = {DB_VERSION}")

    def _run(self, action: str, sql: str, params: tuple = ()) -> List[tuple]:
        try:
            with self._conn:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("offline_store_failed", action=action, error=str(e))
            raise OfflineStorageError(f"Offline storage {action} failed: {e}") from e

    def _decode(self, model, action: str, doc: str):
        try:
            return model.model_validate_json(doc)
        except ValidationError as e:
            logger.error("offline_store_corrupt", action=action, error=str(e))
            raise OfflineStorageError(f"Offline storage {action} found a corrupt record") from e

    def close(self) -> None:
        self._conn.close()

    # ----------------- Exams -----------------

    def save_exam_for_offline(self, bundle: OfflineExamBundle) -> OfflineExamBundle:
        stored = bundle.model_copy(update={"saved_at": datetime.now(timezone.utc)})
        self._run(
            "save_exam",
            "INSERT OR REPLACE INTO exams (id, saved_at, doc) VALUES (?, ?, ?)",
            (stored.id, stored.saved_at.isoformat(), stored.model_dump_json()),
        )
        logger.info("offline_exam_saved", exam_key=stored.id, questions=len(stored.questions))
        return stored

    def get_offline_exam(self, exam_id: str) -> Optional[OfflineExamBundle]:
        rows = self._run("get_exam", "SELECT doc FROM exams WHERE id = ?", (exam_id,))
        return self._decode(OfflineExamBundle, "get_exam", rows[0][0]) if rows else None

    def get_all_offline_exams(self) -> List[OfflineExamBundle]:
        rows = self._run("list_exams", "SELECT doc FROM exams ORDER BY saved_at DESC")
        return [self._decode(OfflineExamBundle, "list_exams", doc) for (doc,) in rows]

    def delete_exam(self, exam_id: str) -> None:
        self._run("delete_exam", "DELETE FROM exams WHERE id = ?", (exam_id,))

    # ----------------- Pending attempts -----------------

    def save_offline_attempt(self, attempt: PendingAttempt) -> PendingAttempt:
        stored = attempt.model_copy(update={"id": uuid4().hex, "timestamp": datetime.now(timezone.utc)})
        self._run(
            "save_attempt",
            "INSERT INTO pending_attempts (id, created_at, doc) VALUES (?, ?, ?)",
            (stored.id, stored.timestamp.isoformat(), stored.model_dump_json()),
        )
        logger.info("offline_attempt_queued", attempt_id=stored.id, exam_key=stored.exam_key, score=stored.score)
        return stored

    def get_pending_attempts(self) -> List[PendingAttempt]:
        rows = self._run("list_attempts", "SELECT doc FROM pending_attempts ORDER BY created_at, rowid")
        return [self._decode(PendingAttempt, "list_attempts", doc) for (doc,) in rows]

    def remove_pending_attempt(self, attempt_id: str) -> None:
        self._run("remove_attempt", "DELETE FROM pending_attempts WHERE id = ?", (attempt_id,))
