"""
HTTP client for the quiz API, used by the offline capture flow.
"""
from __future__ import annotations

import os
from typing import Any, Dict, Optional

import requests
import structlog

from prepadi.schemas import OfflineExamBundle

logger = structlog.get_logger()

PREPADI_API_URL = os.getenv("PREPADI_API_URL", "http://localhost:8000")


class SubmissionError(Exception):
    pass


class QuizAPIClient:
    def __init__(
        self,
        base_url: str = PREPADI_API_URL,
        token: Optional[str] = None,
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            logger.warning("quiz_api_unreachable", path=path, error=str(e))
            raise SubmissionError(f"Could not reach {url}: {e}") from e

        if not resp.ok:
            logger.warning("quiz_api_rejected", path=path, status_code=resp.status_code)
            raise SubmissionError(f"{path} failed with status {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise SubmissionError(f"{path} returned invalid JSON") from e

    def download_bundle(self, exam_id: str, subject_id: str, year: int) -> OfflineExamBundle:
        data = self._post("/api/quiz/download", {"examId": exam_id, "subjectId": subject_id, "year": year})
        return OfflineExamBundle.model_validate(data)

    def submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("/api/quiz/submit", payload)

    def close(self) -> None:
        self.session.close()
