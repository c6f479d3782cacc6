"""
Qboard (questions.aloc.com.ng) past-question source
"""
from __future__ import annotations

import os
from typing import Dict, List, Optional, Union

import requests
import structlog
from pydantic import BaseModel, Field, ValidationError

from prepadi.models import Exam, Subject
from prepadi.schemas import OptionRecord, QuestionRecord, QuestionType
from prepadi.services.monitoring import EXTERNAL_SOURCE_REQUESTS
from prepadi.services.sources.base import QuestionSource

logger = structlog.get_logger()

QBOARD_BASE_URL = os.getenv("QBOARD_BASE_URL", "https://questions.aloc.com.ng/api/v2")
QBOARD_ACCESS_TOKEN = os.getenv("QBOARD_ACCESS_TOKEN", "")

OPTION_LETTERS = ("a", "b", "c", "d", "e")

# Years the upstream bank publishes per subject slug.
QBOARD_AVAILABILITY: Dict[str, List[int]] = {
    "english": [2003, 2004, 2005, 2006, 2007, 2008, 2009, 2010],
    "mathematics": [2006, 2007, 2008, 2009, 2013],
    "commerce": [2000, 2001, 2002, 2003, 2004, 2005, 2006, 2007, 2008, 2009, 2010, 2011, 2012, 2013, 2016],
    "accounting": [1997, 2004, 2006, 2007, 2009, 2010, 2011, 2012, 2013, 2014, 2015, 2016],
    "biology": [2003, 2004, 2005, 2006, 2008, 2009, 2010, 2011, 2012],
    "physics": [2006, 2007, 2009, 2010, 2011, 2012],
    "chemistry": [2001, 2002, 2003, 2004, 2005, 2006, 2010],
    "englishlit": [2006, 2007, 2008, 2009, 2010, 2012, 2013, 2015],
    "government": [1999, 2000, 2006, 2007, 2008, 2009, 2010, 2011, 2012, 2013, 2016],
    "crk": [2005, 2006, 2007, 2008, 2009, 2010, 2011, 2012, 2013, 2015],
    "geography": [2006, 2007, 2008, 2009, 2010, 2011, 2012, 2013, 2014],
    "economics": [2001, 2003, 2004, 2005, 2006, 2007, 2008, 2009, 2010, 2011, 2012, 2013],
    "civiledu": [2011, 2012, 2013, 2014, 2015, 2016],
}

EXAM_TYPES = {
    "UTME": "utme",
    "JAMB": "utme",
    "WAEC": "wassce",
    "WASSCE": "wassce",
    "POST-UTME": "post-utme",
}

SUBJECT_SLUGS = {
    "english language": "english",
    "literature in english": "englishlit",
    "civic education": "civiledu",
    "christian religious knowledge": "crk",
}


class QboardOptions(BaseModel):
    a: Optional[str] = None
    b: Optional[str] = None
    c: Optional[str] = None
    d: Optional[str] = None
    e: Optional[str] = None


class QboardQuestion(BaseModel):
    id: Optional[Union[int, str]] = None
    question: str
    option: QboardOptions
    answer: Optional[str] = None
    solution: Optional[str] = None
    section: Optional[str] = None
    image: Optional[str] = None


class QboardResponse(BaseModel):
    status: Optional[int] = None
    data: List[QboardQuestion] = Field(default_factory=list)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class QboardSource(QuestionSource):
    name = "qboard"

    def __init__(
        self,
        base_url: str = QBOARD_BASE_URL,
        access_token: str = QBOARD_ACCESS_TOKEN,
        batch_size: int = 50,
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._batch_size = batch_size
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def get_available_years(self, subject_slug: str) -> List[int]:
        return sorted(QBOARD_AVAILABILITY.get(subject_slug, []), reverse=True)

    def default_exam_slug(self, exam: Exam) -> Optional[str]:
        return EXAM_TYPES.get((exam.short_name or "").upper())

    def default_subject_slug(self, subject: Subject) -> Optional[str]:
        name = (subject.name or "").strip().lower()
        if name in SUBJECT_SLUGS:
            return SUBJECT_SLUGS[name]
        if " " in name:
            return None
        return name or None

    def fetch_questions(
        self,
        exam_slug: str,
        subject_slug: str,
        year: int,
        exam_id: str,
        subject_id: str,
    ) -> List[QuestionRecord]:
        url = f"{self._base_url}/m/{self._batch_size}"
        params = {"subject": subject_slug, "year": year, "type": exam_slug}
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "AccessToken": self._access_token,
        }

        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            logger.error("external_source_failed", source=self.name, error=str(e), **params)
            EXTERNAL_SOURCE_REQUESTS.labels(source=self.name, status="error").inc()
            return []

        if not resp.ok:
            logger.error(
                "external_source_failed",
                source=self.name,
                status_code=resp.status_code,
                body=resp.text[:500],
                **params,
            )
            EXTERNAL_SOURCE_REQUESTS.labels(source=self.name, status="http_error").inc()
            return []

        try:
            payload = QboardResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error("external_source_malformed", source=self.name, error=str(e), **params)
            EXTERNAL_SOURCE_REQUESTS.labels(source=self.name, status="malformed").inc()
            return []

        records = [self._to_record(q, year, exam_id, subject_id) for q in payload.data]
        EXTERNAL_SOURCE_REQUESTS.labels(source=self.name, status="success").inc()
        logger.info("external_source_fetched", source=self.name, questions=len(records), **params)
        return records

    def _to_record(self, q: QboardQuestion, year: int, exam_id: str, subject_id: str) -> QuestionRecord:
        answer = (q.answer or "").strip().lower()
        options = []
        for letter in OPTION_LETTERS:
            text = _blank_to_none(getattr(q.option, letter))
            if text is None:
                continue
            options.append(OptionRecord(text=text, is_correct=letter == answer))

        return QuestionRecord(
            text=q.question.strip(),
            type=QuestionType.OBJECTIVE,
            options=options,
            explanation=_blank_to_none(q.solution),
            section=_blank_to_none(q.section),
            image_url=_blank_to_none(q.image),
            year=year,
            exam_id=exam_id,
            subject_id=subject_id,
        )
