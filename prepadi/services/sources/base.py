from __future__ import annotations

from typing import List, Optional

from prepadi.models import Exam, Subject
from prepadi.schemas import QuestionRecord


class QuestionSource:
    """A third-party question bank that can back-fill the local store.

    Implementations never raise for upstream trouble: they log and return an
    empty list so callers keep working with whatever is stored locally.
    """

    name: str = ""

    def fetch_questions(
        self,
        exam_slug: str,
        subject_slug: str,
        year: int,
        exam_id: str,
        subject_id: str,
    ) -> List[QuestionRecord]:
        raise NotImplementedError

    def get_available_years(self, subject_slug: str) -> List[int]:
        return []

    # Used when no SourceMapping row exists for the entity.
    def default_exam_slug(self, exam: Exam) -> Optional[str]:
        return None

    def default_subject_slug(self, subject: Subject) -> Optional[str]:
        return None
