"""
Question, bundle and attempt shapes shared by the API, the adapters and the offline client
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class QuestionType(str, Enum):
    OBJECTIVE = "OBJECTIVE"
    THEORY = "THEORY"


class OptionRecord(BaseModel):
    id: Optional[str] = None
    text: str
    is_correct: bool = False


class QuestionRecord(BaseModel):
    id: Optional[str] = None
    text: str
    type: QuestionType = QuestionType.OBJECTIVE
    options: List[OptionRecord] = Field(default_factory=list)
    explanation: Optional[str] = None
    marking_guide: Optional[str] = None
    section: Optional[str] = None
    passage: Optional[str] = None
    year: Optional[int] = None
    subject_id: Optional[str] = None
    exam_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    warning: Optional[str] = None

    def is_persistable(self) -> bool:
        if not self.text.strip():
            return False
        if self.type == QuestionType.OBJECTIVE:
            return len(self.options) >= 2
        return not self.options


class SectionSnapshot(BaseModel):
    instruction: str
    passage: Optional[str] = None


class OfflineQuestion(BaseModel):
    id: str
    text: str
    type: QuestionType
    options: List[OptionRecord] = Field(default_factory=list)
    section: Optional[SectionSnapshot] = None
    image_url: Optional[str] = None


class OfflineExamBundle(BaseModel):
    id: str
    title: str
    exam_name: Optional[str] = None
    subject_name: Optional[str] = None
    year: Optional[int] = None
    duration: int = 60
    questions: List[OfflineQuestion] = Field(default_factory=list)
    saved_at: Optional[datetime] = None


class PendingAttempt(BaseModel):
    id: Optional[str] = None
    exam_key: str
    answers: List[Tuple[str, str]] = Field(default_factory=list)
    question_ids: List[str] = Field(default_factory=list)
    time_taken: int = 0
    score: int = 0
    user_id: str
    assignment_id: Optional[str] = None
    timestamp: Optional[datetime] = None


class SubmitQuizBody(BaseModel):
    """Body of POST /api/quiz/submit, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    answers: List[Tuple[str, str]] = Field(default_factory=list)
    question_ids: List[str] = Field(default_factory=list, alias="questionIds")
    time_taken: int = Field(default=0, alias="timeTaken")
    assignment_id: Optional[str] = Field(default=None, alias="assignmentId")


class QuestionQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exam_id: str = Field(alias="examId")
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    year: Optional[int] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, gt=0)


class BundleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exam_id: str = Field(alias="examId")
    subject_id: str = Field(alias="subjectId")
    year: int
