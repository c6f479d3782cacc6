from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Organization(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str


class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    role: str = Field(default="student", description="admin, organization or student")
    hashed_password: str
    organization_id: Optional[str] = Field(default=None, foreign_key="organization.id")


class Exam(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    short_name: str = Field(index=True, unique=True)


class Subject(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(index=True)
    organization_id: Optional[str] = Field(default=None, foreign_key="organization.id")


class SourceMapping(SQLModel, table=True):
    """Slug an external question source uses for one of our exams or subjects."""

    __table_args__ = (UniqueConstraint("source", "kind", "entity_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    source: str = Field(index=True)
    kind: str = Field(description="exam or subject")
    entity_id: str = Field(index=True)
    slug: str


class Section(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    instruction: str = Field(index=True, unique=True)
    passage: Optional[str] = Field(default=None, sa_column=Column(Text))


class Question(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    text: str = Field(sa_column=Column(Text, nullable=False))
    type: str = Field(default="OBJECTIVE")
    explanation: Optional[str] = Field(default=None, sa_column=Column(Text))
    marking_guide: Optional[str] = Field(default=None, sa_column=Column(Text))
    year: Optional[int] = Field(default=None, index=True)
    exam_id: str = Field(foreign_key="exam.id", index=True)
    subject_id: Optional[str] = Field(default=None, foreign_key="subject.id", index=True)
    section_id: Optional[str] = Field(default=None, foreign_key="section.id")
    organization_id: Optional[str] = Field(default=None, foreign_key="organization.id", index=True)
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class QuestionOption(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    question_id: str = Field(foreign_key="question.id", index=True)
    text: str
    is_correct: bool = False
    position: int = 0


class QuestionTag(SQLModel, table=True):
    question_id: str = Field(foreign_key="question.id", primary_key=True)
    name: str = Field(primary_key=True, index=True)


class QuizAttempt(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    exam_id: str = Field(foreign_key="exam.id")
    subject_id: Optional[str] = Field(default=None, foreign_key="subject.id")
    year: Optional[int] = None
    score: int = 0
    correct: int = 0
    total: int = 0
    time_taken: int = 0
    status: str = Field(default="COMPLETED", description="COMPLETED or IN_PROGRESS")
    assignment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class UserAnswer(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    attempt_id: str = Field(foreign_key="quizattempt.id", index=True)
    question_id: str = Field(foreign_key="question.id", index=True)
    selected_option_id: Optional[str] = None
    text_answer: Optional[str] = Field(default=None, sa_column=Column(Text))
    is_correct: Optional[bool] = None
    score: Optional[int] = None
