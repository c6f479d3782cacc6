import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from prepadi.auth import create_access_token, get_password_hash
from prepadi.db import get_session
from prepadi.main import app
from prepadi.middleware.rate_limit import limiter
from prepadi.models import Exam, Subject, User
from prepadi.schemas import OptionRecord, QuestionRecord, QuestionType
from prepadi.services import question_service


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(autouse=True)
def no_external_sources():
    """Keep tests off the network unless a test passes its own sources."""
    with patch.object(question_service, "get_sources", return_value=[]):
        yield


@pytest.fixture(name="client")
def client_fixture(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    def _make(role="student", email=None, organization_id=None):
        user = User(
            email=email or f"{role}-{os.urandom(4).hex()}@example.com",
            full_name=f"Test {role.title()}",
            role=role,
            hashed_password=get_password_hash("secret123"),
            organization_id=organization_id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def admin_headers(make_user):
    return auth_headers(make_user("admin"))


@pytest.fixture
def student_headers(make_user):
    return auth_headers(make_user("student"))


@pytest.fixture
def exam(session):
    exam = Exam(name="Unified Tertiary Matriculation Examination", short_name="UTME")
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


@pytest.fixture
def subject(session):
    subject = Subject(name="Physics")
    session.add(subject)
    session.commit()
    session.refresh(subject)
    return subject


@pytest.fixture
def objective():
    def _build(text, correct=0, choices=("A1", "B1", "C1", "D1"), **kwargs):
        return QuestionRecord(
            text=text,
            type=QuestionType.OBJECTIVE,
            options=[OptionRecord(text=c, is_correct=i == correct) for i, c in enumerate(choices)],
            **kwargs,
        )
    return _build


@pytest.fixture
def seed_questions(session, exam, subject, objective):
    def _seed(count, year=2010, **kwargs):
        records = [objective(f"Question {year}-{i}", **kwargs) for i in range(count)]
        return question_service.save_questions(session, records, exam_id=exam.id, subject_id=subject.id, year=year)
    return _seed
