from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
import structlog

from prepadi.auth import get_current_user
from prepadi.db import get_session
from prepadi.models import Exam, Question, QuestionOption, QuizAttempt, Subject, User, UserAnswer
from prepadi.schemas import (
    BundleRequest,
    OfflineExamBundle,
    OfflineQuestion,
    QuestionQuery,
    QuestionRecord,
    QuestionType,
    SectionSnapshot,
    SubmitQuizBody,
)
from prepadi.services import question_service
from prepadi.services.monitoring import QUIZ_SUBMISSIONS


router = APIRouter(prefix="/api", tags=["quiz"])
logger = structlog.get_logger()

PRACTICE_LIMIT = 20
OBJECTIVE_POINTS = 100


def _sanitize(record: QuestionRecord) -> dict:
    """Question as shown during a live attempt, without the answer key."""
    return {
        "id": record.id,
        "text": record.text,
        "type": record.type,
        "year": record.year,
        "image_url": record.image_url,
        "section": {"instruction": record.section, "passage": record.passage} if record.section else None,
        "options": [{"id": o.id, "text": o.text} for o in record.options],
    }


@router.post("/quiz/start")
def start_quiz(query: QuestionQuery, session: Session = Depends(get_session), user: User = Depends(get_current_user)):
    records = question_service.get_questions(
        session,
        exam_id=query.exam_id,
        subject_id=query.subject_id,
        year=query.year,
        tags=query.tags,
        limit=query.limit or PRACTICE_LIMIT,
    )
    if not records:
        raise HTTPException(status_code=404, detail="No questions found matching criteria")
    return {"questions": [_sanitize(r) for r in records]}


@router.post("/quiz/download", response_model=OfflineExamBundle)
def download_bundle(body: BundleRequest, session: Session = Depends(get_session), user: User = Depends(get_current_user)):
    records = question_service.get_questions(
        session,
        exam_id=body.exam_id,
        subject_id=body.subject_id,
        year=body.year,
        limit=question_service.DEFAULT_CAP,
    )

    # the same text may exist under several papers
    unique: List[QuestionRecord] = []
    seen = set()
    for r in records:
        key = (r.text, r.type)
        if key in seen:
            continue
        seen.add(key)
        unique.append(r)

    if not unique:
        raise HTTPException(status_code=404, detail="No questions found for this exam")

    exam = session.get(Exam, body.exam_id)
    subject = session.get(Subject, body.subject_id) if body.subject_id != question_service.ALL_SUBJECTS else None
    subject_name = subject.name if subject else "General"

    return OfflineExamBundle(
        id=f"{body.exam_id}-{body.subject_id}-{body.year}",
        title=f"{exam.name if exam else 'Exam'} {subject_name} {body.year}",
        exam_name=exam.name if exam else None,
        subject_name=subject_name,
        year=body.year,
        duration=60,
        questions=[
            OfflineQuestion(
                id=r.id,
                text=r.text,
                type=r.type,
                options=r.options,
                section=SectionSnapshot(instruction=r.section, passage=r.passage) if r.section else None,
                image_url=r.image_url,
            )
            for r in unique
        ],
    )


@router.post("/quiz/submit")
def submit_quiz(body: SubmitQuizBody, session: Session = Depends(get_session), user: User = Depends(get_current_user)):
    answers = dict(body.answers)
    question_ids = body.question_ids or list(answers.keys())
    questions = session.exec(select(Question).where(Question.id.in_(question_ids))).all() if question_ids else []
    if not questions:
        QUIZ_SUBMISSIONS.labels(status="rejected").inc()
        raise HTTPException(status_code=400, detail="Invalid questions")

    correct_options = {
        opt.question_id: opt.id
        for opt in session.exec(
            select(QuestionOption).where(
                QuestionOption.question_id.in_([q.id for q in questions]),
                QuestionOption.is_correct == True,  # noqa: E712
            )
        ).all()
    }

    correct_count = 0
    points = 0
    has_theory = False
    rows: List[UserAnswer] = []
    for question in questions:
        value: Optional[str] = answers.get(question.id)
        if question.type == QuestionType.THEORY.value:
            has_theory = True
            # graded later against the marking guide
            rows.append(UserAnswer(question_id=question.id, text_answer=value or "", is_correct=None, score=None))
            continue
        is_correct = bool(value) and correct_options.get(question.id) == value
        if is_correct:
            correct_count += 1
            points += OBJECTIVE_POINTS
        rows.append(
            UserAnswer(
                question_id=question.id,
                selected_option_id=value or None,
                is_correct=is_correct,
                score=OBJECTIVE_POINTS if is_correct else 0,
            )
        )

    first = questions[0]
    status = "IN_PROGRESS" if has_theory else "COMPLETED"
    attempt = QuizAttempt(
        user_id=user.id,
        exam_id=first.exam_id,
        subject_id=first.subject_id,
        year=first.year,
        score=int(points / len(questions) + 0.5),
        correct=correct_count,
        total=len(questions),
        time_taken=body.time_taken,
        status=status,
        assignment_id=body.assignment_id,
    )
    session.add(attempt)
    session.flush()
    for row in rows:
        row.attempt_id = attempt.id
        session.add(row)
    session.commit()

    QUIZ_SUBMISSIONS.labels(status=status.lower()).inc()
    logger.info(
        "quiz_submitted",
        attempt_id=attempt.id,
        user_id=user.id,
        score=attempt.score,
        correct=correct_count,
        total=len(questions),
        status=status,
    )
    return {"attemptId": attempt.id, "status": status}


@router.get("/years")
def available_years(examId: str, subjectId: str, session: Session = Depends(get_session), user: User = Depends(get_current_user)):
    return question_service.get_available_years(session, examId, subjectId)


@router.get("/tags")
def available_tags(
    examId: Optional[str] = None,
    subjectId: Optional[str] = None,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return question_service.get_tags(session, examId, subjectId)
