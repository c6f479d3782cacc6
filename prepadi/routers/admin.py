from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlmodel import Session, select
import structlog

from prepadi.auth import require_role
from prepadi.db import get_session
from prepadi.middleware.rate_limit import ai_extraction_limit, upload_parse_limit
from prepadi.models import Exam, Question, SourceMapping, Subject, User
from prepadi.schemas import QuestionRecord
from prepadi.services import question_service
from prepadi.services.cache import cache
from prepadi.services.documents import UnsupportedDocumentError, extract_document_text
from prepadi.services.llm import extract_from_image, extract_from_text
from prepadi.services.parser import segment


router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger()

admin_only = require_role("admin")
content_authors = require_role("admin", "organization")

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class ExamIn(BaseModel):
    name: str
    short_name: str


class SubjectIn(BaseModel):
    name: str


class SourceMappingIn(BaseModel):
    source: str
    kind: str = Field(pattern="^(exam|subject)$")
    entity_id: str
    slug: str


class BulkQuestionsIn(BaseModel):
    questions: List[QuestionRecord]


class ParseTextIn(BaseModel):
    text: str


def _parse_response(records: List[QuestionRecord]) -> dict:
    return {"questions": records, "count": len(records), "warnings": sum(1 for r in records if r.warning)}


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large")
    return content


# ----------------- Exams & subjects -----------------

@router.post("/exams")
def create_exam(body: ExamIn, session: Session = Depends(get_session), user: User = Depends(admin_only)):
    short_name = body.short_name.strip().upper()
    existing = session.exec(select(Exam).where(Exam.short_name == short_name)).first()
    if existing:
        return existing
    exam = Exam(name=body.name.strip(), short_name=short_name)
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


@router.get("/exams")
def list_exams(session: Session = Depends(get_session), user: User = Depends(content_authors)):
    return session.exec(select(Exam).order_by(Exam.name)).all()


@router.delete("/exams/{exam_id}")
def delete_exam(exam_id: str, session: Session = Depends(get_session), user: User = Depends(admin_only)):
    exam = session.get(Exam, exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    in_use = session.exec(select(func.count()).select_from(Question).where(Question.exam_id == exam_id)).one()
    if in_use:
        raise HTTPException(status_code=409, detail="Exam still has questions")
    session.delete(exam)
    session.commit()
    return {"deleted": exam_id}


@router.post("/subjects")
def create_subject(body: SubjectIn, session: Session = Depends(get_session), user: User = Depends(content_authors)):
    organization_id = user.organization_id if user.role == "organization" else None
    name = body.name.strip()
    existing = session.exec(
        select(Subject).where(func.lower(Subject.name) == name.lower(), Subject.organization_id == organization_id)
    ).first()
    if existing:
        return existing
    subject = Subject(name=name, organization_id=organization_id)
    session.add(subject)
    session.commit()
    session.refresh(subject)
    return subject


@router.get("/subjects")
def list_subjects(session: Session = Depends(get_session), user: User = Depends(content_authors)):
    stmt = select(Subject).order_by(Subject.name)
    if user.role == "organization":
        stmt = stmt.where((Subject.organization_id == None) | (Subject.organization_id == user.organization_id))  # noqa: E711
    return session.exec(stmt).all()


# ----------------- Source mappings -----------------

@router.post("/source-mappings")
def upsert_source_mapping(body: SourceMappingIn, session: Session = Depends(get_session), user: User = Depends(admin_only)):
    entity = session.get(Exam if body.kind == "exam" else Subject, body.entity_id)
    if not entity:
        raise HTTPException(status_code=404, detail=f"{body.kind.capitalize()} not found")

    mapping = session.exec(
        select(SourceMapping).where(
            SourceMapping.source == body.source,
            SourceMapping.kind == body.kind,
            SourceMapping.entity_id == body.entity_id,
        )
    ).first()
    if mapping:
        mapping.slug = body.slug
    else:
        mapping = SourceMapping(source=body.source, kind=body.kind, entity_id=body.entity_id, slug=body.slug)
    session.add(mapping)
    session.commit()
    session.refresh(mapping)

    cache.clear_pattern(f"source_years:{body.source}:*")
    logger.info("source_mapping_saved", source=body.source, kind=body.kind, entity_id=body.entity_id, slug=body.slug)
    return mapping


@router.get("/source-mappings")
def list_source_mappings(source: Optional[str] = None, session: Session = Depends(get_session), user: User = Depends(admin_only)):
    stmt = select(SourceMapping)
    if source:
        stmt = stmt.where(SourceMapping.source == source)
    return session.exec(stmt).all()


# ----------------- Questions -----------------

@router.post("/questions")
def create_question(record: QuestionRecord, session: Session = Depends(get_session), user: User = Depends(content_authors)):
    if not record.exam_id or not session.get(Exam, record.exam_id):
        raise HTTPException(status_code=400, detail="A valid exam_id is required")
    if not record.is_persistable():
        raise HTTPException(status_code=400, detail="Objective questions need at least two options; theory questions none")
    organization_id = user.organization_id if user.role == "organization" else None
    if question_service.find_duplicate(
        session, record.text.strip(), record.subject_id, record.exam_id, record.year, organization_id
    ):
        raise HTTPException(status_code=409, detail="Question already exists")

    created = question_service.save_questions(session, [record], organization_id=organization_id)
    return question_service.to_record(session, created[0])


@router.get("/questions")
def list_questions(
    exam_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    year: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
    session: Session = Depends(get_session),
    user: User = Depends(content_authors),
):
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)

    stmt = select(Question)
    if user.role == "organization":
        stmt = stmt.where(Question.organization_id == user.organization_id)
    if exam_id:
        stmt = stmt.where(Question.exam_id == exam_id)
    if subject_id:
        stmt = stmt.where(Question.subject_id == subject_id)
    if year is not None:
        stmt = stmt.where(Question.year == year)

    total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
    rows = session.exec(
        stmt.order_by(Question.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    ).all()
    return {
        "items": question_service.to_records(session, rows),
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def _get_owned_question(session: Session, question_id: str, user: User) -> Question:
    question = session.get(Question, question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    if user.role == "organization" and question.organization_id != user.organization_id:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


@router.get("/questions/{question_id}")
def get_question(question_id: str, session: Session = Depends(get_session), user: User = Depends(content_authors)):
    return question_service.to_record(session, _get_owned_question(session, question_id, user))


@router.put("/questions/{question_id}")
def update_question(
    question_id: str,
    record: QuestionRecord,
    session: Session = Depends(get_session),
    user: User = Depends(content_authors),
):
    question = _get_owned_question(session, question_id, user)
    if not record.is_persistable():
        raise HTTPException(status_code=400, detail="Objective questions need at least two options; theory questions none")
    question = question_service.update_question(session, question, record)
    return question_service.to_record(session, question)


@router.delete("/questions/{question_id}")
def delete_question(question_id: str, session: Session = Depends(get_session), user: User = Depends(content_authors)):
    _get_owned_question(session, question_id, user)
    question_service.delete_question(session, question_id)
    return {"deleted": question_id}


@router.post("/questions/bulk")
def bulk_create_questions(body: BulkQuestionsIn, session: Session = Depends(get_session), user: User = Depends(content_authors)):
    if not body.questions:
        raise HTTPException(status_code=400, detail="No questions provided")
    organization_id = user.organization_id if user.role == "organization" else None
    created = question_service.bulk_create(session, body.questions, organization_id=organization_id)
    return {"count": len(created), "skipped": len(body.questions) - len(created)}


# ----------------- Parsing -----------------

@router.post("/questions/parse-text")
@upload_parse_limit()
def parse_text(request: Request, body: ParseTextIn, user: User = Depends(content_authors)):
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="No text provided")
    return _parse_response(segment(body.text))


@router.post("/questions/parse-file")
@upload_parse_limit()
async def parse_file(request: Request, file: UploadFile = File(...), user: User = Depends(content_authors)):
    content = await _read_upload(file)
    try:
        text = await run_in_threadpool(extract_document_text, file.filename, content)
    except UnsupportedDocumentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.warning("document_parse_failed", filename=file.filename, error=str(e))
        raise HTTPException(status_code=400, detail=f"Could not read document: {e}")
    return _parse_response(segment(text))


@router.post("/questions/parse-text-ai")
@ai_extraction_limit()
def parse_text_ai(request: Request, body: ParseTextIn, user: User = Depends(content_authors)):
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="No text provided")
    return _parse_response(extract_from_text(body.text))


@router.post("/questions/parse-image")
@ai_extraction_limit()
async def parse_image(request: Request, file: UploadFile = File(...), user: User = Depends(content_authors)):
    content = await _read_upload(file)
    mime_type = file.content_type or "image/png"
    if not mime_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")
    return _parse_response(await run_in_threadpool(extract_from_image, content, mime_type))
