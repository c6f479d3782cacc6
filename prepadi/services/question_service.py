"""
Question bank access: local store first, external sources as a fallback.

The relational store acts as a growing cache in front of the slower,
rate-limited external sources. Once an exam/subject/year combination has been
fetched upstream, later requests for it are served locally.
"""
from __future__ import annotations

import random
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import delete
from sqlmodel import Session, select

from prepadi.models import (
    Exam,
    Question,
    QuestionOption,
    QuestionTag,
    Section,
    SourceMapping,
    Subject,
    UserAnswer,
)
from prepadi.schemas import OptionRecord, QuestionRecord, QuestionType
from prepadi.services.cache import cache
from prepadi.services.logging import log_performance
from prepadi.services.monitoring import QUESTIONS_IMPORTED
from prepadi.services.parser import clean
from prepadi.services.sources.base import QuestionSource
from prepadi.services.sources.qboard import QboardSource

logger = structlog.get_logger()

ALL_SUBJECTS = "all"
DEFAULT_FETCH = 50
DEFAULT_CAP = 100
MIN_RESULTS = 5
YEARS_CACHE_SECONDS = 3600


@lru_cache(maxsize=1)
def get_sources() -> List[QuestionSource]:
    """External sources, tried in order until one yields questions."""
    return [QboardSource()]


# ----------------- Reads -----------------

def to_records(session: Session, questions: Sequence[Question]) -> List[QuestionRecord]:
    if not questions:
        return []
    ids = [q.id for q in questions]

    options: Dict[str, List[QuestionOption]] = {}
    for opt in session.exec(
        select(QuestionOption)
        .where(QuestionOption.question_id.in_(ids))
        .order_by(QuestionOption.position)
    ).all():
        options.setdefault(opt.question_id, []).append(opt)

    tags: Dict[str, List[str]] = {}
    for tag in session.exec(select(QuestionTag).where(QuestionTag.question_id.in_(ids))).all():
        tags.setdefault(tag.question_id, []).append(tag.name)

    section_ids = {q.section_id for q in questions if q.section_id}
    sections: Dict[str, Section] = {}
    if section_ids:
        sections = {s.id: s for s in session.exec(select(Section).where(Section.id.in_(section_ids))).all()}

    records = []
    for q in questions:
        section = sections.get(q.section_id) if q.section_id else None
        records.append(
            QuestionRecord(
                id=q.id,
                text=q.text,
                type=QuestionType(q.type),
                options=[OptionRecord(id=o.id, text=o.text, is_correct=o.is_correct) for o in options.get(q.id, [])],
                explanation=q.explanation,
                marking_guide=q.marking_guide,
                section=section.instruction if section else None,
                passage=section.passage if section else None,
                year=q.year,
                subject_id=q.subject_id,
                exam_id=q.exam_id,
                tags=sorted(tags.get(q.id, [])),
                image_url=q.image_url,
            )
        )
    return records


def to_record(session: Session, question: Question) -> QuestionRecord:
    return to_records(session, [question])[0]


@log_performance("get_questions")
def get_questions(
    session: Session,
    exam_id: str,
    subject_id: Optional[str] = None,
    year: Optional[int] = None,
    tags: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
    sources: Optional[Sequence[QuestionSource]] = None,
) -> List[QuestionRecord]:
    """Questions from the global bank, back-filled from external sources when short.

    Without a year the result is a random practice set; with a year the
    stored order is kept. An empty list means nothing is available.
    """
    has_subject = bool(subject_id) and subject_id != ALL_SUBJECTS
    tag_names = sorted({t.strip().lower() for t in (tags or []) if t and t.strip()})

    stmt = select(Question).where(
        Question.exam_id == exam_id,
        Question.organization_id == None,  # noqa: E711
    )
    if has_subject:
        stmt = stmt.where(Question.subject_id == subject_id)
    if year is not None:
        stmt = stmt.where(Question.year == year)
    if tag_names:
        stmt = stmt.where(
            Question.id.in_(select(QuestionTag.question_id).where(QuestionTag.name.in_(tag_names)))
        )
    stmt = stmt.order_by(Question.created_at, Question.id).limit(limit * 2 if limit else DEFAULT_FETCH)

    questions = list(session.exec(stmt).all())
    if year is None:
        random.shuffle(questions)
    if limit:
        questions = questions[:limit]

    if len(questions) < max(limit or 0, MIN_RESULTS) and has_subject and year is not None:
        fetched = fetch_from_sources(session, exam_id, subject_id, year, sources=sources)
        present = {q.id for q in questions}
        questions.extend(q for q in fetched if q.id not in present)
        questions = questions[: limit or DEFAULT_CAP]

    logger.info(
        "questions_served",
        exam_id=exam_id,
        subject_id=subject_id,
        year=year,
        tags=tag_names,
        count=len(questions),
    )
    return to_records(session, questions)


def get_available_years(
    session: Session,
    exam_id: str,
    subject_id: str,
    sources: Optional[Sequence[QuestionSource]] = None,
) -> List[int]:
    """Distinct years stored locally plus the years external sources publish, newest first."""
    local_years = session.exec(
        select(Question.year)
        .where(Question.exam_id == exam_id, Question.subject_id == subject_id, Question.year != None)  # noqa: E711
        .distinct()
    ).all()
    years = set(local_years)

    exam = session.get(Exam, exam_id)
    subject = session.get(Subject, subject_id)
    if exam and subject:
        for source in sources if sources is not None else get_sources():
            exam_slug = resolve_slug(session, source, "exam", exam)
            subject_slug = resolve_slug(session, source, "subject", subject)
            if not exam_slug or not subject_slug:
                continue
            key = f"source_years:{source.name}:{subject_slug}"
            try:
                upstream = cache.get_or_set(
                    key, lambda: source.get_available_years(subject_slug), expire=YEARS_CACHE_SECONDS
                )
            except Exception as e:
                logger.error("external_years_failed", source=source.name, error=str(e))
                continue
            years.update(upstream)

    return sorted(years, reverse=True)


def get_tags(session: Session, exam_id: Optional[str] = None, subject_id: Optional[str] = None) -> List[str]:
    """Distinct tag names on global questions, alphabetical."""
    stmt = (
        select(QuestionTag.name)
        .join(Question, Question.id == QuestionTag.question_id)
        .where(Question.organization_id == None)  # noqa: E711
    )
    if exam_id:
        stmt = stmt.where(Question.exam_id == exam_id)
    if subject_id and subject_id != ALL_SUBJECTS:
        stmt = stmt.where(Question.subject_id == subject_id)
    return list(session.exec(stmt.distinct().order_by(QuestionTag.name)).all())


# ----------------- External sources -----------------

def resolve_slug(session: Session, source: QuestionSource, kind: str, entity) -> Optional[str]:
    mapping = session.exec(
        select(SourceMapping).where(
            SourceMapping.source == source.name,
            SourceMapping.kind == kind,
            SourceMapping.entity_id == entity.id,
        )
    ).first()
    if mapping:
        return mapping.slug
    if kind == "exam":
        return source.default_exam_slug(entity)
    return source.default_subject_slug(entity)


def fetch_from_sources(
    session: Session,
    exam_id: str,
    subject_id: str,
    year: int,
    sources: Optional[Sequence[QuestionSource]] = None,
) -> List[Question]:
    """Ask each source in turn; persist the first non-empty batch and return the new rows."""
    exam = session.get(Exam, exam_id)
    subject = session.get(Subject, subject_id)
    if not exam or not subject:
        logger.warning("external_fetch_skipped", reason="unknown exam or subject", exam_id=exam_id, subject_id=subject_id)
        return []

    for source in sources if sources is not None else get_sources():
        exam_slug = resolve_slug(session, source, "exam", exam)
        subject_slug = resolve_slug(session, source, "subject", subject)
        if not exam_slug or not subject_slug:
            logger.info("external_source_unmapped", source=source.name, exam=exam.short_name, subject=subject.name)
            continue

        try:
            records = source.fetch_questions(exam_slug, subject_slug, year, exam.id, subject.id)
        except Exception as e:
            logger.error("external_source_failed", source=source.name, error=str(e))
            continue

        if records:
            created = save_questions(session, records, exam_id=exam.id, subject_id=subject.id, year=year)
            QUESTIONS_IMPORTED.labels(source=source.name).inc(len(created))
            return created

    return []


# ----------------- Writes -----------------

def get_or_create_section(session: Session, instruction: Optional[str], passage: Optional[str] = None) -> Optional[Section]:
    instruction = clean(instruction)
    if not instruction:
        return None
    section = session.exec(select(Section).where(Section.instruction == instruction)).first()
    if section:
        if passage and not section.passage:
            section.passage = passage
            session.add(section)
        return section
    section = Section(instruction=instruction, passage=passage or None)
    session.add(section)
    session.flush()
    return section


def find_duplicate(
    session: Session,
    text: str,
    subject_id: Optional[str],
    exam_id: str,
    year: Optional[int],
    organization_id: Optional[str] = None,
) -> Optional[Question]:
    """Same paper and text under the same owner; global rows have no organization."""
    return session.exec(
        select(Question).where(
            Question.text == text,
            Question.subject_id == subject_id,
            Question.exam_id == exam_id,
            Question.year == year,
            Question.organization_id == organization_id,
        )
    ).first()


def _write_children(session: Session, question: Question, record: QuestionRecord) -> None:
    for position, opt in enumerate(record.options):
        session.add(QuestionOption(question_id=question.id, text=opt.text, is_correct=opt.is_correct, position=position))
    for name in sorted({t.strip().lower() for t in record.tags if t and t.strip()}):
        session.add(QuestionTag(question_id=question.id, name=name))


def save_questions(
    session: Session,
    records: Iterable[QuestionRecord],
    exam_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    year: Optional[int] = None,
    organization_id: Optional[str] = None,
) -> List[Question]:
    """Persist records, skipping invalid ones and exact text+subject+exam+year duplicates
    under the same owner.

    Explicit exam/subject/year override the values carried on each record.
    """
    created: List[Question] = []
    seen = set()
    skipped = 0

    for record in records:
        q_exam = exam_id or record.exam_id
        q_subject = subject_id or record.subject_id
        q_year = year if year is not None else record.year
        text = record.text.strip()

        if not q_exam or not record.is_persistable():
            skipped += 1
            continue
        key = (text, q_subject, q_exam, q_year)
        if key in seen or find_duplicate(session, text, q_subject, q_exam, q_year, organization_id):
            skipped += 1
            continue
        seen.add(key)

        section = get_or_create_section(session, record.section, record.passage)
        question = Question(
            text=text,
            type=record.type.value,
            explanation=record.explanation,
            marking_guide=record.marking_guide if record.type == QuestionType.THEORY else None,
            year=q_year,
            exam_id=q_exam,
            subject_id=q_subject,
            section_id=section.id if section else None,
            organization_id=organization_id,
            image_url=record.image_url,
        )
        session.add(question)
        session.flush()
        _write_children(session, question, record)
        created.append(question)

    session.commit()
    for question in created:
        session.refresh(question)

    logger.info("questions_persisted", created=len(created), skipped=skipped)
    return created


def bulk_create(session: Session, records: List[QuestionRecord], organization_id: Optional[str] = None) -> List[Question]:
    """Admin bulk upload: each record carries its own exam, subject and year."""
    exam_ids = {r.exam_id for r in records if r.exam_id}
    known = set(session.exec(select(Exam.id).where(Exam.id.in_(exam_ids))).all()) if exam_ids else set()
    valid = [r for r in records if r.exam_id in known]
    if len(valid) != len(records):
        logger.warning("bulk_create_unknown_exam", dropped=len(records) - len(valid))
    return save_questions(session, valid, organization_id=organization_id)


def update_question(session: Session, question: Question, record: QuestionRecord) -> Question:
    section = get_or_create_section(session, record.section, record.passage)
    question.text = record.text.strip()
    question.type = record.type.value
    question.explanation = record.explanation
    question.marking_guide = record.marking_guide if record.type == QuestionType.THEORY else None
    question.year = record.year
    question.subject_id = record.subject_id or question.subject_id
    question.section_id = section.id if section else None
    question.image_url = record.image_url
    session.add(question)

    session.exec(delete(QuestionOption).where(QuestionOption.question_id == question.id))
    session.exec(delete(QuestionTag).where(QuestionTag.question_id == question.id))
    _write_children(session, question, record)

    session.commit()
    session.refresh(question)
    return question


def delete_question(session: Session, question_id: str) -> bool:
    """Delete a question with its options, tags and recorded answers."""
    question = session.get(Question, question_id)
    if not question:
        return False
    session.exec(delete(UserAnswer).where(UserAnswer.question_id == question_id))
    session.exec(delete(QuestionOption).where(QuestionOption.question_id == question_id))
    session.exec(delete(QuestionTag).where(QuestionTag.question_id == question_id))
    session.delete(question)
    session.commit()
    logger.info("question_deleted", question_id=question_id)
    return True
