"""
Bulk question text segmentation.

Turns a pasted (or extracted) block of exam text into QuestionRecord drafts:

    SECTION A: Answer all questions
    1. What is 2+2?
    A. 3
    B. 4
    Answer: B
    Tags: arithmetic

Questions inherit the latest SECTION/INSTRUCTION header until a
``# NO SECTION`` marker resets it.
"""
import re
from typing import List, Optional, Tuple
from uuid import uuid4

import structlog

from prepadi.schemas import OptionRecord, QuestionRecord, QuestionType

logger = structlog.get_logger()

NO_ANSWER_WARNING = "No answer detected"

SECTION_SPLIT = re.compile(r"^(?=[ \t]*(?:SECTION|INSTRUCTION|#\s*NO\s*SECTION))", re.IGNORECASE | re.MULTILINE)
RESET_MARKER = re.compile(r"^\s*#\s*NO\s*SECTION.*", re.IGNORECASE)
SECTION_HEADER = re.compile(r"^\s*(?:SECTION|INSTRUCTION)[^\n]*?[:\n]", re.IGNORECASE)
SECTION_PREFIX = re.compile(r"^\s*(?:SECTION|INSTRUCTION)\s*\w*[:.]?\s*", re.IGNORECASE)

QUESTION_SPLIT = re.compile(r"\n(?=[ \t]*\d+[.)\-])")
NUMBERING = re.compile(r"^\d+[.)\-]\s*")

ANSWER_LINE = re.compile(r"^(?:Answer|Ans|Key)\s*:\s*([A-E])(?![A-Za-z])", re.IGNORECASE)
EXPLANATION_LINE = re.compile(r"^(?:Explanation|Solution|Note)\s*:\s*(.*)", re.IGNORECASE)
TAGS_LINE = re.compile(r"^(?:Tags?|Topic|Category)\s*:\s*(.*)", re.IGNORECASE)
OPTION_LINE = re.compile(r"^([A-E])[.)]\s+(.*)", re.IGNORECASE)


def clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def split_tags(raw: str) -> List[str]:
    return [t.strip().lower() for t in raw.split(",") if t.strip()]


def _draft_id() -> str:
    return uuid4().hex[:9]


def _read_section_header(part: str, current: Optional[str]) -> Tuple[str, Optional[str]]:
    """Strip a leading header or reset marker, returning the remaining text and active section."""
    if RESET_MARKER.match(part):
        return RESET_MARKER.sub("", part, count=1), None

    if SECTION_HEADER.match(part):
        first, _, rest = part.partition("\n")
        instruction = clean(SECTION_PREFIX.sub("", first, count=1))
        return rest, instruction or None

    return part, current


def segment(raw_text: str) -> List[QuestionRecord]:
    """Split raw exam text into ordered question records."""
    questions: List[QuestionRecord] = []
    current_section: Optional[str] = None

    for part in SECTION_SPLIT.split(raw_text or ""):
        if not part.strip():
            continue

        part, current_section = _read_section_header(part, current_section)

        blocks = [b for b in QUESTION_SPLIT.split(part) if b.strip()]
        passage = None
        if blocks and current_section and not NUMBERING.match(blocks[0].strip()) and len(blocks) > 1:
            # unnumbered lead-in under a section header is the shared passage
            passage = clean(blocks.pop(0))

        for block in blocks:
            record = parse_block(block, current_section)
            if record is None:
                continue
            record.passage = passage
            questions.append(record)

    logger.info(
        "bulk_text_segmented",
        questions=len(questions),
        warnings=sum(1 for q in questions if q.warning),
    )
    return questions


def parse_block(block: str, section: Optional[str] = None) -> Optional[QuestionRecord]:
    """Parse one numbered question block; returns None when it has no question text."""
    lines = [line.strip() for line in block.split("\n") if line.strip()]

    question_text = ""
    letters: List[Tuple[str, str]] = []
    answer_letter = ""
    explanation = ""
    tags: List[str] = []

    for line in lines:
        m = ANSWER_LINE.match(line)
        if m:
            answer_letter = m.group(1).upper()
            continue

        m = EXPLANATION_LINE.match(line)
        if m:
            explanation = m.group(1).strip()
            continue

        m = TAGS_LINE.match(line)
        if m:
            tags = split_tags(m.group(1))
            continue

        m = OPTION_LINE.match(line)
        if m:
            letters.append((m.group(1).upper(), m.group(2).strip()))
            continue

        if not letters:
            stripped = NUMBERING.sub("", line)
            question_text = f"{question_text} {stripped}" if question_text else stripped

    question_text = clean(question_text)
    if not question_text:
        return None

    qtype = QuestionType.OBJECTIVE if letters else QuestionType.THEORY
    options = [OptionRecord(text=text, is_correct=letter == answer_letter) for letter, text in letters]

    return QuestionRecord(
        id=_draft_id(),
        text=question_text,
        type=qtype,
        options=options,
        explanation=clean(explanation) or None,
        section=section,
        tags=tags,
        warning=NO_ANSWER_WARNING if qtype == QuestionType.OBJECTIVE and not answer_letter else None,
    )
