from __future__ import annotations

import base64
import json
import os
from typing import List, Optional

import structlog
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from prepadi.schemas import OptionRecord, QuestionRecord, QuestionType
from prepadi.services.monitoring import AI_EXTRACTION_REQUESTS
from prepadi.services.parser import clean, split_tags

logger = structlog.get_logger()

TEXT_MODEL = os.getenv("OPENAI_TEXT_MODEL", "gpt-4o-mini")
VISION_MODEL = os.getenv("OPENAI_VISION_MODEL", "gpt-4o")
MAX_TEXT_CHARS = 30000

EXTRACTION_PROMPT = """You are an expert exam question parser.
Extract every question from the material you are given.
Return a JSON object of the form:
{"questions": [{
  "text": string,
  "type": "OBJECTIVE" | "THEORY",
  "options": [{"text": string, "isCorrect": boolean}],
  "explanation": string | null,
  "markingGuide": string | null,
  "section": string | null,
  "tags": [string]
}]}
Rules:
- OBJECTIVE questions list their options in order and mark the correct one if it is indicated.
- THEORY questions have no options; provide a short sample marking guide.
- When several questions share an instruction or passage, repeat that text in "section" for each of them.
- Infer 1-3 short lower-case topic tags per question.
- Do not number the question text or prefix options with letters."""


class _AIOption(BaseModel):
    text: str
    isCorrect: bool = False


class _AIQuestion(BaseModel):
    text: str
    type: QuestionType = QuestionType.OBJECTIVE
    options: List[_AIOption] = Field(default_factory=list)
    explanation: Optional[str] = None
    markingGuide: Optional[str] = None
    section: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class AIExtractionResponse(BaseModel):
    questions: List[_AIQuestion]


def _get_client() -> OpenAI:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not set")
    # Use env var; set timeouts per-request via with_options()
    return OpenAI()


def _clean_json_like(content: str) -> str:
    # Strip common code fences ```json ... ``` or ``` ... ```
    text = content.strip()
    if text.startswith("```"):
        first_nl = text.find("\n")
        if first_nl != -1:
            text = text[first_nl + 1 :]
        if text.endswith("```"):
            text = text[:-3]
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _to_records(payload: AIExtractionResponse) -> List[QuestionRecord]:
    records: List[QuestionRecord] = []
    for q in payload.questions:
        text = clean(q.text)
        if not text:
            continue
        qtype = QuestionType.OBJECTIVE if q.options else QuestionType.THEORY
        records.append(
            QuestionRecord(
                text=text,
                type=qtype,
                options=[OptionRecord(text=clean(o.text), is_correct=o.isCorrect) for o in q.options],
                explanation=clean(q.explanation) or None,
                marking_guide=(q.markingGuide or None) if qtype == QuestionType.THEORY else None,
                section=clean(q.section) or None,
                tags=split_tags(",".join(q.tags)),
            )
        )
    return records


def _extract(kind: str, model: str, user_content) -> List[QuestionRecord]:
    try:
        client = _get_client().with_options(timeout=60.0)
        rsp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": EXTRACTION_PROMPT},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_object"},
            temperature=0.1,
        )
        content = rsp.choices[0].message.content or "{}"
        payload = AIExtractionResponse.model_validate(json.loads(_clean_json_like(content)))
    except (ValidationError, ValueError) as e:
        logger.warning("ai_extraction_invalid_response", kind=kind, error=str(e))
        AI_EXTRACTION_REQUESTS.labels(type=kind, status="invalid").inc()
        return []
    except Exception as e:
        logger.error("ai_extraction_failed", kind=kind, error=str(e))
        AI_EXTRACTION_REQUESTS.labels(type=kind, status="error").inc()
        return []

    records = _to_records(payload)
    AI_EXTRACTION_REQUESTS.labels(type=kind, status="success").inc()
    logger.info("ai_extraction_completed", kind=kind, questions=len(records))
    return records


def extract_from_text(raw: str) -> List[QuestionRecord]:
    """Best-effort AI parse of raw exam text; an empty list means nothing was extracted."""
    if not (raw or "").strip():
        return []
    return _extract("text", TEXT_MODEL, f"Extract the questions from this text:\n\n{raw[:MAX_TEXT_CHARS]}")


def extract_from_image(image_bytes: bytes, mime_type: str = "image/png") -> List[QuestionRecord]:
    """Best-effort AI parse of a photographed or scanned question paper."""
    if not image_bytes:
        return []
    data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
    return _extract(
        "image",
        VISION_MODEL,
        [
            {"type": "text", "text": "Extract the questions from this image."},
            {"type": "image_url", "image_url": {"url": data_url}},
        ],
    )
