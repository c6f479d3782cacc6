"""
Taking a downloaded exam without a connection: scoring, queueing and the
submission payload shared with the live flow.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from prepadi.offline.client import QuizAPIClient
from prepadi.offline.storage import OfflineStore
from prepadi.schemas import OfflineExamBundle, PendingAttempt, QuestionType

logger = structlog.get_logger()

OBJECTIVE_POINTS = 100


def build_submission_payload(
    answers: Dict[str, str],
    question_ids: List[str],
    time_taken: int,
    assignment_id: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "answers": [[qid, value] for qid, value in answers.items()],
        "questionIds": list(question_ids),
        "timeTaken": time_taken,
    }
    if assignment_id:
        payload["assignmentId"] = assignment_id
    return payload


def pending_attempt_payload(attempt: PendingAttempt) -> Dict[str, Any]:
    answers = dict(attempt.answers)
    # attempts queued before question ids were recorded
    question_ids = attempt.question_ids or list(answers.keys())
    return build_submission_payload(answers, question_ids, attempt.time_taken, attempt.assignment_id)


def submit_online_attempt(
    client: QuizAPIClient,
    bundle: OfflineExamBundle,
    answers: Dict[str, str],
    time_taken: int,
    assignment_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Submit a finished attempt while connected. Raises SubmissionError on failure."""
    payload = build_submission_payload(answers, [q.id for q in bundle.questions], time_taken, assignment_id)
    response = client.submit(payload)
    logger.info("online_attempt_submitted", exam_key=bundle.id, server_attempt_id=response.get("attemptId"))
    return response


def score_offline_attempt(bundle: OfflineExamBundle, answers: Dict[str, str]) -> int:
    if not bundle.questions:
        return 0
    points = 0
    for question in bundle.questions:
        if question.type != QuestionType.OBJECTIVE:
            continue
        correct = next((o.id for o in question.options if o.is_correct), None)
        selected = answers.get(question.id)
        if selected and selected == correct:
            points += OBJECTIVE_POINTS
    return int(points / len(bundle.questions) + 0.5)


def complete_offline_attempt(
    store: OfflineStore,
    bundle: OfflineExamBundle,
    answers: Dict[str, str],
    time_taken: int,
    user_id: str,
    assignment_id: Optional[str] = None,
) -> PendingAttempt:
    """Score locally and queue the attempt until the device is back online."""
    attempt = PendingAttempt(
        exam_key=bundle.id,
        answers=list(answers.items()),
        question_ids=[q.id for q in bundle.questions],
        time_taken=time_taken,
        score=score_offline_attempt(bundle, answers),
        user_id=user_id,
        assignment_id=assignment_id,
    )
    return store.save_offline_attempt(attempt)


def download_for_offline(
    client: QuizAPIClient,
    store: OfflineStore,
    exam_id: str,
    subject_id: str,
    year: int,
) -> OfflineExamBundle:
    bundle = client.download_bundle(exam_id, subject_id, year)
    return store.save_exam_for_offline(bundle)
