"""
Integration tests for API endpoints
"""
from unittest.mock import patch

from sqlmodel import select

from prepadi.auth import create_access_token
from prepadi.models import QuizAttempt, SourceMapping, UserAnswer
from prepadi.offline.quiz import build_submission_payload
from prepadi.schemas import QuestionRecord, QuestionType
from prepadi.services import question_service


def _bearer(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def _question_body(exam, subject, text="What is the unit of power?", options=2, correct=1, **extra):
    body = {
        "text": text,
        "type": "OBJECTIVE",
        "options": [{"text": f"Option {i}", "is_correct": i == correct} for i in range(options)],
        "exam_id": exam.id,
        "subject_id": subject.id,
        "year": 2010,
    }
    body.update(extra)
    return body


class TestHealthEndpoints:
    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert "status" in data
        assert "timestamp" in data
        assert "database" in data["checks"]

    def test_metrics_endpoint(self, client):
        """Test metrics endpoint"""
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "http_requests_total" in response.text


class TestAuthEndpoints:
    def test_register_and_login(self, client):
        """Test a student can register and then log in"""
        form = {"email": "ada@example.com", "password": "pass1234", "full_name": "Ada"}
        response = client.post("/auth/register", data=form)
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "student"

        response = client.post("/auth/login", data={"email": "ada@example.com", "password": "pass1234"})
        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"

    def test_duplicate_email(self, client):
        """Test an email can only register once"""
        form = {"email": "dup@example.com", "password": "pass1234", "full_name": "Dup"}
        assert client.post("/auth/register", data=form).status_code == 200
        assert client.post("/auth/register", data=form).status_code == 400

    def test_admin_cannot_self_register(self, client):
        """Test the admin role is not self-service"""
        form = {"email": "root@example.com", "password": "pass1234", "full_name": "Root", "role": "admin"}
        assert client.post("/auth/register", data=form).status_code == 400

    def test_register_organization(self, client):
        """Test organization accounts get their own organization"""
        form = {
            "email": "school@example.com",
            "password": "pass1234",
            "full_name": "Head",
            "role": "organization",
            "organization_name": "Kings College",
        }
        response = client.post("/auth/register", data=form)
        assert response.status_code == 200
        assert response.json()["user"]["organization_id"]

    def test_bad_login(self, client, make_user):
        """Test wrong credentials are rejected"""
        make_user(email="who@example.com")
        response = client.post("/auth/login", data={"email": "who@example.com", "password": "wrong"})
        assert response.status_code == 401

    def test_refresh(self, client):
        """Test refresh issues a new access token"""
        form = {"email": "ref@example.com", "password": "pass1234", "full_name": "Ref"}
        refresh_token = client.post("/auth/register", data=form).json()["refresh_token"]
        response = client.post("/auth/refresh", data={"refresh_token": refresh_token})
        assert response.status_code == 200
        assert response.json()["access_token"]


class TestAdminAccess:
    def test_requires_token(self, client):
        """Test admin routes reject anonymous callers"""
        assert client.get("/admin/exams").status_code == 401

    def test_students_forbidden(self, client, student_headers):
        """Test students cannot reach admin routes"""
        assert client.get("/admin/exams", headers=student_headers).status_code == 403


class TestAdminCatalog:
    def test_create_exam_idempotent(self, client, admin_headers):
        """Test exams are keyed by upper-cased short name"""
        first = client.post("/admin/exams", json={"name": "WAEC", "short_name": "waec"}, headers=admin_headers)
        second = client.post("/admin/exams", json={"name": "WAEC", "short_name": "WAEC"}, headers=admin_headers)
        assert first.status_code == 200
        assert first.json()["short_name"] == "WAEC"
        assert first.json()["id"] == second.json()["id"]

    def test_delete_exam_in_use(self, client, admin_headers, exam, seed_questions):
        """Test exams with questions cannot be deleted"""
        seed_questions(1)
        assert client.delete(f"/admin/exams/{exam.id}", headers=admin_headers).status_code == 409

    def test_delete_exam(self, client, admin_headers, exam):
        """Test deleting an unused exam"""
        assert client.delete(f"/admin/exams/{exam.id}", headers=admin_headers).status_code == 200
        assert client.delete(f"/admin/exams/{exam.id}", headers=admin_headers).status_code == 404

    def test_subjects(self, client, admin_headers):
        """Test creating and listing subjects"""
        client.post("/admin/subjects", json={"name": "Chemistry"}, headers=admin_headers)
        client.post("/admin/subjects", json={"name": "chemistry"}, headers=admin_headers)
        names = [s["name"] for s in client.get("/admin/subjects", headers=admin_headers).json()]
        assert names == ["Chemistry"]

    def test_source_mapping_upsert(self, client, admin_headers, session, subject):
        """Test mappings are updated in place"""
        body = {"source": "qboard", "kind": "subject", "entity_id": subject.id, "slug": "phy"}
        assert client.post("/admin/source-mappings", json=body, headers=admin_headers).status_code == 200
        body["slug"] = "physics"
        assert client.post("/admin/source-mappings", json=body, headers=admin_headers).status_code == 200

        mappings = session.exec(select(SourceMapping)).all()
        assert [m.slug for m in mappings] == ["physics"]

    def test_source_mapping_validation(self, client, admin_headers, subject):
        """Test unknown kinds and entities are rejected"""
        body = {"source": "qboard", "kind": "topic", "entity_id": subject.id, "slug": "x"}
        assert client.post("/admin/source-mappings", json=body, headers=admin_headers).status_code == 422
        body.update(kind="exam", entity_id="missing")
        assert client.post("/admin/source-mappings", json=body, headers=admin_headers).status_code == 404


class TestAdminQuestions:
    def test_create_question(self, client, admin_headers, exam, subject):
        """Test creating a question returns the stored record"""
        response = client.post("/admin/questions", json=_question_body(exam, subject, tags=["Energy"]), headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["id"]
        assert [o["is_correct"] for o in data["options"]] == [False, True]
        assert data["tags"] == ["energy"]

    def test_duplicate_question(self, client, admin_headers, exam, subject):
        """Test the same question cannot be added twice"""
        body = _question_body(exam, subject)
        assert client.post("/admin/questions", json=body, headers=admin_headers).status_code == 200
        assert client.post("/admin/questions", json=body, headers=admin_headers).status_code == 409

    def test_duplicate_scoped_to_owner(self, client, admin_headers, make_user, exam, subject):
        """Test an organization may add a question that already exists in the global bank"""
        owner = make_user("organization", organization_id="org-a")
        body = _question_body(exam, subject)
        assert client.post("/admin/questions", json=body, headers=admin_headers).status_code == 200
        assert client.post("/admin/questions", json=body, headers=_bearer(owner)).status_code == 200
        assert client.post("/admin/questions", json=body, headers=_bearer(owner)).status_code == 409

    def test_invalid_question(self, client, admin_headers, exam, subject):
        """Test objective questions need two options and a known exam"""
        body = _question_body(exam, subject, options=1, correct=0)
        assert client.post("/admin/questions", json=body, headers=admin_headers).status_code == 400
        body = _question_body(exam, subject, exam_id="missing")
        assert client.post("/admin/questions", json=body, headers=admin_headers).status_code == 400

    def test_list_paginated(self, client, admin_headers, seed_questions):
        """Test question listing pages through results"""
        seed_questions(5)
        data = client.get("/admin/questions?page=2&page_size=2", headers=admin_headers).json()
        assert data["total"] == 5
        assert data["page"] == 2
        assert len(data["items"]) == 2

    def test_update_and_delete(self, client, admin_headers, exam, subject):
        """Test editing then deleting a question"""
        created = client.post("/admin/questions", json=_question_body(exam, subject), headers=admin_headers).json()
        body = _question_body(exam, subject, text="Edited", options=3, correct=2)
        response = client.put(f"/admin/questions/{created['id']}", json=body, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["text"] == "Edited"
        assert len(response.json()["options"]) == 3

        assert client.delete(f"/admin/questions/{created['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/admin/questions/{created['id']}", headers=admin_headers).status_code == 404

    def test_organization_scope(self, client, make_user, exam, subject):
        """Test organizations only see their own questions"""
        owner = make_user("organization", organization_id="org-a")
        other = make_user("organization", organization_id="org-b")
        created = client.post("/admin/questions", json=_question_body(exam, subject), headers=_bearer(owner)).json()

        assert client.get(f"/admin/questions/{created['id']}", headers=_bearer(owner)).status_code == 200
        assert client.get(f"/admin/questions/{created['id']}", headers=_bearer(other)).status_code == 404
        assert client.get("/admin/questions", headers=_bearer(other)).json()["total"] == 0

    def test_bulk_create(self, client, admin_headers, exam, subject):
        """Test bulk upload reports created and skipped counts"""
        questions = [
            _question_body(exam, subject, text="One"),
            _question_body(exam, subject, text="One"),
            _question_body(exam, subject, text="Two"),
        ]
        response = client.post("/admin/questions/bulk", json={"questions": questions}, headers=admin_headers)
        assert response.json() == {"count": 2, "skipped": 1}


class TestParsingEndpoints:
    TEXT = "SECTION A: Answer all\n1. 2+2?\nA. 3\nB. 4\nAnswer: B\n2. 3+3?\nA. 6\nB. 7\n"

    def test_parse_text(self, client, admin_headers):
        """Test pasted text is segmented"""
        response = client.post("/admin/questions/parse-text", json={"text": self.TEXT}, headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["warnings"] == 1

    def test_parse_blank_text(self, client, admin_headers):
        """Test blank text is rejected"""
        assert client.post("/admin/questions/parse-text", json={"text": "  "}, headers=admin_headers).status_code == 400

    def test_parse_file(self, client, admin_headers):
        """Test uploaded text documents are segmented"""
        files = {"file": ("paper.txt", self.TEXT.encode(), "text/plain")}
        response = client.post("/admin/questions/parse-file", files=files, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["count"] == 2

    def test_parse_unsupported_file(self, client, admin_headers):
        """Test unknown document types are rejected"""
        files = {"file": ("paper.xls", b"binary", "application/octet-stream")}
        assert client.post("/admin/questions/parse-file", files=files, headers=admin_headers).status_code == 400

    def test_parse_text_ai(self, client, admin_headers):
        """Test AI extraction results are returned as drafts"""
        drafts = [QuestionRecord(text="Define momentum.", type=QuestionType.THEORY)]
        with patch("prepadi.routers.admin.extract_from_text", return_value=drafts) as extract:
            response = client.post("/admin/questions/parse-text-ai", json={"text": "Define momentum."}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["count"] == 1
        extract.assert_called_once_with("Define momentum.")

    def test_parse_image_requires_image(self, client, admin_headers):
        """Test non-image uploads are rejected"""
        files = {"file": ("notes.txt", b"hello", "text/plain")}
        assert client.post("/admin/questions/parse-image", files=files, headers=admin_headers).status_code == 400

    def test_parse_image(self, client, admin_headers):
        """Test images are sent to the AI extractor"""
        files = {"file": ("page.png", b"\x89PNG data", "image/png")}
        with patch("prepadi.routers.admin.extract_from_image", return_value=[]) as extract:
            response = client.post("/admin/questions/parse-image", files=files, headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"questions": [], "count": 0, "warnings": 0}
        extract.assert_called_once_with(b"\x89PNG data", "image/png")


class TestQuizEndpoints:
    def test_requires_login(self, client, exam):
        """Test quiz routes need a token"""
        assert client.post("/api/quiz/start", json={"examId": exam.id}).status_code == 401

    def test_start_hides_answers(self, client, student_headers, exam, subject, seed_questions):
        """Test practice questions are served without the answer key"""
        seed_questions(3)
        response = client.post("/api/quiz/start", json={"examId": exam.id, "subjectId": subject.id}, headers=student_headers)
        assert response.status_code == 200
        questions = response.json()["questions"]
        assert len(questions) == 3
        assert all("is_correct" not in o for q in questions for o in q["options"])

    def test_start_empty(self, client, student_headers, exam):
        """Test an empty bank returns 404"""
        response = client.post("/api/quiz/start", json={"examId": exam.id}, headers=student_headers)
        assert response.status_code == 404

    def test_download_bundle(self, client, student_headers, exam, subject, seed_questions):
        """Test an offline bundle carries the answer key"""
        seed_questions(2)
        body = {"examId": exam.id, "subjectId": subject.id, "year": 2010}
        response = client.post("/api/quiz/download", json=body, headers=student_headers)
        assert response.status_code == 200
        bundle = response.json()
        assert bundle["id"] == f"{exam.id}-{subject.id}-2010"
        assert bundle["subject_name"] == "Physics"
        assert len(bundle["questions"]) == 2
        assert sum(o["is_correct"] for o in bundle["questions"][0]["options"]) == 1

    def test_download_empty(self, client, student_headers, exam, subject):
        """Test downloading a paper with no questions returns 404"""
        body = {"examId": exam.id, "subjectId": subject.id, "year": 1999}
        assert client.post("/api/quiz/download", json=body, headers=student_headers).status_code == 404

    def test_submit_scores(self, client, session, student_headers, seed_questions):
        """Test 3 correct answers out of 5 score 60"""
        records = question_service.to_records(session, seed_questions(5))
        answers = {r.id: r.options[0].id for r in records[:3]}
        answers[records[3].id] = records[3].options[1].id
        payload = build_submission_payload(answers, [r.id for r in records], 300)

        response = client.post("/api/quiz/submit", json=payload, headers=student_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        attempt = session.get(QuizAttempt, response.json()["attemptId"])
        assert (attempt.score, attempt.correct, attempt.total, attempt.time_taken) == (60, 3, 5, 300)

    def test_submit_theory_pending(self, client, session, student_headers, exam, subject):
        """Test theory answers leave the attempt awaiting grading"""
        theory = question_service.save_questions(
            session, [QuestionRecord(text="Explain inertia.", type=QuestionType.THEORY)], exam_id=exam.id, subject_id=subject.id
        )[0]
        payload = build_submission_payload({theory.id: "Resistance to change"}, [theory.id], 60, "assign-1")

        response = client.post("/api/quiz/submit", json=payload, headers=student_headers)

        assert response.json()["status"] == "IN_PROGRESS"
        answer = session.exec(select(UserAnswer).where(UserAnswer.question_id == theory.id)).one()
        assert answer.text_answer == "Resistance to change"
        assert answer.score is None
        assert session.get(QuizAttempt, response.json()["attemptId"]).assignment_id == "assign-1"

    def test_submit_falls_back_to_answer_keys(self, client, session, student_headers, seed_questions):
        """Test submissions without question ids use the answered ids"""
        record = question_service.to_records(session, seed_questions(1))[0]
        payload = {"answers": [[record.id, record.options[0].id]], "timeTaken": 10}

        response = client.post("/api/quiz/submit", json=payload, headers=student_headers)

        assert response.status_code == 200
        assert session.get(QuizAttempt, response.json()["attemptId"]).score == 100

    def test_submit_unknown_questions(self, client, student_headers):
        """Test submissions without known questions are rejected"""
        payload = build_submission_payload({"nope": "x"}, ["nope"], 10)
        assert client.post("/api/quiz/submit", json=payload, headers=student_headers).status_code == 400

    def test_years(self, client, student_headers, exam, subject, seed_questions):
        """Test available years include stored papers"""
        seed_questions(1, year=2004)
        seed_questions(1, year=2012)
        response = client.get(f"/api/years?examId={exam.id}&subjectId={subject.id}", headers=student_headers)
        assert response.json() == [2012, 2004]

    def test_tags(self, client, session, student_headers, exam, subject, objective):
        """Test the tag list is distinct and sorted"""
        question_service.save_questions(
            session,
            [objective("One", tags=["waves", "Optics"]), objective("Two", tags=["optics"])],
            exam_id=exam.id,
            subject_id=subject.id,
            year=2010,
        )
        response = client.get(f"/api/tags?examId={exam.id}&subjectId={subject.id}", headers=student_headers)
        assert response.status_code == 200
        assert response.json() == ["optics", "waves"]
        assert client.get("/api/tags").status_code == 401
