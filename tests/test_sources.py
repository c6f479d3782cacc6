"""
Unit tests for the Qboard question source
"""
from unittest.mock import MagicMock

import requests

from prepadi.models import Exam, Subject
from prepadi.schemas import QuestionType
from prepadi.services.sources.qboard import QboardSource


def _response(payload, ok=True, status_code=200):
    resp = MagicMock(ok=ok, status_code=status_code, text="")
    resp.json.return_value = payload
    return resp


QBOARD_PAYLOAD = {
    "status": 200,
    "data": [
        {
            "id": 17,
            "question": " Which of these is a vector quantity? ",
            "option": {"a": "Mass", "b": "Speed", "c": "Velocity", "d": "Time", "e": " "},
            "answer": "C",
            "solution": "Velocity has direction.",
            "section": "",
            "image": "https://img.example.com/q17.png",
        },
        {
            "id": "18",
            "question": "The unit of work is",
            "option": {"a": "Joule", "b": "Watt", "c": None, "d": None},
            "answer": "a",
            "solution": None,
            "section": "Read carefully",
            "image": "",
        },
    ],
}


def _source(session):
    return QboardSource(base_url="https://qboard.test/api/v2/", access_token="tok", session=session)


class TestQboardFetch:
    def test_mapping(self):
        """Test upstream questions map to objective records"""
        session = MagicMock()
        session.get.return_value = _response(QBOARD_PAYLOAD)

        first, second = _source(session).fetch_questions("utme", "physics", 2010, "exam-1", "subj-1")

        assert first.text == "Which of these is a vector quantity?"
        assert first.type == QuestionType.OBJECTIVE
        assert [o.text for o in first.options] == ["Mass", "Speed", "Velocity", "Time"]
        assert [o.is_correct for o in first.options] == [False, False, True, False]
        assert first.explanation == "Velocity has direction."
        assert first.section is None
        assert first.image_url == "https://img.example.com/q17.png"
        assert (first.year, first.exam_id, first.subject_id) == (2010, "exam-1", "subj-1")

        assert len(second.options) == 2
        assert second.options[0].is_correct
        assert second.section == "Read carefully"
        assert second.image_url is None

    def test_request_shape(self):
        """Test batch URL, query params and access token header"""
        session = MagicMock()
        session.get.return_value = _response({"status": 200, "data": []})

        _source(session).fetch_questions("wassce", "chemistry", 2005, "e", "s")

        args, kwargs = session.get.call_args
        assert args[0] == "https://qboard.test/api/v2/m/50"
        assert kwargs["params"] == {"subject": "chemistry", "year": 2005, "type": "wassce"}
        assert kwargs["headers"]["AccessToken"] == "tok"
        assert kwargs["timeout"] == 15.0

    def test_network_error(self):
        """Test transport failures soft-fail"""
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        assert _source(session).fetch_questions("utme", "physics", 2010, "e", "s") == []

    def test_http_error(self):
        """Test non-2xx responses soft-fail"""
        session = MagicMock()
        session.get.return_value = _response({}, ok=False, status_code=503)
        assert _source(session).fetch_questions("utme", "physics", 2010, "e", "s") == []

    def test_malformed_payload(self):
        """Test payloads that do not match the schema soft-fail"""
        session = MagicMock()
        session.get.return_value = _response({"status": 200, "data": [{"question": "no options"}]})
        assert _source(session).fetch_questions("utme", "physics", 2010, "e", "s") == []

    def test_invalid_json(self):
        """Test undecodable bodies soft-fail"""
        session = MagicMock()
        resp = _response(None)
        resp.json.side_effect = ValueError("not json")
        session.get.return_value = resp
        assert _source(session).fetch_questions("utme", "physics", 2010, "e", "s") == []


class TestQboardSlugs:
    def test_exam_slugs(self):
        """Test exam short names map to upstream exam types"""
        source = _source(MagicMock())
        assert source.default_exam_slug(Exam(name="JAMB", short_name="JAMB")) == "utme"
        assert source.default_exam_slug(Exam(name="WAEC", short_name="waec")) == "wassce"
        assert source.default_exam_slug(Exam(name="Mock", short_name="MOCK")) is None

    def test_subject_slugs(self):
        """Test subject names map to upstream slugs"""
        source = _source(MagicMock())
        assert source.default_subject_slug(Subject(name="Physics")) == "physics"
        assert source.default_subject_slug(Subject(name="English Language")) == "english"
        assert source.default_subject_slug(Subject(name="Further Mathematics")) is None

    def test_available_years(self):
        """Test published years come back newest first"""
        source = _source(MagicMock())
        years = source.get_available_years("physics")
        assert years == sorted(years, reverse=True)
        assert 2010 in years
        assert source.get_available_years("astrology") == []
