from __future__ import annotations

import asyncio
import itertools

import pytest

from course_analyzer import sessions
from course_analyzer.config import AnalyzerSettings
from course_analyzer.ingestion import SourceFile
from course_analyzer.rate_limiting import NoopLimiter
from course_analyzer.schema_models import check_assessment_payload
from course_analyzer.sessions import COMPLETED, FAILED, PENDING, AnalysisSessionService, JsonSessionStore

PAYLOAD = {
    "overallScore": 66,
    "missedQuestions": [
        {
            "question": "Order of operations with exponents",
            "percentageMissed": 44,
            "relatedLessons": ["Order of operations"],
            "improvementSuggestions": ["Add a mnemonic slide"],
        }
    ],
    "lessonRecommendations": [
        {
            "lessonName": "Order of operations",
            "currentContent": "Rules listed without examples",
            "suggestedImprovements": ["Walk through two worked examples"],
            "additionalResources": [],
        }
    ],
}


class FakeClient:
    def __init__(self):
        self.calls: list[str] = []

    async def assess(self, content: str):
        self.calls.append(content)
        return check_assessment_payload(PAYLOAD).payload


@pytest.fixture
def increasing_clock(monkeypatch):
    ticks = itertools.count()
    monkeypatch.setattr(sessions, "_utc_now", lambda: f"2024-01-01T00:00:{next(ticks):02d}+00:00")


@pytest.fixture
def store(tmp_path):
    return JsonSessionStore(tmp_path)


@pytest.fixture
def service(store):
    return AnalysisSessionService(
        store=store,
        client=FakeClient(),
        rate_limiter=NoopLimiter(),
        settings=AnalyzerSettings(request_delay_seconds=0),
    )


def _source(name: str, text: str = "Exponents are evaluated before multiplication") -> SourceFile:
    return SourceFile(name=name, content=text.encode("utf-8"), content_type="text/plain")


def test_store_persists_session_files_and_results(store, tmp_path):
    session = store.create_session("teacher-1")
    record = store.add_file(session["id"], _source("math.txt"))

    assert session["status"] == PENDING
    assert "storage_path" not in record
    assert record["size"] == len(b"Exponents are evaluated before multiplication")

    reopened = JsonSessionStore(tmp_path)
    files = reopened.list_files(session["id"])
    assert reopened.read_file(files[0]).content == b"Exponents are evaluated before multiplication"
    assert reopened.get_session(session["id"])["files"][0]["original_name"] == "math.txt"


def test_unknown_status_is_rejected(store):
    session = store.create_session("teacher-1")

    with pytest.raises(ValueError):
        store.update_status(session["id"], "DONE")


def test_missing_session_lookup_returns_none(store):
    assert store.get_session("s_missing") is None


def test_unreadable_stored_file_becomes_empty_source(store):
    with pytest.raises(KeyError):
        store.list_files("s_missing")

    source = store.read_file({"id": "f_1", "original_name": "gone.txt", "storage_path": "/nonexistent/f_1"})

    assert source.content == b""
    assert source.name == "gone.txt"


def test_user_sessions_are_listed_newest_first(store, increasing_clock):
    first = store.create_session("teacher-1")
    store.create_session("teacher-2")
    third = store.create_session("teacher-1")

    listed = store.list_user_sessions("teacher-1")

    assert [session["id"] for session in listed] == [third["id"], first["id"]]


def test_start_analysis_stores_one_result_per_file(service):
    session = service.create_session("teacher-1")
    math = service.add_file(session["id"], _source("math.txt"))
    empty = service.add_file(session["id"], _source("empty.txt", ""))

    stored = asyncio.run(service.start_analysis(session["id"]))

    assert [record["file_id"] for record in stored] == [math["id"], empty["id"]]
    assert stored[0]["overallScore"] == 66
    assert stored[1]["status"] == "fallback"

    saved = service.get_session_results(session["id"])
    assert saved["status"] == COMPLETED
    assert saved["completed_at"] is not None
    assert len(saved["results"]) == 2


def test_failed_batch_marks_session_failed(service, monkeypatch):
    async def _broken_batch(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(sessions, "analyze_batch", _broken_batch)
    session = service.create_session("teacher-1")
    service.add_file(session["id"], _source("math.txt"))

    with pytest.raises(RuntimeError):
        asyncio.run(service.start_analysis(session["id"]))

    assert service.get_session_results(session["id"])["status"] == FAILED


def test_start_analysis_of_unknown_session_raises(service):
    with pytest.raises(KeyError):
        asyncio.run(service.start_analysis("s_missing"))


def test_get_user_sessions_delegates_to_store(service):
    service.create_session("teacher-9")

    assert len(service.get_user_sessions("teacher-9")) == 1
    assert service.get_user_sessions("nobody") == []
