import pytest
from fastapi.testclient import TestClient

from course_analyzer.app import app
from course_analyzer.auth import JwtTokenVerifier
from course_analyzer.config import AnalyzerSettings
from course_analyzer.rate_limiting import NoopLimiter
from course_analyzer.schema_models import check_assessment_payload
from course_analyzer.sessions import AnalysisSessionService, JsonSessionStore

PAYLOAD = {
    "overallScore": 81,
    "missedQuestions": [
        {
            "question": "Identify the main clause",
            "percentageMissed": 22,
            "relatedLessons": ["Sentence structure"],
            "improvementSuggestions": ["Colour-code clauses"],
        }
    ],
    "lessonRecommendations": [
        {
            "lessonName": "Sentence structure",
            "currentContent": "Grammar rules with one example",
            "suggestedImprovements": ["Add sentence-building exercise"],
            "additionalResources": [],
        }
    ],
}

LESSON = b"Sentence structure lesson\nA clause contains a subject and a verb"


class FakeClient:
    async def assess(self, _content):
        return check_assessment_payload(PAYLOAD).payload


@pytest.fixture
def verifier():
    return JwtTokenVerifier("test-secret")


@pytest.fixture
def client(tmp_path, monkeypatch, verifier):
    settings = AnalyzerSettings(data_dir=tmp_path, request_delay_seconds=0)
    fake = FakeClient()
    limiter = NoopLimiter()
    monkeypatch.setattr(app.state, "settings", settings)
    monkeypatch.setattr(app.state, "assessment_client", fake)
    monkeypatch.setattr(app.state, "rate_limiter", limiter)
    monkeypatch.setattr(app.state, "token_verifier", verifier)
    monkeypatch.setattr(
        app.state,
        "session_service",
        AnalysisSessionService(
            store=JsonSessionStore(tmp_path),
            client=fake,
            rate_limiter=limiter,
            settings=settings,
        ),
    )
    return TestClient(app)


def _auth(verifier, user_id="teacher-1"):
    return {"Authorization": f"Bearer {verifier.issue_token(user_id)}"}


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_prefix_alias(client):
    assert client.get("/api/health").status_code == 200


def test_analyze_returns_one_result_per_upload(client):
    response = client.post(
        "/analyze",
        files=[
            ("files", ("grammar.txt", LESSON, "text/plain")),
            ("files", ("empty.txt", b"", "text/plain")),
        ],
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["conversationId"]
    assert [result["filename"] for result in payload["results"]] == ["grammar.txt", "empty.txt"]
    assert payload["results"][0]["overallScore"] == 81
    assert payload["results"][1]["status"] == "fallback"
    assert any("empty" in warning for warning in payload["warnings"])


def test_analyze_without_files_is_rejected(client):
    response = client.post("/analyze", data={"note": "none"})

    assert response.status_code == 400
    assert response.json()["message"] == "No files uploaded"


def test_analyze_rejects_unsupported_type(client):
    response = client.post(
        "/api/analyze",
        files=[("files", ("tool.exe", b"MZ\x90\x00", "application/octet-stream"))],
    )

    assert response.status_code == 415
    assert response.json()["status"] == "warning"


def test_session_analysis_requires_token(client):
    response = client.post("/analysis/start", files=[("files", ("grammar.txt", LESSON, "text/plain"))])

    assert response.status_code == 401
    assert response.json()["message"] == "No token provided"


def test_bare_bearer_scheme_is_reported_as_missing_token(client):
    response = client.get("/analysis", headers={"Authorization": "Bearer"})

    assert response.status_code == 401
    assert response.json()["message"] == "No token provided"


def test_session_analysis_rejects_invalid_token(client):
    response = client.post(
        "/analysis/start",
        files=[("files", ("grammar.txt", LESSON, "text/plain"))],
        headers={"Authorization": "Bearer forged"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_session_lifecycle(client, verifier):
    start = client.post(
        "/analysis/start",
        files=[("files", ("grammar.txt", LESSON, "text/plain"))],
        headers=_auth(verifier),
    )
    assert start.status_code == 200
    session_id = start.json()["sessionId"]
    assert start.json()["results"][0]["overallScore"] == 81

    fetched = client.get(f"/analysis/{session_id}", headers=_auth(verifier))
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "COMPLETED"
    assert "storage_path" not in fetched.json()["files"][0]

    listed = client.get("/analysis", headers=_auth(verifier))
    assert [session["id"] for session in listed.json()["sessions"]] == [session_id]

    foreign = client.get(f"/analysis/{session_id}", headers=_auth(verifier, "teacher-2"))
    assert foreign.status_code == 403
    assert foreign.json()["message"] == "Unauthorized access"


def test_unknown_session_returns_404(client, verifier):
    response = client.get("/analysis/s_missing", headers=_auth(verifier))

    assert response.status_code == 404
    assert response.json()["message"] == "Session not found"


def test_assessment_schema_endpoint(client):
    schema = client.get("/assessment/schema").json()

    assert "lessonRecommendations" in schema["properties"]


def test_llm_connection_check_with_chatgpt_alias(client, monkeypatch):
    def _fake_generate_text_with_openai(**_kwargs):
        class _Result:
            status = "success"
            raw_response = "CONNECTED"
            warnings = []

        return _Result()

    monkeypatch.setattr("course_analyzer.app.generate_text_with_openai", _fake_generate_text_with_openai)

    response = client.post("/api/llm/check-connection", json={"provider": "chatgpt", "api_key": "test-key"})

    assert response.status_code == 200
    assert response.json()["connected"] is True


def test_llm_connection_check_rejects_blank_key(client):
    response = client.post("/llm/check-connection", json={"provider": "gemini", "api_key": "  "})

    assert response.status_code == 400
    assert response.json()["connected"] is False
