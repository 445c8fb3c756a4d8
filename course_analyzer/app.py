from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from course_analyzer.assessment import build_assessment_client
from course_analyzer.auth import JwtTokenVerifier, bearer_token
from course_analyzer.config import DEFAULT_MODELS, configure_logging, load_settings, normalize_provider
from course_analyzer.errors import AuthenticationError
from course_analyzer.ingestion import SourceFile, validate_upload
from course_analyzer.llm_provider import generate_text_with_gemini, generate_text_with_openai
from course_analyzer.pipeline import analyze_batch
from course_analyzer.rate_limiting import get_rate_limiter
from course_analyzer.schema_models import assessment_json_schema
from course_analyzer.sessions import AnalysisSessionService, JsonSessionStore

logger = logging.getLogger(__name__)

SETTINGS = load_settings()
configure_logging()

app = FastAPI(title="Course Analyzer API")

# Built once per process and shared by every request.
app.state.settings = SETTINGS
app.state.assessment_client = build_assessment_client(SETTINGS)
app.state.rate_limiter = get_rate_limiter(SETTINGS.rate_limiter, delay_seconds=SETTINGS.request_delay_seconds)
app.state.token_verifier = JwtTokenVerifier(SETTINGS.jwt_secret)
app.state.session_service = AnalysisSessionService(
    store=JsonSessionStore(SETTINGS.data_dir),
    client=app.state.assessment_client,
    rate_limiter=app.state.rate_limiter,
    settings=SETTINGS,
)


@app.middleware("http")
async def api_prefix_alias(request, call_next):
    """Accept both `/path` and `/api/path` for frontend compatibility."""
    if request.scope.get("path", "").startswith("/api/"):
        request.scope["path"] = request.scope["path"][4:]
    return await call_next(request)

CORS_ALLOWED_ORIGINS = list(SETTINGS.cors_allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LlmConnectionCheckRequest(BaseModel):
    api_key: str
    provider: str | None = None


def _error_response(status_code: int, message: str, warnings: list[str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "error",
            "message": message,
            "warnings": warnings or [],
        },
    )


async def _read_sources(files: list[UploadFile] | None) -> tuple[list[SourceFile], list[str], JSONResponse | None]:
    if not files:
        return [], [], _error_response(400, "No files uploaded")

    sources: list[SourceFile] = []
    warnings: list[str] = []
    for upload in files:
        content = await upload.read()
        filename = upload.filename or "upload"
        validation = validate_upload(filename, content, upload.content_type)
        if validation.status != "success":
            return [], [], JSONResponse(
                status_code=415,
                content={
                    "status": validation.status,
                    "message": validation.message,
                    "warnings": validation.warnings,
                },
            )
        warnings.extend(validation.warnings)
        sources.append(SourceFile(name=filename, content=content, content_type=upload.content_type))
    return sources, warnings, None


def _authenticate(request: Request) -> dict:
    token = bearer_token(request.headers.get("authorization"))
    return request.app.state.token_verifier.verify(token)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/assessment/schema")
def assessment_schema():
    return assessment_json_schema()


@app.post("/analyze")
async def analyze_uploads(request: Request, files: list[UploadFile] | None = File(None)):
    sources, warnings, error_response = await _read_sources(files)
    if error_response is not None:
        return error_response

    state = request.app.state
    results = await analyze_batch(
        sources,
        state.assessment_client,
        rate_limiter=state.rate_limiter,
        settings=state.settings,
    )
    return {
        "conversationId": str(uuid4()),
        "results": [result.to_dict() for result in results],
        "warnings": warnings,
    }


@app.post("/analysis/start")
async def start_session_analysis(request: Request, files: list[UploadFile] | None = File(None)):
    try:
        claims = _authenticate(request)
    except AuthenticationError as exc:
        return _error_response(401, str(exc))

    sources, warnings, error_response = await _read_sources(files)
    if error_response is not None:
        return error_response

    service: AnalysisSessionService = request.app.state.session_service
    session = service.create_session(claims["userId"])
    for source in sources:
        service.add_file(session["id"], source)

    try:
        results = await service.start_analysis(session["id"])
    except Exception as exc:  # noqa: BLE001
        return _error_response(500, str(exc) or "Analysis failed")

    return {"sessionId": session["id"], "results": results, "warnings": warnings}


@app.get("/analysis")
def list_sessions(request: Request):
    try:
        claims = _authenticate(request)
    except AuthenticationError as exc:
        return _error_response(401, str(exc))

    return {"sessions": request.app.state.session_service.get_user_sessions(claims["userId"])}


@app.get("/analysis/{session_id}")
def get_session_results(session_id: str, request: Request):
    try:
        claims = _authenticate(request)
    except AuthenticationError as exc:
        return _error_response(401, str(exc))

    session = request.app.state.session_service.get_session_results(session_id)
    if session is None:
        return _error_response(404, "Session not found")
    if session["user_id"] != claims["userId"]:
        return _error_response(403, "Unauthorized access")
    return session


@app.post("/llm/check-connection")
def check_llm_connection(request: LlmConnectionCheckRequest):
    api_key = request.api_key.strip()
    provider = normalize_provider(request.provider)

    if not api_key:
        return JSONResponse(
            status_code=400,
            content={
                "status": "error",
                "message": "API key must not be empty.",
                "connected": False,
            },
        )

    prompt = "Reply with exactly one word: CONNECTED"
    if provider == "openai":
        result = generate_text_with_openai(
            api_key=api_key,
            model=DEFAULT_MODELS["openai"],
            prompt=prompt,
            max_output_tokens=16,
        )
    elif provider == "gemini":
        result = generate_text_with_gemini(
            api_key=api_key,
            model=DEFAULT_MODELS["gemini"],
            prompt=prompt,
            max_output_tokens=16,
        )
    else:
        return JSONResponse(
            status_code=400,
            content={
                "status": "error",
                "message": f"Unknown provider '{provider}'.",
                "connected": False,
            },
        )

    if result.status != "success" or not (result.raw_response or "").strip():
        return JSONResponse(
            status_code=400,
            content={
                "status": "error",
                "message": "Connection test failed.",
                "connected": False,
                "warnings": result.warnings,
            },
        )

    return {
        "status": "success",
        "message": "Connection successful.",
        "connected": True,
        "response_preview": result.raw_response.strip(),
    }
