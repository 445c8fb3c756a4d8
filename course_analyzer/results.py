from __future__ import annotations

from enum import Enum
from typing import Any

from course_analyzer.errors import AnalysisError
from course_analyzer.schema_models import (
    ERROR_LESSON_NAME,
    AnalysisResult,
    AssessmentPayload,
    LessonRecommendation,
    MissedQuestion,
)


class FallbackCategory(str, Enum):
    EXTRACTION_EMPTY = "extraction_empty"
    MODEL_UNAVAILABLE = "model_unavailable"
    SCHEMA_VIOLATION = "schema_violation"
    PARSE_FAILURE = "parse_failure"
    TRANSPORT_FAILURE = "transport_failure"
    UNEXPECTED = "unexpected"


FALLBACK_MESSAGES: dict[FallbackCategory, tuple[str, str]] = {
    FallbackCategory.EXTRACTION_EMPTY: ("Could not extract content from file", "Check file format and content"),
    FallbackCategory.MODEL_UNAVAILABLE: ("Model is rate limited or unavailable", "Try again later"),
    FallbackCategory.SCHEMA_VIOLATION: ("Analysis response did not match the expected format", "Try again later"),
    FallbackCategory.PARSE_FAILURE: ("Could not parse analysis results", "Try again later"),
    FallbackCategory.TRANSPORT_FAILURE: ("Could not reach the analysis service", "Try again later"),
    FallbackCategory.UNEXPECTED: ("Analysis failed", "Try again later"),
}


def category_for_exception(exc: BaseException) -> FallbackCategory:
    if isinstance(exc, AnalysisError):
        try:
            return FallbackCategory(exc.category)
        except ValueError:
            return FallbackCategory.UNEXPECTED
    return FallbackCategory.UNEXPECTED


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(min(100.0, max(0.0, value)))


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _as_dict_list(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _missed_question(raw: dict) -> MissedQuestion:
    return MissedQuestion(
        question=_as_text(raw.get("question")),
        percentageMissed=_as_number(raw.get("percentageMissed")),
        relatedLessons=_as_text_list(raw.get("relatedLessons")),
        improvementSuggestions=_as_text_list(raw.get("improvementSuggestions")),
    )


def _lesson_recommendation(raw: dict) -> LessonRecommendation:
    return LessonRecommendation(
        lessonName=_as_text(raw.get("lessonName")),
        currentContent=_as_text(raw.get("currentContent")),
        suggestedImprovements=_as_text_list(raw.get("suggestedImprovements")),
        additionalResources=_as_text_list(raw.get("additionalResources")),
    )


def assemble_result(filename: str, payload: AssessmentPayload | dict) -> AnalysisResult:
    """Map a model payload onto the canonical per-file record.

    Absent or malformed fields become zero values instead of errors. A payload
    that leaves either list empty yields a schema-violation fallback.
    """
    data = payload.model_dump() if isinstance(payload, AssessmentPayload) else payload
    if not isinstance(data, dict):
        data = {}

    missed = [_missed_question(item) for item in _as_dict_list(data.get("missedQuestions"))]
    lessons = [_lesson_recommendation(item) for item in _as_dict_list(data.get("lessonRecommendations"))]
    if not missed or not lessons:
        return fallback_result(filename, FallbackCategory.SCHEMA_VIOLATION)

    return AnalysisResult(
        filename=filename,
        overallScore=_as_number(data.get("overallScore")),
        missedQuestions=missed,
        lessonRecommendations=lessons,
        status="success",
    )


def fallback_result(filename: str, category: FallbackCategory | str = FallbackCategory.UNEXPECTED) -> AnalysisResult:
    category = FallbackCategory(category)
    description, hint = FALLBACK_MESSAGES[category]
    return AnalysisResult(
        filename=filename,
        overallScore=0,
        missedQuestions=[],
        lessonRecommendations=[
            LessonRecommendation(
                lessonName=ERROR_LESSON_NAME,
                currentContent=description,
                suggestedImprovements=[hint],
                additionalResources=[],
            )
        ],
        status="fallback",
        error_category=category.value,
    )
