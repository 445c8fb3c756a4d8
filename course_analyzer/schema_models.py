from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("String must contain non-whitespace text.")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_require_text)]
NonEmptyStrList = Annotated[list[NonEmptyStr], Field(min_length=1)]
Percentage = Annotated[float, Field(ge=0, le=100)]
StrictPercentage = Annotated[float, Field(ge=0, le=100, strict=True)]

ERROR_LESSON_NAME = "Error"

ASSESSMENT_FIELDS = ("overallScore", "missedQuestions", "lessonRecommendations")


# Strict shapes the model output must satisfy.


class MissedQuestionPayload(BaseModel):
    question: NonEmptyStr
    percentageMissed: StrictPercentage
    relatedLessons: NonEmptyStrList
    improvementSuggestions: NonEmptyStrList


class LessonRecommendationPayload(BaseModel):
    lessonName: NonEmptyStr
    currentContent: NonEmptyStr
    suggestedImprovements: NonEmptyStrList
    additionalResources: list[NonEmptyStr] = Field(default_factory=list)


class AssessmentPayload(BaseModel):
    """The JSON object the assessment prompt asks the model to return."""

    model_config = ConfigDict(extra="forbid")

    overallScore: StrictPercentage
    missedQuestions: Annotated[list[MissedQuestionPayload], Field(min_length=1)]
    lessonRecommendations: Annotated[list[LessonRecommendationPayload], Field(min_length=1)]


# Canonical records handed to persistence and rendering.


class MissedQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str = ""
    percentageMissed: float = 0
    relatedLessons: list[str] = Field(default_factory=list)
    improvementSuggestions: list[str] = Field(default_factory=list)


class LessonRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    lessonName: str = ""
    currentContent: str = ""
    suggestedImprovements: list[str] = Field(default_factory=list)
    additionalResources: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    overallScore: Percentage = 0
    missedQuestions: list[MissedQuestion] = Field(default_factory=list)
    lessonRecommendations: list[LessonRecommendation] = Field(default_factory=list)
    status: Literal["success", "fallback"] = "success"
    error_category: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.status == "fallback"

    def to_dict(self) -> dict:
        return self.model_dump()


@dataclass(frozen=True)
class SchemaCheck:
    valid: bool
    payload: AssessmentPayload | None = None
    violation: str | None = None
    detail: str | None = None


def _violation(kind: str, detail: str) -> SchemaCheck:
    return SchemaCheck(valid=False, violation=kind, detail=detail)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def check_assessment_payload(payload: Any) -> SchemaCheck:
    """Validate a parsed model response against the assessment contract.

    The check is total: any missing field, empty sequence or malformed nested
    entry makes the whole payload invalid.
    """
    if not isinstance(payload, dict):
        return _violation("not_an_object", "Response must be a JSON object.")

    unexpected = sorted(set(payload) - set(ASSESSMENT_FIELDS))
    if unexpected:
        return _violation("unexpected_field", f"Unexpected fields: {', '.join(unexpected)}.")

    score = payload.get("overallScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return _violation("score_not_numeric", "overallScore must be a number.")
    if not 0 <= score <= 100:
        return _violation("score_out_of_range", f"overallScore {score} is outside 0-100.")

    missed = payload.get("missedQuestions")
    if not isinstance(missed, list) or not missed:
        return _violation("missing_missed_questions", "missedQuestions must be a non-empty array.")

    lessons = payload.get("lessonRecommendations")
    if not isinstance(lessons, list) or not lessons:
        return _violation(
            "missing_lesson_recommendations",
            "lessonRecommendations must be a non-empty array.",
        )

    for index, item in enumerate(missed):
        try:
            MissedQuestionPayload.model_validate(item)
        except ValidationError as exc:
            return _violation("invalid_missed_question", f"missedQuestions[{index}] {_first_error(exc)}")

    for index, item in enumerate(lessons):
        try:
            LessonRecommendationPayload.model_validate(item)
        except ValidationError as exc:
            return _violation(
                "invalid_lesson_recommendation",
                f"lessonRecommendations[{index}] {_first_error(exc)}",
            )

    return SchemaCheck(valid=True, payload=AssessmentPayload.model_validate(payload))


def assessment_json_schema() -> dict[str, Any]:
    """Expose JSON schema for tests and tooling."""

    return AssessmentPayload.model_json_schema()
