from __future__ import annotations

import copy

import pytest
from pydantic import ValidationError

from course_analyzer.schema_models import (
    AnalysisResult,
    assessment_json_schema,
    check_assessment_payload,
)

VALID_PAYLOAD = {
    "overallScore": 72,
    "missedQuestions": [
        {
            "question": "Why does the denominator stay the same when adding fractions?",
            "percentageMissed": 41.5,
            "relatedLessons": ["Adding fractions"],
            "improvementSuggestions": ["Use fraction strips before the symbolic rule"],
        }
    ],
    "lessonRecommendations": [
        {
            "lessonName": "Adding fractions",
            "currentContent": "Rule-based walkthrough with two worked examples",
            "suggestedImprovements": ["Add a visual model", "Include a common-mistakes slide"],
            "additionalResources": ["Khan Academy: adding fractions"],
        }
    ],
}


def _payload(**overrides) -> dict:
    payload = copy.deepcopy(VALID_PAYLOAD)
    payload.update(overrides)
    return payload


def test_assessment_schema_exposes_required_top_level_fields():
    schema = assessment_json_schema()

    assert set(schema.get("required", [])) == {"overallScore", "missedQuestions", "lessonRecommendations"}


def test_valid_payload_passes():
    check = check_assessment_payload(_payload())

    assert check.valid is True
    assert check.violation is None
    assert check.payload.overallScore == 72
    assert check.payload.lessonRecommendations[0].lessonName == "Adding fractions"


def test_empty_additional_resources_are_allowed():
    payload = _payload()
    payload["lessonRecommendations"][0]["additionalResources"] = []

    assert check_assessment_payload(payload).valid is True


def test_missing_lesson_recommendations_is_a_violation():
    payload = _payload()
    del payload["lessonRecommendations"]

    check = check_assessment_payload(payload)

    assert check.valid is False
    assert check.violation == "missing_lesson_recommendations"


def test_empty_missed_questions_is_a_violation():
    check = check_assessment_payload(_payload(missedQuestions=[]))

    assert check.violation == "missing_missed_questions"


@pytest.mark.parametrize("score", ["85", None, True, [80]])
def test_non_numeric_score_is_a_violation(score):
    check = check_assessment_payload(_payload(overallScore=score))

    assert check.violation == "score_not_numeric"


@pytest.mark.parametrize("score", [-1, 100.5, 250])
def test_out_of_range_score_is_a_violation(score):
    check = check_assessment_payload(_payload(overallScore=score))

    assert check.violation == "score_out_of_range"


def test_extra_top_level_field_is_a_violation():
    check = check_assessment_payload(_payload(summary="Looks fine"))

    assert check.violation == "unexpected_field"
    assert "summary" in check.detail


def test_missed_question_with_empty_related_lessons_is_a_violation():
    payload = _payload()
    payload["missedQuestions"][0]["relatedLessons"] = []

    check = check_assessment_payload(payload)

    assert check.violation == "invalid_missed_question"
    assert check.detail.startswith("missedQuestions[0]")


def test_missed_question_with_string_percentage_is_a_violation():
    payload = _payload()
    payload["missedQuestions"][0]["percentageMissed"] = "40"

    assert check_assessment_payload(payload).violation == "invalid_missed_question"


def test_blank_lesson_name_is_a_violation():
    payload = _payload()
    payload["lessonRecommendations"][0]["lessonName"] = "   "

    assert check_assessment_payload(payload).violation == "invalid_lesson_recommendation"


def test_padded_strings_are_kept_as_returned():
    payload = _payload()
    payload["lessonRecommendations"][0]["lessonName"] = " Adding fractions  "

    check = check_assessment_payload(payload)

    assert check.valid is True
    assert check.payload.lessonRecommendations[0].lessonName == " Adding fractions  "


def test_one_bad_entry_invalidates_the_whole_payload():
    payload = _payload()
    payload["lessonRecommendations"].append({"lessonName": "Decimals"})

    check = check_assessment_payload(payload)

    assert check.valid is False
    assert check.detail.startswith("lessonRecommendations[1]")


def test_non_object_payload_is_a_violation():
    assert check_assessment_payload([VALID_PAYLOAD]).violation == "not_an_object"


def test_analysis_result_is_immutable():
    result = AnalysisResult(filename="lesson.txt", overallScore=50)

    with pytest.raises(ValidationError):
        result.overallScore = 90


def test_analysis_result_rejects_scores_outside_bounds():
    with pytest.raises(ValidationError):
        AnalysisResult(filename="lesson.txt", overallScore=101)
