from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from course_analyzer.config import AnalyzerSettings, normalize_provider
from course_analyzer.errors import ModelUnavailable, ParseFailure, RateLimited, SchemaViolation, TransportFailure
from course_analyzer.llm_provider import LlmJsonResult, generate_json_with_gemini, generate_json_with_openai
from course_analyzer.schema_models import AssessmentPayload, check_assessment_payload

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("gemini", "openai")

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")

ASSESSMENT_PROMPT = """You are an expert at analyzing educational content. Your task is to analyze the provided content and return a JSON object with specific fields.

The response MUST be a valid JSON object with EXACTLY these fields, with NO additional fields:
{
  "overallScore": (required number between 0-100, representing overall effectiveness),
  "missedQuestions": [
    {
      "question": (required string describing a specific question or concept students struggled with),
      "percentageMissed": (required number between 0-100),
      "relatedLessons": [required array of strings naming related lessons],
      "improvementSuggestions": [required array of strings with specific suggestions]
    }
  ],
  "lessonRecommendations": [
    {
      "lessonName": (required string with specific lesson name),
      "currentContent": (required string summarizing current content),
      "suggestedImprovements": [required array of strings with specific improvements],
      "additionalResources": [array of strings with resource suggestions]
    }
  ]
}

IMPORTANT:
1. ALL fields are required and must be present
2. missedQuestions and lessonRecommendations must contain at least one item
3. Numbers must be between 0-100
4. Strings must be descriptive, specific and non-empty
5. Response must be valid JSON

Analyze this educational content and respond ONLY with the JSON object described above:

"""


def build_assessment_prompt(content: str) -> str:
    return f"{ASSESSMENT_PROMPT}{content}"


def strip_code_fences(text: str) -> str:
    cleaned = _LEADING_FENCE.sub("", text or "", count=1)
    return _TRAILING_FENCE.sub("", cleaned, count=1).strip()


def parse_assessment_response(text: str) -> Any:
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ParseFailure("Model returned an empty response.")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseFailure(f"Model response was not valid JSON: {exc}") from exc


def validate_assessment(payload: Any) -> AssessmentPayload:
    check = check_assessment_payload(payload)
    if not check.valid:
        raise SchemaViolation(check.violation or "invalid_payload", check.detail or "Invalid assessment payload.")
    return check.payload


@dataclass
class AssessmentClient:
    """Sends normalized course content to the configured model and returns a validated assessment.

    ``max_attempts`` counts every request, the first one included. Only
    rate-limit responses are retried; the wait before retry ``n`` (0-based) is
    ``initial_backoff_seconds * 2 ** n``.
    """

    provider: str
    api_key: str | None
    model: str
    temperature: float = 0.3
    max_output_tokens: int = 1024
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    timeout_seconds: float = 30.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        self.provider = normalize_provider(self.provider)
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unknown provider '{self.provider}'. Available providers: {', '.join(SUPPORTED_PROVIDERS)}."
            )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

    @classmethod
    def from_settings(cls, settings: AnalyzerSettings) -> "AssessmentClient":
        return cls(
            provider=settings.llm_provider,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            max_attempts=settings.max_attempts,
            initial_backoff_seconds=settings.initial_backoff_seconds,
            timeout_seconds=settings.http_timeout_seconds,
        )

    def _generate(self, prompt: str) -> LlmJsonResult:
        generate = generate_json_with_openai if self.provider == "openai" else generate_json_with_gemini
        return generate(
            api_key=self.api_key or "",
            model=self.model,
            prompt=prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            timeout=self.timeout_seconds,
        )

    async def request_once(self, prompt: str) -> str:
        if not (self.api_key or "").strip():
            raise TransportFailure(f"No API key configured for provider '{self.provider}'.")

        result = await asyncio.to_thread(self._generate, prompt)
        if result.status == "success" and result.raw_response:
            return result.raw_response

        message = "; ".join(result.warnings) or "Model request failed."
        if result.error_kind == "rate_limited":
            raise RateLimited(message, retry_after=result.retry_after)
        if result.error_kind == "empty_response":
            raise ParseFailure(message)
        raise TransportFailure(message)

    async def assess(self, content: str) -> AssessmentPayload:
        prompt = build_assessment_prompt(content)

        for attempt in range(self.max_attempts):
            try:
                raw_response = await self.request_once(prompt)
            except RateLimited as exc:
                if attempt + 1 >= self.max_attempts:
                    raise ModelUnavailable(
                        f"Model still rate limited after {self.max_attempts} attempts: {exc}",
                        attempts=self.max_attempts,
                    ) from exc
                backoff = self.initial_backoff_seconds * (2 ** attempt)
                logger.warning(
                    "Rate limited on attempt %s/%s, retrying in %.1fs.",
                    attempt + 1,
                    self.max_attempts,
                    backoff,
                )
                await self.sleep(backoff)
                continue

            return validate_assessment(parse_assessment_response(raw_response))

        raise ModelUnavailable("Model request was not attempted.", attempts=0)


def build_assessment_client(settings: AnalyzerSettings) -> AssessmentClient:
    return AssessmentClient.from_settings(settings)
