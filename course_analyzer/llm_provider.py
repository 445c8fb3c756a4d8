from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib import error, request

logger = logging.getLogger(__name__)

OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"
GEMINI_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"

RATE_LIMIT_MARKERS = ("resource_exhausted", "rate limit", "quota")


@dataclass(frozen=True)
class LlmJsonResult:
    status: str
    raw_response: str | None
    warnings: list[str]
    error_kind: str | None = None
    http_status: int | None = None
    retry_after: float | None = field(default=None, compare=False)


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float = 30) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace").strip()
    except Exception:  # noqa: BLE001
        return ""


def _error_message(response_body: str) -> str:
    if not response_body:
        return ""
    try:
        parsed = json.loads(response_body)
    except json.JSONDecodeError:
        return response_body[:200]

    if isinstance(parsed, dict):
        error_payload = parsed.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            status = error_payload.get("status")
            parts = [value.strip() for value in (status, message) if isinstance(value, str) and value.strip()]
            return ": ".join(parts)
    return ""


def _retry_after_seconds(exc: error.HTTPError) -> float | None:
    headers = getattr(exc, "headers", None)
    raw = headers.get("Retry-After") if headers is not None else None
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def is_rate_limit_signal(status_code: int | None, message: str) -> bool:
    if status_code == 429:
        return True
    lowered = (message or "").lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def _http_error_result(provider_name: str, exc: error.HTTPError) -> LlmJsonResult:
    response_excerpt = _error_message(_read_error_body(exc))
    if response_excerpt:
        warning = f"{provider_name} request failed with HTTP {exc.code}: {response_excerpt}"
    else:
        warning = f"{provider_name} request failed with HTTP {exc.code}."

    rate_limited = is_rate_limit_signal(exc.code, response_excerpt)
    return LlmJsonResult(
        status="error",
        raw_response=None,
        warnings=[warning],
        error_kind="rate_limited" if rate_limited else "transport",
        http_status=exc.code,
        retry_after=_retry_after_seconds(exc) if rate_limited else None,
    )


def _transport_error_result(provider_name: str, exc: Exception) -> LlmJsonResult:
    logger.warning("%s request failed before receiving a response: %s", provider_name, exc)
    return LlmJsonResult(
        status="error",
        raw_response=None,
        warnings=[f"{provider_name} request failed before receiving a response."],
        error_kind="transport",
    )


def _collect_gemini_text(response_payload: dict[str, Any]) -> str | None:
    candidates = response_payload.get("candidates") or []
    if not candidates:
        return None

    parts = (candidates[0].get("content") or {}).get("parts") or []
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())

    if extracted:
        return "\n".join(extracted)
    return None


def _collect_openai_text(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []

    collected: list[str] = []
    for part in content:
        if not isinstance(part, dict):
            continue

        direct_text = part.get("text")
        if isinstance(direct_text, str) and direct_text.strip():
            collected.append(direct_text.strip())
            continue

        value = part.get("value")
        if isinstance(value, str) and value.strip():
            collected.append(value.strip())

    return collected


def _extract_openai_text(response_payload: dict[str, Any]) -> str | None:
    output_text = response_payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    output = response_payload.get("output")
    if isinstance(output, list):
        extracted: list[str] = []
        for item in output:
            if not isinstance(item, dict):
                continue
            extracted.extend(_collect_openai_text(item.get("content")))

        if extracted:
            return "\n".join(extracted)

    return None


def _call_openai(api_key: str, payload: dict[str, Any], timeout: float) -> LlmJsonResult:
    try:
        response_payload = _post_json(
            OPENAI_RESPONSES_URL,
            payload,
            {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
        )
    except error.HTTPError as exc:
        return _http_error_result("OpenAI", exc)
    except Exception as exc:  # noqa: BLE001
        return _transport_error_result("OpenAI", exc)

    extracted_text = _extract_openai_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    return LlmJsonResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=["OpenAI response did not contain extractable text content."],
        error_kind="empty_response",
    )


def _call_gemini(api_key: str, model: str, payload: dict[str, Any], timeout: float) -> LlmJsonResult:
    endpoint = f"{GEMINI_MODELS_URL}/{model}:generateContent?key={api_key}"
    try:
        response_payload = _post_json(endpoint, payload, {"Content-Type": "application/json"}, timeout=timeout)
    except error.HTTPError as exc:
        return _http_error_result("Gemini", exc)
    except Exception as exc:  # noqa: BLE001
        return _transport_error_result("Gemini", exc)

    extracted_text = _collect_gemini_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    feedback = response_payload.get("promptFeedback") or {}
    block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
    warning = "Gemini response did not contain text content."
    if isinstance(block_reason, str) and block_reason:
        warning = f"Gemini response was blocked: {block_reason}."
    return LlmJsonResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=[warning],
        error_kind="empty_response",
    )


def generate_json_with_openai(
    api_key: str,
    model: str,
    prompt: str,
    *,
    temperature: float = 0.3,
    max_output_tokens: int = 1024,
    timeout: float = 30,
) -> LlmJsonResult:
    payload = {
        "model": model,
        "input": prompt,
        "temperature": temperature,
        "max_output_tokens": max_output_tokens,
        "text": {"format": {"type": "json_object"}},
    }
    return _call_openai(api_key, payload, timeout)


def generate_json_with_gemini(
    api_key: str,
    model: str,
    prompt: str,
    *,
    temperature: float = 0.3,
    max_output_tokens: int = 1024,
    timeout: float = 30,
) -> LlmJsonResult:
    payload = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "temperature": temperature,
            "topP": 0.8,
            "topK": 40,
            "maxOutputTokens": max_output_tokens,
        },
    }
    return _call_gemini(api_key, model, payload, timeout)


def generate_text_with_openai(api_key: str, model: str, prompt: str, max_output_tokens: int = 400) -> LlmJsonResult:
    payload = {
        "model": model,
        "input": prompt,
        "max_output_tokens": max_output_tokens,
    }
    return _call_openai(api_key, payload, timeout=20)


def generate_text_with_gemini(api_key: str, model: str, prompt: str, max_output_tokens: int = 400) -> LlmJsonResult:
    payload = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "maxOutputTokens": max_output_tokens,
        },
    }
    return _call_gemini(api_key, model, payload, timeout=20)
