from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from course_analyzer.assessment import AssessmentClient
from course_analyzer.config import AnalyzerSettings
from course_analyzer.errors import BatchInputError
from course_analyzer.ingestion import SourceFile, extract_text
from course_analyzer.normalizer import normalize_content
from course_analyzer.rate_limiting import RateLimiter, get_rate_limiter
from course_analyzer.results import FallbackCategory, assemble_result, category_for_exception, fallback_result
from course_analyzer.schema_models import AnalysisResult

logger = logging.getLogger(__name__)


async def prepare_content(source: SourceFile, settings: AnalyzerSettings) -> str:
    extracted = await asyncio.to_thread(extract_text, source.name, source.content)
    return normalize_content(
        extracted,
        min_line_length=settings.min_line_length,
        max_lines=settings.max_lines,
        max_chars=settings.max_chars,
    )


async def analyze_file(
    source: SourceFile,
    client: AssessmentClient,
    *,
    rate_limiter: RateLimiter,
    settings: AnalyzerSettings,
) -> AnalysisResult:
    """Run extraction, normalization, assessment and assembly for one file.

    Never raises: any failure becomes a fallback result for this file.
    """
    try:
        content = await prepare_content(source, settings)
        if not content:
            logger.warning("No content extracted from file: %s", source.name)
            return fallback_result(source.name, FallbackCategory.EXTRACTION_EMPTY)

        await rate_limiter.acquire()
        payload = await client.assess(content)
        result = assemble_result(source.name, payload)
    except Exception as exc:  # noqa: BLE001
        category = category_for_exception(exc)
        logger.warning("Analysis of %s failed (%s): %s", source.name, category.value, exc)
        return fallback_result(source.name, category)

    logger.info("Analyzed %s with score %s.", source.name, result.overallScore)
    return result


async def analyze_batch(
    files: Sequence[SourceFile] | None,
    client: AssessmentClient,
    *,
    rate_limiter: RateLimiter | None = None,
    max_concurrency: int | None = None,
    settings: AnalyzerSettings | None = None,
) -> list[AnalysisResult]:
    """Analyze every file and return one result per file in submission order."""
    if files is None:
        raise BatchInputError("No files were provided for analysis.")

    settings = settings or AnalyzerSettings()
    limiter = rate_limiter or get_rate_limiter(
        settings.rate_limiter,
        delay_seconds=settings.request_delay_seconds,
    )
    semaphore = asyncio.Semaphore(max_concurrency or settings.max_concurrency)

    async def _run(source: SourceFile) -> AnalysisResult:
        async with semaphore:
            return await analyze_file(source, client, rate_limiter=limiter, settings=settings)

    logger.info("Starting analysis of %s files.", len(files))
    results = await asyncio.gather(*(_run(source) for source in files))
    fallbacks = sum(1 for result in results if result.is_fallback)
    logger.info("Analysis complete: %s files, %s fallbacks.", len(results), fallbacks)
    return list(results)


def run_batch(
    files: Sequence[SourceFile] | None,
    client: AssessmentClient,
    **kwargs,
) -> list[AnalysisResult]:
    return asyncio.run(analyze_batch(files, client, **kwargs))
