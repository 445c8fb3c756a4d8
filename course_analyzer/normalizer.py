from __future__ import annotations

import re

DEFAULT_MIN_LINE_LENGTH = 10
DEFAULT_MAX_LINES = 50

_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\n]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def strip_non_printable(text: str) -> str:
    return _NON_PRINTABLE.sub("", text)


def collapse_blank_lines(text: str) -> str:
    return _EXCESS_NEWLINES.sub("\n\n", text)


def _truncate_lines(lines: list[str], max_chars: int) -> list[str]:
    kept: list[str] = []
    used = 0
    for line in lines:
        cost = len(line) + (1 if kept else 0)
        if used + cost > max_chars:
            break
        kept.append(line)
        used += cost

    if not kept and lines:
        # A single oversized line is cut rather than dropped.
        kept.append(lines[0][:max_chars].rstrip())
    return kept


def normalize_content(
    text: str,
    *,
    min_line_length: int = DEFAULT_MIN_LINE_LENGTH,
    max_lines: int = DEFAULT_MAX_LINES,
    max_chars: int | None = None,
) -> str:
    """Reduce extracted text to a bounded sample of significant lines.

    Lines of ``min_line_length`` characters or fewer (after trimming) are dropped
    as headings and bullet noise, and only the first ``max_lines`` survivors are
    kept. ``max_chars`` caps the output on a line boundary.
    """
    if not text:
        return ""

    cleaned = collapse_blank_lines(strip_non_printable(text)).strip()
    lines = [line.strip() for line in cleaned.split("\n")]
    lines = [line for line in lines if len(line) > min_line_length][:max_lines]

    if max_chars is not None:
        lines = [line for line in _truncate_lines(lines, max_chars) if len(line) > min_line_length]
    return "\n".join(lines)
