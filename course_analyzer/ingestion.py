from __future__ import annotations

import io
import logging
import mimetypes
import zipfile
from dataclasses import dataclass
from pathlib import Path

from course_analyzer.slide_extraction import SLIDE_PREFIX, extract_pptx_text

logger = logging.getLogger(__name__)

PPTX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

ALLOWED_EXTENSIONS = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".pptx": PPTX_MIME_TYPE,
}
ALLOWED_CONTENT_TYPES = {"application/json", PPTX_MIME_TYPE}

ZIP_SIGNATURE = b"PK\x03\x04"


@dataclass(frozen=True)
class SourceFile:
    name: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return normalize_extension(self.name)


@dataclass
class ValidationResult:
    status: str
    message: str
    warnings: list[str]


def normalize_extension(filename: str) -> str:
    return Path(filename).suffix.lower().strip()


def detect_magic_type(content_bytes: bytes) -> str | None:
    if content_bytes.startswith(ZIP_SIGNATURE):
        return "application/zip"
    return None


def detect_content_type(filename: str, content_type: str | None) -> str:
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    extension = normalize_extension(filename)
    if extension in ALLOWED_EXTENSIONS:
        return ALLOWED_EXTENSIONS[extension]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def is_supported_content_type(content_type: str) -> bool:
    return content_type.startswith("text/") or content_type in ALLOWED_CONTENT_TYPES


def validate_upload(filename: str, content_bytes: bytes, content_type: str | None = None) -> ValidationResult:
    warnings: list[str] = []
    extension = normalize_extension(filename)
    detected = detect_content_type(filename, content_type)

    if extension not in ALLOWED_EXTENSIONS and not is_supported_content_type(detected):
        warnings.append(
            f"Unsupported file type '{extension or detected}'. "
            "Supported types: TXT, MD, JSON and PPTX slide decks."
        )
        return ValidationResult(
            status="warning",
            message="Unsupported file type.",
            warnings=warnings,
        )

    if not content_bytes:
        warnings.append(f"File '{filename}' is empty; it will be reported without an assessment.")

    return ValidationResult(
        status="success",
        message="File accepted for analysis.",
        warnings=warnings,
    )


def _looks_like_slide_deck(filename: str, content_bytes: bytes) -> bool:
    if normalize_extension(filename) == ".pptx":
        return True
    if detect_magic_type(content_bytes) != "application/zip":
        return False
    try:
        with zipfile.ZipFile(io.BytesIO(content_bytes)) as archive:
            return any(name.startswith(SLIDE_PREFIX) for name in archive.namelist())
    except zipfile.BadZipFile:
        return False


def extract_text(filename: str, content_bytes: bytes) -> str:
    """Extract plain text from an uploaded file.

    Slide decks are detected by extension or ZIP signature; everything else is
    decoded as UTF-8. Returns an empty string instead of raising.
    """
    try:
        if _looks_like_slide_deck(filename, content_bytes):
            return extract_pptx_text(content_bytes)
        return content_bytes.decode("utf-8")
    except Exception as exc:  # noqa: BLE001
        logger.warning("Error extracting text from '%s': %s", filename, exc)
        return ""
