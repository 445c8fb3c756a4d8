from __future__ import annotations

import io
import logging
import re
import zipfile
import zlib
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

SLIDE_PREFIX = "ppt/slides/slide"
SLIDE_SUFFIX = ".xml"
NAMESPACES = {
    "p": "http://schemas.openxmlformats.org/presentationml/2006/main",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
}

_NUMERIC_LINE = re.compile(r"^[0-9]+$")
_URL_LINE = re.compile(r"^(http|https)://")
_SLIDE_NUMBER = re.compile(r"slide(\d+)\.xml$")

_SLIDE_READ_ERRORS = (
    KeyError,
    ET.ParseError,
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    NotImplementedError,
    RuntimeError,
)


def _is_slide_entry(name: str) -> bool:
    return name.startswith(SLIDE_PREFIX) and name.endswith(SLIDE_SUFFIX)


def _slide_number(name: str) -> int:
    match = _SLIDE_NUMBER.search(name)
    return int(match.group(1)) if match else 0


def list_slide_entries(archive: zipfile.ZipFile, *, numeric_order: bool = False) -> list[str]:
    """Return slide XML entry names in deck order.

    Entries are sorted lexically by name, so ``slide10.xml`` comes before
    ``slide2.xml``. Pass ``numeric_order=True`` to sort by the slide number.
    """
    names = [name for name in archive.namelist() if _is_slide_entry(name)]
    if numeric_order:
        return sorted(names, key=lambda name: (_slide_number(name), name))
    return sorted(names)


def _collect_paragraph_runs(text_body: ET.Element | None, texts: list[str]) -> None:
    if text_body is None:
        return
    for paragraph in text_body.findall("a:p", NAMESPACES):
        for run in paragraph.findall("a:r", NAMESPACES):
            node = run.find("a:t", NAMESPACES)
            if node is None or not isinstance(node.text, str):
                continue
            cleaned = node.text.strip()
            if cleaned:
                texts.append(cleaned)


def _slide_fragments(root: ET.Element) -> list[str]:
    texts: list[str] = []
    common_slide = root.find("p:cSld", NAMESPACES)
    if common_slide is None:
        return texts

    shape_tree = common_slide.find("p:spTree", NAMESPACES)
    if shape_tree is not None:
        for shape in shape_tree.findall("p:sp", NAMESPACES):
            _collect_paragraph_runs(shape.find("p:txBody", NAMESPACES), texts)

    # Text bodies attached directly to the slide, outside the shape tree.
    _collect_paragraph_runs(common_slide.find("p:txBody", NAMESPACES), texts)
    return texts


def _read_slide_text(archive: zipfile.ZipFile, slide_path: str) -> str:
    try:
        root = ET.fromstring(archive.read(slide_path))
    except _SLIDE_READ_ERRORS as exc:
        logger.warning("Skipping slide '%s': %s", slide_path, exc)
        return ""
    return "\n".join(_slide_fragments(root))


def extract_slide_texts(content_bytes: bytes, *, numeric_order: bool = False) -> list[str]:
    """Return the raw text of every slide, one entry per slide in deck order."""
    try:
        with zipfile.ZipFile(io.BytesIO(content_bytes)) as archive:
            slide_paths = list_slide_entries(archive, numeric_order=numeric_order)
            return [_read_slide_text(archive, slide_path) for slide_path in slide_paths]
    except zipfile.BadZipFile:
        logger.warning("PPTX parser failed: invalid ZIP container.")
        return []


def clean_slide_lines(text: str) -> str:
    lines = []
    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue
        if _NUMERIC_LINE.match(line) or _URL_LINE.match(line):
            continue
        lines.append(line)
    return "\n".join(lines)


def extract_pptx_text(content_bytes: bytes, *, numeric_order: bool = False) -> str:
    slide_texts = extract_slide_texts(content_bytes, numeric_order=numeric_order)
    joined = "\n\n".join(text for text in slide_texts if text)
    combined = clean_slide_lines(joined)

    if not combined:
        logger.warning("PPTX parser found no readable slide text.")
        return ""

    logger.debug("Extracted %s characters from %s slides.", len(combined), len(slide_texts))
    return combined
