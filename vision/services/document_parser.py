"""
Document Parser: plain-text extraction for uploaded files.

Routes on MIME type (falling back to the file extension) to a format
handler, then sanitizes, optionally truncates and analyses the text.
No AI involved: extraction is deterministic and always runs at upload.

Supported:
    PDF          PyPDF2
    DOCX         python-docx
    XLSX         openpyxl (read-only, values only)
    CSV / TSV    csv module
    JSON         pretty-printed when valid
    XML / HTML   tags stripped
    text / md    as-is
"""

import csv
import io
import json
import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser

import docx
import openpyxl
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from vision.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Content truncated]"

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

EXTENSION_MIME = {
    "pdf": MIME_PDF,
    "docx": MIME_DOCX,
    "xlsx": MIME_XLSX,
    "csv": "text/csv",
    "tsv": "text/tab-separated-values",
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "htm": "text/html",
    "txt": "text/plain",
    "md": "text/markdown",
    "log": "text/plain",
}

_STOP_WORDS = {
    "en": {"the", "and", "is", "in", "to", "of", "that", "it", "for", "with", "as", "was", "on", "are"},
    "es": {"el", "la", "de", "que", "y", "en", "los", "se", "del", "las", "por", "un", "para", "con"},
    "fr": {"le", "la", "de", "et", "les", "des", "est", "un", "une", "du", "que", "pour", "dans", "pas"},
    "de": {"der", "die", "und", "das", "ist", "den", "nicht", "mit", "von", "sich", "des", "auf", "ein", "zu"},
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class UnsupportedDocumentError(ValidationError):
    """No text extractor exists for the given MIME type / extension."""


@dataclass
class ParsedDocument:
    text: str
    word_count: int
    character_count: int
    language: str
    truncated: bool = False
    metadata: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "text": self.text,
            "word_count": self.word_count,
            "character_count": self.character_count,
            "language": self.language,
            "truncated": self.truncated,
            "metadata": self.metadata,
        }


# ── Text helpers ──────────────────────────────────────────────────────────

def sanitize_text(text: str) -> str:
    """Normalize line endings, drop control chars (keeps \\n and \\t), squeeze whitespace."""
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def count_words(text: str) -> int:
    return len(text.split())


def detect_language(text: str) -> str:
    """Stop-word vote over en/es/fr/de; ``en`` when nothing wins."""
    words = re.findall(r"[a-zàâçéèêëîïôûùüÿñæœäöß]+", (text or "").lower())
    if len(words) < 5:
        return "en"
    sample = words[:2000]
    scores = {lang: sum(1 for w in sample if w in stops) for lang, stops in _STOP_WORDS.items()}
    best = max(scores, key=scores.get)
    return best if scores[best] > 0 else "en"


def truncate(text: str, max_length: int | None) -> tuple[str, bool]:
    if not max_length or len(text) <= max_length:
        return text, False
    return text[:max_length] + TRUNCATION_MARKER, True


def _decode(data: bytes) -> str:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


class _TagStripper(HTMLParser):
    """Collects character data, skipping <script>/<style> content."""

    _SKIP = {"script", "style"}
    _BLOCK = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "section", "article"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self._SKIP:
            self._skip_depth += 1
        elif tag in self._BLOCK:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in self._SKIP and self._skip_depth:
            self._skip_depth -= 1
        elif tag in self._BLOCK:
            self.parts.append("\n")

    def handle_data(self, data):
        if not self._skip_depth:
            self.parts.append(data)


def _strip_tags(markup: str) -> str:
    stripper = _TagStripper()
    stripper.feed(markup)
    stripper.close()
    return "".join(stripper.parts)


# ── Format handlers ───────────────────────────────────────────────────────
# Each returns (raw_text, metadata).

def _parse_pdf(data: bytes):
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for page in reader.pages:
            pages.append(page.extract_text() or "")
    except PdfReadError as e:
        raise ValidationError(f"Unreadable PDF: {e}") from e
    meta = {"page_count": len(pages)}
    info = reader.metadata
    if info:
        if info.title:
            meta["title"] = str(info.title)
        if info.author:
            meta["author"] = str(info.author)
    return "\n\n".join(pages), meta


def _parse_docx(data: bytes):
    document = docx.Document(io.BytesIO(data))
    lines = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            lines.append("\t".join(cell.text for cell in row.cells))
    meta = {"paragraph_count": len(document.paragraphs), "table_count": len(document.tables)}
    props = document.core_properties
    if props.title:
        meta["title"] = props.title
    if props.author:
        meta["author"] = props.author
    return "\n".join(lines), meta


def _parse_xlsx(data: bytes):
    wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sections = []
        for ws in wb.worksheets:
            rows = []
            for row in ws.iter_rows(values_only=True):
                cells = ["" if v is None else str(v) for v in row]
                if any(cells):
                    rows.append("\t".join(cells).rstrip("\t"))
            sections.append(f"## {ws.title}\n" + "\n".join(rows))
        return "\n\n".join(sections), {"sheet_names": wb.sheetnames, "sheet_count": len(wb.sheetnames)}
    finally:
        wb.close()


def _parse_csv(data: bytes, delimiter=","):
    reader = csv.reader(io.StringIO(_decode(data)), delimiter=delimiter)
    rows = [row for row in reader]
    text = "\n".join("\t".join(row) for row in rows)
    return text, {"row_count": len(rows), "column_count": max((len(r) for r in rows), default=0)}


def _parse_json(data: bytes):
    raw = _decode(data)
    try:
        return json.dumps(json.loads(raw), indent=2, ensure_ascii=False), {"valid_json": True}
    except json.JSONDecodeError:
        return raw, {"valid_json": False}


def _parse_markup(data: bytes):
    return _strip_tags(_decode(data)), {}


def _parse_text(data: bytes):
    return _decode(data), {}


def _handler_for(mime_type: str, extension: str):
    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in ("", "application/octet-stream") and extension in EXTENSION_MIME:
        mime = EXTENSION_MIME[extension]

    if mime == MIME_PDF:
        return _parse_pdf
    if mime == MIME_DOCX:
        return _parse_docx
    if mime == MIME_XLSX:
        return _parse_xlsx
    if mime == "text/csv":
        return _parse_csv
    if mime == "text/tab-separated-values":
        return lambda data: _parse_csv(data, delimiter="\t")
    if mime == "application/json":
        return _parse_json
    if mime in ("application/xml", "text/xml", "text/html", "application/xhtml+xml"):
        return _parse_markup
    if mime.startswith("text/"):
        return _parse_text
    return None


def extension_of(filename: str) -> str:
    return filename.rsplit(".", 1)[1].lower() if filename and "." in filename else ""


def is_supported(mime_type: str, filename: str = "") -> bool:
    return _handler_for(mime_type, extension_of(filename)) is not None


def parse_document(data: bytes, mime_type: str, filename: str = "",
                   max_length: int | None = None) -> ParsedDocument:
    """
    Extract and analyse the text of one file.

    Args:
        data: Raw file bytes.
        mime_type: Declared MIME type (may be generic; the extension is the fallback).
        filename: Original filename, used for the extension fallback.
        max_length: Truncate the sanitized text to this many characters.

    Raises:
        UnsupportedDocumentError: No handler for this type.
        ValidationError: The file is corrupt for its declared type.
    """
    handler = _handler_for(mime_type, extension_of(filename))
    if handler is None:
        raise UnsupportedDocumentError(
            f"Text extraction is not supported for {mime_type or 'unknown type'}",
            details={"mime_type": mime_type},
        )

    raw, metadata = handler(data)
    text = sanitize_text(raw)
    language = detect_language(text)
    words = count_words(text)
    text, truncated = truncate(text, max_length)
    if truncated:
        metadata["original_length"] = len(sanitize_text(raw))
    logger.debug("Parsed %s (%s): %d words, lang=%s", filename, mime_type, words, language)
    return ParsedDocument(
        text=text,
        word_count=words,
        character_count=len(text),
        language=language,
        truncated=truncated,
        metadata=metadata,
    )
