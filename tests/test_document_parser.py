"""
Document parser tests: sanitizing, language detection, truncation and the
per-format handlers (CSV, JSON, HTML, XLSX, DOCX).
"""

import io

import docx
import pytest
from openpyxl import Workbook

from vision.services import document_parser
from vision.services.document_parser import (
    MIME_DOCX,
    MIME_XLSX,
    TRUNCATION_MARKER,
    UnsupportedDocumentError,
    parse_document,
)


class TestTextHelpers:
    def test_sanitize(self):
        raw = "Line one\r\n\r\n\r\n\r\nLine\x00 two\t\t  spaced  \x07"
        assert document_parser.sanitize_text(raw) == "Line one\n\nLine two spaced"

    def test_truncate(self):
        text, truncated = document_parser.truncate("abcdef", 3)
        assert text == "abc" + TRUNCATION_MARKER
        assert truncated is True
        assert document_parser.truncate("abc", 3) == ("abc", False)
        assert document_parser.truncate("abc", None) == ("abc", False)

    @pytest.mark.parametrize("text,expected", [
        ("The volunteers and the staff met in the hall to plan for the drive", "en"),
        ("El comité de la casa y los vecinos se reunieron en el parque para la colecta", "es"),
        ("Le comité et les bénévoles de la maison sont dans une réunion pour des dons", "fr"),
        ("Der Verein und die Helfer sind mit den Spenden auf dem Weg zu der Schule", "de"),
        ("too short", "en"),
    ])
    def test_detect_language(self, text, expected):
        assert document_parser.detect_language(text) == expected

    def test_extension_of(self):
        assert document_parser.extension_of("Budget.FINAL.XLSX") == "xlsx"
        assert document_parser.extension_of("README") == ""


class TestFormats:
    def test_plain_text(self):
        parsed = parse_document(b"Hello   community\n", "text/plain", "a.txt")
        assert parsed.text == "Hello community"
        assert parsed.word_count == 2
        assert parsed.character_count == len("Hello community")

    def test_latin1_fallback(self):
        parsed = parse_document("Café résumé".encode("latin-1"), "text/plain", "a.txt")
        assert parsed.text == "Café résumé"

    def test_csv(self):
        parsed = parse_document(b"name,qty\nrice,10\nbeans,4\n", "text/csv", "stock.csv")
        assert parsed.metadata == {"row_count": 3, "column_count": 2}
        assert "beans 4" in parsed.text

    def test_json_pretty_printed(self):
        parsed = parse_document(b'{"event":"gala","seats":120}', "application/json", "e.json")
        assert parsed.metadata["valid_json"] is True
        assert '"seats": 120' in parsed.text

    def test_invalid_json_kept_raw(self):
        parsed = parse_document(b"{not json", "application/json", "e.json")
        assert parsed.metadata["valid_json"] is False
        assert parsed.text == "{not json"

    def test_html_tags_and_scripts_stripped(self):
        html = b"<html><head><style>p{}</style><script>alert(1)</script></head>" \
               b"<body><h1>Annual Report</h1><p>We served 500 families.</p></body></html>"
        parsed = parse_document(html, "text/html", "report.html")
        assert "alert" not in parsed.text
        assert parsed.text == "Annual Report\n\nWe served 500 families."

    def test_xlsx(self):
        wb = Workbook()
        ws = wb.active
        ws.title = "Donors"
        ws.append(["Name", "Amount"])
        ws.append(["Rivera", 250])
        buf = io.BytesIO()
        wb.save(buf)

        parsed = parse_document(buf.getvalue(), MIME_XLSX, "donors.xlsx")
        assert parsed.metadata["sheet_names"] == ["Donors"]
        assert "## Donors" in parsed.text
        assert "Rivera 250" in parsed.text

    def test_docx(self):
        document = docx.Document()
        document.core_properties.title = "Board Minutes"
        document.add_paragraph("Meeting called to order.")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Motion"
        table.rows[0].cells[1].text = "Passed"
        buf = io.BytesIO()
        document.save(buf)

        parsed = parse_document(buf.getvalue(), MIME_DOCX, "minutes.docx")
        assert "Meeting called to order." in parsed.text
        assert "Motion Passed" in parsed.text
        assert parsed.metadata["title"] == "Board Minutes"
        assert parsed.metadata["table_count"] == 1

    def test_extension_fallback_for_generic_mime(self):
        parsed = parse_document(b"a,b\n1,2\n", "application/octet-stream", "data.csv")
        assert parsed.metadata["row_count"] == 2

    def test_truncation_records_original_length(self):
        parsed = parse_document(b"x" * 50, "text/plain", "long.txt", max_length=10)
        assert parsed.truncated is True
        assert parsed.metadata["original_length"] == 50
        assert parsed.text.endswith(TRUNCATION_MARKER)

    def test_unsupported(self):
        assert not document_parser.is_supported("image/png", "logo.png")
        with pytest.raises(UnsupportedDocumentError):
            parse_document(b"\x89PNG", "image/png", "logo.png")

    def test_to_dict(self):
        parsed = parse_document(b"Hello", "text/plain", "a.txt")
        assert parsed.to_dict()["language"] == "en"
