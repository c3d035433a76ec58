import io

import pytest
from pypdf import PdfReader

from cerfa_prefill.pdf_utils import CerfaPrefillError
from cerfa_prefill.template_scanner import TemplateScanner, short_name


@pytest.fixture
def scanner():
    return TemplateScanner()


def test_scan_template_lists_every_field(scanner, template_bytes):
    entries = scanner.scan_template(template_bytes)
    by_name = {e["name"]: e["type"] for e in entries}
    assert by_name["Zone de texte 8_2"] == "text"
    assert by_name["Case #C3#A0 cocher 1"] == "checkbox"
    assert len(entries) == 8


def test_summarize_counts_by_type(scanner, template_bytes):
    assert scanner.summarize(template_bytes) == {"text": 5, "checkbox": 3}


@pytest.mark.parametrize("name,expected", [
    ("Zone de texte 8_2", "8_2"),
    ("Zone de texte 21", "21"),
    ("Case à cocher 3", "C3"),
    ("Case #C3#A0 cocher 12", "C12"),
    ("Signature", "Signature"),
])
def test_short_name(name, expected):
    assert short_name(name) == expected


def test_mapping_pdf_shows_short_ids(scanner, template_bytes):
    pdf_bytes = scanner.build_mapping_pdf(template_bytes)
    reader = PdfReader(io.BytesIO(pdf_bytes))
    values = reader.get_form_text_fields()
    assert values["Zone de texte 8_2"] == "8_2"
    assert values["Zone de texte 21"] == "21"
    assert reader.get_fields()["Case #C3#A0 cocher 12"].get("/V") not in (None, "/Off")


def test_scan_rejects_invalid_pdf(scanner):
    with pytest.raises(CerfaPrefillError):
        scanner.scan_template(b"%PDF-broken")
