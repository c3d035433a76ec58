"""
PDF Template Scanner

Lists the form fields of the CERFA template and builds a debug copy where
each text field shows its own short identifier, which is how the mapping
document is authored.
"""

import logging
from typing import Dict, List

from .pdf_utils import (
    FIELD_ERRORS,
    CheckboxField,
    TextField,
    load_form_fields,
    open_template,
    write_pdf,
)

logger = logging.getLogger(__name__)

TEXT_FIELD_PREFIX = "Zone de texte "
CHECKBOX_PREFIXES = ("Case #C3#A0 cocher ", "Case à cocher ")


class TemplateScanner:
    """Scans a PDF template for form fields"""

    def scan_template(self, template_bytes: bytes) -> List[Dict[str, str]]:
        """Return ``[{"name": ..., "type": ...}]`` in page order."""
        writer = open_template(template_bytes)
        fields = load_form_fields(writer)
        logger.info("Template exposes %d form fields", len(fields))
        return [{"name": name, "type": form_field.kind} for name, form_field in fields.items()]

    def summarize(self, template_bytes: bytes) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.scan_template(template_bytes):
            counts[entry["type"]] = counts.get(entry["type"], 0) + 1
        return counts

    def build_mapping_pdf(self, template_bytes: bytes) -> bytes:
        """
        Fill every text field with its short id and check every checkbox.

        "Zone de texte 8_2" becomes "8_2" and "Case à cocher 3" becomes "C3",
        so the printed form reads as a map of field identifiers.
        """
        writer = open_template(template_bytes)
        fields = load_form_fields(writer)
        for name, form_field in fields.items():
            try:
                if isinstance(form_field, TextField):
                    form_field.apply(writer, short_name(name))
                elif isinstance(form_field, CheckboxField):
                    form_field.apply(writer, True)
            except FIELD_ERRORS as exc:
                logger.warning("Unable to mark field %s: %s", name, exc)
        return write_pdf(writer)


def short_name(field_name: str) -> str:
    if field_name.startswith(TEXT_FIELD_PREFIX):
        return field_name[len(TEXT_FIELD_PREFIX):]
    for prefix in CHECKBOX_PREFIXES:
        if field_name.startswith(prefix):
            return "C" + field_name[len(prefix):]
    return field_name
