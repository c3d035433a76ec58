"""
Low-level PDF utilities for filling the CERFA AcroForm template.

The pipeline is: flatten the business data and the field mapping to dotted
keys, resolve each mapping entry to a ``(pdf_field, value)`` pair, then apply
every pair to the matching form field of a pypdf writer.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pypdf import PageObject, PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from pypdf.generic import DictionaryObject, NameObject, TextStringObject

logger = logging.getLogger(__name__)

METADATA_PREFIX = "_"
CHECKED_VALUES = ("true", "OUI", "on")

# /Ff bits for button fields
_FLAG_RADIO = 1 << 15
_FLAG_PUSHBUTTON = 1 << 16

# per-field failures that must not abort a fill
FIELD_ERRORS = (PyPdfError, KeyError, ValueError, TypeError, AttributeError)


class CerfaPrefillError(RuntimeError):
    """Raised when the template cannot be loaded or the output cannot be written."""


# ----------------------------------------------------------------------
# Flatten / merge / resolve
# ----------------------------------------------------------------------
def flatten_data(obj: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested dicts to dotted keys. Lists and scalars are leaves."""
    result: Dict[str, Any] = {}
    for key, value in obj.items():
        new_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            result.update(flatten_data(value, new_key))
        else:
            result[new_key] = value
    return result


def flatten_mapping(obj: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Same as :func:`flatten_data` but drops ``_``-prefixed metadata subtrees."""
    result: Dict[str, Any] = {}
    for key, value in obj.items():
        if str(key).startswith(METADATA_PREFIX):
            continue
        new_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            result.update(flatten_mapping(value, new_key))
        else:
            result[new_key] = value
    return result


def merge_submissions(employer: Optional[Dict[str, Any]], student: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay the student submission on the employer one; student wins on collisions."""
    merged: Dict[str, Any] = dict(employer or {})
    for key, value in (student or {}).items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_submissions(current, value)
        else:
            merged[key] = value
    return merged


def resolve_field_values(flat_data: Dict[str, Any], flat_mapping: Dict[str, Any]) -> List[Tuple[str, Any]]:
    """
    Pair each mapped PDF field with its data value.

    Entries without data (missing key, None or empty string) are skipped so
    the template keeps whatever it has for those fields.
    """
    pairs: List[Tuple[str, Any]] = []
    for data_key, pdf_field in flat_mapping.items():
        value = flat_data.get(data_key)
        if value is None or value == "":
            continue
        pairs.append((str(pdf_field), value))
    return pairs


# ----------------------------------------------------------------------
# Value coercion
# ----------------------------------------------------------------------
def to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else to_text(item) for item in value)
    return str(value)


def is_checked_value(value: Any) -> bool:
    if value is True:
        return True
    return isinstance(value, str) and value in CHECKED_VALUES


# ----------------------------------------------------------------------
# Form fields
# ----------------------------------------------------------------------
class FormField:
    """A named AcroForm field and the widgets that display it."""

    kind = "unknown"

    def __init__(self, name: str, field_dict: DictionaryObject):
        self.name = name
        self.field_dict = field_dict
        self.widgets: List[Tuple[PageObject, DictionaryObject]] = []

    def apply(self, writer: PdfWriter, value: Any) -> bool:
        """Write ``value`` into the field. Returns True when the field was mutated."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class TextField(FormField):
    kind = "text"

    def apply(self, writer: PdfWriter, value: Any) -> bool:
        text = to_text(value)
        pages = []
        for page, _ in self.widgets:
            if not any(page is seen for seen in pages):
                pages.append(page)
        for page in pages:
            writer.update_page_form_field_values(page, {self.name: text})
        # pypdf skips kids that carry /T but inherit /FT; NeedAppearances renders those
        self.field_dict[NameObject("/V")] = TextStringObject(text)
        return True


class CheckboxField(FormField):
    kind = "checkbox"

    def apply(self, writer: PdfWriter, value: Any) -> bool:
        # Values outside the checked set leave the template state untouched.
        if not is_checked_value(value):
            return False
        on_state = NameObject("/Yes")
        for _, widget in self.widgets:
            on_state = self._on_state(widget)
            widget[NameObject("/AS")] = on_state
        self.field_dict[NameObject("/V")] = on_state
        return True

    @staticmethod
    def _on_state(widget: DictionaryObject) -> NameObject:
        appearances = widget.get("/AP")
        if appearances is not None:
            normal = appearances.get_object().get("/N")
            if normal is not None:
                for state in normal.get_object().keys():
                    if state != "/Off":
                        return NameObject(state)
        return NameObject("/Yes")


class UnsupportedField(FormField):
    """Radio groups, push buttons, choice and signature fields are left alone."""

    def __init__(self, name: str, field_dict: DictionaryObject, kind: str):
        super().__init__(name, field_dict)
        self.kind = kind

    def apply(self, writer: PdfWriter, value: Any) -> bool:
        return False


def _parent(node: DictionaryObject) -> Optional[DictionaryObject]:
    parent = node.get("/Parent")
    return parent.get_object() if parent is not None else None


def _inherited(node: DictionaryObject, key: str) -> Any:
    while node is not None:
        if key in node:
            return node[key]
        node = _parent(node)
    return None


def qualified_name(field_dict: DictionaryObject) -> str:
    parts: List[str] = []
    node: Optional[DictionaryObject] = field_dict
    while node is not None:
        if "/T" in node:
            parts.append(str(node["/T"]))
        node = _parent(node)
    return ".".join(reversed(parts))


def field_kind(field_dict: DictionaryObject) -> str:
    field_type = _inherited(field_dict, "/FT")
    flags = int(_inherited(field_dict, "/Ff") or 0)
    if field_type == "/Tx":
        return "text"
    if field_type == "/Btn":
        if flags & _FLAG_PUSHBUTTON:
            return "pushbutton"
        if flags & _FLAG_RADIO:
            return "radio"
        return "checkbox"
    if field_type == "/Ch":
        return "choice"
    if field_type == "/Sig":
        return "signature"
    return "unknown"


def _build_field(name: str, field_dict: DictionaryObject) -> FormField:
    kind = field_kind(field_dict)
    if kind == "text":
        return TextField(name, field_dict)
    if kind == "checkbox":
        return CheckboxField(name, field_dict)
    return UnsupportedField(name, field_dict, kind)


def load_form_fields(writer: PdfWriter) -> Dict[str, FormField]:
    """Index every widget-backed form field of ``writer`` by its qualified name."""
    fields: Dict[str, FormField] = {}
    for page in writer.pages:
        annotations = page.get("/Annots")
        if annotations is None:
            continue
        for annotation_ref in annotations.get_object():
            widget = annotation_ref.get_object()
            if widget.get("/Subtype") != "/Widget":
                continue
            field_dict = widget if "/T" in widget else _parent(widget)
            if field_dict is None:
                continue
            name = qualified_name(field_dict)
            if not name:
                continue
            form_field = fields.get(name)
            if form_field is None:
                form_field = fields[name] = _build_field(name, field_dict)
            form_field.widgets.append((page, widget))
    return fields


# ----------------------------------------------------------------------
# Filling
# ----------------------------------------------------------------------
@dataclass
class FillReport:
    """Per-field outcome of a fill run."""

    filled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def filled_count(self) -> int:
        return len(self.filled)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "filled": self.filled_count,
            "skipped": len(self.skipped),
            "missing": list(self.missing),
            "errors": dict(self.errors),
        }


def fill_form(writer: PdfWriter, pairs: Sequence[Tuple[str, Any]]) -> FillReport:
    """Apply resolved pairs to the writer's form. Individual field failures are recorded, not raised."""
    fields = load_form_fields(writer)
    report = FillReport()
    for pdf_field, value in pairs:
        form_field = fields.get(pdf_field)
        if form_field is None:
            logger.debug("Field %r not in template, skipping", pdf_field)
            report.missing.append(pdf_field)
            continue
        try:
            mutated = form_field.apply(writer, value)
        except FIELD_ERRORS as exc:
            logger.warning("Could not fill %r: %s", pdf_field, exc)
            report.errors[pdf_field] = str(exc)
            continue
        if mutated:
            report.filled.append(pdf_field)
        else:
            report.skipped.append(pdf_field)
    return report


def open_template(template_bytes: bytes) -> PdfWriter:
    """Load template bytes into a writable clone."""
    try:
        reader = PdfReader(io.BytesIO(template_bytes), strict=False)
        return PdfWriter(clone_from=reader)
    except (PyPdfError, ValueError, TypeError, KeyError) as exc:
        raise CerfaPrefillError(f"Unable to read PDF template: {exc}") from exc


def write_pdf(writer: PdfWriter) -> bytes:
    try:
        writer.set_need_appearances_writer(True)
        buffer = io.BytesIO()
        writer.write(buffer)
    except (PyPdfError, ValueError, TypeError, KeyError, OSError) as exc:
        raise CerfaPrefillError(f"Unable to write filled PDF: {exc}") from exc
    return buffer.getvalue()


def fill_pdf_template(
    template_bytes: bytes,
    mapping: Dict[str, Any],
    data: Dict[str, Any],
) -> Tuple[bytes, FillReport]:
    """
    Fill the CERFA template with ``data`` according to ``mapping``.

    Args:
        template_bytes: Raw bytes of the AcroForm template.
        mapping: Nested mapping document, dotted business key -> PDF field name.
        data: Nested business data (already merged).

    Returns:
        The filled PDF bytes and the per-field report.

    Raises:
        CerfaPrefillError: the template cannot be parsed or the output cannot be serialized.
    """
    flat_data = flatten_data(data)
    flat_mapping = flatten_mapping(mapping)
    pairs = resolve_field_values(flat_data, flat_mapping)

    writer = open_template(template_bytes)
    report = fill_form(writer, pairs)
    pdf_bytes = write_pdf(writer)

    logger.info(
        "PDF generated: %d fields filled (%d mapped, %d with data, %d missing from template)",
        report.filled_count,
        len(flat_mapping),
        len(pairs),
        len(report.missing),
    )
    return pdf_bytes, report
