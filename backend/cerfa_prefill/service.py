"""
High-level service that exposes CERFA pre-fill capabilities to the FastAPI layer.

Responsibilities
----------------
* locate and load the template PDF and the field mapping once, at start-up
* merge the two parties' submissions and fill the template
* expose template introspection (field list, field-id debug PDF)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .contract_store import Contract
from .pdf_utils import CerfaPrefillError, fill_pdf_template, merge_submissions
from .template_scanner import TemplateScanner

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "cerfa_apprentissage_10103-14.pdf"
MAPPING_FILENAME = "mapping_complet_v2.json"
DEFAULT_BASE_DIR = Path(__file__).resolve().parents[2] / "data"


def find_file(filename: str, base_dir: Path) -> Path:
    """First existing candidate location for ``filename``, else the first candidate."""
    candidates = [
        base_dir / filename,
        base_dir.parent / filename,
        Path.cwd() / filename,
        Path.cwd() / "data" / filename,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


class CerfaPrefillService:
    def __init__(
        self,
        base_dir: Optional[Path] = None,
        template_path: Optional[Path] = None,
        mapping_path: Optional[Path] = None,
    ):
        self.base_dir = Path(base_dir or os.getenv("CERFA_BASE_DIR") or DEFAULT_BASE_DIR)
        self.template_path = Path(
            template_path
            or os.getenv("CERFA_TEMPLATE_PATH")
            or find_file(TEMPLATE_FILENAME, self.base_dir)
        )
        self.mapping_path = Path(
            mapping_path
            or os.getenv("CERFA_MAPPING_PATH")
            or find_file(MAPPING_FILENAME, self.base_dir)
        )
        self.template_scanner = TemplateScanner()

        self.template_bytes: Optional[bytes] = None
        self.mapping: Dict[str, Any] = {}
        self.load()

    # ------------------------------------------------------------------
    # Template + mapping
    # ------------------------------------------------------------------
    def load(self) -> None:
        logger.info("CERFA template: %s | exists: %s", self.template_path, self.template_path.exists())
        logger.info("Field mapping: %s | exists: %s", self.mapping_path, self.mapping_path.exists())

        self.template_bytes = None
        if self.template_path.exists():
            self.template_bytes = self.template_path.read_bytes()
        else:
            logger.warning("CERFA template not found; PDF generation will fail until it is provided")

        self.mapping = {}
        if self.mapping_path.exists():
            with self.mapping_path.open("r", encoding="utf-8") as f:
                self.mapping = json.load(f)
        else:
            logger.warning("Field mapping not found; generated PDFs will be blank")

    def describe(self) -> Dict[str, Any]:
        return {
            "base_dir": str(self.base_dir),
            "cwd": str(Path.cwd()),
            "template_path": str(self.template_path),
            "template_exists": self.template_path.exists(),
            "template_loaded": self.template_bytes is not None,
            "mapping_path": str(self.mapping_path),
            "mapping_exists": self.mapping_path.exists(),
            "mapping_entries": sum(1 for key in self.mapping if not str(key).startswith("_")),
        }

    def _require_template(self) -> bytes:
        if self.template_bytes is None:
            raise CerfaPrefillError(f"PDF template not found at {self.template_path}")
        return self.template_bytes

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def generate_pdf(self, data: Dict[str, Any], mapping_override: Optional[Dict[str, Any]] = None) -> Dict:
        """Fill the template with already merged ``data``. Returns ``{"bytes", "report"}``."""
        template_bytes = self._require_template()
        mapping = mapping_override if mapping_override is not None else self.mapping
        pdf_bytes, report = fill_pdf_template(template_bytes, mapping, data)
        if report.missing:
            logger.info("%d mapped fields are absent from the template: %s", len(report.missing), report.missing[:10])
        return {"bytes": pdf_bytes, "report": report}

    def generate_contract_pdf(self, contract: Contract) -> Dict:
        merged = merge_submissions(contract.employer, contract.student)
        logger.info("Generating CERFA for contract %s", contract.id)
        result = self.generate_pdf(merged)
        result["filename"] = f"cerfa_contrat_{contract.id[:8]}.pdf"
        return result

    # ------------------------------------------------------------------
    # Template introspection
    # ------------------------------------------------------------------
    def scan_template(self) -> List[Dict[str, str]]:
        return self.template_scanner.scan_template(self._require_template())

    def mapping_pdf(self) -> bytes:
        return self.template_scanner.build_mapping_pdf(self._require_template())
