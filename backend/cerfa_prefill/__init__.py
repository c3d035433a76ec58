"""
CERFA apprenticeship contract pre-fill package.

This module bundles reusable utilities for:
  - flattening business data and the field mapping to dotted keys
  - filling the CERFA AcroForm template (text fields and checkboxes)
  - storing the two-party contract records behind interchangeable backends
"""

from .contract_store import (
    Contract,
    ContractRepository,
    ContractStatus,
    ContractStoreError,
    Role,
    build_contract_repository,
)
from .pdf_utils import CerfaPrefillError, FillReport
from .service import CerfaPrefillService

__all__ = [
    "CerfaPrefillService",
    "CerfaPrefillError",
    "Contract",
    "ContractRepository",
    "ContractStatus",
    "ContractStoreError",
    "FillReport",
    "Role",
    "build_contract_repository",
]
