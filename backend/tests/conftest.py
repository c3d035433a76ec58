import io
import json

import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from cerfa_prefill import CerfaPrefillService
from cerfa_prefill.contract_store import InMemoryContractRepository
from main import app, get_contract_repository, get_prefill_service

TEXT_FIELDS = [
    "Zone de texte 8",
    "Zone de texte 8_2",
    "Zone de texte 21",
    "Zone de texte 21_2",
    "Zone de texte 30_6",
]
CHECKBOXES = {
    "Case #C3#A0 cocher 1": False,
    "Case #C3#A0 cocher 2": True,
    "Case #C3#A0 cocher 12": False,
}

MAPPING = {
    "_comment": "test mapping",
    "_version": "10103*14",
    "employeur": {
        "_section": "L'EMPLOYEUR",
        "prive": "Case #C3#A0 cocher 1",
        "public": "Case #C3#A0 cocher 2",
        "raison_sociale": "Zone de texte 8",
        "siret": "Zone de texte 8_2",
    },
    "apprenti": {
        "nom": "Zone de texte 21",
        "prenom": "Zone de texte 21_2",
        "handicap": "Case #C3#A0 cocher 12",
        "commune_naissance": "Zone de texte 99",
    },
    "contrat": {
        "duree_hebdo_heures": "Zone de texte 30_6",
    },
}


def build_template() -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    form = c.acroForm
    y = 780
    for name in TEXT_FIELDS:
        form.textfield(name=name, x=72, y=y, width=300, height=20)
        y -= 30
    for name, checked in CHECKBOXES.items():
        form.checkbox(name=name, x=72, y=y, buttonStyle="check", checked=checked)
        y -= 30
    c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture(scope="session")
def template_bytes():
    return build_template()


@pytest.fixture
def mapping():
    return json.loads(json.dumps(MAPPING))


@pytest.fixture
def cerfa_files(tmp_path, template_bytes):
    template_path = tmp_path / "cerfa_apprentissage_10103-14.pdf"
    template_path.write_bytes(template_bytes)
    mapping_path = tmp_path / "mapping_complet_v2.json"
    mapping_path.write_text(json.dumps(MAPPING, ensure_ascii=False), encoding="utf-8")
    return template_path, mapping_path


@pytest.fixture
def service(cerfa_files):
    template_path, mapping_path = cerfa_files
    return CerfaPrefillService(template_path=template_path, mapping_path=mapping_path)


@pytest.fixture
def repo():
    return InMemoryContractRepository()


@pytest.fixture
def client(repo, service, monkeypatch):
    monkeypatch.delenv("FRONTEND_URL", raising=False)
    monkeypatch.delenv("DEBUG_ENDPOINTS", raising=False)
    app.dependency_overrides[get_contract_repository] = lambda: repo
    app.dependency_overrides[get_prefill_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
