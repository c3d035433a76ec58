import pytest

from cerfa_prefill import CerfaPrefillError, Contract, Role
from cerfa_prefill.service import CerfaPrefillService, find_file


class TestFindFile:
    def test_prefers_base_dir(self, tmp_path):
        (tmp_path / "a.json").write_text("{}")
        assert find_file("a.json", tmp_path) == tmp_path / "a.json"

    def test_falls_back_to_parent(self, tmp_path):
        base = tmp_path / "data"
        base.mkdir()
        (tmp_path / "a.json").write_text("{}")
        assert find_file("a.json", base) == tmp_path / "a.json"

    def test_first_candidate_when_nothing_exists(self, tmp_path):
        assert find_file("nothing-here.json", tmp_path) == tmp_path / "nothing-here.json"


class TestService:
    def test_loads_template_and_mapping(self, service):
        assert service.template_bytes is not None
        assert service.mapping["apprenti"]["nom"] == "Zone de texte 21"

    def test_env_paths(self, cerfa_files, monkeypatch):
        template_path, mapping_path = cerfa_files
        monkeypatch.setenv("CERFA_TEMPLATE_PATH", str(template_path))
        monkeypatch.setenv("CERFA_MAPPING_PATH", str(mapping_path))
        svc = CerfaPrefillService()
        assert svc.template_path == template_path
        assert svc.describe()["mapping_exists"] is True

    def test_missing_files_degrade(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CERFA_TEMPLATE_PATH", raising=False)
        monkeypatch.delenv("CERFA_MAPPING_PATH", raising=False)
        svc = CerfaPrefillService(template_path=tmp_path / "none.pdf", mapping_path=tmp_path / "none.json")
        assert svc.template_bytes is None
        assert svc.mapping == {}
        with pytest.raises(CerfaPrefillError):
            svc.generate_pdf({"apprenti": {"nom": "x"}})

    def test_generate_contract_pdf(self, service):
        contract = Contract.new()
        contract.set_data(Role.STUDENT, {"apprenti": {"nom": "Dupont"}})
        contract.set_data(Role.EMPLOYER, {"apprenti": {"nom": "Autre", "prenom": "Marie"}})
        result = service.generate_contract_pdf(contract)
        assert result["filename"] == f"cerfa_contrat_{contract.id[:8]}.pdf"
        assert result["bytes"].startswith(b"%PDF")
        assert result["report"].filled == ["Zone de texte 21", "Zone de texte 21_2"]

    def test_mapping_override(self, service):
        result = service.generate_pdf({"x": "1"}, mapping_override={"x": "Zone de texte 8"})
        assert result["report"].filled == ["Zone de texte 8"]
