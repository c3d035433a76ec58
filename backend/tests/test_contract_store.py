import io
import json
from concurrent.futures import ThreadPoolExecutor

import fakeredis
import pytest
from botocore.exceptions import ClientError

from cerfa_prefill.contract_store import (
    Contract,
    ContractStatus,
    ContractStoreError,
    InMemoryContractRepository,
    JsonFileContractRepository,
    RedisContractRepository,
    Role,
    S3ContractRepository,
    build_contract_repository,
    compute_status,
)


class FakeS3:
    """In-memory stand-in for the subset of the boto3 S3 client the store uses."""

    def __init__(self):
        self.objects = {}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not found"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[(Bucket, Key)] = Body

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self

    def paginate(self, Bucket, Prefix):
        keys = sorted(k for b, k in self.objects if b == Bucket and k.startswith(Prefix))
        yield {"Contents": [{"Key": k} for k in keys]} if keys else {}


@pytest.fixture(params=["memory", "file", "redis", "s3"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryContractRepository()
    if request.param == "file":
        return JsonFileContractRepository(tmp_path / "contracts.json")
    if request.param == "redis":
        return RedisContractRepository(client=fakeredis.FakeRedis(decode_responses=True), prefix="test:")
    return S3ContractRepository(bucket="bucket", prefix="cerfa/", s3_client=FakeS3())


class TestStatus:
    def test_compute_status(self):
        assert compute_status(None, None) is ContractStatus.PENDING
        assert compute_status({}, None) is ContractStatus.PARTIAL
        assert compute_status(None, {"a": 1}) is ContractStatus.PARTIAL
        assert compute_status({}, {}) is ContractStatus.READY

    def test_new_contract(self):
        contract = Contract.new()
        assert contract.status is ContractStatus.PENDING
        assert set(contract.tokens) == {Role.STUDENT, Role.EMPLOYER}
        assert contract.tokens[Role.STUDENT] != contract.tokens[Role.EMPLOYER]
        assert contract.created_at.endswith("Z")

    def test_dict_round_trip_uses_wire_keys(self):
        contract = Contract.new()
        contract.set_data(Role.STUDENT, {"apprenti": {"nom": "Dupont"}})
        record = contract.to_dict()
        assert record["status"] == "partial"
        assert record["etudiant"] == {"apprenti": {"nom": "Dupont"}}
        assert record["entreprise"] is None
        assert set(record["tokens"]) == {"etudiant", "entreprise"}
        assert Contract.from_dict(record) == contract


class TestRepository:
    def test_create_and_get(self, store):
        contract = store.create()
        loaded = store.get(contract.id)
        assert loaded.id == contract.id
        assert loaded.tokens == contract.tokens
        assert loaded.status is ContractStatus.PENDING

    def test_get_unknown(self, store):
        assert store.get("missing") is None
        assert store.get_by_token("missing") is None

    def test_get_by_token_resolves_role(self, store):
        contract = store.create()
        found_contract, role = store.get_by_token(contract.tokens[Role.EMPLOYER])
        assert found_contract.id == contract.id
        assert role is Role.EMPLOYER

    def test_submit_moves_status(self, store):
        contract = store.create()
        updated = store.submit(contract.tokens[Role.STUDENT], Role.STUDENT, {"apprenti": {"nom": "Dupont"}})
        assert updated.status is ContractStatus.PARTIAL
        updated = store.submit(contract.tokens[Role.EMPLOYER], Role.EMPLOYER, {"employeur": {"siret": "1"}})
        assert updated.status is ContractStatus.READY

        loaded = store.get(contract.id)
        assert loaded.student == {"apprenti": {"nom": "Dupont"}}
        assert loaded.employer == {"employeur": {"siret": "1"}}

    def test_empty_submission_counts(self, store):
        contract = store.create()
        store.submit(contract.tokens[Role.STUDENT], Role.STUDENT, {})
        assert store.get(contract.id).status is ContractStatus.PARTIAL

    def test_resubmission_overwrites(self, store):
        contract = store.create()
        token = contract.tokens[Role.STUDENT]
        store.submit(token, Role.STUDENT, {"apprenti": {"nom": "A", "prenom": "B"}})
        store.submit(token, Role.STUDENT, {"apprenti": {"nom": "C"}})
        assert store.get(contract.id).student == {"apprenti": {"nom": "C"}}

    def test_submit_with_wrong_role_is_rejected(self, store):
        contract = store.create()
        assert store.submit(contract.tokens[Role.STUDENT], Role.EMPLOYER, {"x": 1}) is None
        assert store.get(contract.id).employer is None

    def test_submit_unknown_token(self, store):
        assert store.submit("nope", Role.STUDENT, {}) is None

    def test_list_and_count(self, store):
        ids = {store.create().id for _ in range(3)}
        assert {c.id for c in store.list_all()} == ids
        assert store.count() == 3

    def test_delete_removes_tokens(self, store):
        contract = store.create()
        other = store.create()
        assert store.delete(contract.id) is True
        assert store.get(contract.id) is None
        for token in contract.tokens.values():
            assert store.get_by_token(token) is None
        assert store.get(other.id) is not None
        assert store.delete(contract.id) is False

    def test_stored_copy_is_isolated(self, store):
        contract = store.create()
        data = {"apprenti": {"nom": "Dupont"}}
        store.submit(contract.tokens[Role.STUDENT], Role.STUDENT, data)
        data["apprenti"]["nom"] = "Changed"
        assert store.get(contract.id).student == {"apprenti": {"nom": "Dupont"}}


class TestJsonFile:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "sub" / "contracts.json"
        contract = JsonFileContractRepository(path).create()
        assert JsonFileContractRepository(path).get(contract.id).id == contract.id
        with path.open(encoding="utf-8") as f:
            assert contract.id in json.load(f)["contracts"]

    def test_invalid_file_is_treated_as_empty(self, tmp_path):
        path = tmp_path / "contracts.json"
        path.write_text("{not json", encoding="utf-8")
        assert JsonFileContractRepository(path).list_all() == []

    def test_invalid_file_is_not_overwritten(self, tmp_path):
        path = tmp_path / "contracts.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ContractStoreError):
            JsonFileContractRepository(path).create()
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_contracts_value_must_be_an_object(self, tmp_path):
        path = tmp_path / "contracts.json"
        path.write_text(json.dumps({"contracts": ["a", "b"]}), encoding="utf-8")
        repo = JsonFileContractRepository(path)
        assert repo.list_all() == []
        assert repo.get("a") is None
        with pytest.raises(ContractStoreError):
            repo.create()

    def test_concurrent_submissions_on_different_contracts(self, tmp_path):
        repo = JsonFileContractRepository(tmp_path / "contracts.json")
        contracts = [repo.create() for _ in range(20)]

        def submit(contract):
            return repo.submit(contract.tokens[Role.STUDENT], Role.STUDENT, {"apprenti": {"nom": contract.id}})

        with ThreadPoolExecutor(max_workers=20) as pool:
            results = list(pool.map(submit, contracts))

        assert all(r is not None for r in results)
        stored = {c.id: c for c in repo.list_all()}
        assert len(stored) == 20
        for contract in contracts:
            assert stored[contract.id].student == {"apprenti": {"nom": contract.id}}
        assert [p.name for p in tmp_path.iterdir()] == ["contracts.json"]


class TestS3:
    def test_requires_bucket(self):
        with pytest.raises(ValueError):
            S3ContractRepository(bucket="", s3_client=FakeS3())

    def test_other_client_errors_propagate(self):
        class BrokenS3(FakeS3):
            def get_object(self, Bucket, Key):
                raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")

        store = S3ContractRepository(bucket="bucket", s3_client=BrokenS3())
        with pytest.raises(ClientError):
            store.get("anything")

    def test_object_layout(self):
        s3 = FakeS3()
        store = S3ContractRepository(bucket="bucket", prefix="p/", s3_client=s3)
        contract = store.create()
        keys = {key for _, key in s3.objects}
        assert f"p/contracts/{contract.id}.json" in keys
        for token in contract.tokens.values():
            assert f"p/tokens/{token}.json" in keys


class TestFactory:
    def test_default_is_memory(self, monkeypatch):
        monkeypatch.delenv("CONTRACT_STORE", raising=False)
        assert build_contract_repository().backend == "memory"

    def test_file_backend_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONTRACT_STORE", "file")
        monkeypatch.setenv("CONTRACT_STORE_PATH", str(tmp_path / "c.json"))
        repo = build_contract_repository()
        assert isinstance(repo, JsonFileContractRepository)
        assert repo.path == tmp_path / "c.json"

    def test_redis_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6390/3")
        monkeypatch.setenv("CONTRACT_STORE_REDIS_PREFIX", "x:")
        repo = build_contract_repository("redis")
        assert repo.backend == "redis"
        assert repo.contracts_key == "x:contracts"

    def test_s3_without_bucket_fails(self, monkeypatch):
        monkeypatch.delenv("CONTRACT_STORE_S3_BUCKET", raising=False)
        with pytest.raises(ValueError):
            build_contract_repository("s3")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_contract_repository("mongo")
