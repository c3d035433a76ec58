"""
Contract storage for the two-party CERFA workflow.

A contract holds the student and employer submissions plus one access token
per role. ``ContractRepository`` defines the operations the API relies on;
backends (in-process dict, JSON file, Redis hashes, S3 objects) are picked
from configuration by :func:`build_contract_repository`.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import boto3
import redis
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class ContractStoreError(RuntimeError):
    """Raised when a backend cannot safely read or write its records."""


class Role(str, Enum):
    STUDENT = "etudiant"
    EMPLOYER = "entreprise"


class ContractStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    READY = "ready"


def compute_status(student: Optional[Dict], employer: Optional[Dict]) -> ContractStatus:
    submitted = (student is not None) + (employer is not None)
    if submitted == 2:
        return ContractStatus.READY
    if submitted == 1:
        return ContractStatus.PARTIAL
    return ContractStatus.PENDING


@dataclass
class Contract:
    id: str
    created_at: str
    tokens: Dict[Role, str]
    student: Optional[Dict[str, Any]] = None
    employer: Optional[Dict[str, Any]] = None

    @classmethod
    def new(cls) -> "Contract":
        return cls(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            tokens={Role.STUDENT: str(uuid.uuid4()), Role.EMPLOYER: str(uuid.uuid4())},
        )

    @property
    def status(self) -> ContractStatus:
        return compute_status(self.student, self.employer)

    @property
    def student_complete(self) -> bool:
        return self.student is not None

    @property
    def employer_complete(self) -> bool:
        return self.employer is not None

    def data_for(self, role: Role) -> Optional[Dict[str, Any]]:
        return self.student if role is Role.STUDENT else self.employer

    def set_data(self, role: Role, data: Dict[str, Any]) -> None:
        if role is Role.STUDENT:
            self.student = data
        else:
            self.employer = data

    def to_dict(self) -> Dict[str, Any]:
        """Storage record with the camelCase / French wire keys used by the API."""
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "status": self.status.value,
            "tokens": {role.value: token for role, token in self.tokens.items()},
            Role.STUDENT.value: self.student,
            Role.EMPLOYER.value: self.employer,
        }

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Contract":
        tokens = record.get("tokens") or {}
        return cls(
            id=record["id"],
            created_at=record.get("createdAt", ""),
            tokens={role: tokens[role.value] for role in Role if role.value in tokens},
            student=record.get(Role.STUDENT.value),
            employer=record.get(Role.EMPLOYER.value),
        )


class ContractRepository(ABC):
    """Storage interface shared by every backend. Last write wins per contract id."""

    backend = "abstract"

    def create(self) -> Contract:
        """Create and persist a pending contract with fresh tokens."""
        contract = Contract.new()
        self.update(contract)
        logger.info("Contract %s created", contract.id)
        return contract

    @abstractmethod
    def get(self, contract_id: str) -> Optional[Contract]:
        """Fetch a contract by id."""

    @abstractmethod
    def get_by_token(self, token: str) -> Optional[Tuple[Contract, Role]]:
        """Resolve an access token to its contract and role."""

    @abstractmethod
    def list_all(self) -> List[Contract]:
        """All stored contracts."""

    @abstractmethod
    def update(self, contract: Contract) -> None:
        """Persist the current state of ``contract``."""

    @abstractmethod
    def delete(self, contract_id: str) -> bool:
        """Remove the contract and both of its tokens. False if unknown."""

    def submit(self, token: str, role: Role, data: Dict[str, Any]) -> Optional[Contract]:
        """Store one party's submission. None when the token is unknown for that role."""
        found = self.get_by_token(token)
        if found is None or found[1] is not role:
            return None
        contract = found[0]
        contract.set_data(role, data)
        self.update(contract)
        logger.info("Contract %s: %s data saved, status=%s", contract.id, role.value, contract.status.value)
        return contract

    def count(self) -> int:
        return len(self.list_all())


class InMemoryContractRepository(ContractRepository):
    """Process-local storage; contents are lost on restart."""

    backend = "memory"

    def __init__(self):
        self._contracts: Dict[str, Dict[str, Any]] = {}
        self._tokens: Dict[str, Tuple[str, Role]] = {}

    def get(self, contract_id: str) -> Optional[Contract]:
        record = self._contracts.get(contract_id)
        return Contract.from_dict(copy.deepcopy(record)) if record else None

    def get_by_token(self, token: str) -> Optional[Tuple[Contract, Role]]:
        entry = self._tokens.get(token)
        if entry is None:
            return None
        contract = self.get(entry[0])
        return (contract, entry[1]) if contract else None

    def list_all(self) -> List[Contract]:
        return [Contract.from_dict(copy.deepcopy(record)) for record in self._contracts.values()]

    def update(self, contract: Contract) -> None:
        self._contracts[contract.id] = copy.deepcopy(contract.to_dict())
        for role, token in contract.tokens.items():
            self._tokens[token] = (contract.id, role)

    def delete(self, contract_id: str) -> bool:
        record = self._contracts.pop(contract_id, None)
        if record is None:
            return False
        for token in (record.get("tokens") or {}).values():
            self._tokens.pop(token, None)
        return True


class JsonFileContractRepository(ContractRepository):
    """All contracts in a single JSON document: ``{"contracts": {id: record}}``."""

    backend = "file"

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self, strict: bool = False) -> Dict[str, Dict[str, Any]]:
        """
        Read the contracts document.

        With ``strict`` an unreadable document raises instead of reading as
        empty, so a write never replaces other contracts with nothing.
        """
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            if strict:
                raise ContractStoreError(f"Contract file {self.path} is not valid JSON: {exc}") from exc
            logger.error("Contract file %s is not valid JSON: %s", self.path, exc)
            return {}
        contracts = data.get("contracts", {}) if isinstance(data, dict) else data
        if isinstance(contracts, dict):
            return contracts
        if strict:
            raise ContractStoreError(f"Contract file {self.path} has no contracts object")
        logger.error("Contract file %s has no contracts object", self.path)
        return {}

    def _save(self, contracts: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"contracts": contracts}, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def get(self, contract_id: str) -> Optional[Contract]:
        record = self._load().get(contract_id)
        return Contract.from_dict(record) if record else None

    def get_by_token(self, token: str) -> Optional[Tuple[Contract, Role]]:
        for record in self._load().values():
            contract = Contract.from_dict(record)
            for role, role_token in contract.tokens.items():
                if role_token == token:
                    return contract, role
        return None

    def list_all(self) -> List[Contract]:
        return [Contract.from_dict(record) for record in self._load().values()]

    def update(self, contract: Contract) -> None:
        with self._lock:
            contracts = self._load(strict=True)
            contracts[contract.id] = contract.to_dict()
            self._save(contracts)

    def delete(self, contract_id: str) -> bool:
        with self._lock:
            contracts = self._load(strict=True)
            if contracts.pop(contract_id, None) is None:
                return False
            self._save(contracts)
        return True


class RedisContractRepository(ContractRepository):
    """
    Two Redis hashes: ``<prefix>contracts`` (id -> record JSON) and
    ``<prefix>tokens`` (token -> {"contractId", "role"}).
    """

    backend = "redis"

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None, prefix: str = "cerfa:"):
        self.redis = client or redis.Redis.from_url(url or "redis://localhost:6379/0", decode_responses=True)
        self.contracts_key = f"{prefix}contracts"
        self.tokens_key = f"{prefix}tokens"

    def get(self, contract_id: str) -> Optional[Contract]:
        raw = self.redis.hget(self.contracts_key, contract_id)
        return Contract.from_dict(json.loads(raw)) if raw else None

    def get_by_token(self, token: str) -> Optional[Tuple[Contract, Role]]:
        raw = self.redis.hget(self.tokens_key, token)
        if not raw:
            return None
        entry = json.loads(raw)
        contract = self.get(entry["contractId"])
        return (contract, Role(entry["role"])) if contract else None

    def list_all(self) -> List[Contract]:
        records = self.redis.hgetall(self.contracts_key)
        return [Contract.from_dict(json.loads(raw)) for raw in records.values()]

    def update(self, contract: Contract) -> None:
        pipe = self.redis.pipeline()
        pipe.hset(self.contracts_key, contract.id, json.dumps(contract.to_dict()))
        for role, token in contract.tokens.items():
            pipe.hset(self.tokens_key, token, json.dumps({"contractId": contract.id, "role": role.value}))
        pipe.execute()

    def delete(self, contract_id: str) -> bool:
        contract = self.get(contract_id)
        if contract is None:
            return False
        pipe = self.redis.pipeline()
        pipe.hdel(self.contracts_key, contract_id)
        tokens = list(contract.tokens.values())
        if tokens:
            pipe.hdel(self.tokens_key, *tokens)
        pipe.execute()
        return True

    def count(self) -> int:
        return int(self.redis.hlen(self.contracts_key))


class S3ContractRepository(ContractRepository):
    """One JSON object per contract and per token under ``prefix`` in ``bucket``."""

    backend = "s3"

    def __init__(self, bucket: str, prefix: str = "cerfa/", s3_client=None):
        if not bucket:
            raise ValueError("CONTRACT_STORE_S3_BUCKET must be set for the s3 contract store")
        self.bucket = bucket
        self.prefix = prefix
        self.s3 = s3_client or boto3.client("s3")

    def _contract_key(self, contract_id: str) -> str:
        return f"{self.prefix}contracts/{contract_id}.json"

    def _token_key(self, token: str) -> str:
        return f"{self.prefix}tokens/{token}.json"

    def _get_json(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return json.loads(obj["Body"].read())

    def _put_json(self, key: str, payload: Dict[str, Any]) -> None:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=json.dumps(payload).encode("utf-8"),
            ContentType="application/json",
        )

    def _list_keys(self, prefix: str) -> List[str]:
        keys = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                if not item["Key"].endswith("/"):
                    keys.append(item["Key"])
        return keys

    def get(self, contract_id: str) -> Optional[Contract]:
        record = self._get_json(self._contract_key(contract_id))
        return Contract.from_dict(record) if record else None

    def get_by_token(self, token: str) -> Optional[Tuple[Contract, Role]]:
        entry = self._get_json(self._token_key(token))
        if not entry:
            return None
        contract = self.get(entry["contractId"])
        return (contract, Role(entry["role"])) if contract else None

    def list_all(self) -> List[Contract]:
        contracts = []
        for key in self._list_keys(f"{self.prefix}contracts/"):
            record = self._get_json(key)
            if record:
                contracts.append(Contract.from_dict(record))
        return contracts

    def update(self, contract: Contract) -> None:
        self._put_json(self._contract_key(contract.id), contract.to_dict())
        for role, token in contract.tokens.items():
            self._put_json(self._token_key(token), {"contractId": contract.id, "role": role.value})

    def delete(self, contract_id: str) -> bool:
        contract = self.get(contract_id)
        if contract is None:
            return False
        for token in contract.tokens.values():
            self.s3.delete_object(Bucket=self.bucket, Key=self._token_key(token))
        self.s3.delete_object(Bucket=self.bucket, Key=self._contract_key(contract_id))
        return True


def build_contract_repository(backend: Optional[str] = None) -> ContractRepository:
    """Instantiate the backend named by ``backend`` or the ``CONTRACT_STORE`` env var."""
    backend = (backend or os.getenv("CONTRACT_STORE", "memory")).strip().lower()
    if backend == "memory":
        repository: ContractRepository = InMemoryContractRepository()
    elif backend == "file":
        repository = JsonFileContractRepository(Path(os.getenv("CONTRACT_STORE_PATH", "data/contracts.json")))
    elif backend == "redis":
        repository = RedisContractRepository(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            prefix=os.getenv("CONTRACT_STORE_REDIS_PREFIX", "cerfa:"),
        )
    elif backend == "s3":
        repository = S3ContractRepository(
            bucket=os.getenv("CONTRACT_STORE_S3_BUCKET", ""),
            prefix=os.getenv("CONTRACT_STORE_S3_PREFIX", "cerfa/"),
        )
    else:
        raise ValueError(f"Unknown CONTRACT_STORE backend '{backend}' (expected memory, file, redis or s3)")
    logger.info("Contract store backend: %s", repository.backend)
    return repository
