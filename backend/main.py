from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import logging  # noqa: E402
import os  # noqa: E402
from typing import Any, Dict, List, Optional  # noqa: E402

from fastapi import Depends, FastAPI, HTTPException, Request, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel  # noqa: E402

from cerfa_prefill import (  # noqa: E402
    CerfaPrefillError,
    CerfaPrefillService,
    Contract,
    ContractRepository,
    Role,
    build_contract_repository,
)
from utils import env_flag, form_links, lenient_json_body  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("cerfa")

app = FastAPI(title="CERFA Apprentissage", version="0.2.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8501",
        "http://127.0.0.1:8501",
        "*"
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

contract_repository = build_contract_repository()
prefill_service = CerfaPrefillService()


def get_contract_repository() -> ContractRepository:
    return contract_repository


def get_prefill_service() -> CerfaPrefillService:
    return prefill_service


class ContractLinks(BaseModel):
    etudiant: str
    entreprise: str


class ContractCreated(BaseModel):
    success: bool = True
    contractId: str
    liens: ContractLinks


class ContractSummary(BaseModel):
    id: str
    createdAt: str
    status: str
    etudiantComplete: bool
    entrepriseComplete: bool
    liens: ContractLinks


class TokenLookup(BaseModel):
    type: str
    contractId: str
    data: Optional[Dict[str, Any]] = None
    complete: bool


def _pdf_response(pdf_bytes: bytes, filename: str, filled: Optional[int] = None) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if filled is not None:
        headers["X-Filled-Fields"] = str(filled)
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


def _get_contract_or_404(repo: ContractRepository, contract_id: str) -> Contract:
    contract = repo.get(contract_id)
    if contract is None:
        raise HTTPException(status_code=404, detail="Contrat non trouvé")
    return contract


@app.get("/health")
def health(
    repo: ContractRepository = Depends(get_contract_repository),
    service: CerfaPrefillService = Depends(get_prefill_service),
):
    return {
        "status": "ok",
        "store": repo.backend,
        "template_loaded": service.template_bytes is not None,
    }


# --- Contracts -----------------------------------------------------------------


@app.post("/api/contracts", response_model=ContractCreated)
def create_contract(request: Request, repo: ContractRepository = Depends(get_contract_repository)):
    contract = repo.create()
    return {"success": True, "contractId": contract.id, "liens": form_links(request, contract)}


@app.get("/api/contracts", response_model=List[ContractSummary])
def list_contracts(request: Request, repo: ContractRepository = Depends(get_contract_repository)):
    return [
        {
            "id": c.id,
            "createdAt": c.created_at,
            "status": c.status.value,
            "etudiantComplete": c.student_complete,
            "entrepriseComplete": c.employer_complete,
            "liens": form_links(request, c),
        }
        for c in repo.list_all()
    ]


@app.get("/api/contract/by-token/{token}", response_model=TokenLookup)
def get_contract_by_token(token: str, repo: ContractRepository = Depends(get_contract_repository)):
    found = repo.get_by_token(token)
    if found is None:
        raise HTTPException(status_code=404, detail="Token invalide")
    contract, role = found
    data = contract.data_for(role)
    return {"type": role.value, "contractId": contract.id, "data": data, "complete": data is not None}


def _submit(repo: ContractRepository, token: str, role: Role, data: Dict[str, Any], message: str):
    contract = repo.submit(token, role, data)
    if contract is None:
        raise HTTPException(status_code=404, detail="Token invalide")
    return {"success": True, "message": message, "status": contract.status.value}


@app.post("/api/etudiant/{token}")
def submit_student(
    token: str,
    data: Dict[str, Any] = Depends(lenient_json_body),
    repo: ContractRepository = Depends(get_contract_repository),
):
    return _submit(repo, token, Role.STUDENT, data, "Données étudiant enregistrées")


@app.post("/api/entreprise/{token}")
def submit_employer(
    token: str,
    data: Dict[str, Any] = Depends(lenient_json_body),
    repo: ContractRepository = Depends(get_contract_repository),
):
    return _submit(repo, token, Role.EMPLOYER, data, "Données entreprise enregistrées")


@app.get("/api/contracts/{contract_id}/generate-pdf")
def generate_contract_pdf(
    contract_id: str,
    repo: ContractRepository = Depends(get_contract_repository),
    service: CerfaPrefillService = Depends(get_prefill_service),
):
    contract = _get_contract_or_404(repo, contract_id)
    if not (contract.student_complete and contract.employer_complete):
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Le contrat n'est pas complet",
                "etudiantComplete": contract.student_complete,
                "entrepriseComplete": contract.employer_complete,
            },
        )

    try:
        result = service.generate_contract_pdf(contract)
    except CerfaPrefillError as exc:
        logger.error("PDF generation failed for contract %s: %s", contract_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Erreur lors de la génération du PDF") from exc

    return _pdf_response(result["bytes"], result["filename"], result["report"].filled_count)


@app.delete("/api/contracts/{contract_id}")
def delete_contract(contract_id: str, repo: ContractRepository = Depends(get_contract_repository)):
    if not repo.delete(contract_id):
        raise HTTPException(status_code=404, detail="Contrat non trouvé")
    logger.info("Contract %s deleted", contract_id)
    return {"success": True}


# --- Direct fill + template tooling --------------------------------------------


@app.post("/api/generate-cerfa")
def generate_cerfa(
    data: Dict[str, Any] = Depends(lenient_json_body),
    service: CerfaPrefillService = Depends(get_prefill_service),
):
    """Fill the template straight from a posted data object, without a contract."""
    try:
        result = service.generate_pdf(data)
    except CerfaPrefillError as exc:
        logger.error("Direct CERFA generation failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Erreur lors de la génération du PDF") from exc
    return _pdf_response(result["bytes"], "cerfa_rempli.pdf", result["report"].filled_count)


@app.get("/api/template/fields")
def template_fields(service: CerfaPrefillService = Depends(get_prefill_service)):
    try:
        fields = service.scan_template()
    except CerfaPrefillError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"count": len(fields), "fields": fields}


@app.get("/api/template/mapping-pdf")
def template_mapping_pdf(service: CerfaPrefillService = Depends(get_prefill_service)):
    try:
        pdf_bytes = service.mapping_pdf()
    except CerfaPrefillError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return _pdf_response(pdf_bytes, "cerfa_mapping_numeros.pdf")


@app.get("/api/debug")
def debug_info(
    repo: ContractRepository = Depends(get_contract_repository),
    service: CerfaPrefillService = Depends(get_prefill_service),
):
    if not env_flag("DEBUG_ENDPOINTS"):
        raise HTTPException(status_code=404, detail="Not Found")
    return {
        "paths": service.describe(),
        "store": {"backend": repo.backend, "contractCount": repo.count()},
    }
