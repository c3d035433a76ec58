from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present
import json
import logging
import os
from typing import Any, Dict

from fastapi import Request

from cerfa_prefill import Contract, Role

logger = logging.getLogger(__name__)


def get_base_url(request: Request) -> str:
    """Public base URL of the request, honouring reverse-proxy headers."""
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def form_links(request: Request, contract: Contract) -> Dict[str, str]:
    """Role-scoped links to the student and employer forms."""
    base = (os.getenv("FRONTEND_URL") or get_base_url(request)).rstrip("/")
    return {
        role.value: f"{base}/?role={role.value}&token={contract.tokens[role]}"
        for role in Role
        if role in contract.tokens
    }


async def lenient_json_body(request: Request) -> Dict[str, Any]:
    """Request body as a dict; unparsable or non-object bodies become ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Unparsable JSON body on %s, treating it as empty", request.url.path)
        return {}
    return payload if isinstance(payload, dict) else {}


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")
