"""Pure helpers for the Streamlit client, kept free of streamlit calls."""

import requests


def error_detail(r: requests.Response) -> str:
    """Human-readable message from an API error response."""
    try:
        body = r.json()
    except ValueError:
        return r.text
    detail = body.get("detail", r.text) if isinstance(body, dict) else r.text
    if isinstance(detail, dict):
        return detail.get("error", r.text)
    if isinstance(detail, list):
        # 422 validation errors
        return "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    return str(detail)


def clean_payload(obj):
    """Drop empty strings so the API only stores what was actually filled in."""
    if isinstance(obj, dict):
        cleaned = {k: clean_payload(v) for k, v in obj.items()}
        return {k: v for k, v in cleaned.items() if v not in ("", None, {})}
    return obj
