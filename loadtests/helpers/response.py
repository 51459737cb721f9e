"""Response error extraction for load test observability.

Parses orderflow API error responses into human-readable messages.
Handles three response shapes:

- Pydantic validation (422): {"detail": [{"loc": [...], "msg": "...", "type": "..."}]}
- Orderflow errors (400/401/403/404/409/502): {"error": "CartInvalid", "messages": {"field": ["msg"]}}
- Protean errors (400/404): {"error": {"field": ["msg"]}}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from requests import Response


def _flatten(messages) -> str:
    if isinstance(messages, dict):
        return " | ".join(
            f"{field}: {', '.join(map(str, value)) if isinstance(value, list) else value}"
            for field, value in messages.items()
        )
    return str(messages)


def extract_error_detail(response: Response) -> str:
    """Extract a human-readable error message from an API error response.

    Returns a compact string suitable for Locust failure messages and log lines.
    """
    try:
        body = response.json()
    except ValueError:
        # Not JSON: return raw text, truncated
        text = getattr(response, "text", "") or ""
        return text[:300] or "(empty response body)"

    if "detail" in body and isinstance(body["detail"], list):
        parts = []
        for err in body["detail"]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", str(err))
            parts.append(f"{loc}: {msg}" if loc else msg)
        return " | ".join(parts)

    if "messages" in body:
        return f"{body.get('error', 'Error')}: {_flatten(body['messages'])}"

    if "error" in body:
        return _flatten(body["error"])

    # Unknown shape: stringify and truncate
    return str(body)[:300]
