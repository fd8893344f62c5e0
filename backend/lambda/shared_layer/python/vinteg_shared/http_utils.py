"""vinteg_shared.http_utils — API Gateway event parsing and response helpers.

Every response leaving the router carries CORS headers reflecting the
caller's Origin plus a fixed set of security headers. Error bodies use one
envelope: {"message": "..."}.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from vinteg_shared.errors import ValidationFailed
from vinteg_shared.serialization import _json_default

logger = logging.getLogger(__name__)

__all__ = [
    "ApiRequest",
    "_apply_headers",
    "_error",
    "_header",
    "_json_body",
    "_no_content",
    "_path_method",
    "_request_from_event",
    "_response",
    "_security_headers",
    "_source_ip",
]

_ALLOW_METHODS = "GET,OPTIONS,PATCH,DELETE,POST,PUT"
_ALLOW_HEADERS = (
    "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
    "Content-MD5, Content-Type, Date, X-Api-Version, Authorization"
)


@dataclass
class ApiRequest:
    """One inbound request, normalized from an API Gateway proxy event."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    source_ip: Optional[str] = None
    event: Dict[str, Any] = field(default_factory=dict)
    # Typed model set by validate_body(); handlers on validated routes read this.
    payload: Any = None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


# ---------------------------------------------------------------------------
# Response building
# ---------------------------------------------------------------------------


def _security_headers(origin: Optional[str]) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": _ALLOW_METHODS,
        "Access-Control-Allow-Headers": _ALLOW_HEADERS,
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
        "Cache-Control": "no-store, max-age=0, must-revalidate",
    }


def _response(status_code: int, payload: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(payload, default=_json_default),
    }


def _error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return _response(status_code, {"message": message}, headers)


def _no_content() -> Dict[str, Any]:
    return {"statusCode": 204, "headers": {}, "body": ""}


def _apply_headers(response: Dict[str, Any], origin: Optional[str]) -> Dict[str, Any]:
    """Merge CORS/security headers into a handler response (handler headers win)."""
    merged = _security_headers(origin)
    merged.update(response.get("headers") or {})
    response["headers"] = merged
    return response


# ---------------------------------------------------------------------------
# Event parsing
# ---------------------------------------------------------------------------


def _header(headers: Optional[Dict[str, Any]], name: str) -> Optional[str]:
    """Case-insensitive header lookup (API Gateway v1 keeps original casing)."""
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path (query string stripped) from a v1 or v2 event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = event.get("rawPath") or http.get("path") or event.get("path") or "/"
    return method, path.split("?", 1)[0]


def _source_ip(event: Dict[str, Any]) -> Optional[str]:
    rc = event.get("requestContext") or {}
    return (rc.get("http") or {}).get("sourceIp") or (rc.get("identity") or {}).get("sourceIp")


def _json_body(event: Dict[str, Any]) -> Any:
    """Parse the JSON body (handles base64). An empty body parses as {}."""
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    try:
        if event.get("isBase64Encoded"):
            raw = base64.b64decode(raw, validate=True).decode("utf-8")
        return json.loads(raw)
    # ValueError covers binascii.Error and UnicodeDecodeError.
    except (ValueError, TypeError) as exc:
        raise ValidationFailed("Invalid JSON body") from exc


def _request_from_event(event: Dict[str, Any]) -> ApiRequest:
    method, path = _path_method(event)
    headers = {str(k).lower(): v for k, v in (event.get("headers") or {}).items()}
    return ApiRequest(
        method=method,
        path=path,
        headers=headers,
        query=dict(event.get("queryStringParameters") or {}),
        body=_json_body(event),
        source_ip=_source_ip(event),
        event=event,
    )
