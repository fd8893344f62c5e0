"""vinteg_shared.serialization — JSON encoding, key casing, timestamps, structured logs.

Database rows come back with snake_case keys and driver types (datetime,
UUID, Decimal); these helpers make them JSON-safe. Request payloads from the
client arrive camelCase and are converted before reaching SQL.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
import time
import uuid
from decimal import Decimal
from typing import Any, Dict

logger = logging.getLogger(__name__)

__all__ = [
    "_emit_structured_log",
    "_json_default",
    "_now_z",
    "_to_snake",
    "_to_snake_keys",
    "_unix_now",
]

_UPPER = re.compile(r"[A-Z]")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    if isinstance(obj, dt.datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=dt.timezone.utc)
        return obj.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(obj, dt.date):
        return obj.isoformat()
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _to_snake(key: str) -> str:
    """camelCase -> snake_case. Keys without capitals pass through unchanged."""
    return _UPPER.sub(lambda m: f"_{m.group(0).lower()}", key)


def _to_snake_keys(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow key conversion; values (including nested dicts) are left alone."""
    return {_to_snake(k): v for k, v in obj.items()}


def _now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _unix_now() -> int:
    return int(time.time())


def _emit_structured_log(level: str, msg: str, **meta: Any) -> None:
    """Log one JSON line: {"level", "msg", **meta, "timestamp"}."""
    payload: Dict[str, Any] = {"level": level, "msg": msg}
    payload.update(meta)
    payload["timestamp"] = _now_z()
    line = json.dumps(payload, sort_keys=True, default=str)
    if level == "error":
        logger.error(line)
    elif level == "warn":
        logger.warning(line)
    else:
        logger.info(line)
