"""vinteg_shared.router — Ordered regex routing and centralized error translation.

Pipeline per request (stateless apart from the injected rate limiter):

    headers applied -> OPTIONS short-circuit (200) -> rate limit (429)
        -> route match -> [validation wrapper] -> handler -> response

Routes are scanned in declaration order; the method must match exactly and
the pattern must match the whole path (query string already stripped).
There is no precedence beyond order, so overlapping patterns must be
declared most-specific first. Captured groups are passed positionally.
"""

from __future__ import annotations

import logging
import re
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from vinteg_shared.errors import AppError, NotFound, RateLimited, _is_configuration_fault
from vinteg_shared.http_utils import (
    _apply_headers,
    _error,
    _header,
    _path_method,
    _request_from_event,
)
from vinteg_shared.rate_limiter import RateLimiter, _client_key
from vinteg_shared.serialization import _emit_structured_log

logger = logging.getLogger(__name__)

__all__ = [
    "Handler",
    "Route",
    "Router",
    "route",
]

Handler = Callable[..., Dict[str, Any]]

_RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."
_GENERIC_MESSAGE = "Internal Server Error"


@dataclass(frozen=True)
class Route:
    method: str
    pattern: Pattern[str]
    handler: Handler

    def match(self, method: str, path: str) -> Optional[Tuple[str, ...]]:
        if method != self.method:
            return None
        m = self.pattern.fullmatch(path)
        if m is None:
            return None
        return m.groups()


def route(method: str, pattern: str, handler: Handler) -> Route:
    return Route(method=method.upper(), pattern=re.compile(pattern), handler=handler)


class Router:
    def __init__(self, routes: Iterable[Route], rate_limiter: RateLimiter):
        self.routes: Tuple[Route, ...] = tuple(routes)
        self.rate_limiter = rate_limiter

    def resolve(self, method: str, path: str) -> Tuple[Route, Tuple[str, ...]]:
        for candidate in self.routes:
            params = candidate.match(method, path)
            if params is not None:
                return candidate, params
        raise NotFound(f"Route not found: {method} {path}")

    def dispatch(self, event: Dict[str, Any]) -> Dict[str, Any]:
        origin = _header(event.get("headers"), "origin")
        method, path = _path_method(event)

        if method == "OPTIONS":
            return _apply_headers({"statusCode": 200, "headers": {}, "body": ""}, origin)

        try:
            self._enforce_rate_limit(event)
            matched, params = self.resolve(method, path)
            request = _request_from_event(event)
            response = matched.handler(request, *params)
        except Exception as exc:  # noqa: BLE001 - translated below
            response = self._translate(exc, method, path)
        return _apply_headers(response, origin)

    def _enforce_rate_limit(self, event: Dict[str, Any]) -> None:
        client = _client_key(event)
        if not self.rate_limiter.allow(client):
            _emit_structured_log("warn", "Rate limit exceeded", ip=client)
            raise RateLimited(_RATE_LIMIT_MESSAGE, retry_after=self.rate_limiter.retry_after(client))

    def _translate(self, exc: Exception, method: str, path: str) -> Dict[str, Any]:
        if isinstance(exc, RateLimited):
            return _error(exc.status_code, exc.message, {"Retry-After": str(exc.retry_after)})
        if isinstance(exc, AppError):
            if exc.status_code >= 500:
                logger.error("[ERROR] %s %s -> %s: %s", method, path, exc.status_code, exc.message)
            return _error(exc.status_code, exc.message)

        _emit_structured_log(
            "error",
            "Unhandled Exception",
            error=str(exc),
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            url=path,
            method=method,
        )
        if _is_configuration_fault(exc):
            return _error(500, str(exc))
        return _error(500, _GENERIC_MESSAGE)

    def route_table(self) -> List[Tuple[str, str]]:
        return [(r.method, r.pattern.pattern) for r in self.routes]
