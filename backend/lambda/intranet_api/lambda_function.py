"""intranet_api/lambda_function.py

Lambda API for the VIntegCorp intranet: directory, tasks, knowledge base,
announcements, activity feed and documents, over PostgreSQL.

Routes (via API Gateway proxy, first match wins):
    GET     /api/health
    POST    /api/auth/login                      — validated
    POST    /api/auth/change-password            — validated, bearer
    GET     /api/users
    POST    /api/users                           — validated, admin
    PATCH   /api/users/{id}                      — self or admin
    DELETE  /api/users/{id}                      — admin, never self
    GET     /api/projects
    POST    /api/projects                        — validated
    DELETE  /api/projects/{id}                   — admin
    GET     /api/tasks
    POST    /api/tasks                           — validated
    PATCH   /api/tasks/{id}
    DELETE  /api/tasks/{id}
    GET     /api/articles
    POST    /api/articles                        — validated
    PATCH   /api/articles/{id}
    DELETE  /api/articles/{id}                   — admin
    GET     /api/announcements
    POST    /api/announcements                   — validated, admin
    DELETE  /api/announcements/{id}              — admin
    POST    /api/announcements/{id}/like
    POST    /api/announcements/{id}/comments
    POST    /api/announcements/{id}/read         — no auth
    GET     /api/feed
    POST    /api/feed
    POST    /api/feed/{id}/like
    POST    /api/feed/{id}/comments
    GET     /api/documents
    GET     /api/documents/{id}
    POST    /api/documents                       — 413 above the base64 limit
    DELETE  /api/documents/{id}                  — admin
    OPTIONS *                                    — CORS preflight (200)

Auth:
    Authorization: Bearer <HS256 JWT> issued by /api/auth/login.

Environment variables:
    DATABASE_URL                 required, e.g. postgresql+psycopg://...
    JWT_SECRET                   required, >= 10 characters
    RATE_LIMIT_MAX_REQUESTS      default: 300 per window per client IP
    RATE_LIMIT_WINDOW_SECONDS    default: 60
    DOCUMENTS_S3_BUCKET          optional; document content goes to S3 when set
    DOCUMENTS_S3_PREFIX          default: intranet-documents
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from vinteg_shared.config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_SWEEP_PROBABILITY,
    RATE_LIMIT_WINDOW_SECONDS,
    _config_problems,
)
from vinteg_shared.rate_limiter import RateLimiter
from vinteg_shared.router import Router, route

import handlers as h

logger = logging.getLogger()
logger.setLevel(logging.INFO)

for _problem in _config_problems():
    logger.error("[ERROR] Configuration problem: %s", _problem)

_ID = r"([^/]+)"

ROUTES = [
    # System
    route("GET", r"/api/health", h.handle_health),
    # Auth
    route("POST", r"/api/auth/login", h.handle_login),
    route("POST", r"/api/auth/change-password", h.handle_change_password),
    # Users
    route("GET", r"/api/users", h.handle_list_users),
    route("POST", r"/api/users", h.handle_create_user),
    route("PATCH", rf"/api/users/{_ID}", h.handle_update_user),
    route("DELETE", rf"/api/users/{_ID}", h.handle_delete_user),
    # Projects
    route("GET", r"/api/projects", h.handle_list_projects),
    route("POST", r"/api/projects", h.handle_create_project),
    route("DELETE", rf"/api/projects/{_ID}", h.handle_delete_project),
    # Tasks
    route("GET", r"/api/tasks", h.handle_list_tasks),
    route("POST", r"/api/tasks", h.handle_create_task),
    route("PATCH", rf"/api/tasks/{_ID}", h.handle_update_task),
    route("DELETE", rf"/api/tasks/{_ID}", h.handle_delete_task),
    # Articles
    route("GET", r"/api/articles", h.handle_list_articles),
    route("POST", r"/api/articles", h.handle_create_article),
    route("PATCH", rf"/api/articles/{_ID}", h.handle_update_article),
    route("DELETE", rf"/api/articles/{_ID}", h.handle_delete_article),
    # Announcements
    route("GET", r"/api/announcements", h.handle_list_announcements),
    route("POST", r"/api/announcements", h.handle_create_announcement),
    route("DELETE", rf"/api/announcements/{_ID}", h.handle_delete_announcement),
    route("POST", rf"/api/announcements/{_ID}/like", h.handle_announcement_like),
    route("POST", rf"/api/announcements/{_ID}/comments", h.handle_announcement_comment),
    route("POST", rf"/api/announcements/{_ID}/read", h.handle_announcement_read),
    # Feed
    route("GET", r"/api/feed", h.handle_list_feed),
    route("POST", r"/api/feed", h.handle_create_feed_entry),
    route("POST", rf"/api/feed/{_ID}/like", h.handle_feed_like),
    route("POST", rf"/api/feed/{_ID}/comments", h.handle_feed_comment),
    # Documents
    route("GET", r"/api/documents", h.handle_list_documents),
    route("GET", rf"/api/documents/{_ID}", h.handle_get_document),
    route("POST", r"/api/documents", h.handle_create_document),
    route("DELETE", rf"/api/documents/{_ID}", h.handle_delete_document),
]

# One limiter per warm container; counts do not survive a cold start.
_ROUTER = Router(
    ROUTES,
    RateLimiter(
        limit=RATE_LIMIT_MAX_REQUESTS,
        window_seconds=RATE_LIMIT_WINDOW_SECONDS,
        sweep_probability=RATE_LIMIT_SWEEP_PROBABILITY,
    ),
)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return _ROUTER.dispatch(event)
