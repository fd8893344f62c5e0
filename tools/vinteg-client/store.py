#!/usr/bin/env python3
"""store.py — Client-side session store and API client for the VIntegCorp intranet.

Every public method makes exactly one call through StoreClient._api_request,
which:
    - serves cache-eligible GETs from a 60 s response cache (deep copies),
    - attaches `Authorization: Bearer <token>` when a session is held,
    - on 401 clears both session tiers and the cache, fires the
      on_session_expired hook and raises SessionExpiredError,
    - converts snake_case response keys to camelCase recursively,
    - clears the whole cache after any non-GET request.

Session tiers:
    persistent  FileStorage (survives restarts; "remember me")
    session     MemoryStorage (process lifetime)
A login writes user+token to exactly one tier and clears the other.
"""

from __future__ import annotations

import base64
import copy
import html
import json
import logging
import mimetypes
import os
import re
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

__all__ = [
    "CACHE_TTL_SECONDS",
    "FileStorage",
    "MAX_FILE_SIZE",
    "MemoryStorage",
    "ResponseCache",
    "SessionExpiredError",
    "StoreClient",
    "StoreError",
    "_to_camel",
    "_to_camel_keys",
    "document_payload",
    "encode_file",
    "format_bytes",
    "parse_mentions",
]

SESSION_USER_KEY = "vinteg_user"
SESSION_TOKEN_KEY = "vinteg_token"
CACHE_TTL_SECONDS = 60
# 3 MiB of file becomes ~4 MiB of base64, under the API's 4.2 MiB ceiling.
MAX_FILE_SIZE = 3 * 1024 * 1024
REQUEST_TIMEOUT_SECONDS = 20

_SNAKE_SEGMENT = re.compile(r"_([a-z])")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class SessionExpiredError(StoreError):
    def __init__(self, message: str = "Session expired"):
        super().__init__(message, 401)


# ---------------------------------------------------------------------------
# Key casing
# ---------------------------------------------------------------------------


def _to_camel(key: str) -> str:
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), key)


def _to_camel_keys(obj: Any) -> Any:
    """Recursively camelCase dict keys inside lists and dicts; scalars pass through."""
    if isinstance(obj, list):
        return [_to_camel_keys(v) for v in obj]
    if isinstance(obj, dict):
        return {_to_camel(str(k)): _to_camel_keys(v) for k, v in obj.items()}
    return obj


# ---------------------------------------------------------------------------
# Storage tiers
# ---------------------------------------------------------------------------


class MemoryStorage:
    """Process-lifetime key/value tier."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """Persistent key/value tier backed by a JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------


class ResponseCache:
    """URL-keyed payload cache. Entries older than the TTL are treated as absent."""

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            # Callers may mutate what they get back.
            return copy.deepcopy(payload)

    def set(self, key: str, payload: Any) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(payload), self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def _urlopen(req: urllib.request.Request, timeout: int):
    return urllib.request.urlopen(req, timeout=timeout)


def _error_message(raw: str) -> Optional[str]:
    try:
        parsed = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and parsed.get("message"):
        return str(parsed["message"])
    return None


class StoreClient:
    def __init__(
        self,
        base_url: str,
        persistent_storage: Optional[Any] = None,
        session_storage: Optional[Any] = None,
        cache: Optional[ResponseCache] = None,
        urlopen: Optional[Callable[..., Any]] = None,
        on_session_expired: Optional[Callable[[], None]] = None,
        timeout: int = REQUEST_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.persistent_storage = persistent_storage if persistent_storage is not None else MemoryStorage()
        self.session_storage = session_storage if session_storage is not None else MemoryStorage()
        self.cache = cache if cache is not None else ResponseCache()
        self.on_session_expired = on_session_expired
        self.timeout = timeout
        self._urlopen = urlopen or _urlopen
        self.current_user: Optional[Dict[str, Any]] = None
        self.token: Optional[str] = None
        self._restore_session()

    # -- session ------------------------------------------------------------

    def _restore_session(self) -> None:
        raw_user = token = None
        for storage in (self.persistent_storage, self.session_storage):
            raw_user = storage.get_item(SESSION_USER_KEY)
            token = storage.get_item(SESSION_TOKEN_KEY)
            if raw_user and token:
                break
        if not (raw_user and token):
            return
        try:
            user = json.loads(raw_user)
        except (TypeError, ValueError):
            logger.warning("Stored session is corrupt; logging out")
            self.logout()
            return
        if isinstance(user, dict) and user.get("id"):
            self.current_user = user
            self.token = token
        else:
            logger.warning("Stored session has no user id; logging out")
            self.logout()

    def _write_session(self, storage: Any) -> None:
        storage.set_item(SESSION_USER_KEY, json.dumps(self.current_user))
        storage.set_item(SESSION_TOKEN_KEY, self.token or "")

    @staticmethod
    def _clear_tier(storage: Any) -> None:
        storage.remove_item(SESSION_USER_KEY)
        storage.remove_item(SESSION_TOKEN_KEY)

    def login(self, email: str, password: str, remember: bool = False) -> Dict[str, Any]:
        data = self._api_request("/api/auth/login", "POST", {"email": email, "password": password})
        self.current_user = data["user"]
        self.token = data["token"]
        if remember:
            target, other = self.persistent_storage, self.session_storage
        else:
            target, other = self.session_storage, self.persistent_storage
        self._write_session(target)
        self._clear_tier(other)
        return self.current_user

    def logout(self) -> None:
        self.current_user = None
        self.token = None
        self._clear_tier(self.persistent_storage)
        self._clear_tier(self.session_storage)
        self.cache.clear()

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        return self.current_user

    def update_current_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.current_user:
            raise StoreError("No user")
        updated = self._api_request(f"/api/users/{self.current_user['id']}", "PATCH", data)
        self.current_user = updated
        if self.persistent_storage.get_item(SESSION_USER_KEY):
            self.persistent_storage.set_item(SESSION_USER_KEY, json.dumps(updated))
        else:
            self.session_storage.set_item(SESSION_USER_KEY, json.dumps(updated))
        self.cache.clear()
        return updated

    # -- dispatch -----------------------------------------------------------

    def _send(self, req: urllib.request.Request) -> Tuple[int, str]:
        try:
            with self._urlopen(req, self.timeout) as resp:
                status = getattr(resp, "status", None) or resp.getcode()
                return status, resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            return exc.code, exc.read().decode("utf-8")
        except urllib.error.URLError as exc:
            raise StoreError(f"API unreachable: {exc.reason}") from exc

    def _api_request(self, url: str, method: str = "GET", body: Any = None, use_cache: bool = False) -> Any:
        method = method.upper()
        cacheable = use_cache and method == "GET"
        if cacheable:
            cached = self.cache.get(url)
            if cached is not None:
                return cached

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(url=f"{self.base_url}{url}", method=method, headers=headers, data=data)

        status, text = self._send(req)

        if status == 401:
            self.logout()
            if self.on_session_expired is not None:
                self.on_session_expired()
            raise SessionExpiredError()

        if not 200 <= status < 300:
            raise StoreError(_error_message(text) or f"Server error: {status}", status)

        if status == 204:
            if method != "GET":
                self.cache.clear()
            return {}

        result = _to_camel_keys(json.loads(text)) if text else {}
        if cacheable:
            self.cache.set(url, result)
        if method != "GET":
            self.cache.clear()
        return result

    # -- auth / users -------------------------------------------------------

    def change_password(self, email: str, old_pass: str, new_pass: str) -> Any:
        return self._api_request(
            "/api/auth/change-password", "POST", {"email": email, "oldPass": old_pass, "newPass": new_pass}
        )

    def get_users(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/users", "GET", use_cache=True)

    def add_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/users", "POST", user)

    def delete_user(self, user_id: str) -> Any:
        return self._api_request(f"/api/users/{user_id}", "DELETE")

    # -- projects / tasks ---------------------------------------------------

    def get_projects(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/projects", "GET", use_cache=True)

    def add_project(self, project: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/projects", "POST", project)

    def delete_project(self, project_id: str) -> Any:
        return self._api_request(f"/api/projects/{project_id}", "DELETE")

    def get_tasks(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/tasks", "GET")

    def add_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/tasks", "POST", task)

    def update_task(self, task_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request(f"/api/tasks/{task_id}", "PATCH", data)

    def update_task_status(self, task_id: str, status: str) -> Dict[str, Any]:
        return self._api_request(f"/api/tasks/{task_id}", "PATCH", {"status": status})

    def delete_task(self, task_id: str) -> Any:
        return self._api_request(f"/api/tasks/{task_id}", "DELETE")

    # -- articles -----------------------------------------------------------

    def get_articles(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/articles", "GET", use_cache=True)

    def add_article(self, article: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/articles", "POST", article)

    def update_article(self, article_id: str, article: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        return self._api_request(f"/api/articles/{article_id}", "PATCH", dict(article, lastEditorId=user_id))

    def delete_article(self, article_id: str) -> Any:
        return self._api_request(f"/api/articles/{article_id}", "DELETE")

    # -- announcements ------------------------------------------------------

    def get_announcements(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/announcements", "GET")

    def add_announcement(self, announcement: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/announcements", "POST", announcement)

    def delete_announcement(self, announcement_id: str) -> Any:
        return self._api_request(f"/api/announcements/{announcement_id}", "DELETE")

    def toggle_announcement_like(self, announcement_id: str, user_id: str) -> Dict[str, Any]:
        return self._api_request(f"/api/announcements/{announcement_id}/like", "POST", {"userId": user_id})

    def add_announcement_comment(
        self, announcement_id: str, user: Dict[str, Any], content: str, mentions: List[str]
    ) -> Dict[str, Any]:
        return self._api_request(
            f"/api/announcements/{announcement_id}/comments", "POST", _comment_body(user, content, mentions)
        )

    def mark_announcement_as_read(self, announcement_id: str, user_id: str) -> Any:
        return self._api_request(f"/api/announcements/{announcement_id}/read", "POST", {"userId": user_id})

    # -- feed ---------------------------------------------------------------

    def get_employee_updates(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/feed", "GET")

    def add_employee_update(self, content: str) -> Dict[str, Any]:
        return self._api_request("/api/feed", "POST", {"content": content})

    def toggle_feed_like(self, entry_id: str, user_id: str) -> Dict[str, Any]:
        return self._api_request(f"/api/feed/{entry_id}/like", "POST", {"userId": user_id})

    def add_feed_comment(self, entry_id: str, user: Dict[str, Any], content: str, mentions: List[str]) -> Dict[str, Any]:
        return self._api_request(f"/api/feed/{entry_id}/comments", "POST", _comment_body(user, content, mentions))

    # -- documents ----------------------------------------------------------

    def get_documents(self) -> List[Dict[str, Any]]:
        return self._api_request("/api/documents", "GET")

    def get_document(self, document_id: str) -> Dict[str, Any]:
        return self._api_request(f"/api/documents/{document_id}", "GET")

    def add_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._api_request("/api/documents", "POST", document)

    def delete_document(self, document_id: str) -> Any:
        return self._api_request(f"/api/documents/{document_id}", "DELETE")


def _comment_body(user: Dict[str, Any], content: str, mentions: List[str]) -> Dict[str, Any]:
    return {
        "authorId": user.get("id"),
        "authorName": user.get("name"),
        "authorAvatar": user.get("avatarUrl"),
        "content": content,
        "mentions": mentions,
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_mentions(text: str, users: List[Dict[str, Any]]) -> Tuple[str, List[str]]:
    """HTML-escape text, highlight `@Name` mentions and return (html, mentioned ids)."""
    processed = html.escape(text or "", quote=False)
    mentions: List[str] = []
    for user in users:
        name = html.escape(str(user.get("name") or ""), quote=False)
        if not name:
            continue
        tag = f"@{name}"
        if tag in processed:
            mentions.append(user["id"])
            processed = processed.replace(tag, f'<span class="mention">{tag}</span>')
    return processed, mentions


def encode_file(path: str, mime_type: Optional[str] = None) -> str:
    """Read a file into a base64 data URL, refusing anything over MAX_FILE_SIZE."""
    size = os.path.getsize(path)
    if size > MAX_FILE_SIZE:
        raise StoreError(f"File too large ({format_bytes(size)} > 3 MB). Choose a smaller file.", 413)
    mime = mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
    with open(path, "rb") as fh:
        encoded = base64.b64encode(fh.read()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def document_payload(path: str, access_role: str = "ALL") -> Dict[str, Any]:
    """Build the body for StoreClient.add_document from a local file."""
    mime = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return {
        "filename": os.path.basename(path),
        "mime_type": mime,
        "file_size_bytes": os.path.getsize(path),
        "access_role": access_role,
        "data": encode_file(path, mime),
    }


def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    if not num_bytes:
        return "0 Bytes"
    sizes = ["Bytes", "KB", "MB", "GB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(sizes) - 1:
        value /= 1024
        index += 1
    return f"{round(value, max(decimals, 0)):g} {sizes[index]}"
