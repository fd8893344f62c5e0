"""handlers.py — REST handlers for the intranet API.

Each handler takes (request, *path_params) and returns an API Gateway
response dict. Authentication happens inside the handler via
require_session(); failures are raised as AppError subclasses and
translated by the router.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List
from urllib.parse import quote

from vinteg_shared.auth import (
    hash_password,
    issue_token,
    require_admin,
    require_session,
    verify_password,
)
from vinteg_shared.config import MAX_DOCUMENT_BASE64_BYTES
from vinteg_shared.errors import Forbidden, NotFound, PayloadTooLarge, Unauthorized, ValidationFailed
from vinteg_shared.http_utils import ApiRequest, _no_content, _response
from vinteg_shared.serialization import _emit_structured_log, _now_z
from vinteg_shared.validation import (
    ChangePasswordRequest,
    CommentRequest,
    CreateAnnouncementRequest,
    CreateArticleRequest,
    CreateDocumentRequest,
    CreateFeedEntryRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    CreateUserRequest,
    LoginRequest,
    ReactionRequest,
    UpdateArticleRequest,
    UpdateTaskRequest,
    UpdateUserRequest,
    validate_body,
)

from document_storage import _delete_content, _load_content, _store_content
from persistence import (
    _delete_announcement,
    _delete_document,
    _delete_project,
    _delete_task,
    _find_active_user_by_email,
    _find_password_hash,
    _get_announcement,
    _get_document,
    _get_feed_entry,
    _insert_announcement,
    _insert_article,
    _insert_document,
    _insert_feed_entry,
    _insert_project,
    _insert_task,
    _insert_user,
    _list_announcements,
    _list_articles,
    _list_documents,
    _list_feed,
    _list_projects,
    _list_tasks,
    _list_users,
    _set_announcement_json,
    _set_feed_comments,
    _set_feed_likes,
    _set_password_hash,
    _soft_delete_article,
    _soft_delete_user,
    _update_article,
    _update_task,
    _update_user,
)

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "123456"
_BAD_CREDENTIALS = "Invalid email or password"
_AVATAR_URL = "https://ui-avatars.com/api/?name={name}&background=random"


def _default_avatar(name: str) -> str:
    return _AVATAR_URL.format(name=quote(name))


def _toggle(values: List[str], item: str) -> List[str]:
    if item in values:
        return [v for v in values if v != item]
    return values + [item]


def _json_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _new_comment(payload: CommentRequest) -> Dict[str, Any]:
    # Stored comments keep the client's camelCase shape.
    return {
        "authorId": payload.author_id,
        "authorName": payload.author_name,
        "authorAvatar": payload.author_avatar,
        "content": payload.content,
        "mentions": payload.mentions or [],
        "id": str(uuid.uuid4()),
        "date": _now_z(),
    }


# ---------------------------------------------------------------------------
# System / auth
# ---------------------------------------------------------------------------


def handle_health(request: ApiRequest) -> Dict[str, Any]:
    return _response(200, {"status": "ok", "timestamp": _now_z()})


@validate_body(LoginRequest)
def handle_login(request: ApiRequest) -> Dict[str, Any]:
    body: LoginRequest = request.payload
    user = _find_active_user_by_email(body.email)
    # Unknown e-mail and wrong password share one message.
    if user is None or not verify_password(body.password, user.get("password_hash") or ""):
        raise Unauthorized(_BAD_CREDENTIALS)

    token = issue_token({"id": str(user["id"]), "role": user["role"], "email": user["email"]})
    safe_user = {k: v for k, v in user.items() if k != "password_hash"}
    _emit_structured_log("info", "User logged in", userId=str(user["id"]))
    return _response(200, {"user": safe_user, "token": token})


@validate_body(ChangePasswordRequest)
def handle_change_password(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    body: ChangePasswordRequest = request.payload

    if requester.email != body.email and not requester.is_admin:
        raise Forbidden("Forbidden")

    record = _find_password_hash(body.email)
    if record is None:
        raise NotFound("User not found")

    # Admins reset passwords without knowing the old one.
    if not requester.is_admin and not verify_password(body.old_pass, record.get("password_hash") or ""):
        raise Unauthorized("Old password is incorrect")

    _set_password_hash(body.email, hash_password(body.new_pass))
    return _response(200, {"success": True})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def handle_list_users(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_users())


@validate_body(CreateUserRequest)
def handle_create_user(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    require_admin(requester, "Access denied")
    body: CreateUserRequest = request.payload

    user = _insert_user(
        name=body.name,
        email=body.email,
        role=body.role,
        position=body.position,
        department=body.department,
        password_hash=hash_password(body.password or DEFAULT_PASSWORD),
        avatar_url=body.avatar_url or _default_avatar(body.name),
    )
    return _response(201, user)


@validate_body(UpdateUserRequest)
def handle_update_user(request: ApiRequest, user_id: str) -> Dict[str, Any]:
    requester = require_session(request)
    if requester.user_id != user_id and not requester.is_admin:
        raise Forbidden("Access denied")

    fields = request.payload.model_dump(exclude_unset=True)
    updated = _update_user(user_id, fields, allow_role=requester.is_admin)
    if updated is None:
        raise NotFound("User not found")
    return _response(200, updated)


def handle_delete_user(request: ApiRequest, user_id: str) -> Dict[str, Any]:
    requester = require_session(request)
    if requester.user_id == user_id:
        raise ValidationFailed("You cannot delete your own account")
    require_admin(requester, "Only administrators can delete users")
    _soft_delete_user(user_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def handle_list_projects(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_projects())


@validate_body(CreateProjectRequest)
def handle_create_project(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    body: CreateProjectRequest = request.payload
    project = _insert_project(
        name=body.name,
        description=body.description,
        status=body.status or "active",
        owner_id=requester.user_id,
    )
    return _response(201, project)


def handle_delete_project(request: ApiRequest, project_id: str) -> Dict[str, Any]:
    require_admin(require_session(request))
    _delete_project(project_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def handle_list_tasks(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_tasks())


@validate_body(CreateTaskRequest)
def handle_create_task(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    body: CreateTaskRequest = request.payload
    task = _insert_task(
        title=body.title,
        description=body.description,
        priority=body.priority,
        assignee_name=body.assignee_name,
        author_id=requester.user_id,
        due_date=body.due_date,
        project_id=str(body.project_id) if body.project_id else None,
    )
    return _response(201, task)


@validate_body(UpdateTaskRequest)
def handle_update_task(request: ApiRequest, task_id: str) -> Dict[str, Any]:
    require_session(request)
    fields = request.payload.model_dump(mode="json", exclude_unset=True)
    task = _update_task(task_id, fields)
    if task is None:
        raise NotFound("Task not found")
    return _response(200, task)


def handle_delete_task(request: ApiRequest, task_id: str) -> Dict[str, Any]:
    require_session(request)
    _delete_task(task_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


def handle_list_articles(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_articles())


@validate_body(CreateArticleRequest)
def handle_create_article(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    body: CreateArticleRequest = request.payload
    article = _insert_article(
        title=body.title,
        content=body.content,
        category=body.category,
        author_id=requester.user_id,
        folder=body.folder,
        tags=body.tags or [],
        attachments=body.attachments or [],
    )
    return _response(201, article)


@validate_body(UpdateArticleRequest)
def handle_update_article(request: ApiRequest, article_id: str) -> Dict[str, Any]:
    requester = require_session(request)
    body: UpdateArticleRequest = request.payload
    article = _update_article(
        article_id,
        title=body.title,
        content=body.content,
        category=body.category,
        folder=body.folder,
        attachments=body.attachments or [],
        last_editor_id=requester.user_id,
    )
    if article is None:
        raise NotFound("Article not found")
    return _response(200, article)


def handle_delete_article(request: ApiRequest, article_id: str) -> Dict[str, Any]:
    require_admin(require_session(request))
    _soft_delete_article(article_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------


def _require_announcement(announcement_id: str) -> Dict[str, Any]:
    record = _get_announcement(announcement_id)
    if record is None:
        raise NotFound("Announcement not found")
    return record


def handle_list_announcements(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_announcements())


@validate_body(CreateAnnouncementRequest)
def handle_create_announcement(request: ApiRequest) -> Dict[str, Any]:
    require_admin(require_session(request))
    body: CreateAnnouncementRequest = request.payload
    record = _insert_announcement(
        title=body.title,
        content=body.content,
        priority=body.priority,
        is_pinned=bool(body.is_pinned),
    )
    return _response(201, record)


def handle_announcement_like(request: ApiRequest, announcement_id: str) -> Dict[str, Any]:
    requester = require_session(request)
    record = _require_announcement(announcement_id)
    likes = _toggle(_json_list(record.get("liked_by")), requester.user_id)
    return _response(200, _set_announcement_json(announcement_id, "liked_by", likes))


@validate_body(CommentRequest)
def handle_announcement_comment(request: ApiRequest, announcement_id: str) -> Dict[str, Any]:
    require_session(request)
    record = _require_announcement(announcement_id)
    comments = _json_list(record.get("comments")) + [_new_comment(request.payload)]
    return _response(200, _set_announcement_json(announcement_id, "comments", comments))


@validate_body(ReactionRequest)
def handle_announcement_read(request: ApiRequest, announcement_id: str) -> Dict[str, Any]:
    # Read receipts are recorded without a session.
    user_id = request.payload.user_id
    if not user_id:
        raise ValidationFailed("userId required")
    record = _require_announcement(announcement_id)
    reads = _json_list(record.get("read_by"))
    if user_id not in reads:
        _set_announcement_json(announcement_id, "read_by", reads + [user_id])
    return _response(200, {"success": True})


def handle_delete_announcement(request: ApiRequest, announcement_id: str) -> Dict[str, Any]:
    require_admin(require_session(request))
    _delete_announcement(announcement_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


def _require_feed_entry(entry_id: str) -> Dict[str, Any]:
    record = _get_feed_entry(entry_id)
    if record is None:
        raise NotFound("Update not found")
    return record


def handle_list_feed(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_feed())


@validate_body(CreateFeedEntryRequest)
def handle_create_feed_entry(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    content = request.payload.content
    if not content:
        raise ValidationFailed("Content required")
    return _response(201, _insert_feed_entry(content=content, author_id=requester.user_id))


def handle_feed_like(request: ApiRequest, entry_id: str) -> Dict[str, Any]:
    requester = require_session(request)
    record = _require_feed_entry(entry_id)
    likes = _toggle(_json_list(record.get("liked_by")), requester.user_id)
    _set_feed_likes(entry_id, likes)
    return _response(200, _require_feed_entry(entry_id))


@validate_body(CommentRequest)
def handle_feed_comment(request: ApiRequest, entry_id: str) -> Dict[str, Any]:
    require_session(request)
    record = _require_feed_entry(entry_id)
    comments = _json_list(record.get("comments")) + [_new_comment(request.payload)]
    _set_feed_comments(entry_id, comments)
    return _response(200, _require_feed_entry(entry_id))


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def handle_list_documents(request: ApiRequest) -> Dict[str, Any]:
    require_session(request)
    return _response(200, _list_documents())


def handle_get_document(request: ApiRequest, document_id: str) -> Dict[str, Any]:
    require_session(request)
    document = _get_document(document_id)
    if document is None:
        raise NotFound("Document not found")
    return _response(200, _load_content(document))


@validate_body(CreateDocumentRequest)
def handle_create_document(request: ApiRequest) -> Dict[str, Any]:
    requester = require_session(request)
    body: CreateDocumentRequest = request.payload
    if len(body.data) > MAX_DOCUMENT_BASE64_BYTES:
        raise PayloadTooLarge("File too large (Base64 limit exceeded).")

    storage_path, inline_data = _store_content(body.filename, body.data, body.mime_type)
    document = _insert_document(
        filename=body.filename,
        mime_type=body.mime_type,
        file_size_bytes=body.file_size_bytes,
        uploaded_by=requester.user_id,
        access_role=body.access_role,
        storage_path=storage_path,
        data=inline_data,
    )
    return _response(201, document)


def handle_delete_document(request: ApiRequest, document_id: str) -> Dict[str, Any]:
    require_admin(require_session(request))
    storage_path = _delete_document(document_id)
    _delete_content(storage_path)
    return _no_content()
