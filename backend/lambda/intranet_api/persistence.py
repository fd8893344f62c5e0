"""persistence.py — Parameterized SQL for the intranet resources.

Every statement binds values as parameters; column names that vary
(partial updates) come only from fixed whitelists, never from the request.
JSONB arrays (liked_by, comments, read_by, attachments) are written as
serialized JSON and cast in SQL.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from vinteg_shared.database import _execute, _fetch_all, _fetch_one

__all__ = [
    "_delete_announcement",
    "_delete_document",
    "_delete_project",
    "_delete_task",
    "_find_active_user_by_email",
    "_find_password_hash",
    "_get_announcement",
    "_get_document",
    "_get_feed_entry",
    "_get_task",
    "_insert_announcement",
    "_insert_article",
    "_insert_document",
    "_insert_feed_entry",
    "_insert_project",
    "_insert_task",
    "_insert_user",
    "_list_announcements",
    "_list_articles",
    "_list_documents",
    "_list_feed",
    "_list_projects",
    "_list_tasks",
    "_list_users",
    "_set_announcement_json",
    "_set_feed_comments",
    "_set_feed_likes",
    "_set_password_hash",
    "_soft_delete_article",
    "_soft_delete_user",
    "_update_article",
    "_update_task",
    "_update_user",
]

_USER_COLUMNS = "id, name, email, role, position, department, avatar_url"
_USER_UPDATABLE = ("name", "position", "department", "avatar_url")
_TASK_UPDATABLE = ("title", "description", "status", "priority", "assignee_name", "due_date", "project_id")
_TASK_CASTS = {"status": "task_status", "priority": "task_priority"}
_ANNOUNCEMENT_JSON_COLUMNS = ("liked_by", "comments", "read_by")
_DOCUMENT_META_COLUMNS = (
    "id, filename, mime_type, file_size_bytes, access_role, uploaded_by, created_at, storage_path"
)
_TASK_SELECT = """
    SELECT t.*, p.name AS project_name
    FROM tasks t
    LEFT JOIN projects p ON t.project_id = p.id
"""
_FEED_SELECT = """
    SELECT f.*, u.name AS author_name, u.avatar_url AS author_avatar
    FROM employee_updates f
    JOIN users u ON f.author_id = u.id
"""


def _set_clause(fields: Mapping[str, Any], allowed: tuple, casts: Optional[Dict[str, str]] = None) -> str:
    casts = casts or {}
    parts = []
    for column in allowed:
        if column not in fields:
            continue
        if column in casts:
            parts.append(f"{column} = CAST(:{column} AS {casts[column]})")
        else:
            parts.append(f"{column} = :{column}")
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _find_active_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all(
        "SELECT * FROM users WHERE email = :email AND is_active = true LIMIT 1",
        {"email": email},
    )
    return rows[0] if rows else None


def _list_users() -> List[Dict[str, Any]]:
    return _fetch_all(
        """
        SELECT id, name, email, role, position, department, avatar_url, is_active
        FROM users
        WHERE deleted_at IS NULL
        ORDER BY name ASC
        LIMIT 1000
        """
    )


def _insert_user(
    *,
    name: str,
    email: str,
    role: str,
    position: str,
    department: str,
    password_hash: str,
    avatar_url: str,
) -> Dict[str, Any]:
    rows = _execute(
        f"""
        INSERT INTO users (name, email, role, position, department, password_hash, avatar_url)
        VALUES (:name, :email, :role, :position, :department, :password_hash, :avatar_url)
        RETURNING {_USER_COLUMNS}
        """,
        {
            "name": name,
            "email": email,
            "role": role,
            "position": position,
            "department": department,
            "password_hash": password_hash,
            "avatar_url": avatar_url,
        },
        returning=True,
        conflict_message="Email already in use",
    )
    return rows[0]


def _update_user(user_id: str, fields: Mapping[str, Any], *, allow_role: bool) -> Optional[Dict[str, Any]]:
    allowed = _USER_UPDATABLE + (("role",) if allow_role else ())
    clause = _set_clause(fields, allowed)
    params = {k: fields[k] for k in allowed if k in fields}
    params["id"] = user_id
    if clause:
        sql = f"UPDATE users SET {clause}, updated_at = NOW() WHERE id = :id RETURNING {_USER_COLUMNS}"
    else:
        sql = f"SELECT {_USER_COLUMNS} FROM users WHERE id = :id"
    return _fetch_one(sql, params)


def _find_password_hash(email: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all("SELECT password_hash FROM users WHERE email = :email", {"email": email})
    return rows[0] if rows else None


def _set_password_hash(email: str, password_hash: str) -> None:
    _execute(
        "UPDATE users SET password_hash = :password_hash WHERE email = :email",
        {"email": email, "password_hash": password_hash},
    )


def _soft_delete_user(user_id: str) -> None:
    _execute(
        "UPDATE users SET deleted_at = NOW(), is_active = false WHERE id = :id",
        {"id": user_id},
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def _list_projects() -> List[Dict[str, Any]]:
    return _fetch_all("SELECT * FROM projects ORDER BY created_at DESC LIMIT 100")


def _insert_project(*, name: str, description: Optional[str], status: str, owner_id: str) -> Dict[str, Any]:
    return _fetch_one(
        """
        INSERT INTO projects (name, description, status, owner_id)
        VALUES (:name, :description, :status, :owner_id)
        RETURNING *
        """,
        {"name": name, "description": description, "status": status, "owner_id": owner_id},
    )


def _delete_project(project_id: str) -> None:
    _execute("DELETE FROM projects WHERE id = :id", {"id": project_id})


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _list_tasks() -> List[Dict[str, Any]]:
    return _fetch_all(_TASK_SELECT + " ORDER BY t.created_at DESC LIMIT 500")


def _get_task(task_id: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all(_TASK_SELECT + " WHERE t.id = :id", {"id": task_id})
    return rows[0] if rows else None


def _insert_task(
    *,
    title: str,
    description: Optional[str],
    priority: str,
    assignee_name: Optional[str],
    author_id: str,
    due_date: Optional[str],
    project_id: Optional[str],
) -> Dict[str, Any]:
    return _fetch_one(
        """
        INSERT INTO tasks (title, description, priority, assignee_name, author_id, due_date, status, project_id)
        VALUES (:title, :description, CAST(:priority AS task_priority), :assignee_name, :author_id,
                :due_date, CAST('todo' AS task_status), :project_id)
        RETURNING *
        """,
        {
            "title": title,
            "description": description,
            "priority": priority,
            "assignee_name": assignee_name,
            "author_id": author_id,
            "due_date": due_date,
            "project_id": project_id,
        },
    )


def _update_task(task_id: str, fields: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply whitelisted fields, then return the joined row (None if missing)."""
    clause = _set_clause(fields, _TASK_UPDATABLE, _TASK_CASTS)
    if clause:
        params = {k: fields[k] for k in _TASK_UPDATABLE if k in fields}
        params["id"] = task_id
        _execute(f"UPDATE tasks SET {clause} WHERE id = :id", params)
    return _get_task(task_id)


def _delete_task(task_id: str) -> None:
    _execute("DELETE FROM tasks WHERE id = :id", {"id": task_id})


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


def _list_articles() -> List[Dict[str, Any]]:
    return _fetch_all(
        "SELECT * FROM articles WHERE deleted_at IS NULL ORDER BY created_at DESC LIMIT 200"
    )


def _insert_article(
    *,
    title: str,
    content: str,
    category: str,
    author_id: str,
    folder: Optional[str],
    tags: List[str],
    attachments: List[Dict[str, Any]],
) -> Dict[str, Any]:
    return _fetch_one(
        """
        INSERT INTO articles (title, content, category, author_id, folder, type, status, tags, attachments)
        VALUES (:title, :content, :category, :author_id, :folder, 'knowledge', 'published',
                :tags, CAST(:attachments AS jsonb))
        RETURNING *
        """,
        {
            "title": title,
            "content": content,
            "category": category,
            "author_id": author_id,
            "folder": folder,
            "tags": tags,
            "attachments": json.dumps(attachments),
        },
    )


def _update_article(
    article_id: str,
    *,
    title: Optional[str],
    content: Optional[str],
    category: Optional[str],
    folder: Optional[str],
    attachments: List[Dict[str, Any]],
    last_editor_id: str,
) -> Optional[Dict[str, Any]]:
    return _fetch_one(
        """
        UPDATE articles SET
            title = COALESCE(:title, title),
            content = COALESCE(:content, content),
            category = COALESCE(:category, category),
            folder = :folder,
            attachments = CAST(:attachments AS jsonb),
            last_editor_id = :last_editor_id,
            updated_at = NOW()
        WHERE id = :id AND deleted_at IS NULL
        RETURNING *
        """,
        {
            "id": article_id,
            "title": title,
            "content": content,
            "category": category,
            "folder": folder,
            "attachments": json.dumps(attachments),
            "last_editor_id": last_editor_id,
        },
    )


def _soft_delete_article(article_id: str) -> None:
    _execute("UPDATE articles SET deleted_at = NOW() WHERE id = :id", {"id": article_id})


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------


def _list_announcements() -> List[Dict[str, Any]]:
    return _fetch_all("SELECT * FROM announcements ORDER BY created_at DESC LIMIT 50")


def _get_announcement(announcement_id: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all("SELECT * FROM announcements WHERE id = :id", {"id": announcement_id})
    return rows[0] if rows else None


def _insert_announcement(*, title: str, content: str, priority: str, is_pinned: bool) -> Dict[str, Any]:
    return _fetch_one(
        """
        INSERT INTO announcements (title, content, priority, is_pinned, liked_by, comments, read_by)
        VALUES (:title, :content, :priority, :is_pinned, '[]'::jsonb, '[]'::jsonb, '[]'::jsonb)
        RETURNING *
        """,
        {"title": title, "content": content, "priority": priority, "is_pinned": is_pinned},
    )


def _set_announcement_json(announcement_id: str, column: str, value: List[Any]) -> Optional[Dict[str, Any]]:
    if column not in _ANNOUNCEMENT_JSON_COLUMNS:
        raise ValueError(f"Unsupported announcement column: {column}")
    return _fetch_one(
        f"UPDATE announcements SET {column} = CAST(:value AS jsonb) WHERE id = :id RETURNING *",
        {"id": announcement_id, "value": json.dumps(value)},
    )


def _delete_announcement(announcement_id: str) -> None:
    _execute("DELETE FROM announcements WHERE id = :id", {"id": announcement_id})


# ---------------------------------------------------------------------------
# Feed (employee updates)
# ---------------------------------------------------------------------------


def _list_feed() -> List[Dict[str, Any]]:
    return _fetch_all(_FEED_SELECT + " ORDER BY f.created_at DESC LIMIT 50")


def _get_feed_entry(entry_id: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all(_FEED_SELECT + " WHERE f.id = :id", {"id": entry_id})
    return rows[0] if rows else None


def _insert_feed_entry(*, content: str, author_id: str) -> Dict[str, Any]:
    return _fetch_one(
        """
        INSERT INTO employee_updates (content, author_id, liked_by, comments)
        VALUES (:content, :author_id, '[]'::jsonb, '[]'::jsonb)
        RETURNING *
        """,
        {"content": content, "author_id": author_id},
    )


def _set_feed_likes(entry_id: str, likes: List[str]) -> None:
    _execute(
        "UPDATE employee_updates SET liked_by = CAST(:likes AS jsonb), likes_count = :count WHERE id = :id",
        {"id": entry_id, "likes": json.dumps(likes), "count": len(likes)},
    )


def _set_feed_comments(entry_id: str, comments: List[Dict[str, Any]]) -> None:
    _execute(
        "UPDATE employee_updates SET comments = CAST(:comments AS jsonb) WHERE id = :id",
        {"id": entry_id, "comments": json.dumps(comments)},
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def _list_documents() -> List[Dict[str, Any]]:
    return _fetch_all(
        f"SELECT {_DOCUMENT_META_COLUMNS} FROM documents ORDER BY created_at DESC LIMIT 200"
    )


def _get_document(document_id: str) -> Optional[Dict[str, Any]]:
    rows = _fetch_all("SELECT * FROM documents WHERE id = :id", {"id": document_id})
    return rows[0] if rows else None


def _insert_document(
    *,
    filename: str,
    mime_type: Optional[str],
    file_size_bytes: Optional[int],
    uploaded_by: str,
    access_role: Optional[str],
    storage_path: str,
    data: Optional[str],
) -> Dict[str, Any]:
    return _fetch_one(
        f"""
        INSERT INTO documents (filename, mime_type, file_size_bytes, uploaded_by, access_role, storage_path, data)
        VALUES (:filename, :mime_type, :file_size_bytes, :uploaded_by, :access_role, :storage_path, :data)
        RETURNING {_DOCUMENT_META_COLUMNS}
        """,
        {
            "filename": filename,
            "mime_type": mime_type,
            "file_size_bytes": file_size_bytes,
            "uploaded_by": uploaded_by,
            "access_role": access_role,
            "storage_path": storage_path,
            "data": data,
        },
    )


def _delete_document(document_id: str) -> Optional[str]:
    """Delete the row; returns its storage_path (None if there was no row)."""
    row = _fetch_one(
        "DELETE FROM documents WHERE id = :id RETURNING storage_path",
        {"id": document_id},
    )
    return row["storage_path"] if row else None
