"""vinteg_shared.validation — Declared request shapes and the body validation wrapper.

Each validated route declares a pydantic model. validate_body() parses the
raw JSON body against it before the handler runs and either:
    - replaces request.body with the normalized dict and sets
      request.payload to the typed model, or
    - raises ValidationFailed (400) naming every violated field at once:
      "Validation Error: title: <reason>, priority: <reason>"
"""

from __future__ import annotations

import functools
import re
import uuid
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Type

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from vinteg_shared.errors import ValidationFailed
from vinteg_shared.serialization import _to_snake_keys

__all__ = [
    "ChangePasswordRequest",
    "CommentRequest",
    "CreateAnnouncementRequest",
    "CreateArticleRequest",
    "CreateDocumentRequest",
    "CreateFeedEntryRequest",
    "CreateProjectRequest",
    "CreateTaskRequest",
    "CreateUserRequest",
    "LoginRequest",
    "ReactionRequest",
    "UpdateArticleRequest",
    "UpdateTaskRequest",
    "UpdateUserRequest",
    "_format_validation_error",
    "validate_body",
]

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    value = value.strip()
    if not _EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email")
    return value


Email = Annotated[str, AfterValidator(_check_email)]
Priority = Literal["low", "medium", "high"]


class _RequestModel(BaseModel):
    # Unknown keys are dropped so handlers never see undeclared fields.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _SnakeCaseModel(_RequestModel):
    """Accepts camelCase keys from the client as well as snake_case."""

    @model_validator(mode="before")
    @classmethod
    def _snake_case_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _to_snake_keys(data)
        return data


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(_RequestModel):
    email: Email
    password: str = Field(min_length=1)


class ChangePasswordRequest(_RequestModel):
    email: Email
    old_pass: str = Field(alias="oldPass")
    new_pass: str = Field(alias="newPass", min_length=6)


# ---------------------------------------------------------------------------
# Directory / work
# ---------------------------------------------------------------------------


class CreateUserRequest(_RequestModel):
    id: Optional[uuid.UUID] = None
    name: str = Field(min_length=2, max_length=50)
    email: Email
    role: Literal["ADMIN", "EMPLOYEE"]
    position: str = Field(min_length=2)
    department: str
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")
    password: Optional[str] = Field(default=None, min_length=6)


class CreateProjectRequest(_RequestModel):
    name: str = Field(min_length=3)
    description: Optional[str] = None
    status: Optional[Literal["active", "completed", "on-hold"]] = None
    owner_id: Optional[uuid.UUID] = None


class CreateTaskRequest(_SnakeCaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    priority: Priority
    status: Optional[Literal["todo", "in-progress", "done"]] = None
    assignee_name: Optional[str] = None
    due_date: Optional[str] = None
    author_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None

    @field_validator("project_id", "due_date", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        # The task form sends "" to mean "no project" / "no due date".
        if isinstance(value, str) and not value.strip():
            return None
        return value


class UpdateTaskRequest(_SnakeCaseModel):
    """Partial task update; only keys present in the body are applied."""

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[Literal["todo", "in-progress", "done"]] = None
    assignee_name: Optional[str] = None
    due_date: Optional[str] = None
    project_id: Optional[uuid.UUID] = None

    @field_validator("project_id", "due_date", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # Only runs for keys present in the body; absent keys stay unset.
    @field_validator("title", "priority", "status")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value


class UpdateUserRequest(_SnakeCaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    position: Optional[str] = None
    department: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[Literal["ADMIN", "EMPLOYEE"]] = None


# ---------------------------------------------------------------------------
# Knowledge base / communications
# ---------------------------------------------------------------------------


class CreateArticleRequest(_RequestModel):
    title: str = Field(min_length=5, max_length=100)
    content: str = Field(min_length=10)
    category: str
    folder: Optional[str] = None
    author_id: Optional[uuid.UUID] = None
    tags: Optional[List[str]] = None
    attachments: Optional[List[Dict[str, Any]]] = None


class CreateAnnouncementRequest(_RequestModel):
    title: str = Field(min_length=3, max_length=100)
    content: str = Field(min_length=1)
    priority: Priority
    is_pinned: Optional[bool] = Field(default=None, alias="isPinned")


class UpdateArticleRequest(_SnakeCaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=100)
    content: Optional[str] = Field(default=None, min_length=10)
    category: Optional[str] = None
    folder: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None


class ReactionRequest(_SnakeCaseModel):
    user_id: Optional[str] = None


class CommentRequest(_SnakeCaseModel):
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None
    content: str = Field(min_length=1)
    mentions: Optional[List[str]] = None


class CreateFeedEntryRequest(_RequestModel):
    # Emptiness is reported by the handler as "Content required".
    content: Optional[str] = None


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class CreateDocumentRequest(_SnakeCaseModel):
    filename: str = Field(min_length=1)
    mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    access_role: Optional[str] = None
    data: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Wrapper
# ---------------------------------------------------------------------------


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc") or ()) or "body"
        parts.append(f"{path}: {err.get('msg')}")
    return "Validation Error: " + ", ".join(parts)


def validate_body(schema: Type[BaseModel]) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(handler)
        def wrapper(request: Any, *params: str) -> Any:
            try:
                model = schema.model_validate(request.body)
            except ValidationError as exc:
                raise ValidationFailed(_format_validation_error(exc)) from exc
            request.payload = model
            request.body = model.model_dump(mode="json")
            return handler(request, *params)

        return wrapper

    return decorator
