"""Document schemas for every entity kept in the store.

Each model forbids unknown fields, so a document is validated before it is
written and again when it is read back.
"""

from datetime import date, datetime, time, timezone
from enum import StrEnum
from typing import Annotated

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from mayau.errors import ValidationError

# --- ENUMERATIONS ---


class Role(StrEnum):
    USER = "user"
    MASTER = "master"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


STATUS_ALL = "all"
STATUS_FILTER_OPTIONS = [STATUS_ALL] + [s.value for s in TaskStatus]

# Fixed project workspaces, in display order
WORKSPACE_NAMES = ("Mayau Office", "Mayau Creative", "Mayau Events")

# Store collection names
PROFILES = "profiles"
WORKSPACES = "workspaces"
TASKS = "tasks"
CHAT_MESSAGES = "chat_messages"


def utc_now():
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True, validate_default=True)


def _unique_ids(value):
    # Sets are stored as sorted, de-duplicated lists
    return sorted(set(value or []))


IdSet = Annotated[list[str], AfterValidator(_unique_ids)]


# --- ENTITIES ---


class Identity(Document):
    id: str = Field(min_length=1)
    email: str = ""
    display_name: str = ""


class Profile(Document):
    id: str = Field(min_length=1)
    email: str = ""
    display_name: str = ""
    approved: bool = False
    role: Role = Role.USER
    created_at: datetime | None = None

    @property
    def is_master(self):
        return self.role == Role.MASTER


class Workspace(Document):
    id: str = Field(min_length=1)
    name: str
    members: IdSet = Field(default_factory=list)


class Comment(Document):
    author_id: str
    author_name: str = ""
    text: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)


class Attachment(Document):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    uploader_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class Task(Document):
    id: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    assignees: IdSet = Field(default_factory=list)
    deadline: date | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    progress: int = Field(default=0, ge=0, le=100)
    comments: list[Comment] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime | None = None
    created_by: str = ""

    @field_validator("deadline", mode="before")
    @classmethod
    def _deadline_as_date(cls, value):
        # Firestore hands dates back as datetimes
        if isinstance(value, datetime):
            return value.date()
        return value


# Fields a task update may touch; comments and attachments only grow through appends
EDITABLE_TASK_FIELDS = frozenset(
    {"title", "description", "assignees", "deadline", "status", "priority", "progress"}
)


class ChatMessage(Document):
    id: str = Field(min_length=1)
    task_id: str = Field(min_length=1)
    author_id: str
    author_name: str = ""
    text: str = Field(min_length=1)
    timestamp: datetime | None = None


# --- STORE BOUNDARY ---


def validate(model_cls, data):
    """Parse ``data`` into ``model_cls`` or raise the app's ValidationError."""
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__.lower()}: {_summarize(e)}") from e


def _summarize(error):
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "document"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def to_document(model, exclude=None):
    """Serialize a model for the store.

    Plain dates become midnight datetimes, which is what Firestore accepts.
    """
    data = model.model_dump(exclude=exclude)
    return {key: _storable(value) for key, value in data.items()}


def _storable(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, list):
        return [_storable(v) for v in value]
    if isinstance(value, dict):
        return {k: _storable(v) for k, v in value.items()}
    return value
