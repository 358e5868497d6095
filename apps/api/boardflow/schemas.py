from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from pydantic import field_validator

from boardflow.enums import Action, ColumnType, GroupDeleteStrategy, TaskPriority, TaskStatus, Trigger


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


# Projects


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str = ""
  withDefaults: bool = True


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  ownerId: str
  createdAt: datetime
  updatedAt: datetime


# Columns


class ColumnCreateIn(BaseModel):
  columnType: ColumnType
  name: str = Field(min_length=1, max_length=120)
  position: int | None = None
  width: int | None = None
  isVisible: bool = True
  isRequired: bool = False
  settings: dict[str, Any] = {}


class ColumnUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  width: int | None = None
  isVisible: bool | None = None
  isRequired: bool | None = None
  settings: dict[str, Any] | None = None


class ColumnOut(BaseModel):
  id: str
  projectId: str
  columnType: str
  name: str
  position: int
  width: int
  isVisible: bool
  isRequired: bool
  settings: dict[str, Any]


class ReorderIn(BaseModel):
  position: int


# Groups


class GroupCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  color: str | None = Field(default=None, max_length=32)


class GroupUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  color: str | None = Field(default=None, max_length=32)
  isCollapsed: bool | None = None


class GroupDeleteIn(BaseModel):
  strategy: GroupDeleteStrategy
  targetGroupId: str | None = None


class GroupDeleteOut(BaseModel):
  ok: bool = True
  tasksMoved: int


class GroupOut(BaseModel):
  id: str
  projectId: str
  name: str
  color: str
  position: int
  isCollapsed: bool


# Tasks


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  groupId: str | None = None
  parentTaskId: str | None = None
  description: str = ""
  status: TaskStatus = TaskStatus.pending
  priority: TaskPriority = TaskPriority.medium
  assigneeId: str | None = None
  additionalAssigneeIds: list[str] = []
  dueDate: datetime | None = None
  progress: float = 0
  tags: list[str] = []

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  tags: list[str] | None = None
  dueDate: datetime | None = None
  additionalAssigneeIds: list[str] | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskMoveIn(BaseModel):
  # A group id, "ungrouped", or null for the ungrouped sequence.
  groupId: str | None = None
  position: int | None = None


class TaskStatusIn(BaseModel):
  status: TaskStatus


class TaskPriorityIn(BaseModel):
  priority: TaskPriority


class TaskProgressIn(BaseModel):
  progress: float


class TaskAssignIn(BaseModel):
  assigneeId: str | None = None


class ColumnValueIn(BaseModel):
  value: Any = None


class ColumnValueOut(BaseModel):
  taskId: str
  columnId: str
  value: Any = None


class TaskOut(BaseModel):
  id: str
  projectId: str
  groupId: str | None
  parentTaskId: str | None
  title: str
  description: str
  status: str
  priority: str
  assigneeId: str | None
  additionalAssigneeIds: list[str]
  dueDate: datetime | None
  progress: int
  tags: list[str]
  position: int
  version: int
  createdBy: str | None
  createdAt: datetime
  updatedAt: datetime


class BoardTaskOut(TaskOut):
  # Keyed by column id; unset cells are absent.
  columnValues: dict[str, Any] = {}


class CommentCreateIn(BaseModel):
  body: str = Field(min_length=1, max_length=10000)


class CommentOut(BaseModel):
  id: str
  taskId: str
  authorId: str | None
  body: str
  createdAt: datetime


class AttachmentCreateIn(BaseModel):
  fileName: str = Field(min_length=1, max_length=255)
  fileUrl: str = Field(min_length=1, max_length=2000)
  mime: str | None = Field(default=None, max_length=255)
  sizeBytes: int | None = Field(default=None, ge=0)


class AttachmentOut(BaseModel):
  id: str
  taskId: str
  uploadedBy: str | None
  fileName: str
  fileUrl: str
  mime: str | None
  sizeBytes: int | None
  createdAt: datetime


# Automation


class RuleCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str | None = None
  trigger: Trigger
  triggerConfig: dict[str, Any] = {}
  action: Action
  actionConfig: dict[str, Any] = {}
  isActive: bool = True


class RuleUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  trigger: Trigger | None = None
  triggerConfig: dict[str, Any] | None = None
  action: Action | None = None
  actionConfig: dict[str, Any] | None = None
  isActive: bool | None = None


class RuleToggleIn(BaseModel):
  isActive: bool | None = None


class RuleOut(BaseModel):
  id: str
  projectId: str
  name: str
  description: str | None
  trigger: str
  triggerConfig: dict[str, Any]
  action: str
  actionConfig: dict[str, Any]
  isActive: bool
  createdBy: str | None
  createdAt: datetime
  updatedAt: datetime


class DueDateScanOut(BaseModel):
  fired: int


# Board projection


class GroupedTasksOut(BaseModel):
  # null for the ungrouped pseudo-group
  group: GroupOut | None
  tasks: list[BoardTaskOut]


class BoardOut(BaseModel):
  project: ProjectOut
  columns: list[ColumnOut]
  groups: list[GroupedTasksOut]


# Activity / notifications


class ActivityOut(BaseModel):
  id: str
  eventType: str
  entityType: str
  entityId: str | None
  taskId: str | None
  actorId: str | None
  payload: dict[str, Any]
  createdAt: datetime


class NotificationOut(BaseModel):
  id: str
  level: str
  title: str
  body: str
  projectId: str | None
  eventType: str | None
  entityType: str | None
  entityId: str | None
  readAt: datetime | None
  createdAt: datetime


class MarkReadIn(BaseModel):
  # Omit to mark everything read.
  ids: list[str] | None = None
