from __future__ import annotations

from enum import Enum


class ColumnType(str, Enum):
  text = "text"
  status = "status"
  person = "person"
  date = "date"
  progress = "progress"
  dropdown = "dropdown"
  tags = "tags"
  number = "number"
  checkbox = "checkbox"
  files = "files"


class ValueSlot(str, Enum):
  text = "text"
  number = "number"
  date = "date"
  bool = "bool"
  json = "json"


COLUMN_VALUE_SLOTS: dict[ColumnType, ValueSlot] = {
  ColumnType.text: ValueSlot.text,
  ColumnType.status: ValueSlot.text,
  ColumnType.person: ValueSlot.text,
  ColumnType.dropdown: ValueSlot.text,
  ColumnType.date: ValueSlot.date,
  ColumnType.progress: ValueSlot.number,
  ColumnType.number: ValueSlot.number,
  ColumnType.checkbox: ValueSlot.bool,
  ColumnType.tags: ValueSlot.json,
  ColumnType.files: ValueSlot.json,
}


class TaskStatus(str, Enum):
  pending = "pending"
  in_progress = "in_progress"
  review = "review"
  completed = "completed"
  cancelled = "cancelled"
  blocked = "blocked"
  deferred = "deferred"


CLOSED_STATUSES = frozenset({TaskStatus.completed, TaskStatus.cancelled})


class TaskPriority(str, Enum):
  low = "low"
  medium = "medium"
  high = "high"
  urgent = "urgent"
  critical = "critical"


class Trigger(str, Enum):
  status_change = "status_change"
  due_date_approaching = "due_date_approaching"
  task_assigned = "task_assigned"
  comment_added = "comment_added"
  subtask_completed = "subtask_completed"
  attachment_added = "attachment_added"


class Action(str, Enum):
  change_status = "change_status"
  assign_task = "assign_task"
  send_notification = "send_notification"
  create_subtask = "create_subtask"
  update_priority = "update_priority"
  move_to_group = "move_to_group"


class EventField(str, Enum):
  created = "created"
  status = "status"
  priority = "priority"
  progress = "progress"
  assignee = "assignee"
  group = "group"
  due_date = "due_date"
  comment = "comment"
  attachment = "attachment"
  subtask_completed = "subtask_completed"


class GroupDeleteStrategy(str, Enum):
  reassign = "reassign"
  orphan = "orphan"


# Accepted wherever a group id is expected; stored as a NULL group_id.
UNGROUPED = "ungrouped"
