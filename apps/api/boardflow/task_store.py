from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from boardflow.audit import record_mutation, write_audit
from boardflow.columns import coerce_column_value, get_column, is_empty_value, write_slot
from boardflow.enums import ColumnType, EventField, TaskPriority, TaskStatus
from boardflow.errors import ConflictError, NotFoundError, ValidationError
from boardflow.events import MutationEvent, user_actor
from boardflow.groups import group_tasks, hold_task_scopes, resolve_group, task_scope
from boardflow.models import (
  RuleFiring,
  Task,
  TaskAttachment,
  TaskColumnValue,
  TaskComment,
  as_utc,
  new_id,
)
from boardflow.positions import check_position, hold_scopes, insert_at, ordered, repack
from boardflow.projects import get_project, get_user

logger = structlog.get_logger()

MUTABLE_FIELDS = {"title", "description", "tags", "due_date", "additional_assignee_ids"}


async def get_task(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task", task_id)
  return t


async def list_tasks(db: AsyncSession, project_id: str, *, group_id: str | None = None) -> list[Task]:
  q = select(Task).where(Task.project_id == project_id)
  if group_id is not None:
    gid = await resolve_group(db, project_id, group_id)
    q = q.where(Task.group_id.is_(None)) if gid is None else q.where(Task.group_id == gid)
  res = await db.execute(q.order_by(Task.group_id.asc(), Task.position.asc(), Task.id.asc()))
  return list(res.scalars().all())


def _status(value: str) -> TaskStatus:
  try:
    return TaskStatus(value)
  except ValueError as e:
    raise ValidationError(f"Invalid status: {value}") from e


def _priority(value: str) -> TaskPriority:
  try:
    return TaskPriority(value)
  except ValueError as e:
    raise ValidationError(f"Invalid priority: {value}") from e


def clamp_progress(value: int | float) -> int:
  if isinstance(value, bool) or not isinstance(value, (int, float)):
    raise ValidationError("progress must be a number")
  return int(round(min(100, max(0, value))))


def _clean_tags(tags: list[str] | None) -> list[str]:
  return list(dict.fromkeys(t.strip() for t in (tags or []) if t and t.strip()))


async def _clean_additional(db: AsyncSession, ids: list[str] | None, assignee_id: str | None) -> list[str]:
  out: list[str] = []
  for uid in dict.fromkeys(ids or []):
    if uid == assignee_id:
      continue
    await get_user(db, uid)
    out.append(uid)
  return out


async def create_task(
  db: AsyncSession,
  *,
  project_id: str,
  title: str,
  group_id: str | None = None,
  parent_task_id: str | None = None,
  description: str = "",
  status: str = TaskStatus.pending.value,
  priority: str = TaskPriority.medium.value,
  assignee_id: str | None = None,
  additional_assignee_ids: list[str] | None = None,
  due_date: datetime | None = None,
  progress: int | float = 0,
  tags: list[str] | None = None,
  actor_id: str | None = None,
  created_by: str | None = None,
) -> tuple[Task, list[MutationEvent]]:
  """
  Append a new task to the end of its group's sequence.

  `actor_id` goes on the event and the activity log; `created_by` is the owning
  user and defaults to the actor when that is a user.
  """
  await get_project(db, project_id)
  clean = (title or "").strip()
  if not clean:
    raise ValidationError("title is required")
  st = _status(status)
  pr = _priority(priority)
  gid = await resolve_group(db, project_id, group_id)
  if parent_task_id is not None:
    parent = await get_task(db, parent_task_id)
    if parent.project_id != project_id:
      raise ValidationError("Parent task belongs to another project", details={"parentTaskId": parent_task_id})
  if assignee_id is not None:
    await get_user(db, assignee_id)
  extra = await _clean_additional(db, additional_assignee_ids, assignee_id)

  await hold_task_scopes(db, project_id, gid)
  siblings = await group_tasks(db, project_id, gid, for_update=True)
  t = Task(
    id=new_id(),
    project_id=project_id,
    group_id=gid,
    parent_task_id=parent_task_id,
    title=clean,
    description=description or "",
    status=st.value,
    priority=pr.value,
    assignee_id=assignee_id,
    additional_assignee_ids=extra,
    due_date=as_utc(due_date),
    progress=clamp_progress(progress),
    tags=_clean_tags(tags),
    created_by=created_by or user_actor(actor_id),
  )
  db.add(t)
  insert_at(siblings, t, None)
  await db.flush()

  ev = await record_mutation(
    db,
    MutationEvent(
      task_id=t.id,
      project_id=project_id,
      field=EventField.created,
      new_value={"title": t.title, "groupId": gid, "parentTaskId": parent_task_id},
      actor=actor_id,
    ),
  )
  return t, [ev]


async def update_status(db: AsyncSession, *, task_id: str, status: str, actor_id: str | None = None) -> list[MutationEvent]:
  t = await get_task(db, task_id)
  new = _status(status).value
  old = t.status
  if new == old:
    return []
  t.status = new
  await db.flush()
  events = [
    await record_mutation(
      db,
      MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.status, old_value=old, new_value=new, actor=actor_id),
    )
  ]
  if t.parent_task_id and new == TaskStatus.completed.value:
    events.append(
      await record_mutation(
        db,
        MutationEvent(
          task_id=t.parent_task_id,
          project_id=t.project_id,
          field=EventField.subtask_completed,
          new_value=t.id,
          actor=actor_id,
        ),
      )
    )
  return events


async def update_priority(db: AsyncSession, *, task_id: str, priority: str, actor_id: str | None = None) -> list[MutationEvent]:
  t = await get_task(db, task_id)
  new = _priority(priority).value
  old = t.priority
  if new == old:
    return []
  t.priority = new
  await db.flush()
  ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.priority, old_value=old, new_value=new, actor=actor_id)
  return [await record_mutation(db, ev)]


async def update_progress(db: AsyncSession, *, task_id: str, progress: int | float, actor_id: str | None = None) -> list[MutationEvent]:
  """Out-of-range values are clamped into [0, 100], never rejected."""
  t = await get_task(db, task_id)
  new = clamp_progress(progress)
  old = t.progress
  if new == old:
    return []
  t.progress = new
  await db.flush()
  ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.progress, old_value=old, new_value=new, actor=actor_id)
  return [await record_mutation(db, ev)]


async def assign(db: AsyncSession, *, task_id: str, assignee_id: str | None, actor_id: str | None = None) -> list[MutationEvent]:
  t = await get_task(db, task_id)
  if assignee_id is not None:
    await get_user(db, assignee_id)
  old = t.assignee_id
  if assignee_id == old:
    return []
  t.assignee_id = assignee_id
  if assignee_id in (t.additional_assignee_ids or []):
    t.additional_assignee_ids = [u for u in t.additional_assignee_ids if u != assignee_id]
  await db.flush()
  ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.assignee, old_value=old, new_value=assignee_id, actor=actor_id)
  return [await record_mutation(db, ev)]


async def update_task(db: AsyncSession, *, task_id: str, changes: dict[str, Any], actor_id: str | None = None) -> list[MutationEvent]:
  """
  Apply plain field edits.

  Only keys present in `changes` are touched, so `{"due_date": None}` clears the
  due date while an absent key leaves it alone.
  """
  unknown = set(changes) - MUTABLE_FIELDS
  if unknown:
    raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
  t = await get_task(db, task_id)

  if "title" in changes:
    clean = (changes["title"] or "").strip()
    if not clean:
      raise ValidationError("title is required")
  if "additional_assignee_ids" in changes:
    extra = await _clean_additional(db, changes["additional_assignee_ids"], t.assignee_id)

  if "title" in changes:
    t.title = clean
  if "description" in changes:
    t.description = changes["description"] or ""
  if "tags" in changes:
    t.tags = _clean_tags(changes["tags"])
  if "additional_assignee_ids" in changes:
    t.additional_assignee_ids = extra

  events: list[MutationEvent] = []
  if "due_date" in changes:
    old_due = as_utc(t.due_date)
    new_due = as_utc(changes["due_date"])
    if old_due != new_due:
      t.due_date = new_due
      ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.due_date, old_value=old_due, new_value=new_due, actor=actor_id)
      events.append(ev)
  await db.flush()

  await write_audit(
    db,
    event_type="task.updated",
    entity_type="Task",
    entity_id=t.id,
    project_id=t.project_id,
    task_id=t.id,
    actor_id=actor_id,
    payload={"fields": sorted(changes)},
  )
  return [await record_mutation(db, ev) for ev in events]


async def _move_once(db: AsyncSession, task_id: str, to_group_id: str | None, to_position: int | None) -> tuple[Task, str | None, int]:
  t = await get_task(db, task_id)
  target = await resolve_group(db, t.project_id, to_group_id)
  source = t.group_id
  await hold_task_scopes(db, t.project_id, source, target)
  res = await db.execute(select(Task.group_id, Task.position).where(Task.id == t.id))
  row = res.one_or_none()
  if row is None:
    raise NotFoundError("Task", task_id)
  if row.group_id != source:
    raise StaleDataError(f"Task {task_id} changed group while its move was waiting")
  old_position = row.position
  dest = await group_tasks(db, t.project_id, target, for_update=True)
  rest = [x for x in dest if x.id != t.id]
  if to_position is not None:
    check_position(to_position, len(rest) + 1)
  if source != target:
    remaining = [x for x in await group_tasks(db, t.project_id, source, for_update=True) if x.id != t.id]
    repack(ordered(remaining))
    t.group_id = target
  insert_at(rest, t, to_position)
  await db.flush()
  return t, source, old_position


async def move_task(
  db: AsyncSession,
  *,
  task_id: str,
  to_group_id: str | None,
  to_position: int | None = None,
  actor_id: str | None = None,
  retry: bool = True,
) -> list[MutationEvent]:
  """
  Drag-and-drop: take the task out of its group's sequence and insert it into the
  target sequence at `to_position` (append when None).

  Both sequences stay dense. Their scopes are held until the caller commits, so
  writers in this process queue up behind each other. A race that still gets
  through (another process, or a row version bumped outside the scopes) surfaces
  as a StaleDataError on flush; the unit of work is rolled back and the move is
  re-read and re-applied once before ConflictError is raised. With `retry` the
  move must therefore be the first write of its unit of work.
  """
  attempts = 2 if retry else 1
  for attempt in range(attempts):
    try:
      t, source, old_position = await _move_once(db, task_id, to_group_id, to_position)
      break
    except StaleDataError as e:
      logger.warning("task_move_conflict", task_id=task_id, attempt=attempt + 1)
      if attempt + 1 >= attempts:
        raise ConflictError("Task position changed concurrently; reload and retry", details={"taskId": task_id}) from e
      await db.rollback()

  if source == t.group_id and old_position == t.position:
    return []
  ev = MutationEvent(
    task_id=t.id,
    project_id=t.project_id,
    field=EventField.group,
    old_value={"groupId": source, "position": old_position},
    new_value={"groupId": t.group_id, "position": t.position},
    actor=actor_id,
  )
  return [await record_mutation(db, ev)]


async def set_column_value(
  db: AsyncSession,
  *,
  task_id: str,
  column_id: str,
  value: Any,
  actor_id: str | None = None,
) -> TaskColumnValue | None:
  """
  Write one cell. Empty input (None, blank string, empty list) removes the row,
  returning the cell to "unset". Nothing is written when validation fails.
  """
  t = await get_task(db, task_id)
  col = await get_column(db, column_id)
  if col.project_id != t.project_id:
    raise ValidationError("Column belongs to another project", details={"columnId": column_id})

  res = await db.execute(select(TaskColumnValue).where(TaskColumnValue.task_id == t.id, TaskColumnValue.column_id == col.id))
  row = res.scalar_one_or_none()

  if is_empty_value(value):
    if col.is_required:
      raise ValidationError(f"Column '{col.name}' is required", details={"columnId": col.id})
    if row is not None:
      await db.delete(row)
      await db.flush()
    await _audit_cell(db, t, col.id, None, actor_id)
    return None

  slot, clean = coerce_column_value(col, value)
  if col.column_type == ColumnType.person.value:
    await get_user(db, clean)
  if row is None:
    row = TaskColumnValue(id=new_id(), task_id=t.id, column_id=col.id)
    db.add(row)
  write_slot(row, slot, clean)
  await db.flush()
  await _audit_cell(db, t, col.id, clean, actor_id)
  return row


async def clear_column_value(db: AsyncSession, *, task_id: str, column_id: str, actor_id: str | None = None) -> None:
  await set_column_value(db, task_id=task_id, column_id=column_id, value=None, actor_id=actor_id)


async def _audit_cell(db: AsyncSession, t: Task, column_id: str, value: Any, actor_id: str | None) -> None:
  await write_audit(
    db,
    event_type="task.column_value_set" if value is not None else "task.column_value_cleared",
    entity_type="TaskColumnValue",
    entity_id=column_id,
    project_id=t.project_id,
    task_id=t.id,
    actor_id=actor_id,
    payload={"columnId": column_id, "value": value},
  )


async def add_comment(db: AsyncSession, *, task_id: str, body: str, author_id: str | None = None) -> tuple[TaskComment, list[MutationEvent]]:
  t = await get_task(db, task_id)
  text = (body or "").strip()
  if not text:
    raise ValidationError("Comment body is required")
  c = TaskComment(id=new_id(), task_id=t.id, author_id=author_id, body=text)
  db.add(c)
  await db.flush()
  ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.comment, new_value=c.id, actor=author_id)
  return c, [await record_mutation(db, ev)]


async def list_comments(db: AsyncSession, task_id: str) -> list[TaskComment]:
  await get_task(db, task_id)
  res = await db.execute(select(TaskComment).where(TaskComment.task_id == task_id).order_by(TaskComment.created_at.asc()))
  return list(res.scalars().all())


async def add_attachment(
  db: AsyncSession,
  *,
  task_id: str,
  file_name: str,
  file_url: str,
  mime: str | None = None,
  size_bytes: int | None = None,
  uploaded_by: str | None = None,
) -> tuple[TaskAttachment, list[MutationEvent]]:
  t = await get_task(db, task_id)
  if not (file_name or "").strip() or not (file_url or "").strip():
    raise ValidationError("fileName and fileUrl are required")
  if size_bytes is not None and size_bytes < 0:
    raise ValidationError("sizeBytes must be >= 0")
  a = TaskAttachment(
    id=new_id(),
    task_id=t.id,
    uploaded_by=uploaded_by,
    file_name=file_name.strip(),
    file_url=file_url.strip(),
    mime=mime,
    size_bytes=size_bytes,
  )
  db.add(a)
  await db.flush()
  ev = MutationEvent(task_id=t.id, project_id=t.project_id, field=EventField.attachment, new_value=a.id, actor=uploaded_by)
  return a, [await record_mutation(db, ev)]


async def list_attachments(db: AsyncSession, task_id: str) -> list[TaskAttachment]:
  await get_task(db, task_id)
  res = await db.execute(select(TaskAttachment).where(TaskAttachment.task_id == task_id).order_by(TaskAttachment.created_at.asc()))
  return list(res.scalars().all())


async def _descendant_levels(db: AsyncSession, task_id: str) -> list[list[str]]:
  levels = [[task_id]]
  while True:
    res = await db.execute(select(Task.id).where(Task.parent_task_id.in_(levels[-1])))
    children = list(res.scalars().all())
    if not children:
      return levels
    levels.append(children)


async def delete_task(db: AsyncSession, *, task_id: str, actor_id: str | None = None) -> int:
  """Delete a task with its subtasks and every dependent row; returns how many tasks went."""
  t = await get_task(db, task_id)
  project_id = t.project_id
  levels = await _descendant_levels(db, t.id)
  ids = [i for level in levels for i in level]

  res = await db.execute(select(Task.group_id).where(Task.id.in_(ids)).distinct())
  affected = sorted(set(res.scalars().all()), key=lambda g: g or "")

  await hold_scopes(db, dict(task_scope(project_id, g) for g in affected))
  await db.execute(delete(TaskColumnValue).where(TaskColumnValue.task_id.in_(ids)))
  await db.execute(delete(TaskComment).where(TaskComment.task_id.in_(ids)))
  await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id.in_(ids)))
  await db.execute(delete(RuleFiring).where(RuleFiring.task_id.in_(ids)))
  # deepest subtasks first
  for level in reversed(levels):
    await db.execute(delete(Task).where(Task.id.in_(level)).execution_options(synchronize_session=False))
  db.expunge(t)
  for g in affected:
    repack(await group_tasks(db, project_id, g, for_update=True))
  await db.flush()

  await write_audit(
    db,
    event_type="task.deleted",
    entity_type="Task",
    entity_id=task_id,
    project_id=project_id,
    task_id=task_id,
    actor_id=actor_id,
    payload={"deletedTaskIds": ids},
  )
  logger.info("task_deleted", task_id=task_id, cascade=len(ids))
  return len(ids)
