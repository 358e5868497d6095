from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow import task_store
from boardflow.automation.engine import settle
from boardflow.columns import get_column, read_column_value
from boardflow.deps import get_current_user, get_db
from boardflow.events import MutationEvent
from boardflow.models import TaskAttachment, TaskComment, User, as_utc
from boardflow.projection import task_out
from boardflow.projects import get_project
from boardflow.schemas import (
  AttachmentCreateIn,
  AttachmentOut,
  ColumnValueIn,
  ColumnValueOut,
  CommentCreateIn,
  CommentOut,
  TaskAssignIn,
  TaskCreateIn,
  TaskMoveIn,
  TaskOut,
  TaskPriorityIn,
  TaskProgressIn,
  TaskStatusIn,
  TaskUpdateIn,
)

router = APIRouter(tags=["tasks"])


def _comment_out(c: TaskComment) -> CommentOut:
  return CommentOut(id=c.id, taskId=c.task_id, authorId=c.author_id, body=c.body, createdAt=as_utc(c.created_at))


def _attachment_out(a: TaskAttachment) -> AttachmentOut:
  return AttachmentOut(
    id=a.id,
    taskId=a.task_id,
    uploadedBy=a.uploaded_by,
    fileName=a.file_name,
    fileUrl=a.file_url,
    mime=a.mime,
    sizeBytes=a.size_bytes,
    createdAt=as_utc(a.created_at),
  )


async def _commit_settled(db: AsyncSession, task_id: str, events: list[MutationEvent]) -> TaskOut:
  # Rules run inside this unit of work; the response shows their effects.
  await settle(db, events)
  await db.commit()
  return task_out(await task_store.get_task(db, task_id))


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  project_id: str,
  groupId: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  await get_project(db, project_id)
  return [task_out(t) for t in await task_store.list_tasks(db, project_id, group_id=groupId)]


@router.post("/projects/{project_id}/tasks", response_model=TaskOut)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t, events = await task_store.create_task(
    db,
    project_id=project_id,
    title=payload.title,
    group_id=payload.groupId,
    parent_task_id=payload.parentTaskId,
    description=payload.description,
    status=payload.status.value,
    priority=payload.priority.value,
    assignee_id=payload.assigneeId,
    additional_assignee_ids=payload.additionalAssigneeIds,
    due_date=payload.dueDate,
    progress=payload.progress,
    tags=payload.tags,
    actor_id=user.id,
  )
  return await _commit_settled(db, t.id, events)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  return task_out(await task_store.get_task(db, task_id))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(task_id: str, payload: TaskUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  names = {
    "title": "title",
    "description": "description",
    "tags": "tags",
    "dueDate": "due_date",
    "additionalAssigneeIds": "additional_assignee_ids",
  }
  changes = {names[k]: getattr(payload, k) for k in payload.model_fields_set if k in names}
  events = await task_store.update_task(db, task_id=task_id, changes=changes, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  n = await task_store.delete_task(db, task_id=task_id, actor_id=user.id)
  await db.commit()
  return {"ok": True, "deleted": n}


@router.post("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(task_id: str, payload: TaskMoveIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  events = await task_store.move_task(db, task_id=task_id, to_group_id=payload.groupId, to_position=payload.position, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.post("/tasks/{task_id}/status", response_model=TaskOut)
async def update_status(task_id: str, payload: TaskStatusIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  events = await task_store.update_status(db, task_id=task_id, status=payload.status.value, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.post("/tasks/{task_id}/priority", response_model=TaskOut)
async def update_priority(task_id: str, payload: TaskPriorityIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  events = await task_store.update_priority(db, task_id=task_id, priority=payload.priority.value, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.post("/tasks/{task_id}/progress", response_model=TaskOut)
async def update_progress(task_id: str, payload: TaskProgressIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  events = await task_store.update_progress(db, task_id=task_id, progress=payload.progress, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.post("/tasks/{task_id}/assign", response_model=TaskOut)
async def assign_task(task_id: str, payload: TaskAssignIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  events = await task_store.assign(db, task_id=task_id, assignee_id=payload.assigneeId, actor_id=user.id)
  return await _commit_settled(db, task_id, events)


@router.put("/tasks/{task_id}/columns/{column_id}", response_model=ColumnValueOut)
async def set_column_value(
  task_id: str,
  column_id: str,
  payload: ColumnValueIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ColumnValueOut:
  row = await task_store.set_column_value(db, task_id=task_id, column_id=column_id, value=payload.value, actor_id=user.id)
  await db.commit()
  if row is None:
    return ColumnValueOut(taskId=task_id, columnId=column_id, value=None)
  col = await get_column(db, column_id)
  return ColumnValueOut(taskId=task_id, columnId=column_id, value=read_column_value(row, col.column_type))


@router.delete("/tasks/{task_id}/columns/{column_id}")
async def clear_column_value(task_id: str, column_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await task_store.clear_column_value(db, task_id=task_id, column_id=column_id, actor_id=user.id)
  await db.commit()
  return {"ok": True}


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def list_comments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CommentOut]:
  return [_comment_out(c) for c in await task_store.list_comments(db, task_id)]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut)
async def add_comment(task_id: str, payload: CommentCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CommentOut:
  c, events = await task_store.add_comment(db, task_id=task_id, body=payload.body, author_id=user.id)
  await settle(db, events)
  await db.commit()
  return _comment_out(c)


@router.get("/tasks/{task_id}/attachments", response_model=list[AttachmentOut])
async def list_attachments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[AttachmentOut]:
  return [_attachment_out(a) for a in await task_store.list_attachments(db, task_id)]


@router.post("/tasks/{task_id}/attachments", response_model=AttachmentOut)
async def add_attachment(
  task_id: str,
  payload: AttachmentCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AttachmentOut:
  a, events = await task_store.add_attachment(
    db,
    task_id=task_id,
    file_name=payload.fileName,
    file_url=payload.fileUrl,
    mime=payload.mime,
    size_bytes=payload.sizeBytes,
    uploaded_by=user.id,
  )
  await settle(db, events)
  await db.commit()
  return _attachment_out(a)
