from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.columns import list_columns, read_column_value
from boardflow.groups import list_groups
from boardflow.models import Project, ProjectColumn, Task, TaskColumnValue, TaskGroup, as_utc
from boardflow.positions import ordered
from boardflow.projects import get_project
from boardflow.schemas import BoardOut, BoardTaskOut, ColumnOut, GroupedTasksOut, GroupOut, ProjectOut, TaskOut


def project_out(p: Project) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    ownerId=p.owner_id,
    createdAt=as_utc(p.created_at),
    updatedAt=as_utc(p.updated_at),
  )


def column_out(c: ProjectColumn) -> ColumnOut:
  return ColumnOut(
    id=c.id,
    projectId=c.project_id,
    columnType=c.column_type,
    name=c.name,
    position=c.position,
    width=c.width,
    isVisible=c.is_visible,
    isRequired=c.is_required,
    settings=c.settings or {},
  )


def group_out(g: TaskGroup) -> GroupOut:
  return GroupOut(
    id=g.id,
    projectId=g.project_id,
    name=g.name,
    color=g.color,
    position=g.position,
    isCollapsed=g.is_collapsed,
  )


def _task_fields(t: Task) -> dict:
  return {
    "id": t.id,
    "projectId": t.project_id,
    "groupId": t.group_id,
    "parentTaskId": t.parent_task_id,
    "title": t.title,
    "description": t.description,
    "status": t.status,
    "priority": t.priority,
    "assigneeId": t.assignee_id,
    "additionalAssigneeIds": list(t.additional_assignee_ids or []),
    "dueDate": as_utc(t.due_date),
    "progress": t.progress,
    "tags": list(t.tags or []),
    "position": t.position,
    "version": t.version,
    "createdBy": t.created_by,
    "createdAt": as_utc(t.created_at),
    "updatedAt": as_utc(t.updated_at),
  }


def task_out(t: Task) -> TaskOut:
  return TaskOut(**_task_fields(t))


async def build_board(db: AsyncSession, project_id: str) -> BoardOut:
  """
  Read-side join of groups, tasks and column values.

  Groups come in position order followed by the ungrouped pseudo-group
  (`group: null`), which is always present so clients can drop into it. Tasks
  within a group are in position order. Nothing is cached.
  """
  project = await get_project(db, project_id)
  columns = await list_columns(db, project_id)
  groups = await list_groups(db, project_id)

  tres = await db.execute(select(Task).where(Task.project_id == project_id))
  tasks = list(tres.scalars().all())

  by_group: dict[str | None, list[Task]] = defaultdict(list)
  for t in tasks:
    by_group[t.group_id].append(t)

  column_types = {c.id: c.column_type for c in columns}
  values: dict[str, dict[str, object]] = defaultdict(dict)
  if tasks:
    vres = await db.execute(
      select(TaskColumnValue).where(TaskColumnValue.task_id.in_([t.id for t in tasks]), TaskColumnValue.column_id.in_(list(column_types)))
    )
    for row in vres.scalars().all():
      values[row.task_id][row.column_id] = read_column_value(row, column_types[row.column_id])

  def _tasks(group_id: str | None) -> list[BoardTaskOut]:
    return [BoardTaskOut(**_task_fields(t), columnValues=values.get(t.id, {})) for t in ordered(by_group.get(group_id, []))]

  out = [GroupedTasksOut(group=group_out(g), tasks=_tasks(g.id)) for g in ordered(groups)]
  out.append(GroupedTasksOut(group=None, tasks=_tasks(None)))
  return BoardOut(project=project_out(project), columns=[column_out(c) for c in ordered(columns)], groups=out)
