from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import record_mutation, write_audit
from boardflow.config import settings
from boardflow.enums import UNGROUPED, EventField, GroupDeleteStrategy
from boardflow.errors import NotFoundError, ValidationError
from boardflow.events import MutationEvent
from boardflow.models import Project, Task, TaskGroup, new_id
from boardflow.positions import hold_scope, hold_scopes, move_within, ordered, repack, scope_key
from boardflow.projects import get_project

logger = structlog.get_logger()


def normalize_group_id(group_id: str | None) -> str | None:
  """Map the API's "ungrouped" sentinel onto the stored NULL group."""
  if group_id is None or group_id == UNGROUPED:
    return None
  return group_id


def task_scope(project_id: str, group_id: str | None) -> tuple[str, tuple[Any, str]]:
  """Scope key and row anchor of one task sequence; the ungrouped sequence anchors on its project."""
  anchor = (TaskGroup, group_id) if group_id else (Project, project_id)
  return scope_key("tasks", project_id, group_id), anchor


async def hold_group_order(db: AsyncSession, project_id: str) -> None:
  await hold_scope(db, scope_key("groups", project_id), anchor=(Project, project_id))


async def hold_task_scopes(db: AsyncSession, project_id: str, *group_ids: str | None) -> None:
  """Hold the task sequences of the given groups; a group deleted while we waited is NotFound."""
  await hold_scopes(db, dict(task_scope(project_id, gid) for gid in group_ids))
  for gid in sorted({gid for gid in group_ids if gid is not None}):
    await get_group(db, gid)


async def list_groups(db: AsyncSession, project_id: str, *, for_update: bool = False) -> list[TaskGroup]:
  q = select(TaskGroup).where(TaskGroup.project_id == project_id).order_by(TaskGroup.position.asc())
  if for_update:
    # rows loaded before the scope was held may carry stale positions
    q = q.execution_options(populate_existing=True)
    if not settings.is_sqlite():
      q = q.with_for_update()
  res = await db.execute(q)
  return list(res.scalars().all())


async def get_group(db: AsyncSession, group_id: str) -> TaskGroup:
  res = await db.execute(select(TaskGroup).where(TaskGroup.id == group_id))
  g = res.scalar_one_or_none()
  if not g:
    raise NotFoundError("Group", group_id)
  return g


async def resolve_group(db: AsyncSession, project_id: str, group_id: str | None) -> str | None:
  """Validate a (possibly sentinel) group reference against a project; returns the stored id."""
  gid = normalize_group_id(group_id)
  if gid is None:
    return None
  g = await get_group(db, gid)
  if g.project_id != project_id:
    raise ValidationError("Group belongs to another project", details={"groupId": gid})
  return g.id


async def group_tasks(db: AsyncSession, project_id: str, group_id: str | None, *, for_update: bool = False) -> list[Task]:
  q = select(Task).where(Task.project_id == project_id)
  q = q.where(Task.group_id.is_(None)) if group_id is None else q.where(Task.group_id == group_id)
  q = q.order_by(Task.position.asc(), Task.id.asc())
  if for_update:
    # rows loaded before the scope was held may carry stale positions
    q = q.execution_options(populate_existing=True)
    if not settings.is_sqlite():
      q = q.with_for_update()
  res = await db.execute(q)
  return list(res.scalars().all())


async def create_group(
  db: AsyncSession,
  *,
  project_id: str,
  name: str,
  color: str | None = None,
  actor_id: str | None = None,
) -> TaskGroup:
  await get_project(db, project_id)
  clean = (name or "").strip()
  if not clean:
    raise ValidationError("Group name is required")
  await hold_group_order(db, project_id)
  siblings = await list_groups(db, project_id, for_update=True)
  pos = (max(g.position for g in siblings) + 1) if siblings else 0
  g = TaskGroup(id=new_id(), project_id=project_id, name=clean, color=color or settings.default_group_color, position=pos)
  db.add(g)
  await db.flush()
  await write_audit(
    db,
    event_type="group.created",
    entity_type="TaskGroup",
    entity_id=g.id,
    project_id=project_id,
    actor_id=actor_id,
    payload={"name": g.name, "color": g.color, "position": g.position},
  )
  return g


async def update_group(
  db: AsyncSession,
  group: TaskGroup,
  *,
  name: str | None = None,
  color: str | None = None,
  is_collapsed: bool | None = None,
  actor_id: str | None = None,
) -> TaskGroup:
  if name is not None:
    if not name.strip():
      raise ValidationError("Group name is required")
    group.name = name.strip()
  if color is not None:
    group.color = color
  if is_collapsed is not None:
    group.is_collapsed = is_collapsed
  await write_audit(
    db,
    event_type="group.updated",
    entity_type="TaskGroup",
    entity_id=group.id,
    project_id=group.project_id,
    actor_id=actor_id,
    payload={"name": group.name, "color": group.color, "isCollapsed": group.is_collapsed},
  )
  return group


async def reorder_group(db: AsyncSession, *, group_id: str, new_position: int, actor_id: str | None = None) -> list[TaskGroup]:
  g = await get_group(db, group_id)
  await hold_group_order(db, g.project_id)
  siblings = await list_groups(db, g.project_id, for_update=True)
  arr = move_within(siblings, g.id, new_position)
  await db.flush()
  await write_audit(
    db,
    event_type="group.reordered",
    entity_type="TaskGroup",
    entity_id=g.id,
    project_id=g.project_id,
    actor_id=actor_id,
    payload={"position": new_position},
  )
  return arr


async def delete_group(
  db: AsyncSession,
  *,
  group_id: str,
  strategy: GroupDeleteStrategy | str,
  target_group_id: str | None = None,
  actor_id: str | None = None,
) -> list[MutationEvent]:
  """
  Delete a group, handing its tasks over explicitly.

  `reassign` appends the tasks (in their current order) to `target_group_id`;
  `orphan` appends them to the project's ungrouped sequence. Returns one `group`
  event per re-homed task.
  """
  try:
    strategy = GroupDeleteStrategy(strategy)
  except ValueError as e:
    raise ValidationError(f"Invalid strategy: {strategy}") from e

  g = await get_group(db, group_id)
  project_id = g.project_id
  if strategy == GroupDeleteStrategy.reassign:
    target = normalize_group_id(target_group_id)
    if target is None:
      raise ValidationError("targetGroupId is required for the reassign strategy")
    if target == g.id:
      raise ValidationError("Cannot reassign tasks to the group being deleted")
    target = await resolve_group(db, project_id, target)
  else:
    if target_group_id is not None:
      raise ValidationError("targetGroupId is only valid with the reassign strategy")
    target = None

  await hold_group_order(db, project_id)
  await hold_task_scopes(db, project_id, g.id, target)
  moving = await group_tasks(db, project_id, g.id, for_update=True)
  dest = await group_tasks(db, project_id, target, for_update=True)
  before = {t.id: t.position for t in moving}
  for t in moving:
    t.group_id = target
  repack(dest + moving)
  await db.flush()
  await db.delete(g)
  await db.flush()
  repack(ordered(await list_groups(db, project_id, for_update=True)))
  await db.flush()

  events = [
    await record_mutation(
      db,
      MutationEvent(
        task_id=t.id,
        project_id=project_id,
        field=EventField.group,
        old_value={"groupId": group_id, "position": before[t.id]},
        new_value={"groupId": target, "position": t.position},
        actor=actor_id,
      ),
    )
    for t in moving
  ]
  await write_audit(
    db,
    event_type="group.deleted",
    entity_type="TaskGroup",
    entity_id=group_id,
    project_id=project_id,
    actor_id=actor_id,
    payload={"strategy": strategy.value, "targetGroupId": target, "tasksMoved": len(moving)},
  )
  logger.info("group_deleted", group_id=group_id, strategy=strategy.value, tasks_moved=len(moving))
  return events
