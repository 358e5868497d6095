from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import write_audit
from boardflow.errors import NotFoundError, ValidationError
from boardflow.models import (
  AutomationRule,
  Project,
  ProjectColumn,
  RuleFiring,
  Task,
  TaskAttachment,
  TaskColumnValue,
  TaskComment,
  TaskGroup,
  User,
)


async def get_project(db: AsyncSession, project_id: str) -> Project:
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFoundError("Project", project_id)
  return p


async def get_user(db: AsyncSession, user_id: str) -> User:
  res = await db.execute(select(User).where(User.id == user_id))
  u = res.scalar_one_or_none()
  if not u or not u.active:
    raise NotFoundError("User", user_id)
  return u


async def create_project(
  db: AsyncSession,
  *,
  name: str,
  owner_id: str,
  description: str = "",
  default_columns: bool = True,
  default_group: bool = True,
) -> Project:
  # Imported here: columns/groups import get_project from this module.
  from boardflow.columns import ensure_default_columns
  from boardflow.groups import create_group

  clean = (name or "").strip()
  if not clean:
    raise ValidationError("name is required")
  p = Project(name=clean, description=description or "", owner_id=owner_id)
  db.add(p)
  await db.flush()
  if default_columns:
    await ensure_default_columns(db, project_id=p.id)
  if default_group:
    await create_group(db, project_id=p.id, name="New group", actor_id=owner_id)
  await write_audit(
    db,
    event_type="project.created",
    entity_type="Project",
    entity_id=p.id,
    project_id=p.id,
    actor_id=owner_id,
    payload={"name": p.name},
  )
  return p


async def delete_project_everything(db: AsyncSession, *, project_id: str) -> None:
  task_ids = select(Task.id).where(Task.project_id == project_id)
  rule_ids = select(AutomationRule.id).where(AutomationRule.project_id == project_id)
  await db.execute(delete(RuleFiring).where(RuleFiring.rule_id.in_(rule_ids)))
  await db.execute(delete(AutomationRule).where(AutomationRule.project_id == project_id))
  await db.execute(delete(TaskColumnValue).where(TaskColumnValue.task_id.in_(task_ids)))
  await db.execute(delete(TaskComment).where(TaskComment.task_id.in_(task_ids)))
  await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id.in_(task_ids)))
  # break parent links so nested subtasks can go in one statement
  await db.execute(update(Task).where(Task.project_id == project_id).values(parent_task_id=None).execution_options(synchronize_session=False))
  await db.execute(delete(Task).where(Task.project_id == project_id))
  await db.execute(delete(TaskGroup).where(TaskGroup.project_id == project_id))
  await db.execute(delete(ProjectColumn).where(ProjectColumn.project_id == project_id))
  await db.execute(delete(Project).where(Project.id == project_id))
