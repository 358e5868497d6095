from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.events import MutationEvent
from boardflow.models import AuditEvent

MAX_ACTIVITY = 500


async def write_audit(
  db: AsyncSession,
  *,
  event_type: str,
  entity_type: str,
  entity_id: str | None,
  project_id: str | None = None,
  task_id: str | None = None,
  actor_id: str | None = None,
  payload: dict[str, Any] | None = None,
) -> AuditEvent:
  """Stage one activity row for board-level changes (groups, columns, rules, chain failures)."""
  row = AuditEvent(
    project_id=project_id,
    task_id=task_id,
    actor_id=actor_id,
    event_type=event_type,
    entity_type=entity_type,
    entity_id=entity_id,
    payload=jsonable_encoder(payload or {}),
  )
  db.add(row)
  return row


async def record_mutation(db: AsyncSession, event: MutationEvent) -> MutationEvent:
  """
  Log a task mutation under `task.<field>` and hand the event back.

  Every task change goes through here before the rule engine sees it, so the
  activity feed and the automation chain always agree on what happened. The
  actor is kept verbatim: a user id, or `automation:<rule id>` for rule actions.
  """
  await write_audit(
    db,
    event_type=f"task.{event.kind}",
    entity_type="Task",
    entity_id=event.task_id,
    project_id=event.project_id,
    task_id=event.task_id,
    actor_id=event.actor,
    payload={"field": event.kind, "old": event.old_value, "new": event.new_value, "at": event.timestamp},
  )
  return event


async def list_activity(db: AsyncSession, project_id: str, *, task_id: str | None = None, limit: int = 200) -> list[AuditEvent]:
  """Newest first; `limit` is clamped into [1, MAX_ACTIVITY]."""
  q = select(AuditEvent).where(AuditEvent.project_id == project_id)
  if task_id:
    q = q.where(AuditEvent.task_id == task_id)
  limit = max(1, min(int(limit), MAX_ACTIVITY))
  res = await db.execute(q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit))
  return list(res.scalars().all())
