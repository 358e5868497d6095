from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.automation.configs import parse_trigger_config
from boardflow.automation.engine import RuleEngine
from boardflow.enums import CLOSED_STATUSES, EventField, Trigger
from boardflow.events import MutationEvent
from boardflow.models import AutomationRule, RuleFiring, Task, as_utc, new_id, utcnow
from boardflow.notifications import NotificationSink

logger = structlog.get_logger()


def days_remaining(due: datetime, now: datetime) -> int:
  """Whole UTC calendar days from `now` until `due` (negative once overdue)."""
  return (as_utc(due).date() - as_utc(now).date()).days


async def scan_due_dates(db: AsyncSession, *, now: datetime | None = None, sink: NotificationSink | None = None) -> int:
  """
  One pass of the due-date scan over every project.

  A `due_date_approaching` rule fires for a task whose due date is exactly
  `daysRemaining` calendar days away. Each (rule, task, UTC day) fires at most
  once; the `rule_firings` ledger survives restarts so a rescan the same day is
  a no-op. Returns the number of firings.
  """
  now = as_utc(now or utcnow())
  today = now.date()
  res = await db.execute(
    select(AutomationRule)
    .where(AutomationRule.trigger == Trigger.due_date_approaching.value, AutomationRule.is_active.is_(True))
    .order_by(AutomationRule.created_at.asc(), AutomationRule.id.asc())
  )
  rules = list(res.scalars().all())
  if not rules:
    return 0

  engine = RuleEngine(db, sink=sink)
  closed = [s.value for s in CLOSED_STATUSES]
  fired = 0
  for rule in rules:
    cfg = parse_trigger_config(Trigger.due_date_approaching, rule.trigger_config)
    tres = await db.execute(
      select(Task)
      .where(Task.project_id == rule.project_id, Task.due_date.is_not(None), Task.status.not_in(closed))
      .order_by(Task.due_date.asc(), Task.id.asc())
    )
    for t in tres.scalars().all():
      if days_remaining(t.due_date, now) != cfg.daysRemaining:
        continue
      seen = await db.execute(
        select(RuleFiring.id).where(RuleFiring.rule_id == rule.id, RuleFiring.task_id == t.id, RuleFiring.fired_on == today)
      )
      if seen.scalar_one_or_none() is not None:
        continue
      db.add(RuleFiring(id=new_id(), rule_id=rule.id, task_id=t.id, fired_on=today))
      await db.flush()
      event = MutationEvent(
        task_id=t.id,
        project_id=t.project_id,
        field=EventField.due_date,
        new_value=as_utc(t.due_date),
        actor=None,
        timestamp=now,
      )
      await engine.fire(rule, event)
      fired += 1

  logger.info("due_date_scan_completed", rules=len(rules), fired=fired, day=today.isoformat())
  return fired
