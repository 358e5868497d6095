from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from boardflow import task_store
from boardflow.automation.rules import create_rule, delete_rule
from boardflow.automation.scanner import days_remaining, scan_due_dates
from boardflow.groups import create_group
from boardflow.models import InAppNotification, RuleFiring
from boardflow.notifications import NotificationMessage
from boardflow.projects import create_project

from conftest import make_user

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
  def __init__(self) -> None:
    self.sent: list[NotificationMessage] = []

  async def send(self, db, msg: NotificationMessage) -> bool:
    self.sent.append(msg)
    return True


async def _setup(db, owner_id: str, days: int = 2):
  p = await create_project(db, name="Due", owner_id=owner_id, default_columns=False, default_group=False)
  g = await create_group(db, project_id=p.id, name="G")
  rule = await create_rule(
    db,
    project_id=p.id,
    name="Heads-up",
    trigger="due_date_approaching",
    trigger_config={"daysRemaining": days},
    action="send_notification",
    action_config={"message": "Due soon"},
  )
  return p, g, rule


def test_days_remaining_counts_calendar_days() -> None:
  assert days_remaining(datetime(2026, 10, 20, 0, 5, tzinfo=timezone.utc), NOW) == 2
  assert days_remaining(datetime(2026, 10, 20, 23, 59, tzinfo=timezone.utc), NOW) == 2
  assert days_remaining(datetime(2026, 10, 18, 1, 0, tzinfo=timezone.utc), NOW) == 0
  assert days_remaining(datetime(2026, 10, 17, 23, 0, tzinfo=timezone.utc), NOW) == -1
  # naive values are read as UTC
  assert days_remaining(datetime(2026, 10, 21, 6, 0), NOW) == 3


@pytest.mark.anyio
async def test_fires_two_days_out_and_not_again_the_same_day(db) -> None:
  owner = await make_user("Owner")
  member = await make_user("Member")
  p, g, rule = await _setup(db, owner)
  due, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="due", assignee_id=member, due_date=NOW + timedelta(days=2))
  await task_store.create_task(db, project_id=p.id, group_id=g.id, title="later", assignee_id=member, due_date=NOW + timedelta(days=3))
  await task_store.create_task(db, project_id=p.id, group_id=g.id, title="no date", assignee_id=member)
  await task_store.create_task(
    db, project_id=p.id, group_id=g.id, title="done", assignee_id=member, due_date=NOW + timedelta(days=2), status="completed"
  )

  assert await scan_due_dates(db, now=NOW) == 1
  assert await scan_due_dates(db, now=NOW + timedelta(hours=6)) == 0

  res = await db.execute(select(InAppNotification).where(InAppNotification.user_id == member))
  notes = res.scalars().all()
  assert len(notes) == 1
  assert notes[0].entity_id == due.id and notes[0].body == "due: Due soon"

  res = await db.execute(select(RuleFiring))
  firing = res.scalar_one()
  assert (firing.rule_id, firing.task_id, firing.fired_on) == (rule.id, due.id, NOW.date())


@pytest.mark.anyio
async def test_next_day_fires_for_newly_matching_tasks_only(db) -> None:
  owner = await make_user("Owner")
  member = await make_user("Member")
  p, g, _ = await _setup(db, owner)
  await task_store.create_task(db, project_id=p.id, group_id=g.id, title="a", assignee_id=member, due_date=NOW + timedelta(days=2))
  b, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="b", assignee_id=member, due_date=NOW + timedelta(days=3))

  sink = RecordingSink()
  assert await scan_due_dates(db, now=NOW, sink=sink) == 1
  assert await scan_due_dates(db, now=NOW + timedelta(days=1), sink=sink) == 1
  assert [m.entity_id for m in sink.sent][-1] == b.id
  assert all(m.user_id == member for m in sink.sent)


@pytest.mark.anyio
async def test_inactive_rules_and_deleted_rules_do_not_fire(db) -> None:
  owner = await make_user("Owner")
  member = await make_user("Member")
  p, g, rule = await _setup(db, owner)
  await task_store.create_task(db, project_id=p.id, group_id=g.id, title="a", assignee_id=member, due_date=NOW + timedelta(days=2))

  rule.is_active = False
  assert await scan_due_dates(db, now=NOW) == 0
  rule.is_active = True
  assert await scan_due_dates(db, now=NOW) == 1

  await delete_rule(db, rule)
  res = await db.execute(select(RuleFiring))
  assert res.scalars().all() == []
  assert await scan_due_dates(db, now=NOW) == 0


@pytest.mark.anyio
async def test_scan_failure_to_deliver_is_not_fatal(db) -> None:
  owner = await make_user("Owner")
  p, g, _ = await _setup(db, owner)
  await task_store.create_task(db, project_id=p.id, group_id=g.id, title="nobody's", due_date=NOW + timedelta(days=2))

  # unassigned: the action fails but the firing is still spent for the day
  assert await scan_due_dates(db, now=NOW) == 1
  assert await scan_due_dates(db, now=NOW) == 0
