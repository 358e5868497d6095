from __future__ import annotations

import pytest
from sqlalchemy import select, text

from boardflow import task_store
from boardflow.automation.engine import RuleEngine, settle
from boardflow.automation.rules import create_rule, list_rules, toggle_rule, update_rule
from boardflow.db import SessionLocal
from boardflow.errors import ValidationError
from boardflow.events import automation_actor
from boardflow.groups import create_group, group_tasks
from boardflow.models import AuditEvent, InAppNotification, Task
from boardflow.notifications import NotificationMessage
from boardflow.projects import create_project

from conftest import make_user


async def _project(db, owner_id: str):
  p = await create_project(db, name="Rules", owner_id=owner_id, default_columns=False, default_group=False)
  g = await create_group(db, project_id=p.id, name="Backlog")
  return p, g


async def _status_rule(db, project_id: str, frm: str, to: str, new_status: str, name: str = "rule"):
  return await create_rule(
    db,
    project_id=project_id,
    name=name,
    trigger="status_change",
    trigger_config={"fromStatus": frm, "toStatus": to},
    action="change_status",
    action_config={"newStatus": new_status},
  )


async def _audit(db, event_type: str) -> list[AuditEvent]:
  res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == event_type))
  return list(res.scalars().all())


@pytest.mark.anyio
async def test_any_to_completed_fires_once_per_transition(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="Celebrate",
    trigger="status_change",
    trigger_config={"fromStatus": "any", "toStatus": "completed"},
    action="update_priority",
    action_config={"newPriority": "low"},
  )
  t1, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t1", status="blocked", priority="high")
  t2, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t2", status="review", priority="high")

  r1 = await settle(db, await task_store.update_status(db, task_id=t1.id, status="completed"))
  r2 = await settle(db, await task_store.update_status(db, task_id=t2.id, status="completed"))
  assert len(r1.applied) == 1 and len(r2.applied) == 1
  assert t1.priority == "low" and t2.priority == "low"

  # no transition, no firing
  assert await task_store.update_status(db, task_id=t1.id, status="completed") == []
  r3 = await settle(db, await task_store.update_status(db, task_id=t1.id, status="pending"))
  assert r3.applied == []
  assert len(await _audit(db, "task.priority")) == 2


@pytest.mark.anyio
async def test_blocked_tasks_go_to_the_supervisor(db) -> None:
  owner = await make_user("Owner")
  supervisor = await make_user("Supervisor")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="Escalate",
    trigger="status_change",
    trigger_config={"fromStatus": "any", "toStatus": "blocked"},
    action="assign_task",
    action_config={"assignTo": supervisor},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="stuck", assignee_id=owner)

  await settle(db, await task_store.update_status(db, task_id=t.id, status="blocked", actor_id=owner))
  assert t.assignee_id == supervisor

  res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == "task.assignee"))
  audit = res.scalar_one()
  assert audit.actor_id == automation_actor((await list_rules(db, p.id))[0].id)


@pytest.mark.anyio
async def test_two_rule_cycle_terminates(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  await _status_rule(db, p.id, "pending", "completed", "pending", name="A")
  await _status_rule(db, p.id, "completed", "pending", "completed", name="B")
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="ping-pong")

  report = await settle(db, await task_store.update_status(db, task_id=t.id, status="completed"))

  assert len(report.applied) == 2
  assert report.aborted is False
  assert t.status == "completed"


@pytest.mark.anyio
async def test_depth_cap_aborts_only_the_remaining_chain(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  await _status_rule(db, p.id, "pending", "in_progress", "review", name="1")
  await _status_rule(db, p.id, "in_progress", "review", "blocked", name="2")
  await _status_rule(db, p.id, "review", "blocked", "deferred", name="3")
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="chain")

  events = await task_store.update_status(db, task_id=t.id, status="in_progress")
  report = await RuleEngine(db, depth_cap=2).process(events)

  assert report.aborted is True
  assert len(report.applied) == 2
  assert t.status == "blocked"
  aborted = await _audit(db, "automation.chain_aborted")
  assert len(aborted) == 1 and aborted[0].payload["depth"] == 2


@pytest.mark.anyio
async def test_failed_action_is_recorded_and_does_not_undo_the_mutation(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  rule = await create_rule(
    db,
    project_id=p.id,
    name="Ping assignee",
    trigger="status_change",
    trigger_config={"toStatus": "review"},
    action="send_notification",
    action_config={"message": "Ready for review"},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="unassigned")

  report = await settle(db, await task_store.update_status(db, task_id=t.id, status="review"))

  assert report.applied == []
  assert [(f["ruleId"], f["action"]) for f in report.failed] == [(rule.id, "send_notification")]
  assert t.status == "review"
  assert len(await _audit(db, "automation.action_failed")) == 1


@pytest.mark.anyio
async def test_missing_move_target_fails_the_action_only(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="File it",
    trigger="status_change",
    trigger_config={"toStatus": "completed"},
    action="move_to_group",
    action_config={"targetGroupId": "gone"},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t")
  report = await settle(db, await task_store.update_status(db, task_id=t.id, status="completed"))
  assert len(report.failed) == 1 and "not found" in report.failed[0]["error"]
  assert (t.status, t.group_id) == ("completed", g.id)


@pytest.mark.anyio
async def test_completed_work_moves_to_done_group(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  done = await create_group(db, project_id=p.id, name="Done")
  await task_store.create_task(db, project_id=p.id, group_id=done.id, title="old")
  await create_rule(
    db,
    project_id=p.id,
    name="File it",
    trigger="status_change",
    trigger_config={"toStatus": "completed"},
    action="move_to_group",
    action_config={"targetGroupId": done.id},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t")

  report = await settle(db, await task_store.update_status(db, task_id=t.id, status="completed"))

  assert len(report.applied) == 1
  assert [x.title for x in await group_tasks(db, p.id, done.id)] == ["old", "t"]
  assert await group_tasks(db, p.id, g.id) == []


@pytest.mark.anyio
async def test_comment_creates_a_follow_up_subtask(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="Follow up",
    trigger="comment_added",
    trigger_config={},
    action="create_subtask",
    action_config={},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="Review copy")

  _, events = await task_store.add_comment(db, task_id=t.id, body="needs work", author_id=owner)
  report = await settle(db, events)

  assert len(report.applied) == 1
  res = await db.execute(select(Task).where(Task.parent_task_id == t.id))
  sub = res.scalar_one()
  assert sub.title == "Follow-up: Review copy"
  assert sub.group_id == g.id


@pytest.mark.anyio
async def test_subtask_completion_notifies_parent_assignee(db) -> None:
  owner = await make_user("Owner")
  lead = await make_user("Lead")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="Subtask done",
    trigger="subtask_completed",
    trigger_config={},
    action="send_notification",
    action_config={"message": "A subtask was completed"},
  )
  parent, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="Launch", assignee_id=lead)
  sub, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, parent_task_id=parent.id, title="Docs")

  report = await settle(db, await task_store.update_status(db, task_id=sub.id, status="completed"))

  assert len(report.applied) == 1
  res = await db.execute(select(InAppNotification).where(InAppNotification.user_id == lead))
  note = res.scalar_one()
  assert note.entity_id == parent.id
  assert note.title == "Subtask done"
  assert note.body == "Launch: A subtask was completed"


@pytest.mark.anyio
async def test_assignment_trigger_matches_a_specific_user(db) -> None:
  owner = await make_user("Owner")
  vip = await make_user("Vip")
  other = await make_user("Other")
  p, g = await _project(db, owner)
  await create_rule(
    db,
    project_id=p.id,
    name="VIP work is urgent",
    trigger="task_assigned",
    trigger_config={"assignedTo": vip},
    action="update_priority",
    action_config={"newPriority": "urgent"},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t")

  await settle(db, await task_store.assign(db, task_id=t.id, assignee_id=other))
  assert t.priority == "medium"
  await settle(db, await task_store.assign(db, task_id=t.id, assignee_id=vip))
  assert t.priority == "urgent"


@pytest.mark.anyio
async def test_inactive_rules_and_other_projects_are_ignored(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  other, _ = await _project(db, owner)
  paused = await _status_rule(db, p.id, "any", "review", "blocked")
  await toggle_rule(db, paused)
  await _status_rule(db, other.id, "any", "review", "blocked")
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t")

  report = await settle(db, await task_store.update_status(db, task_id=t.id, status="review"))
  assert report.applied == [] and t.status == "review"

  await toggle_rule(db, paused, is_active=True)
  await task_store.update_status(db, task_id=t.id, status="pending")
  await settle(db, await task_store.update_status(db, task_id=t.id, status="review"))
  assert t.status == "blocked"


@pytest.mark.anyio
async def test_rules_apply_in_creation_order(db) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  first = await create_rule(
    db, project_id=p.id, name="first", trigger="comment_added", trigger_config={}, action="update_priority", action_config={"newPriority": "high"}
  )
  second = await create_rule(
    db, project_id=p.id, name="second", trigger="comment_added", trigger_config={}, action="update_priority", action_config={"newPriority": "low"}
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t")

  _, events = await task_store.add_comment(db, task_id=t.id, body="hi")
  report = await settle(db, events)

  assert [a["ruleId"] for a in report.applied] == [first.id, second.id]
  assert t.priority == "low"


@pytest.mark.anyio
async def test_rule_configs_are_validated(db) -> None:
  owner = await make_user("Owner")
  p, _ = await _project(db, owner)
  bad = [
    ("status_change", {"toStatus": "done"}, "change_status", {"newStatus": "pending"}),
    ("status_change", {"toStatus": "completed", "extra": 1}, "change_status", {"newStatus": "pending"}),
    ("due_date_approaching", {"daysRemaining": -1}, "send_notification", {"message": "x"}),
    ("status_change", {"toStatus": "completed"}, "assign_task", {}),
    ("status_change", {"toStatus": "completed"}, "teleport", {}),
  ]
  for trigger, tcfg, action, acfg in bad:
    with pytest.raises(ValidationError):
      await create_rule(db, project_id=p.id, name="bad", trigger=trigger, trigger_config=tcfg, action=action, action_config=acfg)
  assert await list_rules(db, p.id) == []

  rule = await _status_rule(db, p.id, "any", "completed", "pending")
  with pytest.raises(ValidationError):
    await update_rule(db, rule, changes={"trigger": "due_date_approaching"})
  rule = await update_rule(db, rule, changes={"trigger": "due_date_approaching", "trigger_config": {"daysRemaining": 3}})
  assert rule.trigger_config == {"daysRemaining": 3}


@pytest.mark.anyio
@pytest.mark.parametrize("authored", [True, False])
async def test_follow_up_subtask_is_owned_by_the_rule_author(db, authored: bool) -> None:
  owner = await make_user("Owner")
  p, g = await _project(db, owner)
  rule = await create_rule(
    db,
    project_id=p.id,
    name="Follow up",
    trigger="comment_added",
    trigger_config={},
    action="create_subtask",
    action_config={},
    actor_id=owner if authored else None,
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="Review copy", actor_id=owner)
  assert (await db.execute(text("PRAGMA foreign_keys"))).scalar() == 1

  _, events = await task_store.add_comment(db, task_id=t.id, body="needs work", author_id=owner)
  report = await settle(db, events)

  assert report.failed == [] and len(report.applied) == 1
  res = await db.execute(select(Task).where(Task.parent_task_id == t.id))
  sub = res.scalar_one()
  assert sub.created_by == (owner if authored else None)
  created = [a for a in await _audit(db, "task.created") if a.task_id == sub.id]
  assert [a.actor_id for a in created] == [automation_actor(rule.id)]
  await db.commit()


class StaleRecipientSink:
  """Delivers to a user id that no longer exists, bypassing the recipient lookup."""

  async def send(self, db, msg: NotificationMessage) -> bool:
    db.add(InAppNotification(user_id="deleted-user", title=msg.title, body=msg.body))
    await db.flush()
    return True


@pytest.mark.anyio
async def test_database_error_in_an_action_rolls_back_only_that_action(db) -> None:
  owner = await make_user("Owner")
  lead = await make_user("Lead")
  p, g = await _project(db, owner)
  broken = await create_rule(
    db,
    project_id=p.id,
    name="Page the lead",
    trigger="status_change",
    trigger_config={"fromStatus": "any", "toStatus": "blocked"},
    action="send_notification",
    action_config={"message": "blocked"},
  )
  await create_rule(
    db,
    project_id=p.id,
    name="Raise priority",
    trigger="status_change",
    trigger_config={"fromStatus": "any", "toStatus": "blocked"},
    action="update_priority",
    action_config={"newPriority": "urgent"},
  )
  t, _ = await task_store.create_task(db, project_id=p.id, group_id=g.id, title="t", assignee_id=lead)

  events = await task_store.update_status(db, task_id=t.id, status="blocked", actor_id=owner)
  report = await RuleEngine(db, sink=StaleRecipientSink()).process(events)

  assert [f["ruleId"] for f in report.failed] == [broken.id]
  assert report.failed[0]["error"].startswith("IntegrityError")
  assert len(report.applied) == 1
  assert t.status == "blocked" and t.priority == "urgent"
  assert len(await _audit(db, "automation.action_failed")) == 1
  await db.commit()

  async with SessionLocal() as fresh:
    stored = await fresh.get(Task, t.id)
    assert (stored.status, stored.priority) == ("blocked", "urgent")
    res = await fresh.execute(select(InAppNotification))
    assert res.scalars().all() == []
