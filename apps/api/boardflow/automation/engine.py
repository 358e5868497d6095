from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow import task_store
from boardflow.audit import write_audit
from boardflow.automation.configs import ANY, parse_action_config, parse_trigger_config
from boardflow.automation.rules import list_rules
from boardflow.config import settings
from boardflow.enums import Action, EventField, Trigger
from boardflow.errors import ActionFailed, BoardError, CycleDetected
from boardflow.events import MutationEvent, automation_actor
from boardflow.models import AutomationRule
from boardflow.notifications import InAppSink, NotificationMessage, NotificationSink

logger = structlog.get_logger()

# Which trigger an event kind can fire. due_date_approaching is scan-only.
EVENT_TRIGGERS: dict[EventField, Trigger] = {
  EventField.status: Trigger.status_change,
  EventField.assignee: Trigger.task_assigned,
  EventField.comment: Trigger.comment_added,
  EventField.attachment: Trigger.attachment_added,
  EventField.subtask_completed: Trigger.subtask_completed,
}


def rule_matches(rule: AutomationRule, event: MutationEvent) -> bool:
  if not rule.is_active or rule.project_id != event.project_id:
    return False
  trigger = EVENT_TRIGGERS.get(event.field)
  if trigger is None or rule.trigger != trigger.value:
    return False
  cfg = parse_trigger_config(trigger, rule.trigger_config)
  if trigger == Trigger.status_change:
    if cfg.fromStatus != ANY and cfg.fromStatus != event.old_value:
      return False
    return cfg.toStatus == event.new_value
  if trigger == Trigger.task_assigned:
    if event.new_value is None:
      return False
    return cfg.assignedTo == ANY or cfg.assignedTo == event.new_value
  return True


def _as_action_failure(e: Exception, rule: AutomationRule, task_id: str) -> ActionFailed:
  if isinstance(e, ActionFailed):
    return e
  message = e.message if isinstance(e, BoardError) else f"{type(e).__name__}: {getattr(e, 'orig', None) or e}"
  return ActionFailed(message, rule_id=rule.id, task_id=task_id, action=rule.action)


@dataclass
class ChainReport:
  applied: list[dict[str, Any]] = field(default_factory=list)
  failed: list[dict[str, Any]] = field(default_factory=list)
  aborted: bool = False


class RuleEngine:
  """
  Reactive core: turns task mutation events into rule actions.

  Evaluation is a bounded event-replay loop. Actions that mutate a task yield
  new events which are queued one level deeper; a rule fires at most once per
  (rule, task, event kind) within a chain, and nothing is applied at or past
  the depth cap. The chain runs inside the caller's unit of work so the caller
  sees the settled state before it commits.
  """

  def __init__(self, db: AsyncSession, *, sink: NotificationSink | None = None, depth_cap: int | None = None) -> None:
    self.db = db
    self.sink = sink or InAppSink()
    self.depth_cap = settings.rule_chain_depth_cap if depth_cap is None else depth_cap

  async def process(self, events: list[MutationEvent]) -> ChainReport:
    report = ChainReport()
    queue: deque[tuple[MutationEvent, int]] = deque((e, 0) for e in events)
    await self._drain(queue, set(), report)
    return report

  async def fire(self, rule: AutomationRule, event: MutationEvent) -> ChainReport:
    """Apply one rule that was matched outside the event path (the due-date scan), then settle its chain."""
    report = ChainReport()
    fired = {(rule.id, event.task_id, event.kind)}
    follow_ups = await self._apply(rule, event, 0, report)
    queue: deque[tuple[MutationEvent, int]] = deque((e, 1) for e in follow_ups)
    await self._drain(queue, fired, report)
    return report

  async def _drain(self, queue: deque[tuple[MutationEvent, int]], fired: set[tuple[str, str, str]], report: ChainReport) -> None:
    cache: dict[str, list[AutomationRule]] = {}
    try:
      while queue:
        event, depth = queue.popleft()
        for rule in await self._candidates(event, cache):
          key = (rule.id, event.task_id, event.kind)
          if key in fired or not rule_matches(rule, event):
            continue
          if depth >= self.depth_cap:
            raise CycleDetected(
              f"Automation chain exceeded depth {self.depth_cap}",
              details={"ruleId": rule.id, "taskId": event.task_id, "projectId": event.project_id, "depth": depth},
            )
          fired.add(key)
          for follow_up in await self._apply(rule, event, depth, report):
            queue.append((follow_up, depth + 1))
    except CycleDetected as e:
      report.aborted = True
      logger.warning("automation_chain_aborted", reason=e.message, pending_events=len(queue), **e.details)
      await write_audit(
        self.db,
        event_type="automation.chain_aborted",
        entity_type="AutomationRule",
        entity_id=e.details.get("ruleId"),
        project_id=e.details.get("projectId"),
        task_id=e.details.get("taskId"),
        payload={"depth": e.details.get("depth"), "pendingEvents": len(queue)},
      )

  async def _candidates(self, event: MutationEvent, cache: dict[str, list[AutomationRule]]) -> list[AutomationRule]:
    trigger = EVENT_TRIGGERS.get(event.field)
    if trigger is None:
      return []
    if event.project_id not in cache:
      cache[event.project_id] = await list_rules(self.db, event.project_id, active_only=True)
    return [r for r in cache[event.project_id] if r.trigger == trigger.value]

  async def _apply(self, rule: AutomationRule, event: MutationEvent, depth: int, report: ChainReport) -> list[MutationEvent]:
    entry = {"ruleId": rule.id, "taskId": event.task_id, "action": rule.action, "depth": depth}
    try:
      # A failed action rolls back to here and leaves the caller's own writes alone.
      async with self.db.begin_nested():
        follow_ups = await self._run_action(rule, event.task_id)
    except (BoardError, SQLAlchemyError) as e:
      failure = _as_action_failure(e, rule, event.task_id)
      report.failed.append({**entry, "error": failure.message})
      logger.warning("automation_action_failed", rule_id=rule.id, task_id=event.task_id, action=rule.action, error=failure.message)
      await write_audit(
        self.db,
        event_type="automation.action_failed",
        entity_type="AutomationRule",
        entity_id=rule.id,
        project_id=rule.project_id,
        task_id=event.task_id,
        actor_id=automation_actor(rule.id),
        payload={"action": rule.action, "error": failure.message},
      )
      return []
    report.applied.append(entry)
    logger.info("automation_rule_applied", rule_id=rule.id, task_id=event.task_id, action=rule.action, depth=depth)
    return follow_ups

  async def _run_action(self, rule: AutomationRule, task_id: str) -> list[MutationEvent]:
    # Every branch validates before it writes, so a failure leaves nothing half-applied.
    action = Action(rule.action)
    cfg = parse_action_config(action, rule.action_config)
    actor = automation_actor(rule.id)

    if action == Action.change_status:
      return await task_store.update_status(self.db, task_id=task_id, status=cfg.newStatus.value, actor_id=actor)

    if action == Action.update_priority:
      return await task_store.update_priority(self.db, task_id=task_id, priority=cfg.newPriority.value, actor_id=actor)

    if action == Action.assign_task:
      return await task_store.assign(self.db, task_id=task_id, assignee_id=cfg.assignTo, actor_id=actor)

    if action == Action.move_to_group:
      return await task_store.move_task(self.db, task_id=task_id, to_group_id=cfg.targetGroupId, actor_id=actor, retry=False)

    t = await task_store.get_task(self.db, task_id)

    if action == Action.create_subtask:
      _, events = await task_store.create_task(
        self.db,
        project_id=t.project_id,
        group_id=t.group_id,
        parent_task_id=t.id,
        title=cfg.title or f"Follow-up: {t.title}",
        description=cfg.description or "",
        actor_id=actor,
        created_by=rule.created_by,
      )
      return events

    # send_notification
    recipient = cfg.recipientId or t.assignee_id
    if not recipient:
      raise ActionFailed("No notification recipient: rule has none and the task is unassigned", rule_id=rule.id, task_id=t.id, action=rule.action)
    delivered = await self.sink.send(
      self.db,
      NotificationMessage(
        user_id=recipient,
        title=rule.name,
        body=f"{t.title}: {cfg.message}",
        project_id=t.project_id,
        event_type="automation.notification",
        entity_type="Task",
        entity_id=t.id,
      ),
    )
    if not delivered:
      raise ActionFailed(f"Recipient {recipient} cannot receive notifications", rule_id=rule.id, task_id=t.id, action=rule.action)
    return []


async def settle(db: AsyncSession, events: list[MutationEvent]) -> ChainReport:
  """Run the automation chain for a user mutation; the caller still owns the commit."""
  if not events:
    return ChainReport()
  return await RuleEngine(db).process(events)
