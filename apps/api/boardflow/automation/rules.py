from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import write_audit
from boardflow.automation.configs import parse_action, parse_action_config, parse_trigger, parse_trigger_config
from boardflow.errors import NotFoundError, ValidationError
from boardflow.models import AutomationRule, RuleFiring, new_id
from boardflow.projects import get_project


async def get_rule(db: AsyncSession, rule_id: str) -> AutomationRule:
  res = await db.execute(select(AutomationRule).where(AutomationRule.id == rule_id))
  r = res.scalar_one_or_none()
  if not r:
    raise NotFoundError("AutomationRule", rule_id)
  return r


async def list_rules(db: AsyncSession, project_id: str, *, active_only: bool = False, trigger: str | None = None) -> list[AutomationRule]:
  """Rules in evaluation order: oldest first, id as the tie-break."""
  q = select(AutomationRule).where(AutomationRule.project_id == project_id)
  if active_only:
    q = q.where(AutomationRule.is_active.is_(True))
  if trigger is not None:
    q = q.where(AutomationRule.trigger == trigger)
  res = await db.execute(q.order_by(AutomationRule.created_at.asc(), AutomationRule.id.asc()))
  return list(res.scalars().all())


async def create_rule(
  db: AsyncSession,
  *,
  project_id: str,
  name: str,
  trigger: str,
  trigger_config: dict[str, Any] | None,
  action: str,
  action_config: dict[str, Any] | None,
  description: str | None = None,
  is_active: bool = True,
  actor_id: str | None = None,
) -> AutomationRule:
  await get_project(db, project_id)
  clean = (name or "").strip()
  if not clean:
    raise ValidationError("Rule name is required")
  trig = parse_trigger(trigger)
  act = parse_action(action)
  tcfg = parse_trigger_config(trig, trigger_config)
  acfg = parse_action_config(act, action_config)

  r = AutomationRule(
    id=new_id(),
    project_id=project_id,
    name=clean,
    description=description,
    trigger=trig.value,
    trigger_config=tcfg.model_dump(mode="json"),
    action=act.value,
    action_config=acfg.model_dump(mode="json"),
    is_active=is_active,
    created_by=actor_id,
  )
  db.add(r)
  await db.flush()
  await write_audit(
    db,
    event_type="automation_rule.created",
    entity_type="AutomationRule",
    entity_id=r.id,
    project_id=project_id,
    actor_id=actor_id,
    payload={"name": r.name, "trigger": r.trigger, "action": r.action},
  )
  return r


async def update_rule(db: AsyncSession, rule: AutomationRule, *, changes: dict[str, Any], actor_id: str | None = None) -> AutomationRule:
  """
  Edit a rule. Changing `trigger` or `action` revalidates the matching config, so
  a new trigger must come with a config that fits it (or one that is empty-valid).
  """
  trig = parse_trigger(changes.get("trigger", rule.trigger))
  act = parse_action(changes.get("action", rule.action))
  tcfg_raw = changes["trigger_config"] if "trigger_config" in changes else rule.trigger_config
  acfg_raw = changes["action_config"] if "action_config" in changes else rule.action_config
  tcfg = parse_trigger_config(trig, tcfg_raw)
  acfg = parse_action_config(act, acfg_raw)

  if "name" in changes:
    clean = (changes["name"] or "").strip()
    if not clean:
      raise ValidationError("Rule name is required")
    rule.name = clean
  if "description" in changes:
    rule.description = changes["description"]
  if "is_active" in changes and changes["is_active"] is not None:
    rule.is_active = bool(changes["is_active"])
  rule.trigger = trig.value
  rule.trigger_config = tcfg.model_dump(mode="json")
  rule.action = act.value
  rule.action_config = acfg.model_dump(mode="json")
  await db.flush()
  await write_audit(
    db,
    event_type="automation_rule.updated",
    entity_type="AutomationRule",
    entity_id=rule.id,
    project_id=rule.project_id,
    actor_id=actor_id,
    payload={"fields": sorted(changes)},
  )
  return rule


async def toggle_rule(db: AsyncSession, rule: AutomationRule, *, is_active: bool | None = None, actor_id: str | None = None) -> AutomationRule:
  rule.is_active = (not rule.is_active) if is_active is None else is_active
  await db.flush()
  await write_audit(
    db,
    event_type="automation_rule.toggled",
    entity_type="AutomationRule",
    entity_id=rule.id,
    project_id=rule.project_id,
    actor_id=actor_id,
    payload={"isActive": rule.is_active},
  )
  return rule


async def delete_rule(db: AsyncSession, rule: AutomationRule, *, actor_id: str | None = None) -> None:
  await db.execute(delete(RuleFiring).where(RuleFiring.rule_id == rule.id))
  await write_audit(
    db,
    event_type="automation_rule.deleted",
    entity_type="AutomationRule",
    entity_id=rule.id,
    project_id=rule.project_id,
    actor_id=actor_id,
    payload={"name": rule.name},
  )
  await db.delete(rule)
  await db.flush()
