from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.automation.rules import create_rule, delete_rule, get_rule, list_rules, toggle_rule, update_rule
from boardflow.automation.scanner import scan_due_dates
from boardflow.deps import get_current_user, get_db
from boardflow.models import AutomationRule, User, as_utc
from boardflow.projects import get_project
from boardflow.schemas import DueDateScanOut, RuleCreateIn, RuleOut, RuleToggleIn, RuleUpdateIn

router = APIRouter(tags=["automation"])


def _rule_out(r: AutomationRule) -> RuleOut:
  return RuleOut(
    id=r.id,
    projectId=r.project_id,
    name=r.name,
    description=r.description,
    trigger=r.trigger,
    triggerConfig=r.trigger_config or {},
    action=r.action,
    actionConfig=r.action_config or {},
    isActive=r.is_active,
    createdBy=r.created_by,
    createdAt=as_utc(r.created_at),
    updatedAt=as_utc(r.updated_at),
  )


@router.get("/projects/{project_id}/automation-rules", response_model=list[RuleOut])
async def list_rules_endpoint(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[RuleOut]:
  await get_project(db, project_id)
  return [_rule_out(r) for r in await list_rules(db, project_id)]


@router.post("/projects/{project_id}/automation-rules", response_model=RuleOut)
async def create_rule_endpoint(
  project_id: str,
  payload: RuleCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> RuleOut:
  r = await create_rule(
    db,
    project_id=project_id,
    name=payload.name,
    description=payload.description,
    trigger=payload.trigger.value,
    trigger_config=payload.triggerConfig,
    action=payload.action.value,
    action_config=payload.actionConfig,
    is_active=payload.isActive,
    actor_id=user.id,
  )
  await db.commit()
  return _rule_out(r)


@router.patch("/automation-rules/{rule_id}", response_model=RuleOut)
async def update_rule_endpoint(
  rule_id: str,
  payload: RuleUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> RuleOut:
  names = {
    "name": "name",
    "description": "description",
    "trigger": "trigger",
    "triggerConfig": "trigger_config",
    "action": "action",
    "actionConfig": "action_config",
    "isActive": "is_active",
  }
  changes = {}
  for k in payload.model_fields_set:
    v = getattr(payload, k)
    if k in ("trigger", "action"):
      if v is None:
        continue
      v = v.value
    changes[names[k]] = v
  r = await get_rule(db, rule_id)
  r = await update_rule(db, r, changes=changes, actor_id=user.id)
  await db.commit()
  return _rule_out(r)


@router.post("/automation-rules/{rule_id}/toggle", response_model=RuleOut)
async def toggle_rule_endpoint(
  rule_id: str,
  payload: RuleToggleIn | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> RuleOut:
  r = await get_rule(db, rule_id)
  r = await toggle_rule(db, r, is_active=payload.isActive if payload else None, actor_id=user.id)
  await db.commit()
  return _rule_out(r)


@router.delete("/automation-rules/{rule_id}")
async def delete_rule_endpoint(rule_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  r = await get_rule(db, rule_id)
  await delete_rule(db, r, actor_id=user.id)
  await db.commit()
  return {"ok": True}


@router.post("/automation/due-date-scan", response_model=DueDateScanOut)
async def run_due_date_scan(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> DueDateScanOut:
  fired = await scan_due_dates(db)
  await db.commit()
  return DueDateScanOut(fired=fired)
