from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.automation.engine import settle
from boardflow.deps import get_current_user, get_db
from boardflow.groups import create_group, delete_group, get_group, list_groups, reorder_group, update_group
from boardflow.models import User
from boardflow.projection import group_out
from boardflow.projects import get_project
from boardflow.schemas import GroupCreateIn, GroupDeleteIn, GroupDeleteOut, GroupOut, GroupUpdateIn, ReorderIn

router = APIRouter(tags=["groups"])


@router.get("/projects/{project_id}/groups", response_model=list[GroupOut])
async def list_groups_endpoint(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[GroupOut]:
  await get_project(db, project_id)
  return [group_out(g) for g in await list_groups(db, project_id)]


@router.post("/projects/{project_id}/groups", response_model=GroupOut)
async def create_group_endpoint(
  project_id: str,
  payload: GroupCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> GroupOut:
  g = await create_group(db, project_id=project_id, name=payload.name, color=payload.color, actor_id=user.id)
  await db.commit()
  return group_out(g)


@router.patch("/groups/{group_id}", response_model=GroupOut)
async def update_group_endpoint(
  group_id: str,
  payload: GroupUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> GroupOut:
  g = await get_group(db, group_id)
  g = await update_group(db, g, name=payload.name, color=payload.color, is_collapsed=payload.isCollapsed, actor_id=user.id)
  await db.commit()
  return group_out(g)


@router.post("/groups/{group_id}/reorder", response_model=list[GroupOut])
async def reorder_group_endpoint(
  group_id: str,
  payload: ReorderIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[GroupOut]:
  arr = await reorder_group(db, group_id=group_id, new_position=payload.position, actor_id=user.id)
  await db.commit()
  return [group_out(g) for g in arr]


@router.delete("/groups/{group_id}", response_model=GroupDeleteOut)
async def delete_group_endpoint(
  group_id: str,
  payload: GroupDeleteIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> GroupDeleteOut:
  events = await delete_group(db, group_id=group_id, strategy=payload.strategy, target_group_id=payload.targetGroupId, actor_id=user.id)
  await settle(db, events)
  await db.commit()
  return GroupDeleteOut(tasksMoved=len(events))
