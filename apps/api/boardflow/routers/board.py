from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import list_activity as query_activity
from boardflow.deps import get_current_user, get_db
from boardflow.models import User, as_utc
from boardflow.projection import build_board
from boardflow.projects import get_project
from boardflow.schemas import ActivityOut, BoardOut

router = APIRouter(tags=["board"])


@router.get("/projects/{project_id}/board", response_model=BoardOut)
async def get_board(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> BoardOut:
  return await build_board(db, project_id)


@router.get("/projects/{project_id}/activity", response_model=list[ActivityOut])
async def list_activity(
  project_id: str,
  taskId: str | None = None,
  limit: int = 200,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ActivityOut]:
  await get_project(db, project_id)
  out = []
  for ev in await query_activity(db, project_id, task_id=taskId, limit=limit):
    out.append(
      ActivityOut(
        id=ev.id,
        eventType=ev.event_type,
        entityType=ev.entity_type,
        entityId=ev.entity_id,
        taskId=ev.task_id,
        actorId=ev.actor_id,
        payload=ev.payload or {},
        createdAt=as_utc(ev.created_at),
      )
    )
  return out
