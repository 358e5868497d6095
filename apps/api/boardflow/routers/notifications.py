from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import write_audit
from boardflow.deps import get_current_user, get_db
from boardflow.models import User, as_utc
from boardflow.notifications import list_inapp, mark_read
from boardflow.schemas import MarkReadIn, NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
  unreadOnly: bool = False,
  limit: int = 50,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
  out = []
  for n in await list_inapp(db, user_id=user.id, unread_only=unreadOnly, limit=limit):
    out.append(
      NotificationOut(
        id=n.id,
        level=n.level,
        title=n.title,
        body=n.body,
        projectId=n.project_id,
        eventType=n.event_type,
        entityType=n.entity_type,
        entityId=n.entity_id,
        readAt=as_utc(n.read_at),
        createdAt=as_utc(n.created_at),
      )
    )
  return out


@router.post("/mark-read")
async def mark_notifications_read(payload: MarkReadIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await mark_read(db, user_id=user.id, ids=payload.ids)
  await write_audit(
    db,
    event_type="notifications.inapp.read",
    entity_type="InAppNotification",
    entity_id=None,
    actor_id=user.id,
    payload={"count": len(payload.ids) if payload.ids is not None else "all"},
  )
  await db.commit()
  return {"ok": True}
