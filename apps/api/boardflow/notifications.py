from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.models import InAppNotification, User, new_id, utcnow


@dataclass(frozen=True)
class NotificationMessage:
  user_id: str
  title: str
  body: str
  level: str = "info"
  project_id: str | None = None
  event_type: str | None = None
  entity_type: str | None = None
  entity_id: str | None = None


class NotificationSink(Protocol):
  async def send(self, db: AsyncSession, msg: NotificationMessage) -> bool: ...


async def notify_inapp(db: AsyncSession, msg: NotificationMessage) -> bool:
  """Store an in-app notification; inactive or unknown users get nothing."""
  res = await db.execute(select(User).where(User.id == msg.user_id))
  user = res.scalar_one_or_none()
  if not user or not user.active:
    return False
  db.add(
    InAppNotification(
      id=new_id(),
      user_id=msg.user_id,
      project_id=msg.project_id,
      level=msg.level,
      title=msg.title,
      body=msg.body,
      event_type=msg.event_type,
      entity_type=msg.entity_type,
      entity_id=msg.entity_id,
    )
  )
  await db.flush()
  return True


class InAppSink:
  async def send(self, db: AsyncSession, msg: NotificationMessage) -> bool:
    return await notify_inapp(db, msg)


async def list_inapp(db: AsyncSession, *, user_id: str, unread_only: bool = False, limit: int = 50) -> list[InAppNotification]:
  limit = max(1, min(int(limit), 200))
  stmt = select(InAppNotification).where(InAppNotification.user_id == user_id)
  if unread_only:
    stmt = stmt.where(InAppNotification.read_at.is_(None))
  stmt = stmt.order_by(InAppNotification.created_at.desc()).limit(limit)
  res = await db.execute(stmt)
  return list(res.scalars().all())


async def mark_read(db: AsyncSession, *, user_id: str, ids: list[str] | None = None) -> None:
  stmt = update(InAppNotification).where(InAppNotification.user_id == user_id, InAppNotification.read_at.is_(None))
  if ids is not None:
    stmt = stmt.where(InAppNotification.id.in_(ids))
  await db.execute(stmt.values(read_at=utcnow()))
