from __future__ import annotations

import asyncio
import weakref
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from boardflow.config import settings
from boardflow.errors import ConflictError, InvalidPosition


class Positioned(Protocol):
  id: str
  position: int


T = TypeVar("T", bound=Positioned)

HELD_SCOPES = "boardflow.held_scopes"

_scope_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def scope_key(kind: str, *parts: str | None) -> str:
  return ":".join([kind, *[p or "-" for p in parts]])


async def hold_scope(db: AsyncSession, key: str, *, anchor: tuple[Any, str] | None = None) -> None:
  """
  Serialize writers of one position sequence until this session's transaction ends.

  Readers of a sequence see only committed positions, so the lock has to outlive
  the flush: it is released by the commit or rollback that ends the unit of work.
  Holding a scope twice in one session is a no-op. Across processes the `anchor`
  row (the sequence's parent, as `(Model, id)`) is locked FOR UPDATE on databases
  that support it.
  """
  held: dict[str, asyncio.Lock] = db.info.setdefault(HELD_SCOPES, {})
  if key in held:
    return
  # The release hook hangs off the transaction, so there has to be one.
  await db.connection()
  lock = _scope_locks.get(key)
  if lock is None:
    lock = asyncio.Lock()
    _scope_locks[key] = lock
  try:
    await asyncio.wait_for(lock.acquire(), timeout=settings.scope_lock_timeout_seconds)
  except asyncio.TimeoutError as e:
    raise ConflictError("Another change to this board is still in progress; retry", details={"scope": key}) from e
  held[key] = lock
  if anchor is not None and not settings.is_sqlite():
    model, ident = anchor
    await db.execute(select(model.id).where(model.id == ident).with_for_update())


async def hold_scopes(db: AsyncSession, scopes: dict[str, tuple[Any, str] | None]) -> None:
  # Sorted acquisition keeps two writers that need the same scopes from deadlocking.
  for key in sorted(scopes):
    await hold_scope(db, key, anchor=scopes[key])


@event.listens_for(Session, "after_transaction_end")
def _release_scopes(session: Session, transaction: SessionTransaction) -> None:
  if transaction.parent is not None:
    return
  for lock in session.info.pop(HELD_SCOPES, {}).values():
    lock.release()


def repack(items: Sequence[T]) -> list[T]:
  """Write 0..n-1 onto items in their given order; returns the ones that moved."""
  changed: list[T] = []
  for idx, item in enumerate(items):
    if item.position != idx:
      item.position = idx
      changed.append(item)
  return changed


def ordered(items: Sequence[T]) -> list[T]:
  return sorted(items, key=lambda x: (x.position, x.id))


def check_position(position: int, count: int) -> None:
  if position < 0 or position > count - 1:
    raise InvalidPosition(
      f"position must be within [0, {max(count - 1, 0)}]",
      details={"position": position, "count": count},
    )


def insert_at(items: Sequence[T], item: T, position: int | None) -> list[T]:
  """Place item into the sequence (dropping any previous occurrence), clamped to the tail."""
  rest = ordered([x for x in items if x.id != item.id])
  idx = len(rest) if position is None else max(0, min(position, len(rest)))
  rest.insert(idx, item)
  repack(rest)
  return rest


def move_within(items: Sequence[T], item_id: str, new_position: int) -> list[T]:
  arr = ordered(items)
  check_position(new_position, len(arr))
  item = next(x for x in arr if x.id == item_id)
  arr.remove(item)
  arr.insert(new_position, item)
  repack(arr)
  return arr
