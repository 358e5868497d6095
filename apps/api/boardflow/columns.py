from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import write_audit
from boardflow.config import settings
from boardflow.enums import COLUMN_VALUE_SLOTS, ColumnType, TaskStatus, ValueSlot
from boardflow.errors import NotFoundError, TypeMismatch, ValidationError
from boardflow.models import Project, ProjectColumn, TaskColumnValue, as_utc, new_id
from boardflow.positions import check_position, hold_scope, insert_at, move_within, ordered, repack, scope_key
from boardflow.projects import get_project

logger = structlog.get_logger()

MIN_COLUMN_WIDTH = 40


def default_columns() -> list[dict]:
  return [
    {"columnType": ColumnType.status, "name": "Status", "width": 140},
    {"columnType": ColumnType.person, "name": "Owner", "width": 120},
    {"columnType": ColumnType.date, "name": "Due date", "width": 130},
    {"columnType": ColumnType.progress, "name": "Progress", "width": 140},
    {
      "columnType": ColumnType.dropdown,
      "name": "Priority",
      "width": 120,
      "settings": {"options": ["low", "medium", "high", "urgent", "critical"]},
    },
  ]


async def ensure_default_columns(db: AsyncSession, *, project_id: str) -> None:
  """
  Give a project the stock board columns.

  Idempotent by name, so it is safe to run against projects that already have columns.
  """
  existing = {c.name for c in await list_columns(db, project_id)}
  for item in default_columns():
    if item["name"] in existing:
      continue
    await define_column(
      db,
      project_id=project_id,
      column_type=item["columnType"],
      name=item["name"],
      width=item.get("width"),
      settings_=item.get("settings"),
    )


async def list_columns(db: AsyncSession, project_id: str, *, for_update: bool = False) -> list[ProjectColumn]:
  q = select(ProjectColumn).where(ProjectColumn.project_id == project_id).order_by(ProjectColumn.position.asc())
  if for_update:
    # rows loaded before the scope was held may carry stale positions
    q = q.execution_options(populate_existing=True)
    if not settings.is_sqlite():
      q = q.with_for_update()
  res = await db.execute(q)
  return list(res.scalars().all())


async def hold_column_order(db: AsyncSession, project_id: str) -> None:
  await hold_scope(db, scope_key("columns", project_id), anchor=(Project, project_id))


async def get_column(db: AsyncSession, column_id: str) -> ProjectColumn:
  res = await db.execute(select(ProjectColumn).where(ProjectColumn.id == column_id))
  c = res.scalar_one_or_none()
  if not c:
    raise NotFoundError("Column", column_id)
  return c


def _column_type(value: str | ColumnType) -> ColumnType:
  try:
    return ColumnType(value)
  except ValueError as e:
    raise ValidationError(f"Invalid column type: {value}") from e


async def define_column(
  db: AsyncSession,
  *,
  project_id: str,
  column_type: str | ColumnType,
  name: str,
  position: int | None = None,
  width: int | None = None,
  is_visible: bool = True,
  is_required: bool = False,
  settings_: dict[str, Any] | None = None,
  actor_id: str | None = None,
) -> ProjectColumn:
  await get_project(db, project_id)
  ctype = _column_type(column_type)
  clean = (name or "").strip()
  if not clean:
    raise ValidationError("Column name is required")
  if width is not None and width < MIN_COLUMN_WIDTH:
    raise ValidationError(f"width must be at least {MIN_COLUMN_WIDTH}")

  await hold_column_order(db, project_id)
  siblings = await list_columns(db, project_id, for_update=True)
  if position is not None:
    check_position(position, len(siblings) + 1)
  col = ProjectColumn(
    id=new_id(),
    project_id=project_id,
    column_type=ctype.value,
    name=clean,
    width=width or settings.default_column_width,
    is_visible=is_visible,
    is_required=is_required,
    settings=dict(settings_ or {}),
  )
  db.add(col)
  insert_at(siblings, col, position)
  await db.flush()

  await write_audit(
    db,
    event_type="column.created",
    entity_type="ProjectColumn",
    entity_id=col.id,
    project_id=project_id,
    actor_id=actor_id,
    payload={"name": col.name, "columnType": col.column_type, "position": col.position},
  )
  logger.info("column_defined", project_id=project_id, column_id=col.id, column_type=col.column_type, position=col.position)
  return col


async def reorder_column(db: AsyncSession, *, column_id: str, new_position: int, actor_id: str | None = None) -> list[ProjectColumn]:
  col = await get_column(db, column_id)
  await hold_column_order(db, col.project_id)
  siblings = await list_columns(db, col.project_id, for_update=True)
  arr = move_within(siblings, col.id, new_position)
  await db.flush()
  await write_audit(
    db,
    event_type="column.reordered",
    entity_type="ProjectColumn",
    entity_id=col.id,
    project_id=col.project_id,
    actor_id=actor_id,
    payload={"position": new_position},
  )
  return arr


async def delete_column(db: AsyncSession, *, column_id: str, actor_id: str | None = None) -> None:
  col = await get_column(db, column_id)
  project_id = col.project_id
  await hold_column_order(db, project_id)
  await db.execute(delete(TaskColumnValue).where(TaskColumnValue.column_id == col.id))
  await db.delete(col)
  await db.flush()
  repack(ordered(await list_columns(db, project_id, for_update=True)))
  await db.flush()
  await write_audit(
    db,
    event_type="column.deleted",
    entity_type="ProjectColumn",
    entity_id=column_id,
    project_id=project_id,
    actor_id=actor_id,
    payload={"name": col.name},
  )


async def update_column(
  db: AsyncSession,
  column: ProjectColumn,
  *,
  name: str | None = None,
  width: int | None = None,
  is_visible: bool | None = None,
  is_required: bool | None = None,
  settings_: dict[str, Any] | None = None,
  actor_id: str | None = None,
) -> ProjectColumn:
  if name is not None and not name.strip():
    raise ValidationError("Column name is required")
  if width is not None and width < MIN_COLUMN_WIDTH:
    raise ValidationError(f"width must be at least {MIN_COLUMN_WIDTH}")
  if name is not None:
    column.name = name.strip()
  if width is not None:
    column.width = width
  if is_visible is not None:
    column.is_visible = is_visible
  if is_required is not None:
    column.is_required = is_required
  if settings_ is not None:
    column.settings = dict(settings_)
  await write_audit(
    db,
    event_type="column.updated",
    entity_type="ProjectColumn",
    entity_id=column.id,
    project_id=column.project_id,
    actor_id=actor_id,
    payload={"name": column.name, "width": column.width, "isVisible": column.is_visible},
  )
  return column


async def set_visibility(db: AsyncSession, column: ProjectColumn, visible: bool, *, actor_id: str | None = None) -> ProjectColumn:
  return await update_column(db, column, is_visible=visible, actor_id=actor_id)


async def set_width(db: AsyncSession, column: ProjectColumn, width: int, *, actor_id: str | None = None) -> ProjectColumn:
  return await update_column(db, column, width=width, actor_id=actor_id)


# Column values


def is_empty_value(value: Any) -> bool:
  if value is None:
    return True
  if isinstance(value, str) and not value.strip():
    return True
  return isinstance(value, (list, tuple)) and len(value) == 0


def _mismatch(column: ProjectColumn, value: Any) -> TypeMismatch:
  return TypeMismatch(
    f"Column '{column.name}' ({column.column_type}) does not accept {type(value).__name__} values",
    details={"columnId": column.id, "columnType": column.column_type},
  )


def _is_number(value: Any) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_date(value: Any) -> datetime | None:
  if isinstance(value, datetime):
    return as_utc(value)
  if isinstance(value, date):
    return datetime.combine(value, time.min, tzinfo=timezone.utc)
  if isinstance(value, str):
    s = value.strip()
    try:
      parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
      return None
    return as_utc(parsed)
  return None


def coerce_column_value(column: ProjectColumn, value: Any) -> tuple[ValueSlot, Any]:
  """
  Check a non-empty value against the column's declared type.

  Returns the storage slot and the normalized value, or raises TypeMismatch.
  """
  ctype = ColumnType(column.column_type)
  slot = COLUMN_VALUE_SLOTS[ctype]
  options = list((column.settings or {}).get("options") or [])

  if ctype in (ColumnType.text, ColumnType.person):
    if not isinstance(value, str):
      raise _mismatch(column, value)
    return slot, value.strip() if ctype == ColumnType.person else value

  if ctype in (ColumnType.status, ColumnType.dropdown):
    if not isinstance(value, str):
      raise _mismatch(column, value)
    allowed = options or ([s.value for s in TaskStatus] if ctype == ColumnType.status else [])
    if allowed and value not in allowed:
      raise TypeMismatch(
        f"'{value}' is not an option of column '{column.name}'",
        details={"columnId": column.id, "options": allowed},
      )
    return slot, value

  if ctype == ColumnType.date:
    parsed = _parse_date(value)
    if parsed is None:
      raise _mismatch(column, value)
    return slot, parsed

  if ctype == ColumnType.number:
    if not _is_number(value):
      raise _mismatch(column, value)
    return slot, float(value)

  if ctype == ColumnType.progress:
    if not _is_number(value):
      raise _mismatch(column, value)
    return slot, float(min(100, max(0, value)))

  if ctype == ColumnType.checkbox:
    if not isinstance(value, bool):
      raise _mismatch(column, value)
    return slot, value

  if ctype == ColumnType.tags:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
      raise _mismatch(column, value)
    return slot, list(dict.fromkeys(v.strip() for v in value if v.strip()))

  # files
  if not isinstance(value, list) or not all(isinstance(v, (str, dict)) for v in value):
    raise _mismatch(column, value)
  return slot, list(value)


def read_column_value(row: TaskColumnValue, column_type: str) -> Any:
  slot = COLUMN_VALUE_SLOTS[ColumnType(column_type)]
  if slot == ValueSlot.text:
    return row.value_text
  if slot == ValueSlot.number:
    return row.value_number
  if slot == ValueSlot.date:
    return as_utc(row.value_date)
  if slot == ValueSlot.bool:
    return row.value_bool
  return row.value_json


def write_slot(row: TaskColumnValue, slot: ValueSlot, value: Any) -> None:
  row.value_text = value if slot == ValueSlot.text else None
  row.value_number = value if slot == ValueSlot.number else None
  row.value_date = value if slot == ValueSlot.date else None
  row.value_bool = value if slot == ValueSlot.bool else None
  row.value_json = value if slot == ValueSlot.json else None
