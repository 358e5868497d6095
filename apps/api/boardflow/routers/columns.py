from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.columns import define_column, delete_column, get_column, list_columns, reorder_column, update_column
from boardflow.deps import get_current_user, get_db
from boardflow.models import User
from boardflow.projection import column_out
from boardflow.projects import get_project
from boardflow.schemas import ColumnCreateIn, ColumnOut, ColumnUpdateIn, ReorderIn

router = APIRouter(tags=["columns"])


@router.get("/projects/{project_id}/columns", response_model=list[ColumnOut])
async def list_columns_endpoint(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ColumnOut]:
  await get_project(db, project_id)
  return [column_out(c) for c in await list_columns(db, project_id)]


@router.post("/projects/{project_id}/columns", response_model=ColumnOut)
async def create_column(
  project_id: str,
  payload: ColumnCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ColumnOut:
  col = await define_column(
    db,
    project_id=project_id,
    column_type=payload.columnType,
    name=payload.name,
    position=payload.position,
    width=payload.width,
    is_visible=payload.isVisible,
    is_required=payload.isRequired,
    settings_=payload.settings,
    actor_id=user.id,
  )
  await db.commit()
  return column_out(col)


@router.patch("/columns/{column_id}", response_model=ColumnOut)
async def update_column_endpoint(
  column_id: str,
  payload: ColumnUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ColumnOut:
  col = await get_column(db, column_id)
  col = await update_column(
    db,
    col,
    name=payload.name,
    width=payload.width,
    is_visible=payload.isVisible,
    is_required=payload.isRequired,
    settings_=payload.settings,
    actor_id=user.id,
  )
  await db.commit()
  return column_out(col)


@router.post("/columns/{column_id}/reorder", response_model=list[ColumnOut])
async def reorder_column_endpoint(
  column_id: str,
  payload: ReorderIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ColumnOut]:
  arr = await reorder_column(db, column_id=column_id, new_position=payload.position, actor_id=user.id)
  await db.commit()
  return [column_out(c) for c in arr]


@router.delete("/columns/{column_id}")
async def delete_column_endpoint(column_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await delete_column(db, column_id=column_id, actor_id=user.id)
  await db.commit()
  return {"ok": True}
