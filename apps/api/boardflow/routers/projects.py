from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.audit import write_audit
from boardflow.deps import get_current_user, get_db
from boardflow.models import Project, User
from boardflow.projection import project_out
from boardflow.projects import create_project, delete_project_everything, get_project
from boardflow.schemas import ProjectCreateIn, ProjectOut

router = APIRouter(tags=["projects"])


@router.get("/projects", response_model=list[ProjectOut])
async def list_projects(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectOut]:
  res = await db.execute(select(Project).order_by(Project.created_at.asc(), Project.id.asc()))
  return [project_out(p) for p in res.scalars().all()]


@router.post("/projects", response_model=ProjectOut)
async def create_project_endpoint(payload: ProjectCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  p = await create_project(
    db,
    name=payload.name,
    description=payload.description,
    owner_id=user.id,
    default_columns=payload.withDefaults,
    default_group=payload.withDefaults,
  )
  await db.commit()
  return project_out(p)


@router.get("/projects/{project_id}", response_model=ProjectOut)
async def get_project_endpoint(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  return project_out(await get_project(db, project_id))


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  p = await get_project(db, project_id)
  if p.owner_id != user.id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the project owner can delete it")
  name = p.name
  await delete_project_everything(db, project_id=project_id)
  await write_audit(
    db,
    event_type="project.deleted",
    entity_type="Project",
    entity_id=project_id,
    project_id=project_id,
    actor_id=user.id,
    payload={"name": name},
  )
  await db.commit()
  return {"ok": True}
