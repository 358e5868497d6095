from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select

from boardflow import task_store
from boardflow.automation.rules import create_rule
from boardflow.db import SessionLocal
from boardflow.groups import create_group, list_groups, update_group
from boardflow.log import configure_logging
from boardflow.models import Project, User
from boardflow.projects import create_project

logger = structlog.get_logger()

SEED_USERS = [
  ("admin@boardflow.local", "Admin"),
  ("member@boardflow.local", "Member"),
  ("supervisor@boardflow.local", "Supervisor"),
]


async def _ensure_user(db, email: str, name: str) -> User:
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u:
    u = User(email=email, name=name)
    db.add(u)
    await db.flush()
    logger.info("seed_user_created", email=email, user_id=u.id)
  return u


async def seed() -> None:
  async with SessionLocal() as db:
    users = {email: await _ensure_user(db, email, name) for email, name in SEED_USERS}
    admin = users["admin@boardflow.local"]
    member = users["member@boardflow.local"]
    supervisor = users["supervisor@boardflow.local"]

    if os.getenv("SEED_DEMO_PROJECT", "").strip().lower() in ("1", "true", "yes", "y"):
      # Idempotent by name + owner.
      project_name = "Boardflow Demo"
      pres = await db.execute(select(Project).where(Project.name == project_name, Project.owner_id == admin.id))
      if not pres.scalar_one_or_none():
        p = await create_project(db, name=project_name, owner_id=admin.id, description="Sample board with a few automations.")
        groups = await list_groups(db, p.id)
        todo = await update_group(db, groups[0], name="This week", actor_id=admin.id)
        done = await create_group(db, project_id=p.id, name="Done", color="#00c875", actor_id=admin.id)

        now = datetime.now(timezone.utc)
        samples = [
          ("Welcome to Boardflow", "Drag tasks between groups and watch the activity log.", "in_progress"),
          ("Blocked example", "Set a task to blocked and the supervisor rule assigns it.", "pending"),
          ("Due soon", "The due-date rule notifies the assignee two days ahead.", "pending"),
        ]
        for idx, (title, desc, status) in enumerate(samples):
          await task_store.create_task(
            db,
            project_id=p.id,
            group_id=todo.id,
            title=title,
            description=desc,
            status=status,
            assignee_id=member.id,
            due_date=now + timedelta(days=idx + 1),
            actor_id=admin.id,
          )

        await create_rule(
          db,
          project_id=p.id,
          name="Escalate blocked work",
          trigger="status_change",
          trigger_config={"fromStatus": "any", "toStatus": "blocked"},
          action="assign_task",
          action_config={"assignTo": supervisor.id},
          actor_id=admin.id,
        )
        await create_rule(
          db,
          project_id=p.id,
          name="File completed work",
          trigger="status_change",
          trigger_config={"fromStatus": "any", "toStatus": "completed"},
          action="move_to_group",
          action_config={"targetGroupId": done.id},
          actor_id=admin.id,
        )
        await create_rule(
          db,
          project_id=p.id,
          name="Two-day heads-up",
          trigger="due_date_approaching",
          trigger_config={"daysRemaining": 2},
          action="send_notification",
          action_config={"message": "Due in two days"},
          actor_id=admin.id,
        )
        logger.info("seed_demo_project_created", project_id=p.id)

    await db.commit()


def main() -> None:
  configure_logging()
  asyncio.run(seed())


if __name__ == "__main__":
  main()
