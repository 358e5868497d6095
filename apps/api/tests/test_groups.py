from __future__ import annotations

import pytest
from sqlalchemy import select

from boardflow import task_store
from boardflow.errors import InvalidPosition, NotFoundError, ValidationError
from boardflow.groups import create_group, delete_group, get_group, group_tasks, list_groups, reorder_group
from boardflow.models import AuditEvent
from boardflow.projects import create_project

from conftest import make_user


async def _project(db, owner_id: str):
  return await create_project(db, name="Groups", owner_id=owner_id, default_columns=False, default_group=False)


async def _fill(db, project_id: str, group_id: str | None, *titles: str) -> None:
  for title in titles:
    await task_store.create_task(db, project_id=project_id, group_id=group_id, title=title)


async def _layout(db, project_id: str, group_id: str | None) -> list[tuple[str, int]]:
  return [(t.title, t.position) for t in await group_tasks(db, project_id, group_id)]


@pytest.mark.anyio
async def test_groups_append_and_reorder_densely(db) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  a = await create_group(db, project_id=p.id, name="A")
  b = await create_group(db, project_id=p.id, name="B", color="#ff0000")
  c = await create_group(db, project_id=p.id, name="C")
  assert [g.position for g in (a, b, c)] == [0, 1, 2]
  assert b.color == "#ff0000" and a.color == "#3498db"

  await reorder_group(db, group_id=c.id, new_position=0)
  assert [g.name for g in await list_groups(db, p.id)] == ["C", "A", "B"]

  with pytest.raises(InvalidPosition):
    await reorder_group(db, group_id=a.id, new_position=3)
  assert [g.name for g in await list_groups(db, p.id)] == ["C", "A", "B"]


@pytest.mark.anyio
async def test_delete_with_reassign_appends_tasks_to_target(db) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  doomed = await create_group(db, project_id=p.id, name="Doomed")
  keep = await create_group(db, project_id=p.id, name="Keep")
  tail = await create_group(db, project_id=p.id, name="Tail")
  await _fill(db, p.id, doomed.id, "a", "b")
  await _fill(db, p.id, keep.id, "c")

  events = await delete_group(db, group_id=doomed.id, strategy="reassign", target_group_id=keep.id)

  assert [(e.kind, e.old_value, e.new_value) for e in events] == [
    ("group", {"groupId": doomed.id, "position": 0}, {"groupId": keep.id, "position": 1}),
    ("group", {"groupId": doomed.id, "position": 1}, {"groupId": keep.id, "position": 2}),
  ]
  assert await _layout(db, p.id, keep.id) == [("c", 0), ("a", 1), ("b", 2)]
  assert [(g.name, g.position) for g in await list_groups(db, p.id)] == [("Keep", 0), ("Tail", 1)]
  assert tail.position == 1
  with pytest.raises(NotFoundError):
    await get_group(db, doomed.id)


@pytest.mark.anyio
async def test_delete_with_orphan_appends_tasks_to_ungrouped(db) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  g = await create_group(db, project_id=p.id, name="G")
  await _fill(db, p.id, None, "loose")
  await _fill(db, p.id, g.id, "a", "b")

  events = await delete_group(db, group_id=g.id, strategy="orphan", actor_id=owner)

  assert [e.new_value for e in events] == [{"groupId": None, "position": 1}, {"groupId": None, "position": 2}]
  assert {e.actor for e in events} == {owner}
  res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == "task.group"))
  assert sorted(a.task_id for a in res.scalars().all()) == sorted(e.task_id for e in events)
  assert await _layout(db, p.id, None) == [("loose", 0), ("a", 1), ("b", 2)]
  assert await list_groups(db, p.id) == []


@pytest.mark.anyio
async def test_empty_group_deletes_cleanly(db) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  g = await create_group(db, project_id=p.id, name="G")
  assert await delete_group(db, group_id=g.id, strategy="orphan") == []


@pytest.mark.anyio
@pytest.mark.parametrize(
  "strategy, target",
  [
    ("reassign", None),
    ("reassign", "self"),
    ("orphan", "other"),
    ("archive", None),
  ],
)
async def test_delete_requires_a_consistent_strategy(db, strategy: str, target: str | None) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  g = await create_group(db, project_id=p.id, name="G")
  other = await create_group(db, project_id=p.id, name="Other")
  await _fill(db, p.id, g.id, "a")
  target_id = {"self": g.id, "other": other.id}.get(target)

  with pytest.raises(ValidationError):
    await delete_group(db, group_id=g.id, strategy=strategy, target_group_id=target_id)
  assert await _layout(db, p.id, g.id) == [("a", 0)]


@pytest.mark.anyio
async def test_reassign_target_must_belong_to_the_project(db) -> None:
  owner = await make_user("Owner")
  p = await _project(db, owner)
  other = await _project(db, owner)
  g = await create_group(db, project_id=p.id, name="G")
  foreign = await create_group(db, project_id=other.id, name="Foreign")
  with pytest.raises(ValidationError):
    await delete_group(db, group_id=g.id, strategy="reassign", target_group_id=foreign.id)
