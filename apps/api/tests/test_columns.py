from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from boardflow import task_store
from boardflow.columns import (
  define_column,
  delete_column,
  list_columns,
  read_column_value,
  reorder_column,
  set_visibility,
  set_width,
  update_column,
)
from boardflow.errors import InvalidPosition, NotFoundError, TypeMismatch, ValidationError
from boardflow.models import TaskColumnValue
from boardflow.projects import create_project

from conftest import make_user


async def _bare_project(db, owner_id: str):
  return await create_project(db, name="Columns", owner_id=owner_id, default_columns=False, default_group=False)


def _assert_dense(cols) -> None:
  assert sorted(c.position for c in cols) == list(range(len(cols)))


@pytest.mark.anyio
async def test_default_columns_are_seeded_densely(db) -> None:
  owner = await make_user("Owner")
  p = await create_project(db, name="Defaults", owner_id=owner)
  cols = await list_columns(db, p.id)
  assert [c.name for c in cols] == ["Status", "Owner", "Due date", "Progress", "Priority"]
  _assert_dense(cols)


@pytest.mark.anyio
async def test_positions_stay_dense_across_define_reorder_delete(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  a = await define_column(db, project_id=p.id, column_type="text", name="A")
  b = await define_column(db, project_id=p.id, column_type="number", name="B")
  c = await define_column(db, project_id=p.id, column_type="date", name="C", position=0)
  assert [x.name for x in await list_columns(db, p.id)] == ["C", "A", "B"]

  await reorder_column(db, column_id=b.id, new_position=0)
  assert [x.name for x in await list_columns(db, p.id)] == ["B", "C", "A"]

  await delete_column(db, column_id=c.id)
  cols = await list_columns(db, p.id)
  assert [x.name for x in cols] == ["B", "A"]
  _assert_dense(cols)

  d = await define_column(db, project_id=p.id, column_type="checkbox", name="D", position=1)
  cols = await list_columns(db, p.id)
  assert [x.name for x in cols] == ["B", "D", "A"]
  _assert_dense(cols)
  assert a.id in {x.id for x in cols} and d.position == 1


@pytest.mark.anyio
async def test_reorder_outside_range_fails_without_side_effects(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  a = await define_column(db, project_id=p.id, column_type="text", name="A")
  await define_column(db, project_id=p.id, column_type="text", name="B")
  with pytest.raises(InvalidPosition):
    await reorder_column(db, column_id=a.id, new_position=2)
  with pytest.raises(InvalidPosition):
    await define_column(db, project_id=p.id, column_type="text", name="C", position=5)
  assert [x.name for x in await list_columns(db, p.id)] == ["A", "B"]


@pytest.mark.anyio
async def test_unknown_column_type_and_narrow_width_are_rejected(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  with pytest.raises(ValidationError):
    await define_column(db, project_id=p.id, column_type="formula", name="X")
  col = await define_column(db, project_id=p.id, column_type="text", name="A")
  with pytest.raises(ValidationError):
    await update_column(db, col, width=10)
  await update_column(db, col, width=220, is_visible=False)
  assert col.width == 220 and col.is_visible is False


@pytest.mark.anyio
async def test_visibility_and_width_leave_order_alone(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  a = await define_column(db, project_id=p.id, column_type="text", name="A")
  b = await define_column(db, project_id=p.id, column_type="text", name="B")
  await set_visibility(db, a, False)
  await set_width(db, b, 300)
  cols = await list_columns(db, p.id)
  assert [(c.name, c.position, c.is_visible, c.width) for c in cols] == [("A", 0, False, 150), ("B", 1, True, 300)]
  with pytest.raises(ValidationError):
    await set_width(db, b, 0)


@pytest.mark.anyio
async def test_type_mismatch_leaves_existing_value_unchanged(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  due = await define_column(db, project_id=p.id, column_type="date", name="Due")
  t, _ = await task_store.create_task(db, project_id=p.id, title="T")

  await task_store.set_column_value(db, task_id=t.id, column_id=due.id, value="2026-03-01")
  for bad in (42, True, "not a date", ["2026-03-01"]):
    with pytest.raises(TypeMismatch):
      await task_store.set_column_value(db, task_id=t.id, column_id=due.id, value=bad)

  res = await db.execute(select(TaskColumnValue).where(TaskColumnValue.task_id == t.id))
  rows = res.scalars().all()
  assert len(rows) == 1
  assert read_column_value(rows[0], due.column_type) == datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_values_land_in_their_typed_slot(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  cols = {
    "text": await define_column(db, project_id=p.id, column_type="text", name="Notes"),
    "number": await define_column(db, project_id=p.id, column_type="number", name="Points"),
    "progress": await define_column(db, project_id=p.id, column_type="progress", name="Done %"),
    "checkbox": await define_column(db, project_id=p.id, column_type="checkbox", name="Billable"),
    "tags": await define_column(db, project_id=p.id, column_type="tags", name="Labels"),
    "dropdown": await define_column(db, project_id=p.id, column_type="dropdown", name="Size", settings_={"options": ["S", "M", "L"]}),
    "date": await define_column(db, project_id=p.id, column_type="date", name="Start"),
  }
  t, _ = await task_store.create_task(db, project_id=p.id, title="T")

  async def put(kind: str, value):
    row = await task_store.set_column_value(db, task_id=t.id, column_id=cols[kind].id, value=value)
    return row

  row = await put("text", "hello")
  assert row.value_text == "hello" and row.value_number is None
  row = await put("number", 3)
  assert row.value_number == 3.0 and row.value_text is None
  row = await put("progress", 140)
  assert row.value_number == 100.0
  row = await put("checkbox", False)
  assert row.value_bool is False
  row = await put("tags", ["a", "b", "a", " "])
  assert row.value_json == ["a", "b"]
  row = await put("dropdown", "M")
  assert row.value_text == "M"
  row = await put("date", date(2026, 5, 4))
  assert read_column_value(row, "date") == datetime(2026, 5, 4, tzinfo=timezone.utc)

  with pytest.raises(TypeMismatch):
    await put("dropdown", "XL")
  with pytest.raises(TypeMismatch):
    await put("number", "3")
  with pytest.raises(TypeMismatch):
    await put("checkbox", 1)


@pytest.mark.anyio
async def test_empty_value_unsets_and_required_columns_refuse_it(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  notes = await define_column(db, project_id=p.id, column_type="text", name="Notes")
  must = await define_column(db, project_id=p.id, column_type="text", name="Must", is_required=True)
  t, _ = await task_store.create_task(db, project_id=p.id, title="T")

  await task_store.set_column_value(db, task_id=t.id, column_id=notes.id, value="x")
  assert await task_store.set_column_value(db, task_id=t.id, column_id=notes.id, value="  ") is None
  res = await db.execute(select(TaskColumnValue).where(TaskColumnValue.column_id == notes.id))
  assert res.scalars().all() == []

  await task_store.set_column_value(db, task_id=t.id, column_id=must.id, value="kept")
  with pytest.raises(ValidationError):
    await task_store.clear_column_value(db, task_id=t.id, column_id=must.id)
  res = await db.execute(select(TaskColumnValue).where(TaskColumnValue.column_id == must.id))
  assert res.scalar_one().value_text == "kept"


@pytest.mark.anyio
async def test_person_values_must_reference_a_user(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  person = await define_column(db, project_id=p.id, column_type="person", name="Reviewer")
  t, _ = await task_store.create_task(db, project_id=p.id, title="T")
  with pytest.raises(NotFoundError):
    await task_store.set_column_value(db, task_id=t.id, column_id=person.id, value="nobody")
  row = await task_store.set_column_value(db, task_id=t.id, column_id=person.id, value=owner)
  assert row.value_text == owner


@pytest.mark.anyio
async def test_deleting_a_column_removes_its_values(db) -> None:
  owner = await make_user("Owner")
  p = await _bare_project(db, owner)
  notes = await define_column(db, project_id=p.id, column_type="text", name="Notes")
  t, _ = await task_store.create_task(db, project_id=p.id, title="T")
  await task_store.set_column_value(db, task_id=t.id, column_id=notes.id, value="x")
  await delete_column(db, column_id=notes.id)
  res = await db.execute(select(TaskColumnValue))
  assert res.scalars().all() == []
