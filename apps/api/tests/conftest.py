from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{ROOT / 'boardflow_test.db'}")
os.environ.setdefault("DUE_DATE_SCAN_ENABLED", "false")

from boardflow.config import settings
from boardflow.db import SessionLocal, engine
from boardflow.deps import USER_HEADER
from boardflow.main import app
from boardflow.models import Base, User


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_schema() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  await engine.dispose()


@pytest.fixture
async def schema() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. boardflow_test)."
    )
  await _reset_schema()
  yield
  await engine.dispose()


@pytest.fixture
async def db(schema):
  async with SessionLocal() as session:
    yield session


@pytest.fixture
async def client(schema) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def make_user(name: str, *, active: bool = True) -> str:
  async with SessionLocal() as session:
    u = User(email=f"{name.lower()}@boardflow.test", name=name, active=active)
    session.add(u)
    await session.commit()
    return u.id


def as_user(user_id: str) -> dict[str, str]:
  return {USER_HEADER: user_id}
