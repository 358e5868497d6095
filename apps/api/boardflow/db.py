from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from boardflow.config import settings


def _engine_kwargs() -> dict:
  if settings.is_sqlite():
    # One connection per session; each test case runs on its own event loop.
    return {"poolclass": NullPool, "connect_args": {"timeout": 15}}
  return {"pool_pre_ping": True}


engine = create_async_engine(settings.database_url, **_engine_kwargs())
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


if settings.is_sqlite():

  @event.listens_for(engine.sync_engine, "connect")
  def _enforce_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ships with FK checks off; match Postgres.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
