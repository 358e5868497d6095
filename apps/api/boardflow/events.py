from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from boardflow.enums import EventField
from boardflow.models import utcnow

AUTOMATION_PREFIX = "automation:"


@dataclass(frozen=True)
class MutationEvent:
  """A task field change, as seen by the rule engine and the activity log."""

  task_id: str
  project_id: str
  field: EventField
  old_value: Any = None
  new_value: Any = None
  actor: str | None = None
  timestamp: datetime = field(default_factory=utcnow)

  @property
  def kind(self) -> str:
    return self.field.value


def automation_actor(rule_id: str) -> str:
  return f"{AUTOMATION_PREFIX}{rule_id}"


def user_actor(actor: str | None) -> str | None:
  """The actor as a users.id reference; automation actors have none."""
  if actor is None or actor.startswith(AUTOMATION_PREFIX):
    return None
  return actor
