from __future__ import annotations

from typing import Any


class BoardError(Exception):
  code = "board_error"

  def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details or {}


class ValidationError(BoardError):
  code = "validation_error"


class TypeMismatch(ValidationError):
  code = "type_mismatch"


class InvalidPosition(ValidationError):
  code = "invalid_position"


class NotFoundError(BoardError):
  code = "not_found"

  def __init__(self, entity: str, entity_id: str | None) -> None:
    super().__init__(f"{entity} not found", details={"entity": entity, "id": entity_id})
    self.entity = entity
    self.entity_id = entity_id


class ConflictError(BoardError):
  code = "conflict"


class CycleDetected(BoardError):
  code = "cycle_detected"


class ActionFailed(BoardError):
  code = "action_failed"

  def __init__(self, message: str, *, rule_id: str, task_id: str, action: str) -> None:
    super().__init__(message, details={"ruleId": rule_id, "taskId": task_id, "action": action})
    self.rule_id = rule_id
    self.task_id = task_id
    self.action = action
