from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from boardflow.enums import Action, TaskPriority, TaskStatus, Trigger
from boardflow.errors import ValidationError

ANY = "any"


class _Config(BaseModel):
  model_config = ConfigDict(extra="forbid")


# Triggers


class StatusChangeTrigger(_Config):
  fromStatus: TaskStatus | Literal["any"] = ANY
  toStatus: TaskStatus


class TaskAssignedTrigger(_Config):
  assignedTo: str = Field(default=ANY, min_length=1)


class DueDateApproachingTrigger(_Config):
  daysRemaining: int = Field(ge=0)


class EmptyTrigger(_Config):
  pass


TRIGGER_CONFIGS: dict[Trigger, type[_Config]] = {
  Trigger.status_change: StatusChangeTrigger,
  Trigger.task_assigned: TaskAssignedTrigger,
  Trigger.due_date_approaching: DueDateApproachingTrigger,
  Trigger.comment_added: EmptyTrigger,
  Trigger.subtask_completed: EmptyTrigger,
  Trigger.attachment_added: EmptyTrigger,
}


# Actions


class ChangeStatusAction(_Config):
  newStatus: TaskStatus


class AssignTaskAction(_Config):
  assignTo: str = Field(min_length=1)


class UpdatePriorityAction(_Config):
  newPriority: TaskPriority


class SendNotificationAction(_Config):
  message: str = Field(min_length=1, max_length=2000)
  # Falls back to the task's assignee when unset.
  recipientId: str | None = None


class CreateSubtaskAction(_Config):
  title: str | None = Field(default=None, max_length=500)
  description: str | None = None


class MoveToGroupAction(_Config):
  targetGroupId: str = Field(min_length=1)


ACTION_CONFIGS: dict[Action, type[_Config]] = {
  Action.change_status: ChangeStatusAction,
  Action.assign_task: AssignTaskAction,
  Action.update_priority: UpdatePriorityAction,
  Action.send_notification: SendNotificationAction,
  Action.create_subtask: CreateSubtaskAction,
  Action.move_to_group: MoveToGroupAction,
}


def _errors(e: PydanticValidationError) -> list[dict[str, Any]]:
  return [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]


def parse_trigger(value: str) -> Trigger:
  try:
    return Trigger(value)
  except ValueError as e:
    raise ValidationError(f"Invalid trigger: {value}") from e


def parse_action(value: str) -> Action:
  try:
    return Action(value)
  except ValueError as e:
    raise ValidationError(f"Invalid action: {value}") from e


def parse_trigger_config(trigger: str | Trigger, config: dict[str, Any] | None) -> _Config:
  trig = parse_trigger(trigger)
  model = TRIGGER_CONFIGS[trig]
  try:
    return model.model_validate(config or {})
  except PydanticValidationError as e:
    raise ValidationError(f"Invalid triggerConfig for {trig.value}", details={"errors": _errors(e)}) from e


def parse_action_config(action: str | Action, config: dict[str, Any] | None) -> _Config:
  act = parse_action(action)
  model = ACTION_CONFIGS[act]
  try:
    return model.model_validate(config or {})
  except PydanticValidationError as e:
    raise ValidationError(f"Invalid actionConfig for {act.value}", details={"errors": _errors(e)}) from e
