"""Status condition model."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from flashgate.models.enums import ConditionStatus
from flashgate.utils.time import utc_now


class Condition(BaseModel):
    """Terminal, user-visible record of an update attempt."""

    type: str
    status: ConditionStatus
    reason: str
    message: str = ""
    observed_generation: int = 0
    last_transition_time: datetime = Field(default_factory=utc_now)


def find_status_condition(conditions: list[Condition], condition_type: str) -> Optional[Condition]:
    """Return the condition of the given type, if present."""
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_status_condition(conditions: list[Condition], new: Condition) -> list[Condition]:
    """
    Insert or overwrite a condition by type.

    The transition time only moves when the status actually changes.
    """
    existing = find_status_condition(conditions, new.type)
    if existing is None:
        return [*conditions, new]

    transition_time = (
        existing.last_transition_time if existing.status == new.status else new.last_transition_time
    )
    updated = new.model_copy(update={"last_transition_time": transition_time})
    return [updated if c.type == new.type else c for c in conditions]
