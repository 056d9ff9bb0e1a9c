"""Change events delivered by the realtime feed."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

Record = dict[str, Any]

# Topic matching every record of a collection
WILDCARD_TOPIC = "*"


class Action(Enum):
    """Kind of change a realtime event reports."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ChangeEvent:
    """A create/update/delete notification for one record."""

    action: Action
    record: Record

    @property
    def record_id(self) -> str:
        return self.record["id"]

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "record": self.record}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        """Parse the wire form. Raises KeyError/ValueError on bad payloads."""
        record = dict(data["record"])
        if "id" not in record:
            raise ValueError("Change event record has no id")
        return cls(action=Action(data["action"]), record=record)
