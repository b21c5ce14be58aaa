"""Change feed event types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from .product import utcnow


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    """Connection status reported by a change feed channel."""

    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


ALL_EVENTS = "*"


@dataclass(frozen=True)
class ChangeEvent:
    """A row-level change delivered by the change feed.

    ``old`` is empty for inserts and ``new`` is empty for deletes.
    ``sequence`` is the store's commit sequence number.
    """

    table: str
    event_type: ChangeType
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def row_id(self) -> Optional[str]:
        row = self.new if self.event_type != ChangeType.DELETE else self.old
        row_id = row.get("id")
        return str(row_id) if row_id is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type.value,
            "new": self.new,
            "old": self.old,
            "sequence": self.sequence,
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }
