from enum import Enum


class ConversationStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


QUEUEABLE_STATUSES: tuple[ConversationStatus, ...] = (
    ConversationStatus.OPEN,
    ConversationStatus.PENDING,
)


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.LOW: 0,
    Priority.NORMAL: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class AgentAvailability(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class AssignmentMode(str, Enum):
    MANUAL = "MANUAL"
    ROUND_ROBIN = "ROUND_ROBIN"
    LOAD_BALANCED = "LOAD_BALANCED"
    TEAM_BASED = "TEAM_BASED"


class AssignmentAction(str, Enum):
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    PRIMARY_CHANGED = "primary_changed"


class QueueAction(str, Enum):
    ENQUEUED = "enqueued"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    PRIMARY_CHANGED = "primary_changed"
