from enum import Enum


class RealtimeEvent(str, Enum):
    CONVERSATION_ASSIGNMENT = "conversation:assignment"
    QUEUE_UPDATED = "queue:updated"
    AGENT_AVAILABILITY = "agent:availability"
