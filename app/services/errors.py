from uuid import UUID


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class AgentNotFoundError(LookupError):
    def __init__(self, agent_id: UUID) -> None:
        super().__init__(f"Agent '{agent_id}' not found")
        self.agent_id = agent_id


class AssignmentNotFoundError(LookupError):
    def __init__(self, conversation_id: UUID, agent_id: UUID) -> None:
        super().__init__(
            f"Agent '{agent_id}' is not assigned to conversation '{conversation_id}'"
        )
        self.conversation_id = conversation_id
        self.agent_id = agent_id


class AssignmentConflictError(RuntimeError):
    def __init__(self, conversation_id: UUID, owner_id: UUID | None = None) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' is already claimed by someone else"
        )
        self.conversation_id = conversation_id
        self.owner_id = owner_id


class ConcurrentAssignmentError(RuntimeError):
    """Raised by a store when a concurrent writer touched the same conversation."""

    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(
            f"Concurrent modification of assignments for conversation '{conversation_id}'"
        )
        self.conversation_id = conversation_id


class StoreUnavailableError(RuntimeError):
    def __init__(self, operation: str, timeout_seconds: float | None = None) -> None:
        detail = f"Assignment store unavailable during '{operation}'"
        if timeout_seconds is not None:
            detail = f"{detail} (timed out after {timeout_seconds:g}s)"
        super().__init__(f"{detail}. Retry later.")
        self.operation = operation
        self.timeout_seconds = timeout_seconds
