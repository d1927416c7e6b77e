from uuid import UUID


def organization_channel(organization_id: UUID) -> str:
    return f"org:{organization_id}"


def agent_channel(agent_id: UUID) -> str:
    return f"user:{agent_id}"
