from uuid import UUID

from fastapi import Header


async def current_actor_id(x_actor_id: UUID = Header(..., description="Id of the user performing the change")) -> UUID:
    """Actor for mutating requests; authentication happens in front of this service."""
    return x_actor_id
