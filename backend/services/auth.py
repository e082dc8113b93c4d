from typing import Optional

from fastapi import Header, HTTPException


async def get_current_user(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> dict:
    """
    Identify the caller from headers set by the upstream auth gateway.
    Authentication itself happens before requests reach this service.
    """
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    return {"id": x_actor_id, "role": x_actor_role}
