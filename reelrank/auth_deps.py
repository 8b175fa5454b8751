from __future__ import annotations
from uuid import UUID
from fastapi import Header, HTTPException

# Authentication happens at the gateway; it forwards the verified user id.

async def get_viewer_id(x_user_id: str | None = Header(default=None)) -> UUID:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing viewer identity")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid viewer identity")
