from typing import Optional

from fastapi import Header

SYSTEM_ACTOR = "system"


def get_current_actor(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Acting user id as forwarded by the authenticating gateway."""
    return x_user_id or SYSTEM_ACTOR
