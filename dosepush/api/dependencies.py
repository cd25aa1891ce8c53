"""
Request dependencies.

Authentication lives in the upstream layer; it forwards the resolved owner
as headers and this service trusts them.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel

from dosepush.infrastructure.container import Services


class Owner(BaseModel):
    """Authenticated workspace member making the request."""
    workspace_id: int
    user_id: int


def get_services(request: Request) -> Services:
    """Engine assembled during application startup."""
    return request.app.state.services


def get_optional_owner(
    x_workspace_id: Optional[int] = Header(default=None),
    x_user_id: Optional[int] = Header(default=None),
) -> Optional[Owner]:
    if x_workspace_id is None or x_user_id is None:
        return None
    return Owner(workspace_id=x_workspace_id, user_id=x_user_id)


def get_owner(
    x_workspace_id: Optional[int] = Header(default=None),
    x_user_id: Optional[int] = Header(default=None),
) -> Owner:
    owner = get_optional_owner(x_workspace_id, x_user_id)
    if owner is None:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return owner
