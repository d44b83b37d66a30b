from typing import List, Optional

from fastapi import Header, HTTPException, status
from pydantic import BaseModel, Field


class AuthenticatedUser(BaseModel):
    user_id: str
    roles: List[str] = Field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def parse_roles(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return sorted({role.strip() for role in raw.split(",") if role.strip()})


async def get_current_user(
        x_user_id: Optional[str] = Header(None),
        x_user_roles: Optional[str] = Header(None),
) -> AuthenticatedUser:
    """Caller identity as forwarded by the gateway in the X-User-Id / X-User-Roles headers."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return AuthenticatedUser(user_id=x_user_id.strip(), roles=parse_roles(x_user_roles))
