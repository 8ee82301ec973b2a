from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import verify_access_token, verify_cron_secret
from core.exceptions import credentials_exception, forbidden_exception
from database import get_db
from models.common import UserRole

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> dict:
    if not credentials:
        raise credentials_exception()
    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise credentials_exception()

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception()

    user = await db.profiles.find_one({"user_id": user_id}, {"_id": 0})
    if not user:
        raise credentials_exception()
    if not user.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled",
        )
    return user


def require_role(*roles: UserRole):
    """
    Dependency checking the current user holds one of the given roles.
    Usage: Depends(require_role(UserRole.ADMIN))
    """
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in [r.value for r in roles]:
            raise forbidden_exception("Forbidden: admin only")
        return current_user
    return _check


require_admin = require_role(UserRole.ADMIN)


async def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    if not verify_cron_secret(authorization):
        raise credentials_exception()
