from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from loyalty.core.config import settings
from loyalty.core.database import get_db
from loyalty.core.exceptions import AuthenticationError, AuthorizationError
from loyalty.models.user import User, UserRole
from loyalty.services.commerce_gateway import CommerceGateway, get_commerce_gateway


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the caller from the id header set by the upstream auth gateway"""
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")

    user = db.get(User, x_user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Unknown or inactive user")
    return user


def require_role(*roles: UserRole):
    """Dependency to require specific roles"""
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(details={"required": [role.value for role in roles]})
        return current_user
    return role_checker


def get_gateway() -> CommerceGateway:
    return get_commerce_gateway()


def page_size(limit: Optional[int] = None) -> int:
    if not limit:
        return settings.DEFAULT_PAGE_SIZE
    return max(1, min(limit, settings.MAX_PAGE_SIZE))
