"""Authentication dependencies and role capabilities."""

from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.restaurant import Restaurant
from models.user import Role, User
from services.errors import AuthenticationError, NotFoundError, PermissionDeniedError
from services.session_token import decode_access_token


auth_scheme = HTTPBearer(auto_error=False)

BALANCE_READ = "balance:read"
BALANCE_EARN = "balance:earn"
BALANCE_SPEND = "balance:spend"
BALANCE_GIFT = "balance:gift"
RESTAURANT_MANAGE = "restaurant:manage"
RESTAURANT_TOPUP = "restaurant:topup"
RESTAURANT_PACKAGES = "restaurant:packages"
RESTAURANT_GROUPS = "restaurant:groups"
RESTAURANT_SCANS = "restaurant:scans"
RESTAURANT_SUBSCRIPTIONS = "restaurant:subscriptions"
ADMIN_READ = "admin:read"
ADMIN_PLANS = "admin:plans"
ADMIN_SUBSCRIPTIONS = "admin:subscriptions"

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    Role.USER.value: frozenset({BALANCE_READ, BALANCE_EARN, BALANCE_SPEND, BALANCE_GIFT}),
    Role.RESTAURANT_OWNER.value: frozenset(
        {
            RESTAURANT_MANAGE,
            RESTAURANT_TOPUP,
            RESTAURANT_PACKAGES,
            RESTAURANT_GROUPS,
            RESTAURANT_SCANS,
            RESTAURANT_SUBSCRIPTIONS,
        }
    ),
    Role.SUB_ADMIN.value: frozenset({ADMIN_READ}),
    Role.ADMIN.value: frozenset({ADMIN_READ, ADMIN_PLANS, ADMIN_SUBSCRIPTIONS}),
}


def capabilities_for_role(role: Optional[str]) -> FrozenSet[str]:
    return ROLE_CAPABILITIES.get(str(role or ""), frozenset())


@dataclass
class AuthContext:
    user_id: str
    role: str
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    email: Optional[str] = None
    full_name: Optional[str] = None

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Resolve the authenticated user from a Bearer access token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing Bearer access token.")

    try:
        payload = decode_access_token(credentials.credentials)
    except ValueError as exc:
        raise AuthenticationError(str(exc)) from exc

    result = await db.execute(select(User).where(User.id == str(payload.get("sub", ""))))
    user = result.scalar_one_or_none()
    if not user:
        raise AuthenticationError("User no longer exists.")

    return AuthContext(
        user_id=user.id,
        role=user.role,
        capabilities=capabilities_for_role(user.role),
        email=user.email,
        full_name=user.full_name,
    )


def require_capability(capability: str) -> Callable:
    """Return a dependency that rejects callers lacking ``capability``."""

    async def _dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if not auth.can(capability):
            raise PermissionDeniedError("You do not have permission to perform this action")
        return auth

    return _dependency


async def get_owned_restaurant(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> Restaurant:
    """Restaurant owned by the authenticated RESTAURANT_OWNER."""
    if not auth.can(RESTAURANT_MANAGE):
        raise PermissionDeniedError("Only restaurant owners can perform this action")
    result = await db.execute(select(Restaurant).where(Restaurant.user_id == auth.user_id))
    restaurant = result.scalar_one_or_none()
    if not restaurant:
        raise NotFoundError("Restaurant not found")
    return restaurant
