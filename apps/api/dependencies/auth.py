from collections.abc import Callable, Mapping
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.api.core.config import get_settings
from apps.api.services.tickets import Actor, StaffRole

Role = StaffRole
TokenMap = Mapping[str, Mapping[str, str]]


class User:
    """Authenticated caller resolved from a bearer token; ``role`` is ``None`` for the public."""

    def __init__(self, id: str, role: Role | None = None):
        self.id = id
        self.role = role

    @property
    def is_authenticated(self) -> bool:
        return self.role is not None

    def has_role(self, *roles: Role) -> bool:
        return self.role is not None and self.role in roles

    def as_actor(self) -> Actor:
        return Actor(id=self.id, role=self.role)


ANONYMOUS_USER_ID = "anonymous"

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None, tokens: TokenMap | None = None) -> User:
    """Return the user a bearer token maps to; no token means an anonymous caller."""

    if token is None:
        return User(id=ANONYMOUS_USER_ID)

    known = tokens if tokens is not None else get_settings().auth_tokens
    entry = known.get(token)
    if entry is None or "id" not in entry:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    try:
        role = Role(entry.get("role", ""))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials") from exc
    return User(id=entry["id"], role=role)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Reuse the user the RBAC middleware resolved, or resolve it from the header."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token, getattr(request.app.state, "auth_tokens", None))
    request.state.user = user
    return user


def role_required(*roles: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.is_authenticated:
            raise HTTPException(status_code=401, detail="Authentication required")
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(role_required(Role.ADMIN, Role.CALLCENTRE))]
AdminUser = Annotated[User, Depends(role_required(Role.ADMIN))]
