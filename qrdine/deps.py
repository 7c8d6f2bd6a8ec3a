from dataclasses import dataclass

from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from qrdine.errors import AuthenticationError, AuthorizationError
from qrdine.events.bus import EventBus
from qrdine.models.core import StaffRole
from qrdine.services.payment_gateway import PaymentGateway
from qrdine.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    user_id: str
    restaurant_id: str
    role: StaffRole


def resolve_caller(token: str | None) -> Caller:
    """Resolve an opaque bearer credential to restaurant id and role."""
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        data = decode_token(token)
        return Caller(user_id=data["sub"], restaurant_id=data["rid"], role=StaffRole(data["role"]))
    except (jwt.PyJWTError, KeyError, ValueError):
        raise AuthenticationError("Invalid token")


def require_auth(
    creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    access_token: str | None = Query(default=None),
) -> Caller:
    # EventSource clients cannot set headers, so streams pass ?access_token=
    return resolve_caller(creds.credentials if creds else access_token)


def require_role(*roles: StaffRole):
    def _dep(caller: Caller = Depends(require_auth)) -> Caller:
        if caller.role not in roles:
            raise AuthorizationError(f"Role {caller.role.value} may not perform this action")
        return caller
    return _dep


require_admin = require_role(StaffRole.ADMIN)


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway
