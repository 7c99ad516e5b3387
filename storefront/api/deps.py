# storefront/api/deps.py
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.domain.errors import AuthError, ForbiddenError
from storefront.services.lock_service import LockService
from storefront.services.payment_gateway import GatewayConfig, PaymentGateway
from storefront.utils.settings import JWT_ALGORITHM, JWT_SECRET

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_token(token: str) -> CurrentUser:
    """Tokens are issued by the auth service: ``{"user": {"id": ..., "role": ...}}``."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthError("Not authorized, token failed")

    user = payload.get("user") or {}
    if not user.get("id"):
        raise AuthError("Not authorized, token failed")
    return CurrentUser(id=str(user["id"]), role=user.get("role", "customer"))


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise AuthError("Not authorized, no token")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError("Not authorized as an admin")
    return user


_lock_service: Optional[LockService] = None


def get_lock_service() -> LockService:
    global _lock_service
    if _lock_service is None:
        _lock_service = LockService()
    return _lock_service


def get_gateway(request: Request) -> PaymentGateway:
    config: GatewayConfig = request.app.state.gateway_config
    return PaymentGateway(config)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"
