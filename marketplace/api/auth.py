from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketplace.core_settings import get_settings
from marketplace.domain.actor import Actor
from marketplace.domain.status import UserRole
from shared.core import set_request_context

bearer = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, role: str, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None


def get_actor(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Actor:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = decode_access_token(credentials.credentials)
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        actor = Actor(user_id=int(claims["sub"]), role=UserRole(claims.get("role", UserRole.CLIENT.value)))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Malformed token claims")
    set_request_context(user_id=str(actor.user_id))
    return actor


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor
