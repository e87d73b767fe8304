from fastapi import Depends, Header, HTTPException, status
from jose import JWTError

from leadflow.core.security import decode_access_token
from leadflow.core.settings import settings
from leadflow.schemas.actor import Actor, Role
from leadflow.services.side_effects import SideEffects


def _jwt_secret() -> str:
    return settings.secret_key or settings.jwt_secret or "change-me"


def get_current_actor(authorization: str | None = Header(default=None)) -> Actor:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = decode_access_token(token, secret=_jwt_secret(), alg=settings.jwt_alg)
        sub = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        role = Role(payload.get("role"))
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Actor(id=str(sub), role=role, vendor_code=payload.get("vendor_code"))


def require_roles(*roles: Role):
    def _inner(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return actor

    return _inner


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != Role.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return actor


def get_side_effects() -> SideEffects:
    return SideEffects()
