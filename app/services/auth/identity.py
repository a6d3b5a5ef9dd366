"""
Viewer identity from a signed session cookie.
Uses itsdangerous for tamper-proof tokens; is_admin is re-read from the database on
every request so revoking admin takes effect immediately.
"""
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User


@dataclass(frozen=True)
class Identity:
    """What the entitlement core needs to know about the viewer, whatever the login method."""

    user_id: str
    is_admin: bool
    email: str | None = None


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt="storefront-session")


def issue_session_token(user_id: str) -> str:
    return _serializer().dumps({"uid": user_id})


def read_session_token(token: str | None) -> str | None:
    """User id from a valid, unexpired token; None otherwise."""
    if not token:
        return None
    try:
        data = _serializer().loads(token, max_age=settings.session_ttl)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict):
        return None
    return data.get("uid")


def optional_identity(request: Request, db: Session = Depends(get_db)) -> Identity | None:
    user_id = read_session_token(request.cookies.get(settings.session_cookie_name))
    if not user_id:
        return None
    user = db.get(User, user_id)
    if user is None:
        return None
    return Identity(user_id=user.id, is_admin=bool(user.is_admin), email=user.email)


def require_identity(identity: Identity | None = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity
