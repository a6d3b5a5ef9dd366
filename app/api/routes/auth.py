"""
Storefront account routes (signed-cookie sessions).
Register and login require a solved captcha; login is rate limited per client IP.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_captcha_verifier, get_login_rate_limiter, get_notifier
from app.captcha.verifier import CaptchaVerifier
from app.core.config import settings
from app.db.session import get_db
from app.schemas.auth import LoginRequest, RegisterRequest, UserOut
from app.services.audit.service import AuditService
from app.services.auth.identity import Identity, issue_session_token, require_identity
from app.services.auth.login_rate_limit import LoginRateLimiter, get_client_ip
from app.services.notifier import Notifier, notify_safely
from app.services.users.service import EmailAlreadyRegistered, UserService

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, user_id: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=issue_session_token(user_id),
        max_age=settings.session_ttl,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
    )


def _require_captcha(verifier: CaptchaVerifier, challenge_id: str) -> None:
    if not verifier.redeem_clearance(challenge_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Captcha verification required")


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    verifier: CaptchaVerifier = Depends(get_captcha_verifier),
    notifier: Notifier = Depends(get_notifier),
):
    _require_captcha(verifier, body.captcha_challenge_id)
    try:
        user = UserService(db).register(body.email, body.password, body.first_name, body.last_name)
    except EmailAlreadyRegistered:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    AuditService(db).log("user", user.id, "register", "user", user.id, {"is_admin": user.is_admin})
    notify_safely(notifier, "welcome", user.email, {"user_id": user.id, "first_name": user.first_name})
    _set_session_cookie(response, user.id)
    return UserOut.from_user(user)


@router.post("/login", response_model=UserOut)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    verifier: CaptchaVerifier = Depends(get_captcha_verifier),
    limiter: LoginRateLimiter = Depends(get_login_rate_limiter),
):
    client_ip = get_client_ip(request)
    if not limiter.check(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Try again later.",
        )
    _require_captcha(verifier, body.captcha_challenge_id)

    user = UserService(db).authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    limiter.reset(client_ip)
    AuditService(db).log("user", user.id, "login", "user", user.id, {"ip": client_ip})
    _set_session_cookie(response, user.id)
    return UserOut.from_user(user)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(settings.session_cookie_name)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserOut)
def me(identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    user = UserService(db).get(identity.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return UserOut.from_user(user)
