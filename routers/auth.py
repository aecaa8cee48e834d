import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from pydantic import ValidationError
from sqlmodel import Session, select

import config
import mailer
from db import SessionDep
from models import User, utcnow
from schemas import LoginData, MagicLinkRequest, UserCreate, first_error
from validation import email_in_domain, validate_email

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(config.SECRET_KEY)
MAGIC_LINK_SALT = "magic-link"

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

oauth = OAuth()
if config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
    oauth.register(
        name="google",
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile", "prompt": "select_account"},
    )
    logger.info("Google sign-in enabled")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int) -> str:
    return serializer.dumps({"user_id": user_id})


def verify_session_token(token: str, max_age_seconds: int = config.SESSION_MAX_AGE):
    """
    Returns {'user_id': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def role_for(user: User) -> str:
    return "admin" if user.is_admin else "student"


def _session_user(session: Session, session_token: Optional[str]) -> Optional[User]:
    if session_token is None:
        return None
    data = verify_session_token(session_token)
    if not data:
        return None
    return session.get(User, data.get("user_id"))


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE),
) -> dict:
    """
    Reads the session cookie, verifies the token,
    looks up the user, and returns {"user": User, "role": str}.
    Raises 401 if not logged in / invalid, 403 if the account is suspended.
    """
    if session_token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    user = _session_user(session, session_token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    if user.is_suspended:
        raise HTTPException(status_code=403, detail="Your account has been suspended.")

    return {"user": user, "role": role_for(user)}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def get_optional_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE),
) -> Optional[dict]:
    """
    Like get_current_user_and_role, but returns None instead of raising.
    Used by pages that render for anonymous visitors too.
    """
    user = _session_user(session, session_token)
    if user is None or user.is_suspended:
        return None
    return {"user": user, "role": role_for(user)}


OptionalUserRoleDep = Annotated[Optional[dict], Depends(get_optional_user_and_role)]


def require_admin(current: CurrentUserRoleDep) -> dict:
    if current["role"] != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return current


AdminDep = Annotated[dict, Depends(require_admin)]


async def _read_payload(request: Request) -> dict:
    """Body as a dict, from JSON (API) or form-data (HTML forms)."""
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _wants_json(request: Request) -> bool:
    return request.headers.get("content-type", "").startswith("application/json")


def _check_domain(email: str) -> None:
    message = validate_email(email)
    if message:
        raise HTTPException(status_code=400, detail=message)
    if not email_in_domain(email, config.ALLOWED_EMAIL_DOMAIN):
        raise HTTPException(
            status_code=400,
            detail=f"Please use your student email (@{config.ALLOWED_EMAIL_DOMAIN})",
        )


def _find_user(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email.lower())).first()


def _new_user(email: str, **fields) -> User:
    email = email.lower()
    return User(email=email, is_admin=email in config.ADMIN_EMAILS, **fields)


def _ensure_not_suspended(user: User) -> None:
    if user.is_suspended:
        logger.warning("Suspended user %s tried to sign in", user.email)
        raise HTTPException(status_code=403, detail="Your account has been suspended.")


def _set_session_cookie(response: Response, user: User) -> Response:
    response.set_cookie(
        key=config.SESSION_COOKIE,
        value=create_session_token(user.id),
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=config.SESSION_MAX_AGE,
    )
    return response


def _sign_in(session: Session, user: User, response: Response) -> Response:
    user.last_sign_in_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return _set_session_cookie(response, user)


def _landing_url(user: User) -> str:
    return "/" if user.is_onboarded else "/onboarding"


def _get_or_create_user(session: Session, email: str, full_name: Optional[str] = None) -> User:
    user = _find_user(session, email)
    if user is None:
        user = _new_user(email, full_name=full_name)
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("Created account %s on first sign-in", user.email)
    return user


@router.post("/register")
async def register(request: Request, session: SessionDep):
    """
    Register a new student account with a hashed password.
    Accepts either JSON (API) or form-data (HTML form).
    """
    payload = await _read_payload(request)
    try:
        user_in = UserCreate(**payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))

    _check_domain(user_in.email)

    if _find_user(session, user_in.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = _new_user(
        user_in.email,
        password_hash=hash_password(user_in.password),
        full_name=user_in.full_name,
        section=user_in.section,
        course=user_in.course,
        intake_month=user_in.intake_month,
        phone=user_in.phone,
        campus_id=user_in.campus_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)

    if user.id is None:
        raise HTTPException(status_code=500, detail="User was not created successfully")

    logger.info("Registered %s", user.email)
    if _wants_json(request):
        resp = JSONResponse(
            {"message": "Registration successful", "role": role_for(user), "id": user.id},
            status_code=201,
        )
    else:
        resp = RedirectResponse(url=_landing_url(user), status_code=303)
    return _sign_in(session, user, resp)


@router.post("/login")
async def login(request: Request, session: SessionDep):
    """
    Log in with email + password and set a signed session cookie.
    Accepts either JSON (API) or form-data (HTML form).
    """
    payload = await _read_payload(request)
    try:
        data = LoginData(**payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))

    user = _find_user(session, data.email)
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid email or password")
    if user.password_hash is None:
        raise HTTPException(
            status_code=400,
            detail="This account has no password. Use the magic link to sign in.",
        )
    if not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    _ensure_not_suspended(user)

    if _wants_json(request):
        resp = JSONResponse({"message": "Login successful", "role": role_for(user)})
    else:
        resp = RedirectResponse(url=_landing_url(user), status_code=303)
    return _sign_in(session, user, resp)


@router.post("/auth/magic-link", status_code=202)
async def request_magic_link(request: Request, session: SessionDep):
    """Email a one-time sign-in link. The account is created when the link is used."""
    payload = await _read_payload(request)
    try:
        data = MagicLinkRequest(**payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))

    _check_domain(data.email)
    user = _find_user(session, data.email)
    if user is not None:
        _ensure_not_suspended(user)

    token = serializer.dumps(
        {"email": data.email.lower(), "issued_at": utcnow().isoformat()},
        salt=MAGIC_LINK_SALT,
    )
    link = f"{config.PUBLIC_BASE_URL}/auth/callback?token={token}"
    mailer.send_magic_link(data.email, link)
    logger.info("Magic link issued for %s", data.email)
    return {"message": "Check your email for the sign-in link."}


@router.get("/auth/callback")
def magic_link_callback(token: str, session: SessionDep):
    try:
        data = serializer.loads(token, salt=MAGIC_LINK_SALT, max_age=config.MAGIC_LINK_MAX_AGE)
    except SignatureExpired:
        raise HTTPException(status_code=400, detail="This sign-in link has expired.")
    except BadSignature:
        raise HTTPException(status_code=400, detail="Invalid sign-in link.")

    issued_at = datetime.fromisoformat(data["issued_at"])
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    user = _get_or_create_user(session, data["email"])
    if user.last_sign_in_at is not None and user.last_sign_in_at > issued_at:
        raise HTTPException(status_code=400, detail="This sign-in link has already been used.")
    _ensure_not_suspended(user)

    return _sign_in(session, user, RedirectResponse(url=_landing_url(user), status_code=303))


def _google_client():
    client = oauth.create_client("google")
    if client is None:
        raise HTTPException(status_code=404, detail="Google sign-in is not configured")
    return client


@router.get("/auth/google")
async def google_login(request: Request):
    client = _google_client()
    redirect_uri = request.url_for("google_callback")
    return await client.authorize_redirect(request, str(redirect_uri))


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request, session: SessionDep):
    client = _google_client()
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("Google sign-in failed: %s", exc)
        raise HTTPException(status_code=400, detail=exc.description or str(exc))

    userinfo = token.get("userinfo") or {}
    email = (userinfo.get("email") or "").lower()
    if not email:
        raise HTTPException(status_code=400, detail="Google did not return an email address")
    _check_domain(email)

    user = _get_or_create_user(session, email, full_name=userinfo.get("name"))
    _ensure_not_suspended(user)
    return _sign_in(session, user, RedirectResponse(url=_landing_url(user), status_code=303))


@router.post("/logout")
def logout():
    """
    Clear the session cookie and redirect to home.
    """
    response = RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(config.SESSION_COOKIE)
    return response


@router.get("/me")
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user + role.
    """
    user = current["user"]
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": current["role"],
        "is_admin": user.is_admin,
        "is_onboarded": user.is_onboarded,
    }
