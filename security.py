import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import PyMongoError

from database import Database, get_db
from errors import Unauthenticated, Unauthorized
from schemas import CurrentUser
from settings import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def verify_password(plain_password, hashed_password):
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (TypeError, ValueError):
        return False


def get_password_hash(password):
    return pwd_context.hash(password)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(user: dict, settings: Settings, expires_delta: timedelta | None = None):
    """Sign {id, email, role} for a stored user; valid for ``token_expire_days`` by default."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.token_expire_days))
    to_encode = {
        "id": str(user.get("_id", user.get("id"))),
        "email": user["email"],
        "role": user.get("role") or "customer",
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Optional[dict]:
    """Return the token claims, or None for any bad, tampered or expired token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("id"):
        return None
    return payload


def user_view(user: dict) -> CurrentUser:
    email = user["email"]
    return CurrentUser(
        id=str(user["_id"]),
        email=email,
        full_name=user.get("full_name") or email.split("@")[0],
        phone=user.get("phone") or None,
        role=user.get("role") or "customer",
        avatar_url=user.get("avatar_url") or None,
        created_at=user.get("created_at"),
    )


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    if not token:
        raise Unauthenticated("No token provided")
    payload = decode_access_token(token, settings)
    if payload is None:
        raise Unauthenticated("Invalid or expired token")
    try:
        user = db.find_user(payload["id"])
    except PyMongoError as exc:
        logger.error("User lookup failed during authentication: %s", exc)
        raise Unauthenticated("Authentication failed")
    if user is None:
        raise Unauthenticated("User not found")
    return user_view(user)


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    if not token:
        return None
    payload = decode_access_token(token, settings)
    if payload is None:
        return None
    try:
        user = db.find_user(payload["id"])
    except PyMongoError as exc:
        logger.warning("Optional user lookup failed: %s", exc)
        return None
    return user_view(user) if user else None


def require_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if current.role != "admin":
        raise Unauthorized("Admin access required")
    return current
