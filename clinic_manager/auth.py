"""Authentication helpers for session, password and reset-token management."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, Response, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeSerializer, URLSafeTimedSerializer
from passlib.context import CryptContext

from . import database
from .settings import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
settings = get_settings()
serializer = URLSafeSerializer(settings.secret_key, salt="clinic-auth")
reset_serializer = URLSafeTimedSerializer(settings.secret_key, salt="clinic-password-reset")
SESSION_COOKIE = "clinic_session"

AUTH_ERROR_MESSAGES = {
    "Invalid login credentials": "E-mail ou senha incorretos",
    "User already registered": "E-mail já cadastrado",
    "Password should be at least 6 characters": "A senha deve ter pelo menos 6 caracteres",
    "Invalid email": "E-mail inválido",
    "Email not confirmed": "E-mail não confirmado. Por favor, verifique sua caixa de entrada.",
    "Invalid or expired reset token": "Link de recuperação inválido ou expirado",
}
DEFAULT_AUTH_ERROR = "Ocorreu um erro. Tente novamente."


@dataclass(frozen=True)
class SessionContext:
    """The signed-in user, passed explicitly into every repository call."""

    user_id: str
    email: str


def translate_auth_error(message: Optional[str]) -> str:
    """Map an auth-layer error to the message shown to the user."""
    if not message:
        return DEFAULT_AUTH_ERROR
    return AUTH_ERROR_MESSAGES.get(message, message)


def _trim_password(password: str) -> str:
    if not isinstance(password, str):
        password = str(password)
    encoded = password.encode("utf-8")
    if len(encoded) <= 72:
        return password
    return encoded[:72].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    return pwd_context.hash(_trim_password(password))


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(_trim_password(password), password_hash)


def create_session_token(user_id: str) -> str:
    return serializer.dumps({"user_id": user_id})


def read_session_token(token: str) -> Optional[str]:
    try:
        data = serializer.loads(token)
    except BadSignature:
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("user_id")
    return str(user_id) if user_id else None


def create_reset_token(user: dict) -> str:
    # Embeds a slice of the current hash; the token stops matching once the
    # password changes.
    return reset_serializer.dumps({"user_id": user["id"], "hash": user["password_hash"][-12:]})


def read_reset_token(token: str) -> Optional[dict]:
    """Return the user a reset token was issued for, or None when it is unusable."""
    try:
        data = reset_serializer.loads(token, max_age=settings.password_reset_max_age)
    except (SignatureExpired, BadSignature):
        return None
    if not isinstance(data, dict):
        return None
    record = database.get_user(str(data.get("user_id")))
    if not record or record["password_hash"][-12:] != data.get("hash"):
        return None
    return record


def deliver_password_reset(user: dict, token: str) -> None:
    """Hand a reset token to the delivery channel (log only; no mail transport)."""
    base_url = (settings.frontend_url or settings.backend_url or "").rstrip("/")
    logger.info("Password reset requested for %s: %s/reset-password?token=%s", user["email"], base_url, token)


def set_login_cookie(response: Response, user_id: str) -> None:
    token = create_session_token(user_id)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=False,
        max_age=settings.session_max_age,
    )


def clear_login_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def session_from_token(token: Optional[str]) -> Optional[SessionContext]:
    if not token:
        return None
    user_id = read_session_token(token)
    if not user_id:
        return None
    record = database.get_user(user_id)
    if not record:
        return None
    return SessionContext(user_id=record["id"], email=record["email"])


def get_current_session(request: Request) -> Optional[SessionContext]:
    return session_from_token(request.cookies.get(SESSION_COOKIE))


def require_session(request: Request) -> SessionContext:
    session = get_current_session(request)
    if not session:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return session


def sanitize_user(record: dict) -> dict:
    return {"id": record["id"], "email": record["email"]}
