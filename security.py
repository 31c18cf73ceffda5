"""Password hashing, bearer tokens and the auth dependencies used by the routes."""
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

import config
from database import get_document_by_id
from errors import AuthError, ForbiddenError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_SALT = "auth-token"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.SECRET_KEY, salt=TOKEN_SALT)


def create_token(user_id: str) -> str:
    return _serializer().dumps({"id": user_id})


def decode_token(token: str) -> str:
    """Return the user id carried by a token, or raise AuthError."""
    try:
        data = _serializer().loads(token, max_age=config.TOKEN_MAX_AGE)
    except SignatureExpired:
        raise AuthError("Token has expired")
    except BadSignature:
        raise AuthError("Token is not valid")
    if not isinstance(data, dict) or not data.get("id"):
        raise AuthError("Token is not valid")
    return data["id"]


def public_user(user: dict) -> dict:
    """User document without credentials."""
    return {k: v for k, v in user.items() if k != "password_hash"}


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthError("No token, authorization denied")
    user_id = decode_token(credentials.credentials)
    user = get_document_by_id("user", user_id)
    if not user:
        raise AuthError("Token is not valid")
    if not user.get("is_active", True):
        raise ForbiddenError("Account is deactivated")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise ForbiddenError("Admin access required")
    return user
