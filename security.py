"""Password hashing and bearer tokens."""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from errors import AuthError

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "techstore_dev_secret_change_me_in_production")
JWT_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=24)
BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes
_MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        return bcrypt.checkpw(_encode(password), stored.encode("ascii"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "id": user["id"],
        "email": user["email"],
        "role": user["role"],
        "iat": now,
        "exp": now + TOKEN_TTL,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise AuthError("Token inválido o expirado", status_code=403)
    return {"id": claims["id"], "email": claims["email"], "role": claims["role"]}
