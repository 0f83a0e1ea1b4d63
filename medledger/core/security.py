from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt

from medledger.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


class TokenValidationError(ValueError):
    pass


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes of the utf-8 encoding.
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(user_id: str, *, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": user_id,
        "type": ACCESS_TOKEN_TYPE,
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if not payload.get("sub"):
        raise TokenValidationError("Invalid token subject")
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenValidationError("Invalid token type")
    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")
    return payload
