from datetime import datetime, timedelta, timezone
import jwt
from fastapi import HTTPException, Request
from typing import Optional
from shared.core import set_request_context
from .core_settings import get_settings
from .domain.models import ACTOR_MAX_LENGTH

BEARER_PREFIX = "Bearer "

def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def token_actor(request: Request) -> Optional[str]:
    """Subject of the bearer token, None when the request carries no token.

    A token that is present but does not verify is rejected outright rather
    than treated as anonymous.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    subject = str(token_data["sub"])
    if len(subject) > ACTOR_MAX_LENGTH:
        raise HTTPException(status_code=401, detail="Token subject too long")
    return subject

def resolve_actor(token_subject: Optional[str], requested: Optional[str] = None) -> str:
    """Token subject wins over a client-supplied actor, which wins over the default.

    The resolved actor is also put on the logging context of the request.
    """
    actor = token_subject or requested or get_settings().DEFAULT_ACTOR
    set_request_context(actor=actor)
    return actor
