import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ISSUER = "tryon-fulfilment"
DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_token(user_id: int, role: str = "", ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
    """Signed bearer token whose subject is ``user_id``."""
    issued = int(time.time())
    claims = {
        "sub": str(int(user_id)),
        "iss": ISSUER,
        "iat": issued,
        "exp": issued + max(1, int(ttl_seconds)),
    }
    if role:
        # Informational only; authorisation reads the role from the users table.
        claims["role"] = str(role).strip().lower()
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(
            token,
            _secret(),
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"require": ["sub", "exp", "iss"]},
        )
    except jwt.PyJWTError as e:
        logger.info("jwt_rejected err=%s", type(e).__name__)
        return None


def get_bearer_token(auth_header: str) -> Optional[str]:
    scheme, _, token = (auth_header or "").strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def user_id_from_token(token: Optional[str]) -> Optional[int]:
    payload = decode_token(token) if token else None
    if not payload:
        return None
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
