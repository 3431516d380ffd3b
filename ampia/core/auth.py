"""
Authentication

Access tokens are issued by the AMPIA auth service; this API only verifies
them and exposes the caller as ``{"id": ..., **claims}``. Role checks go back
to the Users table so a demoted moderator loses access immediately.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from ampia.core.config import settings
from ampia.core.database import get_store
from ampia.core.errors import AuthenticationFailed, Forbidden, NotFound
from ampia.services.logger import logger

MODERATOR_ROLES = ("moderator", "admin")

# New hashes use pbkdf2_sha256; accounts from the auth service carry bcrypt
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    deprecated="auto",
)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash; an unusable hash never matches"""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def create_access_token(
    data: Dict[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """Create an access token in the shape the auth service issues."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=int(settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    )

    to_encode = {
        **data,
        "sub": str(data.get("id")),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "type": "access",
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """Decode a JWT, raising AuthenticationFailed with the client-facing message."""
    if not settings.SECRET_KEY:
        logger.error("SECRET_KEY is not configured, cannot verify tokens")
        raise AuthenticationFailed("Configuration serveur invalide", status_code=500)

    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_aud": False},
        )
    except ExpiredSignatureError:
        raise AuthenticationFailed("Token expiré", status_code=401)
    except JWTError:
        raise AuthenticationFailed("Token invalide", status_code=403)


async def get_current_user(request: Request) -> Dict[str, Any]:
    authorization = request.headers.get("authorization")
    if not authorization:
        raise AuthenticationFailed("Token manquant", status_code=401)

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise AuthenticationFailed("Format du token invalide", status_code=401)

    token = parts[1].replace(";", "").strip()
    payload = verify_token(token)

    user_id = payload.get("id") or payload.get("user_id") or payload.get("sub")
    if user_id is None:
        raise AuthenticationFailed("Token invalide", status_code=403)

    return {**payload, "id": user_id}


async def require_moderator(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Allow moderators and admins, loading the role from the Users table."""
    users = await asyncio.to_thread(
        get_store().select, "Users", {"id": current_user["id"]}
    )
    user = users[0] if users else None

    if not user:
        raise NotFound("Utilisateur non trouvé")

    role = user.get("role")
    if role not in MODERATOR_ROLES:
        raise Forbidden("Accès modérateur requis", currentRole=role or "unknown")

    return {**current_user, "role": role}
