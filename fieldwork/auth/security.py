import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.enums import Role
from ..models.models import Profile
from ..services.errors import Unauthorized


http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """The authenticated caller: who they are and which role they act in."""

    id: uuid.UUID
    role: Role
    name: str = ""


def create_access_token(user_id: str, role: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def caller_from_profile(profile: Profile) -> Caller:
    return Caller(id=profile.id, role=profile.role, name=profile.name)


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Caller:
    if creds is None:
        raise Unauthorized("Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthorized("Invalid subject")
    profile = db.query(Profile).filter(Profile.id == user_uuid).first()
    if profile is None or not profile.is_active or profile.is_deleted:
        raise Unauthorized("User not active")
    # The role always comes from the profile, never from the token claims
    return caller_from_profile(profile)
