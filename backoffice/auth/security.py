import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..utils import parse_uuid


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, roles: Optional[List[str]] = None, organization_id: Optional[str] = None) -> str:
    return _create_token(
        user_id,
        settings.jwt_ttl_seconds,
        extra={"roles": roles or [], "org": organization_id},
    )


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
):
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    user_id_raw = payload.get("sub")
    try:
        user_uuid = uuid.UUID(str(user_id_raw))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def role_names(user: User) -> set:
    return {(r.name or "").lower() for r in user.roles}


def require_roles(*required_roles: str):
    """Require at least one of the given roles. super-admin always passes."""
    def _dep(user: User = Depends(get_current_user)):
        names = role_names(user)
        if "super-admin" in names:
            return user
        if not names & {r.lower() for r in required_roles}:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def resolve_org_id(user: User, requested: Optional[str] = None) -> uuid.UUID:
    """
    Return the organization a request operates on.

    Callers may name an organization explicitly (query or body
    ``organizationId``); only super-admins may reach outside their own.
    """
    if requested:
        try:
            requested_uuid = uuid.UUID(str(requested))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid organizationId")
        if requested_uuid != user.organization_id and "super-admin" not in role_names(user):
            raise HTTPException(status_code=403, detail="Forbidden")
        return requested_uuid
    if user.organization_id is None:
        raise HTTPException(status_code=400, detail="User is not attached to an organization")
    return user.organization_id


def get_org_user(db: Session, raw: str, org_id: uuid.UUID, label: str = "userId", name: str = "User", *, strict: bool = True) -> User:
    """Load a user referenced in a payload; users of other organizations read as not found."""
    user_id = parse_uuid(raw, label) if strict else parse_uuid(raw, label, not_found=name)
    u = db.query(User).filter(User.id == user_id, User.organization_id == org_id).first()
    if not u:
        raise HTTPException(status_code=404, detail=f"{name} not found")
    return u
