from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import User
from ..schemas.auth import LoginRequest, TokenResponse, MeResponse
from .security import verify_password, create_access_token, get_current_user


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access = create_access_token(
        str(user.id),
        roles=[r.name for r in user.roles],
        organization_id=str(user.organization_id) if user.organization_id else None,
    )
    user.last_login_at = datetime.utcnow()
    db.commit()
    return TokenResponse(access_token=access)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        email=user.email,
        full_name=user.full_name,
        organization_id=str(user.organization_id) if user.organization_id else None,
        display_currency=user.display_currency,
        roles=[r.name for r in user.roles],
    )
