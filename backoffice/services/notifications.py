"""
Notification service for in-app, push and email records.
Respects user preferences and quiet hours.
"""
import uuid
from datetime import datetime, time
from typing import Optional, Dict, List

import pytz
import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from ..models.models import Notification, UserNotificationPreference, User, Role
from ..config import settings


logger = structlog.get_logger(__name__)

CHANNELS = {"in_app", "push", "email"}
ADMIN_ROLE_NAMES = ("admin", "super-admin")


def is_quiet_hours(quiet_hours: Optional[Dict], timezone_str: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """
    Check if the current time is within the user's quiet hours.

    Args:
        quiet_hours: {start: "HH:MM", end: "HH:MM", timezone: "..."}
        timezone_str: Fallback timezone when the preference carries none
        now: Override the clock (aware datetime)

    Returns:
        True if within quiet hours
    """
    if not quiet_hours or not quiet_hours.get("start") or not quiet_hours.get("end"):
        return False
    try:
        tz = pytz.timezone(quiet_hours.get("timezone") or timezone_str or settings.tz_default)
        start_time = time.fromisoformat(quiet_hours["start"])
        end_time = time.fromisoformat(quiet_hours["end"])
    except (pytz.UnknownTimeZoneError, ValueError):
        logger.warning("invalid_quiet_hours", quiet_hours=quiet_hours)
        return False
    current_time = (now.astimezone(tz) if now else datetime.now(tz)).time()

    # Quiet hours may span midnight
    if start_time <= end_time:
        return start_time <= current_time <= end_time
    return current_time >= start_time or current_time <= end_time


def should_send_notification(db: Session, user_id: uuid.UUID, channel: str) -> bool:
    """
    Check if a notification should be created based on global switches,
    user channel preferences and quiet hours. In-app records ignore quiet hours.
    """
    if channel == "push" and not settings.enable_push:
        return False
    if channel == "email" and not settings.enable_email:
        return False

    user_pref = db.query(UserNotificationPreference).filter(
        UserNotificationPreference.user_id == user_id
    ).first()
    if not user_pref:
        return True
    if not getattr(user_pref, channel, True):
        return False
    if channel != "in_app" and is_quiet_hours(user_pref.quiet_hours):
        return False
    return True


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    channel: str,
    title: Optional[str] = None,
    message: Optional[str] = None,
    template_key: Optional[str] = None,
    payload_json: Optional[Dict] = None,
    organization_id: Optional[uuid.UUID] = None,
) -> Optional[Notification]:
    """
    Create a notification record. Only creates if user preferences allow it.

    Returns:
        Notification object if created, None if skipped
    """
    if channel not in CHANNELS:
        raise ValueError(f"Unknown notification channel: {channel}")
    if not should_send_notification(db, user_id, channel):
        return None

    notification = Notification(
        user_id=user_id,
        organization_id=organization_id,
        channel=channel,
        title=title,
        message=message,
        template_key=template_key,
        payload_json=jsonable_encoder(payload_json) if payload_json else None,
        status="sent" if channel == "in_app" else "pending",
        sent_at=datetime.utcnow() if channel == "in_app" else None,
    )
    db.add(notification)
    return notification


def org_admins(db: Session, organization_id: uuid.UUID) -> List[User]:
    return (
        db.query(User)
        .join(User.roles)
        .filter(
            User.organization_id == organization_id,
            User.is_active.is_(True),
            Role.name.in_(ADMIN_ROLE_NAMES),
        )
        .distinct()
        .all()
    )


def notify_org_admins(
    db: Session,
    organization_id: uuid.UUID,
    title: str,
    message: str,
    template_key: Optional[str] = None,
    payload_json: Optional[Dict] = None,
    exclude_user_id: Optional[uuid.UUID] = None,
) -> List[Notification]:
    """
    Send an in-app notification to every admin of an organization.

    Delivery problems never fail the calling request: they are logged and the
    notifications already created are kept.

    Args:
        db: Database session
        organization_id: Tenant whose admins are notified
        title: Short headline
        message: Body text
        template_key: Template identifier (feedback_created|survey_response|...)
        payload_json: Extra data for the client
        exclude_user_id: Skip this user (usually the actor)

    Returns:
        The created notifications
    """
    created: List[Notification] = []
    for admin in org_admins(db, organization_id):
        if exclude_user_id and admin.id == exclude_user_id:
            continue
        notification = create_notification(
            db,
            admin.id,
            "in_app",
            title=title,
            message=message,
            template_key=template_key,
            payload_json=payload_json,
            organization_id=organization_id,
        )
        if notification:
            created.append(notification)
    db.commit()
    logger.info("admins_notified", organization_id=str(organization_id), template_key=template_key, count=len(created))
    return created
