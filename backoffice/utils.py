import uuid
from datetime import datetime, date, timezone
from typing import Any, Optional

from fastapi import HTTPException


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def sid(value: Any) -> Optional[str]:
    return str(value) if value else None


def parse_uuid(raw: Any, label: str = "id", *, not_found: Optional[str] = None) -> uuid.UUID:
    """Parse an identifier; malformed path ids read as missing records."""
    try:
        return uuid.UUID(str(raw))
    except (ValueError, TypeError):
        if not_found:
            raise HTTPException(status_code=404, detail=f"{not_found} not found")
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(raw: Any, label: str = "date") -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return naive_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)
    try:
        # Support both date-only and ISO datetime strings
        text = str(raw).replace("Z", "+00:00")
        if len(text) == 10:
            return datetime.fromisoformat(text + "T00:00:00")
        parsed = datetime.fromisoformat(text)
        return naive_utc(parsed)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} format") from exc


def user_brief(user) -> Optional[dict]:
    if user is None:
        return None
    return {"id": str(user.id), "fullName": user.full_name, "email": user.email}
