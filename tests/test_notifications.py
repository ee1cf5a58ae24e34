from datetime import datetime

import pytest
import pytz

from backoffice.models.models import Notification, UserNotificationPreference
from backoffice.services.notifications import (
    create_notification,
    is_quiet_hours,
    notify_org_admins,
    should_send_notification,
)


def _at(hour, minute=0, tz="UTC"):
    return pytz.timezone(tz).localize(datetime(2024, 6, 1, hour, minute))


@pytest.mark.parametrize(
    "quiet, now, expected",
    [
        (None, _at(23), False),
        ({"start": "22:00", "end": "07:00"}, _at(23), True),
        ({"start": "22:00", "end": "07:00"}, _at(6, 59), True),
        ({"start": "22:00", "end": "07:00"}, _at(12), False),
        ({"start": "12:00", "end": "14:00"}, _at(13), True),
        ({"start": "12:00", "end": "14:00", "timezone": "Asia/Tokyo"}, _at(13), False),
        ({"start": "25:00", "end": "07:00"}, _at(23), False),
        ({"start": "22:00", "end": "07:00", "timezone": "Mars/Olympus"}, _at(23), False),
    ],
)
def test_is_quiet_hours(quiet, now, expected):
    assert is_quiet_hours(quiet, now=now) is expected


def test_preferences_gate_channels(db, member):
    assert should_send_notification(db, member.id, "push") is True
    db.add(UserNotificationPreference(user_id=member.id, push=False, quiet_hours={"start": "00:00", "end": "23:59:59"}))
    db.commit()
    assert should_send_notification(db, member.id, "push") is False
    assert should_send_notification(db, member.id, "email") is False
    assert should_send_notification(db, member.id, "in_app") is True


def test_unknown_channel(db, member):
    with pytest.raises(ValueError):
        create_notification(db, member.id, "carrier_pigeon")


def test_notify_org_admins_skips_actor(db, org, admin, user_factory):
    second = user_factory("second@acme.com", roles=("admin",))
    user_factory("plain@acme.com")
    created = notify_org_admins(db, org.id, title="Hello", message="World", exclude_user_id=admin.id)
    assert [n.user_id for n in created] == [second.id]
    assert created[0].status == "sent"


def test_list_and_mark_read(client, db, org, admin, admin_headers):
    notify_org_admins(db, org.id, title="First", message="One", template_key="feedback_created")
    notify_org_admins(db, org.id, title="Second", message="Two")

    listing = client.get("/api/notifications", headers=admin_headers).json()
    assert listing["unreadCount"] == 2
    target = listing["data"][0]

    read = client.post(f"/api/notifications/{target['id']}/read", headers=admin_headers).json()["data"]
    assert read["read"] is True
    assert read["status"] == "read"

    unread = client.get("/api/notifications", params={"unreadOnly": True}, headers=admin_headers).json()
    assert unread["unreadCount"] == 1
    assert [n["id"] for n in unread["data"]] != [target["id"]]


def test_cannot_read_someone_elses_notification(client, db, org, admin, member_headers):
    notify_org_admins(db, org.id, title="Private", message="Admins only")
    n = db.query(Notification).one()
    resp = client.post(f"/api/notifications/{n.id}/read", headers=member_headers)
    assert resp.status_code == 404
