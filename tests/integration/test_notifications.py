"""
Integration tests for the notification inbox, preferences, quiet hours and digests.
"""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from guardcrm.domain.notifications.service import NotificationService
from guardcrm.models_notification import Notification, NotificationPreference
from guardcrm.services.realtime import hub, user_channel

LATE_EVENING = datetime(2024, 6, 1, 23, 0)


def notify(db, recipient, **kwargs):
    kwargs.setdefault("title", "Shift updated")
    kwargs.setdefault("message", "Your Saturday shift moved to 08:00")
    return asyncio.run(NotificationService(db).create(recipient.organization_id, recipient.id, **kwargs))


def set_preference(db, user, **values):
    preference = NotificationPreference(user_id=user.id, email_enabled=True, in_app_enabled=True, categories={})
    for key, value in values.items():
        setattr(preference, key, value)
    db.add(preference)
    db.commit()
    return preference


@pytest.mark.integration
class TestInbox:
    def test_manager_sends_notification(self, client, manager, guard, headers_for):
        response = client.post(
            "/api/v1/notifications",
            json={
                "recipientId": guard.id,
                "category": "schedule",
                "priority": "high",
                "title": "Schedule change",
                "message": "Please check your updated roster",
            },
            headers=headers_for(manager),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["isRead"] is False
        assert body["deliveryChannels"] == ["in_app"]
        assert hub.recent_events(user_channel(guard.id))[-1]["payload"]["id"] == body["id"]

    def test_guard_cannot_send(self, client, guard, manager, headers_for):
        response = client.post(
            "/api/v1/notifications",
            json={"recipientId": manager.id, "title": "Hi", "message": "Hello"},
            headers=headers_for(guard),
        )

        assert response.status_code == 403

    def test_unknown_recipient(self, client, manager, headers_for):
        response = client.post(
            "/api/v1/notifications",
            json={"recipientId": 9999, "title": "Hi", "message": "Hello"},
            headers=headers_for(manager),
        )

        assert response.status_code == 404

    def test_list_only_own_with_filters(self, client, db, guard, manager, headers_for):
        notify(db, guard, category="schedule")
        notify(db, guard, category="compliance", priority="urgent")
        notify(db, manager, category="schedule")

        everything = client.get("/api/v1/notifications", headers=headers_for(guard)).json()
        compliance = client.get(
            "/api/v1/notifications", params={"category": "compliance"}, headers=headers_for(guard)
        ).json()

        assert len(everything) == 2
        assert [n["priority"] for n in compliance] == ["urgent"]

    def test_mark_read_and_acknowledge(self, client, db, guard, headers_for):
        first = notify(db, guard)
        second = notify(db, guard, priority="urgent")

        read = client.post(f"/api/v1/notifications/{first.id}/read", headers=headers_for(guard)).json()
        acknowledged = client.post(
            f"/api/v1/notifications/{second.id}/acknowledge", headers=headers_for(guard)
        ).json()
        unread = client.get("/api/v1/notifications", params={"isRead": "false"}, headers=headers_for(guard)).json()

        assert read["isRead"] is True
        assert read["readAt"] is not None
        assert acknowledged["acknowledgedAt"] is not None
        assert acknowledged["isRead"] is True
        assert unread == []

    def test_cannot_touch_someone_elses_notification(self, client, db, guard, manager, headers_for):
        notification = notify(db, manager)

        response = client.post(f"/api/v1/notifications/{notification.id}/read", headers=headers_for(guard))

        assert response.status_code == 404

    def test_mark_all_read_and_stats(self, client, db, guard, headers_for):
        notify(db, guard, category="schedule")
        notify(db, guard, category="schedule", priority="urgent")
        notify(db, guard, category="emergency", priority="emergency")

        before = client.get("/api/v1/notifications/stats", headers=headers_for(guard)).json()
        updated = client.post("/api/v1/notifications/read-all", headers=headers_for(guard)).json()
        after = client.get("/api/v1/notifications/stats", headers=headers_for(guard)).json()

        assert before["total"] == 3
        assert before["unread"] == 3
        assert before["urgent"] == 1
        assert before["emergency"] == 1
        assert before["byCategory"] == {"schedule": 2, "emergency": 1}
        assert before["byPriority"]["low"] == 0
        assert updated == {"updated": 3}
        assert after["unread"] == 0


@pytest.mark.integration
class TestPreferences:
    def test_defaults_created_on_first_read(self, client, guard, headers_for):
        response = client.get("/api/v1/notifications/preferences", headers=headers_for(guard))

        assert response.json() == {
            "emailEnabled": True,
            "inAppEnabled": True,
            "digestFrequency": "none",
            "quietHoursStart": None,
            "quietHoursEnd": None,
            "categories": {},
        }

    def test_update_merges_categories(self, client, guard, headers_for):
        client.put(
            "/api/v1/notifications/preferences",
            json={"categories": {"leads": False}},
            headers=headers_for(guard),
        )

        response = client.put(
            "/api/v1/notifications/preferences",
            json={"categories": {"schedule": True}, "quietHoursStart": "22:00", "quietHoursEnd": "06:00"},
            headers=headers_for(guard),
        )

        body = response.json()
        assert body["categories"] == {"leads": False, "schedule": True}
        assert body["quietHoursStart"] == "22:00"

    def test_invalid_quiet_hours_and_category(self, client, guard, headers_for):
        bad_time = client.put(
            "/api/v1/notifications/preferences", json={"quietHoursStart": "25:00"}, headers=headers_for(guard)
        )
        bad_category = client.put(
            "/api/v1/notifications/preferences", json={"categories": {"billing": True}}, headers=headers_for(guard)
        )

        assert bad_time.status_code == 422
        assert bad_category.status_code == 422

    def test_disabled_category_is_skipped(self, client, db, guard, manager, headers_for):
        set_preference(db, guard, categories={"schedule": False})

        response = client.post(
            "/api/v1/notifications",
            json={"recipientId": guard.id, "category": "schedule", "title": "Roster", "message": "Updated"},
            headers=headers_for(manager),
        )

        assert response.status_code == 409

    def test_emergency_bypasses_disabled_category(self, db, guard):
        set_preference(db, guard, categories={"emergency": False}, in_app_enabled=False)

        notification = notify(db, guard, category="emergency", priority="emergency")

        assert notification is not None
        assert hub.recent_events(user_channel(guard.id))[-1]["type"] == "notification"

    def test_in_app_disabled_stores_but_does_not_push(self, db, guard):
        set_preference(db, guard, in_app_enabled=False)

        notification = notify(db, guard)

        assert notification.id is not None
        assert hub.recent_events(user_channel(guard.id)) == []


@pytest.mark.integration
class TestEmailDelivery:
    def test_email_channel_sends(self, db, guard, sent_emails):
        notification = notify(db, guard, channels=["in_app", "email"])

        assert notification.email_sent is True
        assert sent_emails[0]["to"] == guard.email
        assert sent_emails[0]["subject"] == "Shift updated"

    def test_quiet_hours_defer_email(self, db, guard, sent_emails):
        set_preference(db, guard, quiet_hours_start="22:00", quiet_hours_end="06:00")

        notification = notify(db, guard, channels=["email"], now=LATE_EVENING)

        assert sent_emails == []
        assert notification.email_sent is False

    def test_quiet_hours_log_names_the_digest_only_when_one_is_set(self, db, guard, manager, caplog):
        set_preference(db, guard, quiet_hours_start="22:00", quiet_hours_end="06:00", digest_frequency="none")
        set_preference(db, manager, quiet_hours_start="22:00", quiet_hours_end="06:00", digest_frequency="weekly")

        with caplog.at_level(logging.INFO, logger="guardcrm.domain.notifications.service"):
            notify(db, guard, channels=["email"], now=LATE_EVENING)
            notify(db, manager, channels=["email"], now=LATE_EVENING)

        quiet = [r.getMessage() for r in caplog.records if "Quiet hours" in r.getMessage()]
        assert "email skipped, notification kept in-app" in quiet[0]
        assert "digest" not in quiet[0]
        assert "deferred to weekly digest" in quiet[1]

    def test_urgent_ignores_quiet_hours(self, db, guard, sent_emails):
        set_preference(db, guard, quiet_hours_start="22:00", quiet_hours_end="06:00")

        notify(db, guard, channels=["email"], priority="urgent", now=LATE_EVENING)

        assert sent_emails[0]["subject"] == "[URGENT] Shift updated"

    def test_email_disabled(self, db, guard, sent_emails):
        set_preference(db, guard, email_enabled=False)

        notify(db, guard, channels=["email"])

        assert sent_emails == []

    def test_failed_email_keeps_notification(self, db, guard):
        notification = notify(db, guard, channels=["email"])

        assert notification.id is not None
        assert notification.email_sent is False


@pytest.mark.integration
class TestDigests:
    def test_daily_digest_groups_unread(self, db, guard, sent_emails):
        preference = set_preference(db, guard, digest_frequency="daily")
        notify(db, guard, category="schedule", title="Roster published")
        notify(db, guard, category="compliance", title="CPR expiring")
        read = notify(db, guard, category="schedule", title="Already seen")
        read.is_read = True
        db.commit()
        now = datetime.utcnow() + timedelta(minutes=1)

        results = asyncio.run(NotificationService(db).send_digests(now))

        assert results == {"sent": 1, "skipped": 0, "failed": 0}
        assert sent_emails[0]["subject"] == "Your GuardCRM day digest"
        assert "Roster published" in sent_emails[0]["html"]
        assert "Already seen" not in sent_emails[0]["html"]
        db.refresh(preference)
        assert preference.last_digest_at == now
        digested = db.query(Notification).filter(Notification.digested_at.isnot(None)).count()
        assert digested == 2

    def test_digest_not_repeated_within_interval(self, db, guard, sent_emails):
        set_preference(db, guard, digest_frequency="weekly")
        notify(db, guard)
        now = datetime.utcnow() + timedelta(minutes=1)
        service = NotificationService(db)
        asyncio.run(service.send_digests(now))
        notify(db, guard, title="Another update")

        results = asyncio.run(service.send_digests(now + timedelta(days=3)))
        later = asyncio.run(service.send_digests(now + timedelta(days=7)))

        assert results["skipped"] == 1
        assert later["sent"] == 1
        assert len(sent_emails) == 2
        assert "Another update" in sent_emails[1]["html"]

    def test_nothing_pending_is_skipped(self, db, guard, sent_emails):
        set_preference(db, guard, digest_frequency="daily")

        results = asyncio.run(NotificationService(db).send_digests())

        assert results == {"sent": 0, "skipped": 1, "failed": 0}
        assert sent_emails == []

    def test_users_without_digest_are_ignored(self, db, guard, sent_emails):
        notify(db, guard)

        results = asyncio.run(NotificationService(db).send_digests())

        assert results == {"sent": 0, "skipped": 0, "failed": 0}
