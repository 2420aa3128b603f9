"""Notification service - in-app notifications, email delivery, preferences and digests"""

import logging
from collections import defaultdict
from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...email_service import EmailDeliveryError, send_digest_email, send_notification_email
from ...models import User
from ...models_notification import Notification, NotificationPreference
from ...services.realtime import hub, user_channel
from .schemas import PRIORITIES, PreferenceUpdate

logger = logging.getLogger(__name__)

BYPASS_PRIORITIES = ("urgent", "emergency")
DIGEST_INTERVALS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}
MAX_PAGE_SIZE = 100


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def is_quiet_hours(preference: Optional[NotificationPreference], now: datetime) -> bool:
    """Quiet window [start, end); a start later than end wraps past midnight"""
    if not preference or not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False
    start = _parse_hhmm(preference.quiet_hours_start)
    end = _parse_hhmm(preference.quiet_hours_end)
    current = now.time()
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def default_preference(user_id: int) -> NotificationPreference:
    return NotificationPreference(
        user_id=user_id,
        email_enabled=True,
        in_app_enabled=True,
        digest_frequency="none",
        categories={},
    )


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "category": n.category,
        "priority": n.priority,
        "title": n.title,
        "message": n.message,
        "entityType": n.entity_type,
        "entityId": n.entity_id,
        "deliveryChannels": n.delivery_channels or [],
        "isRead": n.is_read,
        "readAt": n.read_at,
        "acknowledgedAt": n.acknowledged_at,
        "createdAt": n.created_at,
    }


class NotificationService:
    """Creates and manages notifications for users of one tenant"""

    def __init__(self, db: Session):
        self.db = db

    def _preference(self, user_id: int) -> Optional[NotificationPreference]:
        return self.db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()

    # ========================================================================
    # CREATE / DELIVER
    # ========================================================================

    async def create(
        self,
        organization_id: int,
        recipient_id: int,
        title: str,
        message: str,
        category: str = "system",
        priority: str = "normal",
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        channels: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """
        Store a notification and deliver it. Returns None when the recipient
        disabled the category and the priority does not bypass preferences.
        """
        now = now or datetime.utcnow()
        channels = list(channels or ["in_app"])

        recipient = (
            self.db.query(User)
            .filter(User.id == recipient_id, User.organization_id == organization_id)
            .first()
        )
        if not recipient:
            raise HTTPException(status_code=404, detail="Recipient not found")

        preference = self._preference(recipient_id) or default_preference(recipient_id)
        bypass = priority in BYPASS_PRIORITIES
        if (preference.categories or {}).get(category) is False and not bypass:
            logger.info(f"🔕 Notification skipped: user {recipient_id} disabled category {category}")
            return None

        notification = Notification(
            organization_id=organization_id,
            recipient_id=recipient_id,
            category=category,
            priority=priority,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            delivery_channels=channels,
            email_sent=False,
            is_read=False,
            created_at=now,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)

        if "email" in channels and preference.email_enabled:
            if bypass or not is_quiet_hours(preference, now):
                await self._send_email(notification, recipient)
            elif preference.digest_frequency in ("daily", "weekly"):
                logger.info(
                    f"🌙 Quiet hours for user {recipient_id} - email deferred to {preference.digest_frequency} digest"
                )
            else:
                logger.info(f"🌙 Quiet hours for user {recipient_id} - email skipped, notification kept in-app")

        if preference.in_app_enabled or bypass:
            hub.publish(user_channel(recipient_id), "notification", serialize_notification(notification))

        return notification

    async def _send_email(self, notification: Notification, recipient: User) -> None:
        try:
            await send_notification_email(
                to=recipient.email,
                title=notification.title,
                message=notification.message,
                priority=notification.priority,
            )
            notification.email_sent = True
            self.db.commit()
        except EmailDeliveryError as e:
            logger.error(f"❌ Notification email to user {recipient.id} failed: {e}")

    async def notify_many(self, organization_id: int, recipient_ids: list[int], **kwargs) -> list[Notification]:
        created = []
        for recipient_id in dict.fromkeys(recipient_ids):
            try:
                notification = await self.create(organization_id, recipient_id, **kwargs)
            except HTTPException as e:
                logger.warning(f"⚠️ Skipping notification for user {recipient_id}: {e.detail}")
                continue
            if notification:
                created.append(notification)
        return created

    # ========================================================================
    # INBOX
    # ========================================================================

    def list_notifications(
        self,
        user: User,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        is_read: Optional[bool] = None,
        entity_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = self.db.query(Notification).filter(Notification.recipient_id == user.id)
        if category:
            query = query.filter(Notification.category == category)
        if priority:
            query = query.filter(Notification.priority == priority)
        if is_read is not None:
            query = query.filter(Notification.is_read == is_read)
        if entity_type:
            query = query.filter(Notification.entity_type == entity_type)
        if date_from:
            query = query.filter(Notification.created_at >= date_from)
        if date_to:
            query = query.filter(Notification.created_at <= date_to)

        limit = max(1, min(limit, MAX_PAGE_SIZE))
        return (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(max(0, offset))
            .limit(limit)
            .all()
        )

    def _get_owned(self, user: User, notification_id: int) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.recipient_id == user.id)
            .first()
        )
        if not notification:
            raise HTTPException(status_code=404, detail="Notification not found")
        return notification

    def mark_read(self, user: User, notification_id: int) -> Notification:
        notification = self._get_owned(user, notification_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            self.db.commit()
        return notification

    def mark_all_read(self, user: User) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.recipient_id == user.id, Notification.is_read == False)  # noqa: E712
            .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"✅ Marked {updated} notifications read for user {user.id}")
        return updated

    def acknowledge(self, user: User, notification_id: int) -> Notification:
        notification = self._get_owned(user, notification_id)
        now = datetime.utcnow()
        if not notification.acknowledged_at:
            notification.acknowledged_at = now
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = now
        self.db.commit()
        return notification

    def get_stats(self, user: User) -> dict:
        rows = (
            self.db.query(Notification.category, Notification.priority, Notification.is_read, func.count(Notification.id))
            .filter(Notification.recipient_id == user.id)
            .group_by(Notification.category, Notification.priority, Notification.is_read)
            .all()
        )
        by_category: dict[str, int] = defaultdict(int)
        by_priority: dict[str, int] = {p: 0 for p in PRIORITIES}
        total = unread = 0
        for category, priority, is_read, count in rows:
            total += count
            if not is_read:
                unread += count
            by_category[category] += count
            by_priority[priority] = by_priority.get(priority, 0) + count

        return {
            "total": total,
            "unread": unread,
            "urgent": by_priority.get("urgent", 0),
            "emergency": by_priority.get("emergency", 0),
            "byCategory": dict(by_category),
            "byPriority": by_priority,
        }

    # ========================================================================
    # PREFERENCES
    # ========================================================================

    def get_preferences(self, user: User) -> NotificationPreference:
        preference = self._preference(user.id)
        if not preference:
            preference = default_preference(user.id)
            self.db.add(preference)
            self.db.commit()
            self.db.refresh(preference)
        return preference

    def update_preferences(self, user: User, data: PreferenceUpdate) -> NotificationPreference:
        preference = self.get_preferences(user)
        fields = data.model_dump(exclude_unset=True)
        mapping = {
            "emailEnabled": "email_enabled",
            "inAppEnabled": "in_app_enabled",
            "digestFrequency": "digest_frequency",
            "quietHoursStart": "quiet_hours_start",
            "quietHoursEnd": "quiet_hours_end",
        }
        for key, column in mapping.items():
            if key in fields:
                setattr(preference, column, fields[key])
        if "categories" in fields and fields["categories"] is not None:
            preference.categories = {**(preference.categories or {}), **fields["categories"]}

        self.db.commit()
        self.db.refresh(preference)
        return preference

    # ========================================================================
    # DIGEST
    # ========================================================================

    async def send_digests(self, now: Optional[datetime] = None) -> dict:
        """Email unread, undigested notifications to users whose digest is due"""
        now = now or datetime.utcnow()
        results = {"sent": 0, "skipped": 0, "failed": 0}

        preferences = (
            self.db.query(NotificationPreference)
            .filter(NotificationPreference.digest_frequency.in_(list(DIGEST_INTERVALS)))
            .all()
        )
        for preference in preferences:
            interval = DIGEST_INTERVALS[preference.digest_frequency]
            if preference.last_digest_at and now - preference.last_digest_at < interval:
                results["skipped"] += 1
                continue

            user = self.db.query(User).filter(User.id == preference.user_id, User.is_active == True).first()  # noqa: E712
            if not user:
                continue

            pending = (
                self.db.query(Notification)
                .filter(
                    Notification.recipient_id == user.id,
                    Notification.is_read == False,  # noqa: E712
                    Notification.digested_at.is_(None),
                )
                .order_by(Notification.created_at.desc())
                .all()
            )
            if not pending:
                results["skipped"] += 1
                continue

            grouped: dict[str, list[str]] = defaultdict(list)
            for notification in pending:
                grouped[notification.category].append(notification.title)

            period = "day" if preference.digest_frequency == "daily" else "week"
            try:
                await send_digest_email(user.email, user.full_name, dict(grouped), period)
            except EmailDeliveryError as e:
                logger.error(f"❌ Digest email for user {user.id} failed: {e}")
                results["failed"] += 1
                continue

            for notification in pending:
                notification.digested_at = now
            preference.last_digest_at = now
            self.db.commit()
            results["sent"] += 1
            logger.info(f"📧 Digest with {len(pending)} notifications sent to user {user.id}")

        return results
