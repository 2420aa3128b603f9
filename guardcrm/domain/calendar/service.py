"""
Calendar subscription service - signed ICS feed URLs over the shift schedule.

A feed token is an itsdangerous signature over the subscription id and owner.
Revoking the subscription (is_active=False) invalidates every URL issued for it.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SITE_URL
from ...models import User
from ...models_calendar import CalendarIntegration, CalendarSubscription
from ...models_shift import Shift
from ...security_utils import generate_timed_token, verify_timed_token
from ...utils.sanitization import sanitize_text
from ..access.permissions import has_role_at_least
from .ics import CalendarEvent, build_calendar
from .schemas import SubscriptionCreate, SubscriptionUpdate

logger = logging.getLogger(__name__)

FEED_SALT = "calendar-feed"
FEED_LOOKBACK = timedelta(days=7)
FEED_HORIZON = timedelta(days=90)

ICS_STATUS = {
    "unassigned": "TENTATIVE",
    "assigned": "TENTATIVE",
    "confirmed": "CONFIRMED",
    "in_progress": "CONFIRMED",
    "completed": "CONFIRMED",
    "issue_logged": "CONFIRMED",
    "archived": "CANCELLED",
}


class FeedError(Exception):
    """Feed token could not be resolved to an active subscription"""


def serialize_integration(integration: CalendarIntegration) -> dict:
    return {
        "id": integration.id,
        "provider": integration.provider,
        "providerEmail": integration.provider_email,
        "isActive": integration.is_active,
        "syncEnabled": integration.sync_enabled,
        "tokenExpiresAt": integration.token_expires_at,
        "lastSyncAt": integration.last_sync_at,
    }


def feed_url(token: str) -> str:
    return f"{SITE_URL}/api/v1/calendar/feed/{token}.ics"


def shift_to_event(shift: Shift, include_client_info: bool) -> CalendarEvent:
    details = [f"Status: {shift.status.replace('_', ' ')}"]
    if shift.special_requirements:
        details.append(f"Requirements: {shift.special_requirements}")
    if include_client_info and shift.client_name:
        details.insert(0, f"Client: {shift.client_name}")

    location = None
    if include_client_info:
        location = ", ".join(p for p in (shift.site_name, shift.site_address) if p) or None

    return CalendarEvent(
        uid=f"shift-{shift.id}@guardcrm",
        start=shift.start_time,
        end=shift.end_time,
        summary=shift.title,
        description="\n".join(details),
        location=location,
        status=ICS_STATUS.get(shift.status, "CONFIRMED"),
        last_modified=shift.updated_at,
    )


class CalendarService:
    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # SUBSCRIPTIONS
    # ========================================================================

    def create_subscription(self, data: SubscriptionCreate, user: User) -> dict:
        subscription = CalendarSubscription(
            user_id=user.id,
            name=sanitize_text(data.name, 255),
            include_client_info=data.includeClientInfo and has_role_at_least(user.role, "manager"),
            is_active=True,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"📅 Calendar subscription {subscription.id} created for user {user.id}")
        return self._subscription_view(subscription)

    def create_feed_token(self, subscription: CalendarSubscription) -> str:
        return generate_timed_token({"sid": subscription.id, "uid": subscription.user_id}, salt=FEED_SALT)

    def _subscription_view(self, subscription: CalendarSubscription) -> dict:
        token = self.create_feed_token(subscription)
        return {
            "id": subscription.id,
            "name": subscription.name,
            "includeClientInfo": subscription.include_client_info,
            "isActive": subscription.is_active,
            "lastAccessedAt": subscription.last_accessed_at,
            "createdAt": subscription.created_at,
            "feedUrl": feed_url(token),
        }

    def _get_subscription(self, subscription_id: int, user: User) -> CalendarSubscription:
        subscription = (
            self.db.query(CalendarSubscription)
            .filter(CalendarSubscription.id == subscription_id, CalendarSubscription.user_id == user.id)
            .first()
        )
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return subscription

    def list_subscriptions(self, user: User) -> list[dict]:
        subscriptions = (
            self.db.query(CalendarSubscription)
            .filter(CalendarSubscription.user_id == user.id, CalendarSubscription.is_active.is_(True))
            .order_by(CalendarSubscription.id)
            .all()
        )
        return [self._subscription_view(s) for s in subscriptions]

    def update_subscription(self, subscription_id: int, data: SubscriptionUpdate, user: User) -> dict:
        subscription = self._get_subscription(subscription_id, user)
        if data.name is not None:
            subscription.name = sanitize_text(data.name, 255)
        if data.includeClientInfo is not None:
            subscription.include_client_info = data.includeClientInfo and has_role_at_least(user.role, "manager")
        self.db.commit()
        self.db.refresh(subscription)
        return self._subscription_view(subscription)

    def revoke_subscription(self, subscription_id: int, user: User) -> dict:
        subscription = self._get_subscription(subscription_id, user)
        subscription.is_active = False
        self.db.commit()
        logger.info(f"🗑️ Calendar subscription {subscription.id} revoked")
        return {"message": "Subscription revoked"}

    # ========================================================================
    # FEED
    # ========================================================================

    def resolve_feed_token(self, token: str) -> CalendarSubscription:
        data = verify_timed_token(token, max_age=None, salt=FEED_SALT)
        if not data or "sid" not in data:
            raise FeedError("Invalid calendar feed token")

        subscription = (
            self.db.query(CalendarSubscription)
            .filter(
                CalendarSubscription.id == data["sid"],
                CalendarSubscription.user_id == data.get("uid"),
                CalendarSubscription.is_active.is_(True),
            )
            .first()
        )
        if not subscription or not subscription.user or not subscription.user.is_active:
            raise FeedError("Calendar subscription not found or revoked")
        return subscription

    def visible_shifts(self, user: User, now: datetime) -> list[Shift]:
        """Admins and managers see the whole tenant schedule; guards see their own shifts"""
        query = self.db.query(Shift).filter(
            Shift.organization_id == user.organization_id,
            Shift.start_time >= now - FEED_LOOKBACK,
            Shift.start_time <= now + FEED_HORIZON,
        )
        if not has_role_at_least(user.role, "manager"):
            query = query.filter(Shift.assigned_guard_id == user.id)
        return query.order_by(Shift.start_time).all()

    def get_feed(self, token: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.utcnow()
        subscription = self.resolve_feed_token(token)
        user = subscription.user

        include_client_info = subscription.include_client_info and has_role_at_least(user.role, "manager")
        events = [shift_to_event(s, include_client_info) for s in self.visible_shifts(user, now)]

        subscription.last_accessed_at = now
        self.db.commit()
        logger.debug(f"📅 Feed for subscription {subscription.id} served {len(events)} events")
        return build_calendar(events, subscription.name, now=now)
