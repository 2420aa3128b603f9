"""Calendar router - provider OAuth connections and ICS subscription feeds"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...config import FRONTEND_URL
from ...database import get_db
from ...models import User
from .oauth import CalendarOAuthService, OAuthError
from .schemas import IntegrationResponse, OAuthInitiateRequest, SubscriptionCreate, SubscriptionUpdate
from .service import CalendarService, FeedError, serialize_integration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar", tags=["Calendar"])

FEED_HEADERS = {
    "Content-Disposition": 'attachment; filename="guardcrm-shifts.ics"',
    "Cache-Control": "public, max-age=3600",
    "X-Robots-Tag": "noindex, nofollow, nosnippet, noarchive",
}


def get_oauth_service(db: Session = Depends(get_db)) -> CalendarOAuthService:
    """Dependency injection for CalendarOAuthService"""
    return CalendarOAuthService(db)


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarService:
    """Dependency injection for CalendarService"""
    return CalendarService(db)


def _frontend_redirect(return_url: Optional[str], **params) -> RedirectResponse:
    # Only redirect back into our own frontend
    target = return_url if return_url and return_url.startswith(FRONTEND_URL) else f"{FRONTEND_URL}/settings/calendar"
    separator = "&" if "?" in target else "?"
    return RedirectResponse(url=f"{target}{separator}{urlencode(params)}", status_code=302)


# ============================================================================
# OAUTH
# ============================================================================


@router.post("/oauth/initiate")
async def initiate_oauth(
    data: OAuthInitiateRequest,
    current_user: User = Depends(get_current_user),
    service: CalendarOAuthService = Depends(get_oauth_service),
):
    try:
        return service.initiate(current_user, data.provider, data.returnUrl)
    except OAuthError as e:
        raise HTTPException(status_code=400, detail={"code": e.code, "message": str(e)}) from e


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: CalendarOAuthService = Depends(get_oauth_service),
):
    """Provider redirect target; always answers with a redirect to the frontend"""
    if error:
        logger.warning(f"⚠️ OAuth provider returned error: {error}")
        return _frontend_redirect(None, status="error", code=error)
    if not code or not state:
        return _frontend_redirect(None, status="error", code="MISSING_PARAMETERS")

    try:
        integration, return_url = await service.handle_callback(code, state)
    except OAuthError as e:
        logger.error(f"❌ OAuth callback failed: {e.code}")
        return _frontend_redirect(None, status="error", code=e.code)
    return _frontend_redirect(return_url, status="connected", provider=integration.provider)


@router.get("/integrations", response_model=list[IntegrationResponse])
async def list_integrations(
    current_user: User = Depends(get_current_user),
    service: CalendarOAuthService = Depends(get_oauth_service),
):
    return [serialize_integration(i) for i in service.list_integrations(current_user)]


@router.delete("/integrations/{provider}")
async def disconnect_integration(
    provider: str,
    current_user: User = Depends(get_current_user),
    service: CalendarOAuthService = Depends(get_oauth_service),
):
    if not await service.disconnect(current_user, provider):
        raise HTTPException(
            status_code=404, detail={"code": "INTEGRATION_NOT_FOUND", "message": "Integration not found"}
        )
    return {"message": f"{provider} disconnected"}


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.get("/subscriptions")
async def list_subscriptions(
    current_user: User = Depends(get_current_user),
    service: CalendarService = Depends(get_calendar_service),
):
    return service.list_subscriptions(current_user)


@router.post("/subscriptions", status_code=201)
async def create_subscription(
    data: SubscriptionCreate,
    current_user: User = Depends(get_current_user),
    service: CalendarService = Depends(get_calendar_service),
):
    return service.create_subscription(data, current_user)


@router.patch("/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: int,
    data: SubscriptionUpdate,
    current_user: User = Depends(get_current_user),
    service: CalendarService = Depends(get_calendar_service),
):
    return service.update_subscription(subscription_id, data, current_user)


@router.delete("/subscriptions/{subscription_id}")
async def revoke_subscription(
    subscription_id: int,
    current_user: User = Depends(get_current_user),
    service: CalendarService = Depends(get_calendar_service),
):
    return service.revoke_subscription(subscription_id, current_user)


# ============================================================================
# PUBLIC FEED
# ============================================================================


@router.get("/feed/{token}")
async def get_feed(token: str, service: CalendarService = Depends(get_calendar_service)):
    """Public iCalendar feed; the signed token in the URL is the credential"""
    token = token.removesuffix(".ics")
    try:
        body = service.get_feed(token)
    except FeedError as e:
        return PlainTextResponse(str(e), status_code=401)
    return Response(content=body, media_type="text/calendar; charset=utf-8", headers=FEED_HEADERS)
