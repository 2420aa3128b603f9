"""
Calendar provider OAuth - Google Calendar and Microsoft Outlook connections.
Tokens are stored Fernet-encrypted and refreshed shortly before expiry.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ...config import (
    CALENDAR_OAUTH_REDIRECT_URI,
    GOOGLE_CALENDAR_CLIENT_ID,
    GOOGLE_CALENDAR_CLIENT_SECRET,
    MICROSOFT_CLIENT_ID,
    MICROSOFT_CLIENT_SECRET,
    MICROSOFT_TENANT,
    SECRET_KEY,
)
from ...models import User
from ...models_calendar import CalendarIntegration, OAuthState

logger = logging.getLogger(__name__)

STATE_TTL = timedelta(minutes=10)
REFRESH_MARGIN = timedelta(minutes=5)
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class OAuthError(Exception):
    """OAuth flow failure; `code` is the machine-readable reason"""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ProviderConfig:
    client_id: Optional[str]
    client_secret: Optional[str]
    scopes: tuple[str, ...]
    auth_url: str
    token_url: str
    user_info_url: str
    extra_auth_params: tuple[tuple[str, str], ...] = ()


PROVIDERS = {
    "google_calendar": ProviderConfig(
        client_id=GOOGLE_CALENDAR_CLIENT_ID,
        client_secret=GOOGLE_CALENDAR_CLIENT_SECRET,
        scopes=(
            "https://www.googleapis.com/auth/calendar.events",
            "https://www.googleapis.com/auth/calendar.readonly",
        ),
        auth_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        user_info_url="https://www.googleapis.com/oauth2/v2/userinfo",
        extra_auth_params=(("access_type", "offline"), ("prompt", "consent")),
    ),
    "microsoft_outlook": ProviderConfig(
        client_id=MICROSOFT_CLIENT_ID,
        client_secret=MICROSOFT_CLIENT_SECRET,
        scopes=(
            "https://graph.microsoft.com/Calendars.ReadWrite",
            "https://graph.microsoft.com/User.Read",
            "offline_access",
        ),
        auth_url=f"https://login.microsoftonline.com/{MICROSOFT_TENANT}/oauth2/v2.0/authorize",
        token_url=f"https://login.microsoftonline.com/{MICROSOFT_TENANT}/oauth2/v2.0/token",
        user_info_url="https://graph.microsoft.com/v1.0/me",
        extra_auth_params=(("response_mode", "query"),),
    ),
}


def get_provider(provider: str) -> ProviderConfig:
    config = PROVIDERS.get(provider)
    if config is None:
        raise OAuthError(f"Unsupported OAuth provider: {provider}", "UNSUPPORTED_PROVIDER")
    if not config.client_id or not config.client_secret:
        raise OAuthError(f"{provider} OAuth is not configured", "PROVIDER_NOT_CONFIGURED")
    return config


def _cipher() -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return _cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    try:
        return _cipher().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise OAuthError("Stored token could not be decrypted", "TOKEN_DECRYPTION_ERROR") from e


# ============================================================================
# PROVIDER HTTP CALLS
# ============================================================================


async def exchange_code(provider: str, code: str) -> dict:
    config = get_provider(provider)
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(
            config.token_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": CALENDAR_OAUTH_REDIRECT_URI,
                "grant_type": "authorization_code",
                "code": code,
            },
        )
    if response.status_code != 200:
        body = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
        logger.error(f"❌ Token exchange failed for {provider}: {response.status_code}")
        raise OAuthError(body.get("error_description", "Token exchange failed"), body.get("error", "TOKEN_EXCHANGE_ERROR"))
    return response.json()


async def fetch_user_info(provider: str, access_token: str) -> dict:
    config = get_provider(provider)
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.get(config.user_info_url, headers={"Authorization": f"Bearer {access_token}"})
    if response.status_code != 200:
        logger.error(f"❌ User info request failed for {provider}: {response.status_code}")
        raise OAuthError("Failed to get user information", "USER_INFO_ERROR")
    info = response.json()
    return {
        "id": info.get("id"),
        "email": info.get("email") or info.get("mail") or info.get("userPrincipalName"),
    }


async def refresh_access_token(provider: str, refresh_token: str) -> dict:
    config = get_provider(provider)
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(
            config.token_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
    if response.status_code != 200:
        logger.error(f"❌ Token refresh failed for {provider}: {response.status_code}")
        raise OAuthError("Token refresh failed", "TOKEN_REFRESH_ERROR")
    return response.json()


async def revoke_token(provider: str, token: str) -> None:
    if provider != "google_calendar":
        return
    async with httpx.AsyncClient(timeout=10.0) as client:
        await client.post(GOOGLE_REVOKE_URL, data={"token": token})


# ============================================================================
# SERVICE
# ============================================================================


class CalendarOAuthService:
    def __init__(self, db: Session):
        self.db = db

    def initiate(self, user: User, provider: str, return_url: Optional[str] = None) -> dict:
        config = get_provider(provider)
        state = secrets.token_urlsafe(32)
        self.db.add(
            OAuthState(
                state_token=state,
                user_id=user.id,
                provider=provider,
                return_url=return_url,
                nonce=secrets.token_hex(16),
                expires_at=datetime.utcnow() + STATE_TTL,
            )
        )
        self.db.commit()

        params = {
            "client_id": config.client_id,
            "redirect_uri": CALENDAR_OAUTH_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(config.scopes),
            "state": state,
        }
        params.update(dict(config.extra_auth_params))
        logger.info(f"🔐 OAuth flow started for user {user.id} with {provider}")
        return {"authUrl": f"{config.auth_url}?{urlencode(params)}", "state": state}

    def _consume_state(self, state: str) -> OAuthState:
        oauth_state = self.db.query(OAuthState).filter(OAuthState.state_token == state).first()
        if not oauth_state:
            raise OAuthError("Invalid OAuth state", "INVALID_OAUTH_STATE")
        if oauth_state.expires_at < datetime.utcnow():
            self.db.delete(oauth_state)
            self.db.commit()
            raise OAuthError("OAuth state expired", "OAUTH_STATE_EXPIRED")
        return oauth_state

    async def handle_callback(self, code: str, state: str) -> tuple[CalendarIntegration, Optional[str]]:
        """Returns the stored integration and the return URL captured at initiation"""
        oauth_state = self._consume_state(state)
        provider = oauth_state.provider
        return_url = oauth_state.return_url
        try:
            tokens = await exchange_code(provider, code)
            access_token = tokens["access_token"]
            user_info = await fetch_user_info(provider, access_token)
        except (OAuthError, KeyError, httpx.HTTPError) as e:
            self.db.delete(oauth_state)
            self.db.commit()
            if isinstance(e, OAuthError):
                raise
            raise OAuthError("Failed to process OAuth callback", "OAUTH_CALLBACK_ERROR") from e

        expires_at = datetime.utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        integration = (
            self.db.query(CalendarIntegration)
            .filter(
                CalendarIntegration.user_id == oauth_state.user_id,
                CalendarIntegration.provider == provider,
            )
            .first()
        )
        if integration is None:
            integration = CalendarIntegration(user_id=oauth_state.user_id, provider=provider)
            self.db.add(integration)

        integration.access_token = encrypt_token(access_token)
        if tokens.get("refresh_token"):
            integration.refresh_token = encrypt_token(tokens["refresh_token"])
        integration.token_expires_at = expires_at
        integration.provider_user_id = user_info.get("id")
        integration.provider_email = user_info.get("email")
        integration.is_active = True
        integration.sync_enabled = True
        integration.updated_at = datetime.utcnow()

        self.db.delete(oauth_state)
        self.db.commit()
        self.db.refresh(integration)
        logger.info(f"✅ {provider} connected for user {integration.user_id}")
        return integration, return_url

    async def get_valid_access_token(self, integration: CalendarIntegration) -> Optional[str]:
        """
        Decrypted access token, refreshed when it expires within five minutes.
        A failed refresh deactivates the integration and returns None.
        """
        if integration.token_expires_at > datetime.utcnow() + REFRESH_MARGIN:
            return decrypt_token(integration.access_token)

        if not integration.refresh_token:
            logger.warning(f"⚠️ Integration {integration.id} has no refresh token")
            integration.is_active = False
            self.db.commit()
            return None

        logger.info(f"🔄 Refreshing {integration.provider} token for user {integration.user_id}")
        try:
            tokens = await refresh_access_token(integration.provider, decrypt_token(integration.refresh_token))
            access_token = tokens["access_token"]
        except (OAuthError, KeyError, httpx.HTTPError) as e:
            logger.error(f"❌ Token refresh failed for integration {integration.id}: {e}")
            integration.is_active = False
            self.db.commit()
            return None

        integration.access_token = encrypt_token(access_token)
        if tokens.get("refresh_token"):
            integration.refresh_token = encrypt_token(tokens["refresh_token"])
        integration.token_expires_at = datetime.utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self.db.commit()
        return access_token

    def list_integrations(self, user: User) -> list[CalendarIntegration]:
        return (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.user_id == user.id)
            .order_by(CalendarIntegration.provider)
            .all()
        )

    async def disconnect(self, user: User, provider: str) -> bool:
        integration = (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.user_id == user.id, CalendarIntegration.provider == provider)
            .first()
        )
        if not integration:
            return False
        try:
            await revoke_token(provider, decrypt_token(integration.access_token))
        except (OAuthError, httpx.HTTPError) as e:
            logger.warning(f"⚠️ Token revocation failed for {provider}: {e}")
        self.db.delete(integration)
        self.db.commit()
        logger.info(f"🔌 {provider} disconnected for user {user.id}")
        return True

    def cleanup_expired_states(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        deleted = self.db.query(OAuthState).filter(OAuthState.expires_at < now).delete()
        self.db.commit()
        return deleted
