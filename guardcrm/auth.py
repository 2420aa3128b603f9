import logging
from typing import Callable

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .domain.access.permissions import ROLES, has_permission, has_role_at_least
from .models import Organization, User
from .security_middleware import set_rls_context

logger = logging.getLogger(__name__)

security = HTTPBearer()


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase access token (HS256, signed with the project JWT secret).
    Checks signature, expiry and audience.
    """
    if not SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        payload = jose_jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token") from e

    logger.debug(f"✅ Token verified for user: {payload.get('email')}")
    return payload


def _provision_user(db: Session, auth_uid: str, claims: dict) -> User:
    """Create a user on first sight when the token carries a valid tenant claim"""
    app_metadata = claims.get("app_metadata") or {}
    organization_id = app_metadata.get("organization_id")
    role = app_metadata.get("role", "guard")
    email = claims.get("email")

    if not organization_id or not email:
        logger.warning(f"⚠️ Unknown user {auth_uid} without organization claim")
        raise HTTPException(status_code=403, detail="User is not a member of any organization")

    if role not in ROLES:
        raise HTTPException(status_code=403, detail="Invalid role claim")

    organization = db.query(Organization).filter(Organization.id == int(organization_id)).first()
    if not organization:
        raise HTTPException(status_code=403, detail="Organization not found")

    user_metadata = claims.get("user_metadata") or {}
    user = User(
        auth_uid=auth_uid,
        organization_id=organization.id,
        email=email.lower(),
        first_name=user_metadata.get("first_name"),
        last_name=user_metadata.get("last_name"),
        role=role,
    )
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
        logger.info(f"🆕 Provisioned user {user.email} in organization {organization.id} as {role}")
    except Exception as e:
        db.rollback()
        if "unique" in str(e).lower() or "duplicate key" in str(e).lower():
            raise HTTPException(
                status_code=409,
                detail="This email is already registered with another account.",
            ) from e
        raise
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from the auth provider token"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    user = user_from_token(db, credentials.credentials)

    # Set RLS context for this database session
    set_rls_context(db, user.organization_id, user.id)

    return user


def user_from_token(db: Session, token: str) -> User:
    """Resolve (and provision on first sight) the user behind a bearer token"""
    # Basic token format validation before processing
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    claims = verify_supabase_token(token)
    auth_uid = claims.get("sub")
    if not auth_uid:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = db.query(User).filter(User.auth_uid == auth_uid).first()
    if not user:
        user = _provision_user(db, auth_uid, claims)

    if not user.is_active:
        logger.warning(f"⚠️ Inactive user {user.email} attempted access")
        raise HTTPException(status_code=403, detail="Account is deactivated")

    return user


def require_permission(permission_path: str) -> Callable:
    """
    Create a dependency that requires a dotted permission, e.g. "leads.assign"

    Example usage:
        @router.post("/{lead_id}/assign")
        async def assign(user: User = Depends(require_permission("leads.assign"))):
            ...
    """

    async def permission_checker(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user.role, user.permissions, permission_path):
            logger.warning(f"⚠️ User {user.email} denied {permission_path}")
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: {permission_path} required",
            )
        return user

    return permission_checker


def require_role(minimum_role: str) -> Callable:
    """Create a dependency that requires a role at or above minimum_role in the hierarchy"""

    async def role_checker(user: User = Depends(get_current_user)) -> User:
        if not has_role_at_least(user.role, minimum_role):
            raise HTTPException(status_code=403, detail=f"{minimum_role.capitalize()} access required")
        return user

    return role_checker
