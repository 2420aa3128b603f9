"""
Tenant context helpers for row-level security.
"""

import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _supports_rls(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def set_rls_context(db: Session, organization_id: int, user_id: int) -> None:
    """
    Set the RLS context for a database session.

    PostgreSQL policies read app.current_org_id / app.current_user_id; other
    dialects rely on the organization_id filters applied by the repositories.

    Args:
        db: SQLAlchemy database session
        organization_id: Tenant of the authenticated user
        user_id: ID of the authenticated user
    """
    if not _supports_rls(db):
        return
    try:
        db.execute(
            text(
                "SELECT set_config('app.current_org_id', :org_id, false), "
                "set_config('app.current_user_id', :user_id, false)"
            ),
            {"org_id": str(organization_id), "user_id": str(user_id)},
        )
        logger.debug(f"RLS context set for org_id={organization_id} user_id={user_id}")
    except Exception as e:
        logger.error(f"Failed to set RLS context for org_id={organization_id}: {e}")
        raise


def clear_rls_context(db: Session) -> None:
    """
    Clear the RLS context for a database session.

    Args:
        db: SQLAlchemy database session
    """
    if not _supports_rls(db):
        return
    try:
        db.execute(
            text(
                "SELECT set_config('app.current_org_id', '', false), "
                "set_config('app.current_user_id', '', false)"
            )
        )
        logger.debug("RLS context cleared")
    except Exception as e:
        logger.error(f"Failed to clear RLS context: {e}")
