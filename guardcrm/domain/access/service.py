"""Access service - role assignment and user administration"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import User
from ..audit.trail import record_event
from .permissions import ROLES, get_default_permissions, has_permission, merge_permissions

logger = logging.getLogger(__name__)


class AccessService:
    def __init__(self, db: Session):
        self.db = db

    def list_users(self, actor: User, role: Optional[str] = None) -> list[User]:
        query = self.db.query(User).filter(User.organization_id == actor.organization_id)
        if role:
            query = query.filter(User.role == role)
        return query.order_by(User.last_name, User.first_name).all()

    def get_effective_permissions(self, user: User) -> dict:
        return user.permissions or get_default_permissions(user.role)

    def check(self, user: User, permission_path: str) -> bool:
        return has_permission(user.role, user.permissions, permission_path)

    def assign_role(
        self,
        actor: User,
        user_id: int,
        role: str,
        permissions: Optional[dict] = None,
        reason: Optional[str] = None,
    ) -> User:
        """Change a user's role (and optional permission overrides) within the actor's tenant"""
        if actor.role != "admin":
            raise HTTPException(status_code=403, detail="Only administrators can assign roles")
        if role not in ROLES:
            raise HTTPException(status_code=400, detail=f"Invalid role: {role}")

        target = (
            self.db.query(User)
            .filter(User.id == user_id, User.organization_id == actor.organization_id)
            .first()
        )
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
        if target.id == actor.id and role != "admin":
            raise HTTPException(status_code=400, detail="Administrators cannot demote themselves")

        overrides = None
        if permissions:
            try:
                overrides = merge_permissions(get_default_permissions(role), permissions)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e

        previous = {"role": target.role, "permissions": target.permissions}
        target.role = role
        target.permissions = overrides

        record_event(
            self.db,
            action="role_change",
            entity_type="user",
            entity_id=target.id,
            organization_id=actor.organization_id,
            actor_id=actor.id,
            previous_state=previous,
            new_state={"role": role, "permissions": overrides},
            reason=reason,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(target)
        logger.info(f"🔐 {actor.email} changed role of {target.email}: {previous['role']} -> {role}")
        return target

    def set_active(self, actor: User, user_id: int, is_active: bool) -> User:
        if actor.role != "admin":
            raise HTTPException(status_code=403, detail="Only administrators can change user status")
        target = (
            self.db.query(User)
            .filter(User.id == user_id, User.organization_id == actor.organization_id)
            .first()
        )
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
        if target.id == actor.id:
            raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

        target.is_active = is_active
        record_event(
            self.db,
            action="user_activated" if is_active else "user_deactivated",
            entity_type="user",
            entity_id=target.id,
            organization_id=actor.organization_id,
            actor_id=actor.id,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(target)
        return target
