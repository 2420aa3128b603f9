"""Tamper-evident audit trail: every record carries an HMAC over its canonical form"""

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...config import SECRET_KEY
from ...models_audit import AuditLog

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def canonical_payload(
    organization_id: Optional[int],
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    previous_state: Any,
    new_state: Any,
    reason: Optional[str],
    created_at: datetime,
) -> str:
    return json.dumps(
        {
            "organization_id": organization_id,
            "actor_id": actor_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "previous_state": previous_state,
            "new_state": new_state,
            "reason": reason,
            "created_at": created_at.isoformat(),
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def sign_payload(payload: str) -> str:
    return hmac.new(SECRET_KEY.encode(), payload.encode(), hashlib.sha256).hexdigest()


def compute_signature(log: AuditLog) -> str:
    return sign_payload(
        canonical_payload(
            log.organization_id,
            log.actor_id,
            log.action,
            log.entity_type,
            log.entity_id,
            log.previous_state,
            log.new_state,
            log.reason,
            log.created_at,
        )
    )


def record_event(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    previous_state: Any = None,
    new_state: Any = None,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    is_system_generated: bool = False,
    commit: bool = True,
) -> AuditLog:
    """Write a signed audit record. With commit=False the caller's transaction owns it."""
    log = AuditLog(
        organization_id=organization_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_state=_json_safe(previous_state),
        new_state=_json_safe(new_state),
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
        is_system_generated=is_system_generated,
        created_at=datetime.utcnow(),
    )
    log.signature = compute_signature(log)
    db.add(log)
    if commit:
        db.commit()
        db.refresh(log)
    logger.debug(f"📝 Audit {action} on {entity_type}:{entity_id} by {actor_id or 'system'}")
    return log


def verify_records(logs: list[AuditLog]) -> dict:
    """Recompute signatures and report records whose stored signature no longer matches"""
    suspicious = []
    for log in logs:
        if not hmac.compare_digest(compute_signature(log), log.signature or ""):
            suspicious.append(
                {
                    "id": log.id,
                    "action": log.action,
                    "createdAt": log.created_at.isoformat() if log.created_at else None,
                }
            )

    total = len(logs)
    integrity_score = 100.0 if total == 0 else round((total - len(suspicious)) / total * 100, 2)
    if suspicious:
        logger.warning(f"⚠️ {len(suspicious)} audit records failed integrity verification")
    return {
        "totalRecords": total,
        "verifiedRecords": total - len(suspicious),
        "integrityScore": integrity_score,
        "suspiciousRecords": suspicious,
    }
