"""Audit log browsing, integrity verification and CSV export"""

import csv
import json
import logging
from datetime import datetime
from io import StringIO
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...models import User
from ...models_audit import AuditLog
from .repository import AuditRepository
from .trail import verify_records

logger = logging.getLogger(__name__)


def serialize_log(log: AuditLog) -> dict:
    return {
        "id": log.id,
        "action": log.action,
        "entityType": log.entity_type,
        "entityId": log.entity_id,
        "actorId": log.actor_id,
        "previousState": log.previous_state,
        "newState": log.new_state,
        "reason": log.reason,
        "ipAddress": log.ip_address,
        "isSystemGenerated": log.is_system_generated,
        "createdAt": log.created_at,
    }


class AuditService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = AuditRepository()

    def list_logs(
        self,
        user: User,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        filters = {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor_id": actor_id,
            "date_from": date_from,
            "date_to": date_to,
        }
        logs = self.repo.get_logs(self.db, user.organization_id, limit=limit, offset=offset, **filters)
        return {
            "items": [serialize_log(log) for log in logs],
            "total": self.repo.count_logs(self.db, user.organization_id, **filters),
            "limit": limit,
            "offset": offset,
        }

    def verify_integrity(
        self, user: User, entity_type: Optional[str] = None, entity_id: Optional[int] = None
    ) -> dict:
        logs = self.repo.get_all_logs(self.db, user.organization_id, entity_type=entity_type, entity_id=entity_id)
        report = verify_records(logs)
        logger.info(
            f"🔐 Integrity check by user {user.id}: {report['verifiedRecords']}/{report['totalRecords']} verified"
        )
        return report

    def export_csv(
        self,
        user: User,
        entity_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> StreamingResponse:
        if date_from and date_to and date_from > date_to:
            raise HTTPException(status_code=400, detail="dateFrom must be before dateTo")

        logs = self.repo.get_all_logs(
            self.db, user.organization_id, entity_type=entity_type, date_from=date_from, date_to=date_to
        )

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(
            [
                "ID",
                "Timestamp",
                "Action",
                "Entity Type",
                "Entity ID",
                "Actor ID",
                "System Generated",
                "Reason",
                "Previous State",
                "New State",
                "IP Address",
            ]
        )
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.strftime("%Y-%m-%d %H:%M:%S") if log.created_at else "",
                    log.action,
                    log.entity_type,
                    log.entity_id if log.entity_id is not None else "",
                    log.actor_id if log.actor_id is not None else "",
                    "yes" if log.is_system_generated else "no",
                    log.reason or "",
                    json.dumps(log.previous_state) if log.previous_state is not None else "",
                    json.dumps(log.new_state) if log.new_state is not None else "",
                    log.ip_address or "",
                ]
            )

        output.seek(0)
        filename = f"audit_export_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
        logger.info(f"✅ Audit CSV export: {filename} ({len(logs)} records)")
        return StreamingResponse(
            iter([output.getvalue()]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename={filename}",
                "Cache-Control": "no-cache",
            },
        )
