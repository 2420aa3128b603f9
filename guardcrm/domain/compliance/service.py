"""
Compliance reporting - certification status, shift coverage, audit activity and
hiring decisions for a reporting period, plus the daily certification monitor.
"""

import csv
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from io import StringIO
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...email_service import EmailDeliveryError, send_certification_expiry_email
from ...models import User
from ...models_hiring import GuardApplication, StageHistory
from ...models_shift import GuardCertification, Shift, ShiftUrgencyAlert
from ..audit.repository import AuditRepository
from ..notifications.service import NotificationService
from ..shifts.repository import ShiftRepository

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 30
REMINDER_INTERVAL = timedelta(days=7)
WORKED_STATUSES = ("in_progress", "completed", "issue_logged", "archived")
DECISION_STAGES = ("approved", "rejected")


def certification_status(certification: GuardCertification, now: datetime) -> str:
    if certification.expires_at is None:
        return "valid"
    if certification.expires_at < now:
        return "expired"
    if certification.expires_at <= now + timedelta(days=EXPIRY_WARNING_DAYS):
        return "expiring"
    return "valid"


def _days_until(expires_at: Optional[datetime], now: datetime) -> Optional[int]:
    if expires_at is None:
        return None
    return (expires_at - now).days


class ComplianceService:
    def __init__(self, db: Session):
        self.db = db
        self.shift_repo = ShiftRepository()
        self.audit_repo = AuditRepository()

    # ========================================================================
    # REPORT
    # ========================================================================

    def _certification_rows(self, organization_id: int, now: datetime) -> list[dict]:
        rows = []
        for cert in self.shift_repo.list_certifications(self.db, organization_id):
            rows.append(
                {
                    "certificationId": cert.id,
                    "guardId": cert.guard_id,
                    "guardName": cert.guard.full_name if cert.guard else None,
                    "certificationType": cert.certification_type,
                    "certificateNumber": cert.certificate_number,
                    "expiresAt": cert.expires_at,
                    "daysUntilExpiry": _days_until(cert.expires_at, now),
                    "status": certification_status(cert, now),
                }
            )
        return rows

    def _shifts_worked(self, organization_id: int, period_start: datetime, period_end: datetime) -> list[dict]:
        shifts = (
            self.db.query(Shift)
            .filter(
                Shift.organization_id == organization_id,
                Shift.assigned_guard_id.isnot(None),
                Shift.status.in_(WORKED_STATUSES),
                Shift.start_time >= period_start,
                Shift.start_time <= period_end,
            )
            .all()
        )
        per_guard = defaultdict(lambda: {"shifts": 0, "hours": 0.0, "issues": 0})
        for shift in shifts:
            entry = per_guard[shift.assigned_guard_id]
            entry["shifts"] += 1
            entry["hours"] += (shift.end_time - shift.start_time).total_seconds() / 3600
            if shift.status == "issue_logged":
                entry["issues"] += 1

        guards = {}
        if per_guard:
            guards = {g.id: g for g in self.db.query(User).filter(User.id.in_(list(per_guard))).all()}
        return [
            {
                "guardId": guard_id,
                "guardName": guards[guard_id].full_name if guard_id in guards else None,
                "shiftsWorked": entry["shifts"],
                "hoursWorked": round(entry["hours"], 2),
                "issuesLogged": entry["issues"],
            }
            for guard_id, entry in sorted(per_guard.items())
        ]

    def _certification_gaps(self, organization_id: int, period_start: datetime, period_end: datetime) -> list[dict]:
        alerts = (
            self.db.query(ShiftUrgencyAlert)
            .join(Shift, Shift.id == ShiftUrgencyAlert.shift_id)
            .filter(
                Shift.organization_id == organization_id,
                ShiftUrgencyAlert.alert_type == "certification_gap",
                ShiftUrgencyAlert.created_at >= period_start,
                ShiftUrgencyAlert.created_at <= period_end,
            )
            .order_by(ShiftUrgencyAlert.created_at)
            .all()
        )
        return [
            {
                "alertId": a.id,
                "shiftId": a.shift_id,
                "shiftTitle": a.shift.title if a.shift else None,
                "status": a.alert_status,
                "reason": a.reason,
                "createdAt": a.created_at,
            }
            for a in alerts
        ]

    def _hiring_decisions(self, organization_id: int, period_start: datetime, period_end: datetime) -> dict:
        rows = (
            self.db.query(StageHistory.to_stage, func.count(StageHistory.id))
            .join(GuardApplication, GuardApplication.id == StageHistory.application_id)
            .filter(
                GuardApplication.organization_id == organization_id,
                StageHistory.to_stage.in_(DECISION_STAGES),
                StageHistory.changed_at >= period_start,
                StageHistory.changed_at <= period_end,
            )
            .group_by(StageHistory.to_stage)
            .all()
        )
        counts = {stage: 0 for stage in DECISION_STAGES}
        counts.update({stage: count for stage, count in rows})
        total = sum(counts.values())
        return {
            **counts,
            "total": total,
            "approvalRate": round(counts["approved"] / total * 100, 2) if total else 0.0,
        }

    def generate_report(
        self, user: User, period_start: datetime, period_end: datetime, now: Optional[datetime] = None
    ) -> dict:
        if period_start > period_end:
            raise HTTPException(status_code=400, detail="periodStart must be before periodEnd")
        now = now or datetime.utcnow()
        org_id = user.organization_id

        certifications = self._certification_rows(org_id, now)
        summary = {"valid": 0, "expiring": 0, "expired": 0}
        for row in certifications:
            summary[row["status"]] += 1

        report = {
            "period": {"start": period_start, "end": period_end},
            "generatedAt": now,
            "certifications": {"summary": summary, "items": certifications},
            "shiftsWorked": self._shifts_worked(org_id, period_start, period_end),
            "certificationGaps": self._certification_gaps(org_id, period_start, period_end),
            "auditActivity": self.audit_repo.count_by_action(self.db, org_id, period_start, period_end),
            "hiringDecisions": self._hiring_decisions(org_id, period_start, period_end),
        }
        logger.info(f"📊 Compliance report generated for org {org_id} by user {user.id}")
        return report

    def export_certifications_csv(self, user: User, now: Optional[datetime] = None) -> StreamingResponse:
        now = now or datetime.utcnow()
        rows = self._certification_rows(user.organization_id, now)

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(
            ["Guard ID", "Guard Name", "Certification", "Certificate Number", "Expires At", "Days Left", "Status"]
        )
        for row in rows:
            writer.writerow(
                [
                    row["guardId"],
                    row["guardName"] or "",
                    row["certificationType"],
                    row["certificateNumber"] or "",
                    row["expiresAt"].strftime("%Y-%m-%d") if row["expiresAt"] else "",
                    row["daysUntilExpiry"] if row["daysUntilExpiry"] is not None else "",
                    row["status"],
                ]
            )

        output.seek(0)
        filename = f"certifications_{now.strftime('%Y%m%d_%H%M%S')}.csv"
        logger.info(f"✅ Certification CSV export: {filename} ({len(rows)} rows)")
        return StreamingResponse(
            iter([output.getvalue()]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename={filename}",
                "Cache-Control": "no-cache",
            },
        )

    # ========================================================================
    # MONITORING
    # ========================================================================

    def _due_reminders(self, now: datetime) -> list[GuardCertification]:
        return (
            self.db.query(GuardCertification)
            .join(User, User.id == GuardCertification.guard_id)
            .filter(
                User.is_active.is_(True),
                GuardCertification.expires_at.isnot(None),
                GuardCertification.expires_at >= now,
                GuardCertification.expires_at <= now + timedelta(days=EXPIRY_WARNING_DAYS),
            )
            .filter(
                (GuardCertification.last_reminder_at.is_(None))
                | (GuardCertification.last_reminder_at <= now - REMINDER_INTERVAL)
            )
            .order_by(GuardCertification.expires_at)
            .all()
        )

    async def monitor_certifications(self, now: Optional[datetime] = None) -> dict:
        """Remind guards and their managers about certifications expiring within 30 days"""
        now = now or datetime.utcnow()
        notifications = NotificationService(self.db)
        reminded = emails_failed = 0

        for cert in self._due_reminders(now):
            guard = cert.guard
            days_left = _days_until(cert.expires_at, now)
            recipients = [guard.id]
            if guard.manager_id:
                recipients.append(guard.manager_id)

            await notifications.notify_many(
                guard.organization_id,
                recipients,
                title=f"{cert.certification_type} certification expiring",
                message=(
                    f"{guard.full_name}'s {cert.certification_type} certification expires in "
                    f"{days_left} days ({cert.expires_at.date().isoformat()})."
                ),
                category="compliance",
                priority="urgent" if days_left <= 7 else "high",
                entity_type="guard_certification",
                entity_id=cert.id,
                now=now,
            )
            try:
                await send_certification_expiry_email(
                    to=guard.email,
                    guard_name=guard.full_name,
                    certification_type=cert.certification_type,
                    expires_at=cert.expires_at,
                )
            except EmailDeliveryError as e:
                emails_failed += 1
                logger.error(f"❌ Certification reminder email for cert {cert.id} failed: {e}")

            cert.last_reminder_at = now
            self.db.commit()
            reminded += 1

        if reminded:
            logger.info(f"📧 Certification monitor sent {reminded} reminders ({emails_failed} emails failed)")
        return {"reminded": reminded, "emailsFailed": emails_failed}
