"""Shift service - shift board workflow, guard assignment, bulk actions and urgent alerts"""

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import User
from ...models_shift import GuardCertification, Shift, ShiftUrgencyAlert, ShiftWorkflowHistory
from ...services.realtime import board_channel, hub
from ...utils.sanitization import sanitize_text
from ..access.permissions import has_permission
from ..audit.trail import record_event
from ..hiring.stages import TransitionError
from ..notifications.service import NotificationService
from .alerts import (
    MONITOR_WINDOW_HOURS,
    evaluate_shift,
    missing_certifications,
    next_priority,
    resolved_types,
    should_escalate,
)
from .repository import ShiftRepository
from .schemas import (
    CertificationCreate,
    CertificationUpdate,
    ShiftBoardFilters,
    ShiftBulkActionRequest,
    ShiftCreate,
    ShiftUpdate,
)
from .workflow import WORKFLOW_COLUMNS, apply_transition, validate_transition

logger = logging.getLogger(__name__)

BOARD = "shifts"

# A status holding more than this share of all board shifts is reported as a bottleneck
BOTTLENECK_SHARE = 0.2


def serialize_shift(shift: Shift) -> dict:
    return {
        "id": shift.id,
        "title": shift.title,
        "clientName": shift.client_name,
        "siteName": shift.site_name,
        "siteAddress": shift.site_address,
        "startTime": shift.start_time,
        "endTime": shift.end_time,
        "status": shift.status,
        "priority": shift.priority,
        "assignedGuardId": shift.assigned_guard_id,
        "confirmedAt": shift.confirmed_at,
        "requiredCertifications": shift.required_certifications or [],
        "specialRequirements": shift.special_requirements,
        "contractId": shift.contract_id,
        "createdAt": shift.created_at,
        "updatedAt": shift.updated_at,
    }


def serialize_history(entry: ShiftWorkflowHistory) -> dict:
    return {
        "id": entry.id,
        "shiftId": entry.shift_id,
        "previousStatus": entry.previous_status,
        "newStatus": entry.new_status,
        "transitionReason": entry.transition_reason,
        "changedBy": entry.changed_by,
        "transitionMethod": entry.transition_method,
        "bulkOperationId": entry.bulk_operation_id,
        "changedAt": entry.changed_at,
    }


def serialize_alert(alert: ShiftUrgencyAlert) -> dict:
    return {
        "id": alert.id,
        "shiftId": alert.shift_id,
        "alertType": alert.alert_type,
        "alertPriority": alert.alert_priority,
        "alertStatus": alert.alert_status,
        "hoursUntilShift": alert.hours_until_shift,
        "reason": alert.reason,
        "escalationLevel": alert.escalation_level,
        "acknowledgedBy": alert.acknowledged_by,
        "createdAt": alert.created_at,
        "resolvedAt": alert.resolved_at,
    }


def serialize_certification(certification: GuardCertification) -> dict:
    return {
        "id": certification.id,
        "guardId": certification.guard_id,
        "certificationType": certification.certification_type,
        "certificateNumber": certification.certificate_number,
        "issuedAt": certification.issued_at,
        "expiresAt": certification.expires_at,
    }


class ShiftService:
    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # SHIFTS
    # ========================================================================

    def _can_view_all(self, user: User) -> bool:
        return has_permission(user.role, user.permissions, "shifts.view_all")

    def get_shift(self, shift_id: int, user: User) -> Shift:
        shift = ShiftRepository.get_shift(self.db, shift_id, user.organization_id)
        if not shift or (not self._can_view_all(user) and shift.assigned_guard_id != user.id):
            raise HTTPException(status_code=404, detail="Shift not found")
        return shift

    def list_shifts(
        self,
        user: User,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        include_archived: bool = False,
    ) -> list[Shift]:
        """Guards only ever see their own assigned shifts"""
        guard_id = None if self._can_view_all(user) else user.id
        return ShiftRepository.get_shifts(
            self.db, user.organization_id, guard_id, date_from, date_to, include_archived
        )

    def create_shift(self, data: ShiftCreate, user: User) -> Shift:
        now = datetime.utcnow()
        shift = Shift(
            organization_id=user.organization_id,
            contract_id=data.contractId,
            title=sanitize_text(data.title, 255),
            client_name=sanitize_text(data.clientName, 255) if data.clientName else None,
            site_name=sanitize_text(data.siteName, 255) if data.siteName else None,
            site_address=sanitize_text(data.siteAddress, 500) if data.siteAddress else None,
            start_time=data.startTime,
            end_time=data.endTime,
            status="unassigned",
            priority=data.priority,
            required_certifications=[sanitize_text(c, 100) for c in data.requiredCertifications],
            special_requirements=sanitize_text(data.specialRequirements, 2000) if data.specialRequirements else None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(shift)
        self.db.flush()
        self.db.add(
            ShiftWorkflowHistory(
                shift_id=shift.id,
                previous_status=None,
                new_status="unassigned",
                transition_reason="Shift created",
                changed_by=user.id,
                transition_method="manual",
                changed_at=now,
            )
        )
        self.db.commit()
        self.db.refresh(shift)
        logger.info(f"🆕 Shift {shift.id} created for {shift.start_time:%Y-%m-%d %H:%M}")
        hub.publish(board_channel(user.organization_id, BOARD), "shift_created", {"shiftId": shift.id})
        return shift

    def update_shift(self, shift_id: int, data: ShiftUpdate, user: User) -> Shift:
        shift = self.get_shift(shift_id, user)
        if shift.status in ("completed", "archived"):
            raise HTTPException(status_code=400, detail=f"Cannot edit a {shift.status} shift")

        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        start = updates.get("startTime", shift.start_time)
        end = updates.get("endTime", shift.end_time)
        if end <= start:
            raise HTTPException(status_code=400, detail="endTime must be after startTime")

        if shift.assigned_guard_id and ("startTime" in updates or "endTime" in updates):
            if ShiftRepository.get_overlapping(self.db, shift.assigned_guard_id, start, end, shift.id):
                raise HTTPException(status_code=409, detail="Assigned guard has an overlapping shift")

        field_map = {
            "title": "title",
            "clientName": "client_name",
            "siteName": "site_name",
            "siteAddress": "site_address",
            "startTime": "start_time",
            "endTime": "end_time",
            "priority": "priority",
            "requiredCertifications": "required_certifications",
            "specialRequirements": "special_requirements",
        }
        for key, value in updates.items():
            if isinstance(value, str):
                value = sanitize_text(value)
            setattr(shift, field_map[key], value)
        shift.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(shift)
        return shift

    def delete_shift(self, shift_id: int, user: User) -> dict:
        shift = self.get_shift(shift_id, user)
        if shift.status in ("in_progress", "completed"):
            raise HTTPException(status_code=400, detail=f"Cannot delete a shift that is {shift.status}")
        self.db.query(ShiftUrgencyAlert).filter(ShiftUrgencyAlert.shift_id == shift.id).delete()
        self.db.query(ShiftWorkflowHistory).filter(ShiftWorkflowHistory.shift_id == shift.id).delete()
        self.db.delete(shift)
        record_event(
            self.db,
            action="shift_deleted",
            entity_type="shift",
            entity_id=shift_id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state={"title": shift.title, "status": shift.status},
            commit=False,
        )
        self.db.commit()
        logger.info(f"🗑️ Shift {shift_id} deleted by user {user.id}")
        return {"message": "Shift deleted"}

    def get_history(self, shift_id: int, user: User) -> list[ShiftWorkflowHistory]:
        shift = self.get_shift(shift_id, user)
        return ShiftRepository.get_shift_history(self.db, shift.id)

    # ========================================================================
    # WORKFLOW
    # ========================================================================

    def _transition(
        self,
        shift: Shift,
        new_status: str,
        user: User,
        reason: Optional[str],
        method: str,
        now: datetime,
        guard_confirmed: bool = False,
        bulk_operation_id: Optional[str] = None,
    ) -> str:
        """Validate and apply a move without committing; returns the previous status"""
        try:
            check = validate_transition(shift, new_status, now, guard_confirmed)
        except TransitionError as e:
            raise HTTPException(status_code=400, detail={"code": e.code, "message": str(e)}) from e
        if check.requires_approval and user.role != "admin":
            raise HTTPException(status_code=403, detail="Archiving a shift requires administrator approval")

        previous = shift.status
        apply_transition(shift, new_status, now)
        self.db.add(
            ShiftWorkflowHistory(
                shift_id=shift.id,
                previous_status=previous,
                new_status=new_status,
                transition_reason=reason,
                changed_by=user.id,
                transition_method=method,
                bulk_operation_id=bulk_operation_id,
                changed_at=now,
            )
        )
        self._resolve_alerts_for(shift, new_status, now)
        return previous

    def _resolve_alerts_for(self, shift: Shift, new_status: str, now: datetime) -> int:
        satisfied = resolved_types(new_status)
        resolved = 0
        for alert in ShiftRepository.get_open_alerts(self.db, shift.id):
            if alert.alert_type in satisfied:
                alert.alert_status = "resolved"
                alert.resolved_at = now
                resolved += 1
        if resolved:
            logger.info(f"✅ Resolved {resolved} alert(s) for shift {shift.id} on move to {new_status}")
        return resolved

    def _broadcast_move(self, shift: Shift, previous: str, user: User, now: datetime) -> None:
        hub.publish(
            board_channel(shift.organization_id, BOARD),
            "shift_moved",
            {
                "shiftId": shift.id,
                "fromStatus": previous,
                "toStatus": shift.status,
                "assignedGuardId": shift.assigned_guard_id,
                "changedBy": user.id,
                "changedAt": now.isoformat(),
            },
        )

    def move_shift(
        self,
        shift_id: int,
        new_status: str,
        user: User,
        reason: Optional[str] = None,
        method: str = "manual",
        guard_confirmed: bool = False,
        bulk_operation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = now or datetime.utcnow()
        shift = self.get_shift(shift_id, user)
        reason = sanitize_text(reason, 1000) if reason else None
        previous = self._transition(
            shift, new_status, user, reason, method, now, guard_confirmed, bulk_operation_id
        )
        record_event(
            self.db,
            action="shift_status_change",
            entity_type="shift",
            entity_id=shift.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state={"status": previous},
            new_state={"status": new_status},
            reason=reason,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(shift)
        logger.info(f"🔄 Shift {shift.id}: {previous} -> {new_status} ({method}) by user {user.id}")
        self._broadcast_move(shift, previous, user, now)
        return shift

    def confirm_shift(self, shift_id: int, user: User, now: Optional[datetime] = None) -> Shift:
        """The assigned guard confirms availability"""
        shift = self.get_shift(shift_id, user)
        if shift.assigned_guard_id != user.id:
            raise HTTPException(status_code=403, detail="Only the assigned guard can confirm this shift")
        return self.move_shift(
            shift.id, "confirmed", user, "Confirmed by guard", method="api", guard_confirmed=True, now=now
        )

    async def assign_guard(
        self,
        shift_id: int,
        guard_id: int,
        user: User,
        reason: Optional[str] = None,
        method: str = "manual",
        bulk_operation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = now or datetime.utcnow()
        shift = self.get_shift(shift_id, user)
        if shift.status not in ("unassigned", "assigned", "confirmed", "issue_logged"):
            raise HTTPException(status_code=400, detail=f"Cannot assign a guard to a {shift.status} shift")

        guard = ShiftRepository.get_guard(self.db, guard_id, user.organization_id)
        if not guard:
            raise HTTPException(status_code=400, detail="Guard must be an active guard in your organization")
        overlapping = ShiftRepository.get_overlapping(self.db, guard.id, shift.start_time, shift.end_time, shift.id)
        if overlapping:
            raise HTTPException(
                status_code=409,
                detail={
                    "message": "Guard already has an overlapping shift",
                    "conflictingShiftIds": [s.id for s in overlapping],
                },
            )

        previous_guard = shift.assigned_guard_id
        previous = shift.status
        reason = sanitize_text(reason, 1000) if reason else f"Assigned to {guard.full_name}"
        shift.assigned_guard_id = guard.id
        if shift.status == "assigned":
            # Guard swap inside the same column
            shift.confirmed_at = None
            shift.updated_at = now
            self.db.add(
                ShiftWorkflowHistory(
                    shift_id=shift.id,
                    previous_status="assigned",
                    new_status="assigned",
                    transition_reason=reason,
                    changed_by=user.id,
                    transition_method=method,
                    bulk_operation_id=bulk_operation_id,
                    changed_at=now,
                )
            )
            self._resolve_alerts_for(shift, "assigned", now)
        else:
            self._transition(shift, "assigned", user, reason, method, now, bulk_operation_id=bulk_operation_id)

        record_event(
            self.db,
            action="shift_assignment",
            entity_type="shift",
            entity_id=shift.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state={"status": previous, "assignedGuardId": previous_guard},
            new_state={"status": shift.status, "assignedGuardId": guard.id},
            reason=reason,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(shift)
        logger.info(f"👤 Shift {shift.id} assigned to guard {guard.id}")
        self._broadcast_move(shift, previous, user, now)

        hours = (shift.start_time - now).total_seconds() / 3600
        await NotificationService(self.db).notify_many(
            user.organization_id,
            [guard.id],
            title="New shift assignment",
            message=f"You have been assigned to {shift.title} starting {shift.start_time:%Y-%m-%d %H:%M}",
            category="assignments",
            priority="high" if hours <= 24 else "normal",
            entity_type="shift",
            entity_id=shift.id,
            channels=["in_app", "email"],
        )
        return shift

    def get_eligible_guards(self, shift_id: int, user: User) -> list[dict]:
        """Active guards with no overlapping shift, with any certification gaps listed"""
        shift = self.get_shift(shift_id, user)
        guards = ShiftRepository.get_active_guards(self.db, user.organization_id)
        certifications = ShiftRepository.get_certifications(self.db, [g.id for g in guards])
        by_guard: dict[int, list[GuardCertification]] = {}
        for certification in certifications:
            by_guard.setdefault(certification.guard_id, []).append(certification)

        eligible = []
        for guard in guards:
            if ShiftRepository.get_overlapping(self.db, guard.id, shift.start_time, shift.end_time, shift.id):
                continue
            missing = missing_certifications(
                shift.required_certifications, by_guard.get(guard.id, []), shift.start_time
            )
            eligible.append(
                {"guardId": guard.id, "name": guard.full_name, "missingCertifications": missing}
            )
        eligible.sort(key=lambda g: (len(g["missingCertifications"]), g["name"]))
        return eligible

    # ========================================================================
    # BULK ACTIONS
    # ========================================================================

    async def bulk_action(self, request: ShiftBulkActionRequest, user: User) -> dict:
        bulk_operation_id = uuid.uuid4().hex
        results = []
        for shift_id in request.shiftIds:
            try:
                await self._apply_bulk_action(shift_id, request.action, request.data, user, bulk_operation_id)
                results.append({"shiftId": shift_id, "success": True})
            except HTTPException as e:
                self.db.rollback()
                detail = e.detail["message"] if isinstance(e.detail, dict) else e.detail
                results.append({"shiftId": shift_id, "success": False, "error": detail})

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"📊 Bulk {request.action} ({bulk_operation_id}): {succeeded}/{len(results)} shifts")
        return {
            "bulkOperationId": bulk_operation_id,
            "status": "completed" if succeeded == len(results) else "partial",
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    async def _apply_bulk_action(
        self, shift_id: int, action: str, data: dict, user: User, bulk_operation_id: str
    ) -> None:
        if action == "status_change":
            self.move_shift(
                shift_id,
                str(data.get("newStatus") or ""),
                user,
                data.get("reason"),
                method="bulk",
                bulk_operation_id=bulk_operation_id,
            )
        elif action == "assign":
            guard_id = data.get("guardId")
            if not isinstance(guard_id, int):
                raise HTTPException(status_code=400, detail="guardId is required")
            await self.assign_guard(
                shift_id, guard_id, user, data.get("reason"), method="bulk", bulk_operation_id=bulk_operation_id
            )
        elif action == "priority_update":
            priority = data.get("priority")
            if not isinstance(priority, int) or not 1 <= priority <= 5:
                raise HTTPException(status_code=400, detail="Priority must be between 1 and 5")
            shift = self.get_shift(shift_id, user)
            shift.priority = priority
            shift.updated_at = datetime.utcnow()
            self.db.commit()
        elif action == "notification":
            message = str(data.get("message") or "").strip()
            if not message:
                raise HTTPException(status_code=400, detail="Notification message is required")
            shift = self.get_shift(shift_id, user)
            if not shift.assigned_guard_id:
                raise HTTPException(status_code=400, detail="Shift has no assigned guard to notify")
            await NotificationService(self.db).create(
                user.organization_id,
                shift.assigned_guard_id,
                title=sanitize_text(str(data.get("title") or f"Update for {shift.title}"), 200),
                message=sanitize_text(message, 2000),
                category="schedule",
                priority=data["priority"] if data.get("priority") in ("low", "normal", "high", "urgent") else "normal",
                entity_type="shift",
                entity_id=shift.id,
            )
        else:
            raise HTTPException(status_code=400, detail=f"Unknown bulk action: {action}")

    # ========================================================================
    # BOARD
    # ========================================================================

    def get_workflow_config(self) -> list[dict]:
        return [
            {
                "status": column.status,
                "title": column.title,
                "description": column.description,
                "allowedTransitions": list(column.allowed_transitions),
                "requiresValidation": column.requires_validation,
            }
            for column in WORKFLOW_COLUMNS.values()
        ]

    def get_board(self, user: User, filters: ShiftBoardFilters) -> dict:
        shifts = ShiftRepository.get_board_shifts(self.db, user.organization_id, filters)

        by_status: dict[str, list[dict]] = {status: [] for status in WORKFLOW_COLUMNS if status != "archived"}
        for shift in shifts:
            by_status.setdefault(shift.status, []).append(serialize_shift(shift))

        columns = [
            {
                "status": status,
                "title": WORKFLOW_COLUMNS[status].title,
                "description": WORKFLOW_COLUMNS[status].description,
                "count": len(items),
                "shifts": items,
            }
            for status, items in by_status.items()
            if not filters.statuses or status in filters.statuses
        ]

        total = len(shifts)
        counts = Counter(s.status for s in shifts)
        completed = counts.get("completed", 0)
        metrics = {
            "totalShifts": total,
            "byStatus": {status: counts.get(status, 0) for status in by_status},
            "completionRate": round(completed / total * 100, 2) if total else 0.0,
            "urgentAlerts": ShiftRepository.count_active_alerts(self.db, user.organization_id),
            "bottlenecks": [
                status for status, count in counts.items() if total and count / total > BOTTLENECK_SHARE
            ],
        }
        recent = [serialize_history(h) for h in ShiftRepository.get_recent_history(self.db, user.organization_id)]
        return {"columns": columns, "metrics": metrics, "recentActivity": recent}

    # ========================================================================
    # URGENT ALERTS
    # ========================================================================

    async def monitor_alerts(self, now: Optional[datetime] = None) -> dict:
        """Raise alerts for shifts starting within the next 24 hours (all tenants)"""
        now = now or datetime.utcnow()
        shifts = ShiftRepository.get_monitored_shifts(self.db, now, now + timedelta(hours=MONITOR_WINDOW_HOURS))
        guard_ids = list({s.assigned_guard_id for s in shifts if s.assigned_guard_id})
        certifications: dict[int, list[GuardCertification]] = {}
        for certification in ShiftRepository.get_certifications(self.db, guard_ids):
            certifications.setdefault(certification.guard_id, []).append(certification)

        created = []
        for shift in shifts:
            existing = [a.alert_type for a in ShiftRepository.get_open_alerts(self.db, shift.id)]
            for spec in evaluate_shift(shift, now, existing, certifications.get(shift.assigned_guard_id, [])):
                alert = ShiftUrgencyAlert(
                    shift_id=shift.id,
                    alert_type=spec.alert_type,
                    alert_priority=spec.priority,
                    alert_status="active",
                    hours_until_shift=spec.hours_until_shift,
                    reason=spec.reason,
                    escalation_level=1,
                    created_at=now,
                )
                self.db.add(alert)
                created.append((shift, alert))
        self.db.commit()

        for shift, alert in created:
            hub.publish(board_channel(shift.organization_id, BOARD), "alert_created", serialize_alert(alert))
            await self._notify_managers(shift, alert)

        if created:
            logger.info(f"🚨 Urgent alert monitor created {len(created)} alert(s) across {len(shifts)} shift(s)")
        return {"shiftsChecked": len(shifts), "alertsCreated": len(created)}

    async def _notify_managers(self, shift: Shift, alert: ShiftUrgencyAlert) -> None:
        managers = ShiftRepository.get_managers(self.db, shift.organization_id)
        await NotificationService(self.db).notify_many(
            shift.organization_id,
            [m.id for m in managers],
            title=f"Urgent: {shift.title}",
            message=alert.reason or "Shift needs attention",
            category="schedule",
            priority="urgent" if alert.alert_priority == "critical" else "high",
            entity_type="shift",
            entity_id=shift.id,
            channels=["in_app", "email"],
        )

    def escalate_alerts(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        escalated = 0
        for alert in ShiftRepository.get_active_alerts(self.db):
            if not should_escalate(alert, now):
                continue
            alert.alert_priority = next_priority(alert.alert_priority)
            alert.escalation_level = (alert.escalation_level or 1) + 1
            alert.last_escalated_at = now
            escalated += 1
        self.db.commit()
        if escalated:
            logger.warning(f"⚠️ Escalated {escalated} urgent shift alert(s)")
        return escalated

    def list_alerts(
        self,
        user: User,
        statuses: Optional[list[str]] = None,
        alert_types: Optional[list[str]] = None,
        priorities: Optional[list[str]] = None,
    ) -> list[ShiftUrgencyAlert]:
        return ShiftRepository.get_alerts(
            self.db, user.organization_id, statuses or ["active", "acknowledged"], alert_types, priorities
        )

    def _get_alert(self, alert_id: int, user: User) -> ShiftUrgencyAlert:
        alert = ShiftRepository.get_alert(self.db, alert_id, user.organization_id)
        if not alert:
            raise HTTPException(status_code=404, detail="Alert not found")
        return alert

    def acknowledge_alert(self, alert_id: int, user: User) -> ShiftUrgencyAlert:
        alert = self._get_alert(alert_id, user)
        if alert.alert_status != "active":
            raise HTTPException(status_code=400, detail=f"Alert is already {alert.alert_status}")
        alert.alert_status = "acknowledged"
        alert.acknowledged_by = user.id
        alert.acknowledged_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(alert)
        return alert

    def resolve_alert(self, alert_id: int, user: User) -> ShiftUrgencyAlert:
        alert = self._get_alert(alert_id, user)
        if alert.alert_status == "resolved":
            raise HTTPException(status_code=400, detail="Alert is already resolved")
        alert.alert_status = "resolved"
        alert.resolved_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(alert)
        logger.info(f"✅ Alert {alert.id} resolved by user {user.id}")
        return alert

    # ========================================================================
    # CERTIFICATIONS
    # ========================================================================

    def list_certifications(self, user: User, guard_id: Optional[int] = None) -> list[GuardCertification]:
        if not has_permission(user.role, user.permissions, "guards.view_all"):
            guard_id = user.id
        return ShiftRepository.list_certifications(self.db, user.organization_id, guard_id)

    def create_certification(self, data: CertificationCreate, user: User) -> GuardCertification:
        guard = ShiftRepository.get_guard(self.db, data.guardId, user.organization_id)
        if not guard:
            raise HTTPException(status_code=400, detail="Guard not found")
        certification = GuardCertification(
            guard_id=guard.id,
            certification_type=sanitize_text(data.certificationType, 100),
            certificate_number=sanitize_text(data.certificateNumber, 100) if data.certificateNumber else None,
            issued_at=data.issuedAt,
            expires_at=data.expiresAt,
        )
        self.db.add(certification)
        self.db.commit()
        self.db.refresh(certification)
        return certification

    def update_certification(
        self, certification_id: int, data: CertificationUpdate, user: User
    ) -> GuardCertification:
        certification = ShiftRepository.get_certification(self.db, certification_id, user.organization_id)
        if not certification:
            raise HTTPException(status_code=404, detail="Certification not found")
        updates = data.model_dump(exclude_unset=True)
        if "certificateNumber" in updates:
            certification.certificate_number = updates["certificateNumber"]
        if "issuedAt" in updates:
            certification.issued_at = updates["issuedAt"]
        if "expiresAt" in updates:
            certification.expires_at = updates["expiresAt"]
            certification.last_reminder_at = None
        self.db.commit()
        self.db.refresh(certification)
        return certification

    def delete_certification(self, certification_id: int, user: User) -> dict:
        certification = ShiftRepository.get_certification(self.db, certification_id, user.organization_id)
        if not certification:
            raise HTTPException(status_code=404, detail="Certification not found")
        self.db.delete(certification)
        self.db.commit()
        return {"message": "Certification deleted"}
