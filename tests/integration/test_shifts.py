"""
Integration tests for the shift board API, guard assignment, bulk actions and urgent alerts.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from guardcrm.domain.shifts.service import ShiftService
from guardcrm.models_audit import AuditLog
from guardcrm.models_notification import Notification
from guardcrm.models_shift import Shift, ShiftUrgencyAlert, ShiftWorkflowHistory
from guardcrm.services.realtime import board_channel, hub


def shift_payload(hours_ahead=48, duration=8, **overrides):
    start = datetime.utcnow().replace(microsecond=0) + timedelta(hours=hours_ahead)
    payload = {
        "title": "Warehouse night watch",
        "clientName": "Harbor Logistics",
        "siteName": "Dock 4",
        "siteAddress": "9 Pier Rd",
        "startTime": start.isoformat(),
        "endTime": (start + timedelta(hours=duration)).isoformat(),
        "requiredCertifications": ["Guard Card"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_shift(client, manager, headers_for):
    def _create(**overrides):
        response = client.post("/api/v1/shifts", json=shift_payload(**overrides), headers=headers_for(manager))
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.mark.integration
class TestShiftCrud:
    def test_create_records_history(self, db, create_shift):
        shift = create_shift()

        assert shift["status"] == "unassigned"
        assert shift["requiredCertifications"] == ["Guard Card"]
        history = db.query(ShiftWorkflowHistory).filter(ShiftWorkflowHistory.shift_id == shift["id"]).all()
        assert [(h.previous_status, h.new_status) for h in history] == [(None, "unassigned")]

    def test_end_before_start_rejected(self, client, manager, headers_for):
        payload = shift_payload()
        payload["endTime"] = payload["startTime"]

        response = client.post("/api/v1/shifts", json=payload, headers=headers_for(manager))

        assert response.status_code == 422
        assert "endTime must be after startTime" in response.json()["detail"][0]["msg"]

    def test_guard_cannot_create(self, client, guard, headers_for):
        response = client.post("/api/v1/shifts", json=shift_payload(), headers=headers_for(guard))

        assert response.status_code == 403

    def test_guard_sees_only_assigned_shifts(self, client, guard, manager, headers_for, create_shift, sent_emails):
        mine = create_shift()
        other = create_shift(hours_ahead=100)
        client.post(f"/api/v1/shifts/{mine['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager))

        listed = client.get("/api/v1/shifts", headers=headers_for(guard)).json()

        assert [s["id"] for s in listed] == [mine["id"]]
        assert client.get(f"/api/v1/shifts/{other['id']}", headers=headers_for(guard)).status_code == 404

    def test_update_and_delete(self, db, client, manager, headers_for, create_shift):
        shift = create_shift()

        updated = client.patch(
            f"/api/v1/shifts/{shift['id']}", json={"title": "Gate watch", "priority": 1}, headers=headers_for(manager)
        )
        deleted = client.delete(f"/api/v1/shifts/{shift['id']}", headers=headers_for(manager))

        assert updated.json()["title"] == "Gate watch"
        assert updated.json()["priority"] == 1
        assert deleted.status_code == 200
        assert db.query(Shift).count() == 0
        assert db.query(AuditLog).filter(AuditLog.action == "shift_deleted").count() == 1

    def test_update_with_inverted_times(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.patch(
            f"/api/v1/shifts/{shift['id']}",
            json={"endTime": (datetime.utcnow() - timedelta(days=1)).isoformat()},
            headers=headers_for(manager),
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestAssignmentAndWorkflow:
    def test_assign_moves_to_assigned_and_notifies(self, db, client, guard, manager, headers_for, create_shift, sent_emails):
        shift = create_shift(hours_ahead=6)

        response = client.post(
            f"/api/v1/shifts/{shift['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "assigned"
        assert response.json()["assignedGuardId"] == guard.id
        notification = db.query(Notification).filter(Notification.recipient_id == guard.id).one()
        assert notification.priority == "high"
        assert notification.category == "assignments"
        events = hub.recent_events(board_channel(manager.organization_id, "shifts"))
        assert events[-1]["type"] == "shift_moved"
        assert events[-1]["payload"]["toStatus"] == "assigned"

    def test_assign_rejects_non_guard(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.post(
            f"/api/v1/shifts/{shift['id']}/assign", json={"guardId": manager.id}, headers=headers_for(manager)
        )

        assert response.status_code == 400

    def test_overlapping_assignment_conflicts(self, client, guard, manager, headers_for, create_shift, sent_emails):
        first = create_shift(hours_ahead=48)
        second = create_shift(hours_ahead=52)
        client.post(f"/api/v1/shifts/{first['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager))

        response = client.post(
            f"/api/v1/shifts/{second['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager)
        )

        assert response.status_code == 409
        assert response.json()["detail"]["conflictingShiftIds"] == [first["id"]]

    def test_move_to_assigned_without_guard(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.post(
            f"/api/v1/shifts/{shift['id']}/move", json={"newStatus": "assigned"}, headers=headers_for(manager)
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "GUARD_ASSIGNMENT_REQUIRED"

    def test_invalid_transition(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.post(
            f"/api/v1/shifts/{shift['id']}/move", json={"newStatus": "completed"}, headers=headers_for(manager)
        )

        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    def test_guard_confirms_own_shift(self, client, guard, manager, headers_for, create_shift, sent_emails):
        shift = create_shift()
        client.post(f"/api/v1/shifts/{shift['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager))

        response = client.post(f"/api/v1/shifts/{shift['id']}/confirm", headers=headers_for(guard))

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert response.json()["confirmedAt"] is not None

    def test_manager_cannot_confirm_for_guard(self, client, guard, manager, headers_for, create_shift, sent_emails):
        shift = create_shift()
        client.post(f"/api/v1/shifts/{shift['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager))

        response = client.post(f"/api/v1/shifts/{shift['id']}/confirm", headers=headers_for(manager))

        assert response.status_code == 403

    def test_move_back_to_unassigned_clears_guard(self, client, guard, manager, headers_for, create_shift, sent_emails):
        shift = create_shift()
        client.post(f"/api/v1/shifts/{shift['id']}/assign", json={"guardId": guard.id}, headers=headers_for(manager))

        response = client.post(
            f"/api/v1/shifts/{shift['id']}/move",
            json={"newStatus": "unassigned", "reason": "Guard called in sick"},
            headers=headers_for(manager),
        )
        history = client.get(f"/api/v1/shifts/{shift['id']}/history", headers=headers_for(manager)).json()

        assert response.json()["assignedGuardId"] is None
        assert history[0]["newStatus"] == "unassigned"
        assert history[0]["transitionReason"] == "Guard called in sick"

    def test_archiving_requires_admin(self, db, org, guard, manager, admin):
        shift = Shift(
            organization_id=org.id,
            title="Done",
            start_time=datetime.utcnow() - timedelta(days=2),
            end_time=datetime.utcnow() - timedelta(days=2) + timedelta(hours=8),
            status="completed",
            assigned_guard_id=guard.id,
        )
        db.add(shift)
        db.commit()
        service = ShiftService(db)

        with pytest.raises(HTTPException) as exc:
            service.move_shift(shift.id, "archived", manager)
        archived = service.move_shift(shift.id, "archived", admin)

        assert exc.value.status_code == 403
        assert archived.status == "archived"

    def test_eligible_guards_list_certification_gaps(self, client, guard, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.get(f"/api/v1/shifts/{shift['id']}/eligible-guards", headers=headers_for(manager))

        assert response.json() == [
            {"guardId": guard.id, "name": guard.full_name, "missingCertifications": ["Guard Card"]}
        ]


@pytest.mark.integration
class TestBoardAndBulk:
    def test_board_columns_and_metrics(self, client, manager, headers_for, create_shift):
        create_shift()
        create_shift(hours_ahead=72)

        board = client.get("/api/v1/shifts/board", headers=headers_for(manager)).json()

        columns = {c["status"]: c for c in board["columns"]}
        assert "archived" not in columns
        assert columns["unassigned"]["count"] == 2
        assert board["metrics"]["totalShifts"] == 2
        assert board["metrics"]["bottlenecks"] == ["unassigned"]
        assert len(board["recentActivity"]) == 2

    def test_board_requires_view_all(self, client, guard, headers_for):
        assert client.get("/api/v1/shifts/board", headers=headers_for(guard)).status_code == 403

    def test_workflow_config(self, client, guard, headers_for):
        config = client.get("/api/v1/shifts/workflow", headers=headers_for(guard)).json()

        assert [c["status"] for c in config][0] == "unassigned"
        assert config[-1]["allowedTransitions"] == []

    def test_bulk_priority_update_partial(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        response = client.post(
            "/api/v1/shifts/bulk-actions",
            json={"shiftIds": [shift["id"], 9999], "action": "priority_update", "data": {"priority": 1}},
            headers=headers_for(manager),
        )

        body = response.json()
        assert body["status"] == "partial"
        assert body["succeeded"] == 1
        assert body["results"][1] == {"shiftId": 9999, "success": False, "error": "Shift not found"}

    def test_bulk_status_change_shares_operation_id(self, db, client, manager, headers_for, create_shift):
        ids = [create_shift()["id"], create_shift(hours_ahead=80)["id"]]

        body = client.post(
            "/api/v1/shifts/bulk-actions",
            json={"shiftIds": ids, "action": "status_change", "data": {"newStatus": "issue_logged"}},
            headers=headers_for(manager),
        ).json()

        assert body["status"] == "completed"
        entries = db.query(ShiftWorkflowHistory).filter(ShiftWorkflowHistory.new_status == "issue_logged").all()
        assert {e.bulk_operation_id for e in entries} == {body["bulkOperationId"]}
        assert {e.transition_method for e in entries} == {"bulk"}

    def test_bulk_notification_needs_assigned_guard(self, client, manager, headers_for, create_shift):
        shift = create_shift()

        body = client.post(
            "/api/v1/shifts/bulk-actions",
            json={"shiftIds": [shift["id"]], "action": "notification", "data": {"message": "Bring a radio"}},
            headers=headers_for(manager),
        ).json()

        assert body["results"][0]["error"] == "Shift has no assigned guard to notify"


@pytest.mark.integration
class TestUrgentAlerts:
    def _shift(self, db, org, hours_ahead, now, **values):
        shift = Shift(
            organization_id=org.id,
            title="Lobby",
            start_time=now + timedelta(hours=hours_ahead),
            end_time=now + timedelta(hours=hours_ahead + 8),
            status="unassigned",
            **values,
        )
        db.add(shift)
        db.commit()
        return shift

    def test_monitor_creates_alert_once_and_notifies_managers(self, db, org, admin, manager, sent_emails):
        now = datetime(2030, 1, 1, 8, 0)
        shift = self._shift(db, org, 4, now)
        service = ShiftService(db)

        first = asyncio.run(service.monitor_alerts(now=now))
        second = asyncio.run(service.monitor_alerts(now=now + timedelta(minutes=15)))

        assert first == {"shiftsChecked": 1, "alertsCreated": 1}
        assert second["alertsCreated"] == 0
        alert = db.query(ShiftUrgencyAlert).one()
        assert (alert.shift_id, alert.alert_type, alert.alert_priority) == (shift.id, "unassigned_24h", "critical")
        recipients = {n.recipient_id for n in db.query(Notification).all()}
        assert recipients == {admin.id, manager.id}

    def test_assignment_resolves_unassigned_alert(self, db, org, guard, manager, sent_emails):
        now = datetime.utcnow()
        shift = self._shift(db, org, 10, now)
        service = ShiftService(db)
        asyncio.run(service.monitor_alerts(now=now))

        asyncio.run(service.assign_guard(shift.id, guard.id, manager))

        assert db.query(ShiftUrgencyAlert).one().alert_status == "resolved"

    def test_escalation(self, db, org):
        now = datetime(2030, 1, 1, 8, 0)
        shift = self._shift(db, org, 10, now)
        alert = ShiftUrgencyAlert(
            shift_id=shift.id,
            alert_type="unassigned_24h",
            alert_priority="high",
            alert_status="active",
            escalation_level=1,
            created_at=now - timedelta(hours=3),
        )
        db.add(alert)
        db.commit()

        escalated = ShiftService(db).escalate_alerts(now=now)

        db.refresh(alert)
        assert escalated == 1
        assert (alert.alert_priority, alert.escalation_level, alert.last_escalated_at) == ("critical", 2, now)

    def test_acknowledge_and_resolve_api(self, db, org, client, manager, headers_for):
        shift = self._shift(db, org, 10, datetime.utcnow())
        alert = ShiftUrgencyAlert(
            shift_id=shift.id, alert_type="unassigned_24h", alert_priority="high", alert_status="active"
        )
        db.add(alert)
        db.commit()

        acknowledged = client.post(
            f"/api/v1/shifts/urgent-alerts/{alert.id}/acknowledge", headers=headers_for(manager)
        ).json()
        again = client.post(f"/api/v1/shifts/urgent-alerts/{alert.id}/acknowledge", headers=headers_for(manager))
        resolved = client.post(f"/api/v1/shifts/urgent-alerts/{alert.id}/resolve", headers=headers_for(manager)).json()
        listed = client.get("/api/v1/shifts/urgent-alerts", headers=headers_for(manager)).json()

        assert acknowledged["alertStatus"] == "acknowledged"
        assert acknowledged["acknowledgedBy"] == manager.id
        assert again.status_code == 400
        assert resolved["alertStatus"] == "resolved"
        assert listed == []


@pytest.mark.integration
class TestCertificationsApi:
    def test_crud(self, client, guard, manager, headers_for):
        created = client.post(
            "/api/v1/shifts/certifications",
            json={"guardId": guard.id, "certificationType": "Firearms", "expiresAt": "2031-01-01T00:00:00"},
            headers=headers_for(manager),
        )
        cert_id = created.json()["id"]

        updated = client.patch(
            f"/api/v1/shifts/certifications/{cert_id}",
            json={"certificateNumber": "FA-9"},
            headers=headers_for(manager),
        )
        own = client.get("/api/v1/shifts/certifications", headers=headers_for(guard)).json()
        deleted = client.delete(f"/api/v1/shifts/certifications/{cert_id}", headers=headers_for(manager))

        assert created.status_code == 201
        assert updated.json()["certificateNumber"] == "FA-9"
        assert [c["id"] for c in own] == [cert_id]
        assert deleted.status_code == 200

    def test_guard_cannot_add_certification(self, client, guard, headers_for):
        response = client.post(
            "/api/v1/shifts/certifications",
            json={"guardId": guard.id, "certificationType": "Firearms"},
            headers=headers_for(guard),
        )

        assert response.status_code == 403
