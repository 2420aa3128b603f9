"""
Integration tests for the signed audit trail, its API and the retention jobs.
"""

from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from guardcrm.domain.audit.retention import RetentionService
from guardcrm.domain.audit.trail import record_event, verify_records
from guardcrm.models import Organization
from guardcrm.models_audit import ArchivedAuditLog, AuditLog, RetentionJob, RetentionPolicy
from guardcrm.models_calendar import OAuthState
from guardcrm.models_notification import Notification


def old_audit_log(db, org, days_old, now):
    log = record_event(db, action="update", entity_type="lead", entity_id=1, organization_id=org.id)
    log.created_at = now - timedelta(days=days_old)
    db.commit()
    return log


def rival_org(db):
    organization = Organization(name="Rival Guards", slug="rival-guards")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.mark.integration
class TestAuditTrail:
    def test_records_are_signed(self, db, org, admin):
        log = record_event(
            db,
            action="status_change",
            entity_type="shift",
            entity_id=4,
            organization_id=org.id,
            actor_id=admin.id,
            previous_state={"status": "assigned"},
            new_state={"status": "confirmed"},
        )

        assert len(log.signature) == 64
        assert verify_records([log])["integrityScore"] == 100.0

    def test_tampering_is_detected(self, db, org, admin):
        good = record_event(db, action="create", entity_type="lead", entity_id=1, organization_id=org.id)
        bad = record_event(db, action="update", entity_type="lead", entity_id=1, organization_id=org.id)
        bad.new_state = {"status": "won"}
        db.commit()

        report = verify_records([good, bad])

        assert report["totalRecords"] == 2
        assert report["verifiedRecords"] == 1
        assert report["integrityScore"] == 50.0
        assert report["suspiciousRecords"][0]["id"] == bad.id

    def test_empty_trail_is_fully_verified(self):
        assert verify_records([])["integrityScore"] == 100.0


@pytest.mark.integration
class TestAuditApi:
    def test_admin_lists_tenant_logs(self, client, db, org, admin, headers_for):
        record_event(db, action="create", entity_type="lead", entity_id=1, organization_id=org.id, actor_id=admin.id)
        record_event(db, action="create", entity_type="shift", entity_id=2, organization_id=org.id)
        record_event(db, action="create", entity_type="lead", entity_id=3, organization_id=org.id + 1)

        response = client.get("/api/v1/audit-logs", params={"entityType": "lead"}, headers=headers_for(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["entityId"] == 1

    def test_manager_cannot_read_audit_logs(self, client, manager, headers_for):
        response = client.get("/api/v1/audit-logs", headers=headers_for(manager))

        assert response.status_code == 403

    def test_missing_token_is_401(self, client):
        response = client.get("/api/v1/audit-logs")

        assert response.status_code in (401, 403)

    def test_integrity_endpoint(self, client, db, org, admin, headers_for):
        record_event(db, action="create", entity_type="lead", entity_id=1, organization_id=org.id)

        response = client.get("/api/v1/audit-logs/integrity", headers=headers_for(admin))

        assert response.json()["verifiedRecords"] == 1

    def test_csv_export(self, client, db, org, admin, headers_for):
        record_event(db, action="create", entity_type="lead", entity_id=1, organization_id=org.id, reason="intake")

        response = client.get("/api/v1/audit-logs/export", headers=headers_for(admin))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=audit_export_" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("ID,Timestamp,Action")
        assert "intake" in lines[1]


@pytest.mark.integration
class TestRetention:
    def test_default_policies_created(self, db):
        policies = {p.entity_type: p for p in RetentionService(db).ensure_default_policies()}

        assert policies["audit_log"].retention_days == 2555
        assert policies["audit_log"].archive_before_delete is True
        assert policies["notification"].retention_days == 90

    def test_run_archival_archives_audit_logs_and_purges_others(self, db, org, guard):
        now = datetime.utcnow()
        old_audit_log(db, org, 3000, now)
        old_audit_log(db, org, 10, now)
        db.add_all(
            [
                Notification(
                    organization_id=org.id,
                    recipient_id=guard.id,
                    title="Old",
                    message="Old",
                    created_at=now - timedelta(days=120),
                ),
                Notification(
                    organization_id=org.id, recipient_id=guard.id, title="New", message="New", created_at=now
                ),
                OAuthState(
                    state_token="stale",
                    user_id=guard.id,
                    provider="google_calendar",
                    expires_at=now - timedelta(days=2),
                    created_at=now - timedelta(days=2),
                ),
            ]
        )
        db.commit()

        job = RetentionService(db).run_archival(now=now, triggered_by="test")

        assert job.status == "completed"
        assert job.triggered_by == "test"
        assert job.records_archived == 1
        assert job.records_deleted == 3
        assert job.details["audit_log"]["archived"] == 1
        assert job.details["notification"]["deleted"] == 1
        assert db.query(AuditLog).count() == 1
        assert db.query(Notification).count() == 1
        assert db.query(OAuthState).count() == 0
        archived = db.query(ArchivedAuditLog).one()
        assert archived.payload["action"] == "update"
        assert len(archived.payload["signature"]) == 64

    def test_inactive_policy_is_skipped(self, db, org):
        service = RetentionService(db)
        service.update_policy("audit_log", {"isActive": False})
        now = datetime.utcnow()
        old_audit_log(db, org, 3000, now)

        job = service.run_archival(now=now)

        assert "audit_log" not in job.details
        assert db.query(AuditLog).count() == 1

    def test_purge_without_archive(self, db, org):
        service = RetentionService(db)
        service.update_policy("audit_log", {"archiveBeforeDelete": False, "retentionDays": 30})
        now = datetime.utcnow()
        old_audit_log(db, org, 45, now)

        job = service.run_archival(now=now)

        assert job.records_archived == 0
        assert job.records_deleted == 1
        assert db.query(ArchivedAuditLog).count() == 0

    def test_update_policy_validation(self, db):
        service = RetentionService(db)

        with pytest.raises(HTTPException) as exc:
            service.update_policy("audit_log", {"retentionDays": 0})
        assert exc.value.status_code == 400

        with pytest.raises(HTTPException) as missing:
            service.get_policy("invoice")
        assert missing.value.status_code == 404

    def test_stats(self, db, org):
        service = RetentionService(db)
        now = datetime.utcnow()
        old_audit_log(db, org, 3000, now)
        service.run_archival(now=now)

        stats = service.get_stats()

        assert stats["activeAuditLogs"] == 0
        assert stats["archivedAuditLogs"] == 1
        assert stats["lastJob"]["status"] == "completed"
        assert len(stats["policies"]) == 3


@pytest.mark.integration
class TestRetentionApi:
    def test_cron_secret_runs_archival(self, client, db):
        response = client.get(
            "/api/v1/audit-logs/retention",
            params={"action": "run_archival"},
            headers={"Authorization": "Bearer test-cron-secret"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["triggeredBy"] == "system-cron"
        assert db.query(RetentionJob).count() == 1

    def test_api_key_gets_stats(self, client):
        response = client.get("/api/v1/audit-logs/retention", headers={"X-API-Key": "test-retention-api-key"})

        assert response.status_code == 200
        assert response.json()["retentionEndpoint"] == "active"

    def test_admin_updates_policy(self, client, admin, headers_for):
        response = client.post(
            "/api/v1/audit-logs/retention",
            json={"action": "update_policy", "entityType": "notification", "updates": {"retentionDays": 30}},
            headers=headers_for(admin),
        )

        assert response.status_code == 200
        assert response.json()["data"]["retentionDays"] == 30

    def test_admin_run_is_attributed(self, client, admin, headers_for):
        response = client.post("/api/v1/audit-logs/retention", json={"action": "run_archival"}, headers=headers_for(admin))

        assert response.json()["data"]["triggeredBy"] == f"user:{admin.id}"

    def test_policy_actions_need_entity_type(self, client):
        response = client.post(
            "/api/v1/audit-logs/retention",
            json={"action": "get_policy"},
            headers={"X-API-Key": "test-retention-api-key"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "entityType is required"

    def test_non_admin_and_anonymous_rejected(self, client, manager, headers_for):
        assert client.get("/api/v1/audit-logs/retention", headers=headers_for(manager)).status_code == 403
        assert client.get("/api/v1/audit-logs/retention").status_code == 403
        assert (
            client.get("/api/v1/audit-logs/retention", headers={"Authorization": "Bearer wrong-secret"}).status_code
            == 401
        )


@pytest.mark.integration
class TestRetentionTenantScope:
    def test_admin_policy_change_is_a_tenant_override(self, client, db, org, admin, headers_for):
        response = client.post(
            "/api/v1/audit-logs/retention",
            json={"action": "update_policy", "entityType": "audit_log", "updates": {"retentionDays": 1}},
            headers=headers_for(admin),
        )

        assert response.json()["data"]["organizationId"] == org.id
        service = RetentionService(db)
        assert service.get_policy("audit_log").retention_days == 2555
        assert service.get_policy("audit_log", org.id).retention_days == 1
        assert db.query(RetentionPolicy).filter(RetentionPolicy.entity_type == "audit_log").count() == 2

    def test_admin_run_leaves_other_tenants_untouched(self, client, db, org, admin, headers_for):
        rival = rival_org(db)
        now = datetime.utcnow()
        own_log = old_audit_log(db, org, 5, now).id
        rival_log = old_audit_log(db, rival, 5, now).id
        client.post(
            "/api/v1/audit-logs/retention",
            json={"action": "update_policy", "entityType": "audit_log", "updates": {"retentionDays": 1}},
            headers=headers_for(admin),
        )

        response = client.post("/api/v1/audit-logs/retention", json={"action": "run_archival"}, headers=headers_for(admin))

        body = response.json()["data"]
        assert body["organizationId"] == org.id
        assert body["recordsDeleted"] == 1
        remaining = [log.id for log in db.query(AuditLog).all()]
        assert own_log not in remaining
        assert rival_log in remaining
        assert db.query(ArchivedAuditLog).one().organization_id == org.id

    def test_admin_stats_and_jobs_are_tenant_scoped(self, client, db, org, admin, headers_for):
        rival = rival_org(db)
        now = datetime.utcnow()
        old_audit_log(db, org, 1, now)
        old_audit_log(db, rival, 1, now)
        old_audit_log(db, rival, 2, now)
        RetentionService(db).run_archival(now=now, triggered_by="rival", organization_id=rival.id)

        stats = client.post(
            "/api/v1/audit-logs/retention", json={"action": "get_stats"}, headers=headers_for(admin)
        ).json()["data"]
        jobs = client.post(
            "/api/v1/audit-logs/retention", json={"action": "get_jobs"}, headers=headers_for(admin)
        ).json()["data"]

        assert stats["activeAuditLogs"] == 1
        assert stats["lastJob"] is None
        assert jobs == []

    def test_system_run_applies_each_tenant_policy(self, db, org, user_factory):
        rival = rival_org(db)
        service = RetentionService(db)
        service.update_policy("audit_log", {"retentionDays": 1}, organization_id=org.id)
        now = datetime.utcnow()
        rival_log = old_audit_log(db, rival, 5, now).id
        old_audit_log(db, org, 5, now)
        old_audit_log(db, rival, 3000, now)
        rival_admin = user_factory("admin", organization_id=rival.id)
        db.add(
            OAuthState(
                state_token="rival-stale",
                user_id=rival_admin.id,
                provider="google_calendar",
                expires_at=now - timedelta(days=2),
                created_at=now - timedelta(days=2),
            )
        )
        db.commit()

        job = service.run_archival(now=now, triggered_by="system-cron")

        remaining = [log.id for log in db.query(AuditLog).all()]
        assert remaining == [rival_log]
        assert job.organization_id is None
        assert job.details["audit_log"]["deleted"] == 2
        assert str(org.id) in job.details["audit_log"]["tenantCutoffs"]
        assert db.query(OAuthState).count() == 0

    def test_tenant_run_keeps_other_tenants_notifications(self, db, org, guard, user_factory):
        rival = rival_org(db)
        rival_guard = user_factory("guard", organization_id=rival.id)
        now = datetime.utcnow()
        db.add_all(
            [
                Notification(
                    organization_id=org_id,
                    recipient_id=recipient,
                    title="Old",
                    message="Old",
                    created_at=now - timedelta(days=120),
                )
                for org_id, recipient in ((org.id, guard.id), (rival.id, rival_guard.id))
            ]
        )
        db.commit()

        RetentionService(db).run_archival(now=now, organization_id=org.id)

        assert [n.organization_id for n in db.query(Notification).all()] == [rival.id]
