"""
Integration tests for the hiring board: applications, stage moves, comments and presence.
"""

import pytest

from guardcrm.models import Lead
from guardcrm.models_audit import AuditLog
from guardcrm.models_hiring import GuardApplication
from guardcrm.models_notification import Notification
from guardcrm.services.realtime import board_channel, hub

APPLICATION = {
    "firstName": "Sam",
    "lastName": "Ortiz",
    "email": "Sam@Example.com",
    "phone": "415-555-0199",
    "priority": 3,
    "applicationData": {"ssn": "123-45-6789", "date_of_birth": "1990-04-02", "shirtSize": "L"},
}


@pytest.fixture
def create_application(client, manager, headers_for):
    def _create(**overrides):
        response = client.post(
            "/api/v1/hiring/applications", json={**APPLICATION, **overrides}, headers=headers_for(manager)
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


def transition(client, headers, application_id, new_stage, **extra):
    return client.post(
        f"/api/v1/hiring/applications/{application_id}/transition",
        json={"newStage": new_stage, **extra},
        headers=headers,
    )


@pytest.mark.integration
class TestApplications:
    def test_sensitive_fields_encrypted_and_masked(self, db, create_application):
        application = create_application()

        assert application["pipelineStage"] == "application_received"
        assert application["applicationReference"].startswith("APP-")
        assert application["applicationData"]["ssn"] == "[encrypted]"
        assert application["applicationData"]["shirtSize"] == "L"
        stored = db.query(GuardApplication).one().application_data
        assert "123-45-6789" not in str(stored)

    def test_admin_reads_decrypted_fields_with_audit(self, db, client, admin, headers_for, create_application):
        application = create_application()

        response = client.get(f"/api/v1/hiring/applications/{application['id']}/sensitive", headers=headers_for(admin))

        assert response.json() == {"ssn": "123-45-6789", "date_of_birth": "1990-04-02", "driver_license": None}
        assert db.query(AuditLog).filter(AuditLog.action == "pii_access").count() == 1

    def test_manager_cannot_read_sensitive_fields(self, client, manager, headers_for, create_application):
        application = create_application()

        response = client.get(
            f"/api/v1/hiring/applications/{application['id']}/sensitive", headers=headers_for(manager)
        )

        assert response.status_code == 403

    def test_guard_has_no_access(self, client, guard, headers_for):
        assert client.get("/api/v1/hiring/board", headers=headers_for(guard)).status_code == 403

    def test_lead_must_be_guard_lead(self, db, org, client, manager, headers_for):
        lead = Lead(organization_id=org.id, lead_type="client", first_name="A", last_name="B", email="a@b.example")
        db.add(lead)
        db.commit()

        response = client.post(
            "/api/v1/hiring/applications", json={**APPLICATION, "leadId": lead.id}, headers=headers_for(manager)
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestStageTransitions:
    def test_move_records_history_comment_and_audit(self, db, client, manager, headers_for, create_application, sent_emails):
        application = create_application()

        response = transition(
            client, headers_for(manager), application["id"], "under_review", notes="Strong references"
        )
        history = client.get(
            f"/api/v1/hiring/applications/{application['id']}/history", headers=headers_for(manager)
        ).json()
        comments = client.get(
            f"/api/v1/hiring/applications/{application['id']}/comments", headers=headers_for(manager)
        ).json()

        assert response.json()["pipelineStage"] == "under_review"
        assert response.json()["workflowNotes"] == "Strong references"
        assert [(h["fromStage"], h["toStage"]) for h in history] == [
            ("application_received", "under_review"),
            (None, "application_received"),
        ]
        assert comments[0]["commentType"] == "system_notification"
        assert comments[0]["authorName"] == "System"
        assert comments[0]["commentText"] == (
            "Stage changed from Application Received to Under Review: Strong references"
        )
        assert db.query(AuditLog).filter(AuditLog.action == "application_stage_change").count() == 1

    def test_disallowed_move(self, client, manager, headers_for, create_application):
        application = create_application()

        response = transition(client, headers_for(manager), application["id"], "profile_created")

        assert response.status_code == 400

    def test_stale_expected_stage_conflicts(self, client, manager, headers_for, create_application):
        application = create_application()
        transition(client, headers_for(manager), application["id"], "under_review")

        response = transition(
            client, headers_for(manager), application["id"], "approved", expectedStage="application_received"
        )

        assert response.status_code == 409
        assert response.json()["detail"]["currentStage"] == "under_review"
        assert response.json()["detail"]["application"]["id"] == application["id"]

    def test_stage_email_sent_for_templated_stage(self, client, manager, headers_for, create_application, sent_emails):
        application = create_application()
        transition(client, headers_for(manager), application["id"], "under_review")

        transition(client, headers_for(manager), application["id"], "interview_scheduled")

        assert [e["to"] for e in sent_emails] == ["sam@example.com"]

    def test_profile_created_marks_lead_hired(self, db, org, client, manager, headers_for, create_application, sent_emails):
        lead = Lead(organization_id=org.id, lead_type="guard", first_name="Sam", last_name="Ortiz", email="sam@example.com")
        db.add(lead)
        db.commit()
        application = create_application(leadId=lead.id)

        for stage in ("under_review", "approved", "profile_created"):
            assert transition(client, headers_for(manager), application["id"], stage).status_code == 200

        db.refresh(lead)
        assert lead.application_status == "profile_created"
        assert lead.converted_to_hire is True

    def test_move_broadcasts_to_board(self, client, manager, headers_for, create_application):
        application = create_application()

        transition(client, headers_for(manager), application["id"], "under_review")

        events = hub.recent_events(board_channel(manager.organization_id, "hiring"))
        assert events[-1]["type"] == "stage_changed"
        assert events[-1]["payload"]["toStage"] == "under_review"


@pytest.mark.integration
class TestBoard:
    def test_columns_follow_stage_order(self, client, manager, headers_for, create_application):
        create_application()
        create_application(email="kim@example.com", firstName="Kim", priority=1)

        board = client.get("/api/v1/hiring/board", headers=headers_for(manager)).json()

        assert board["columns"][0]["stage"] == "lead_captured"
        received = next(c for c in board["columns"] if c["stage"] == "application_received")
        assert [a["firstName"] for a in received["applications"]] == ["Kim", "Sam"]
        assert board["totalApplications"] == 2

    def test_stage_filter_and_search(self, client, manager, headers_for, create_application):
        create_application()

        board = client.get(
            "/api/v1/hiring/board",
            params={"stages": ["application_received"], "search": "ortiz"},
            headers=headers_for(manager),
        ).json()

        assert [c["stage"] for c in board["columns"]] == ["application_received"]
        assert board["totalApplications"] == 1

    def test_bulk_assign_and_priority(self, client, manager, guard, headers_for, create_application):
        application = create_application()

        assigned = client.post(
            "/api/v1/hiring/applications/bulk",
            json={"applicationIds": [application["id"]], "action": "assign", "data": {"assignedTo": manager.id}},
            headers=headers_for(manager),
        ).json()
        rejected = client.post(
            "/api/v1/hiring/applications/bulk",
            json={"applicationIds": [application["id"]], "action": "assign", "data": {"assignedTo": guard.id}},
            headers=headers_for(manager),
        ).json()
        mine = client.get("/api/v1/hiring/board", params={"onlyMine": True}, headers=headers_for(manager)).json()

        assert assigned["status"] == "completed"
        assert rejected["results"][0] == {
            "applicationId": application["id"],
            "success": False,
            "error": "Assignee must be an active manager",
        }
        assert mine["totalApplications"] == 1


@pytest.mark.integration
class TestComments:
    def test_threaded_comments_and_mentions(self, db, client, manager, admin, headers_for, create_application):
        application = create_application()
        url = f"/api/v1/hiring/applications/{application['id']}/comments"

        parent = client.post(
            url, json={"commentText": f"<b>Great</b> candidate @{admin.id}"}, headers=headers_for(manager)
        ).json()
        client.post(
            url, json={"commentText": "Agreed", "parentCommentId": parent["id"]}, headers=headers_for(admin)
        )
        thread = client.get(url, headers=headers_for(manager)).json()

        assert parent["mentions"] == [str(admin.id)]
        assert len(thread) == 1
        assert thread[0]["replies"][0]["commentText"] == "Agreed"
        mention = db.query(Notification).filter(Notification.recipient_id == admin.id).one()
        assert mention.category == "hiring"

    def test_script_is_stripped(self, client, manager, headers_for, create_application):
        application = create_application()

        comment = client.post(
            f"/api/v1/hiring/applications/{application['id']}/comments",
            json={"commentText": "ok<script>alert(1)</script>"},
            headers=headers_for(manager),
        ).json()

        assert "<script>" not in comment["commentText"]

    def test_only_author_edits(self, client, manager, admin, headers_for, create_application):
        application = create_application()
        comment = client.post(
            f"/api/v1/hiring/applications/{application['id']}/comments",
            json={"commentText": "First draft"},
            headers=headers_for(manager),
        ).json()

        other = client.patch(
            f"/api/v1/hiring/comments/{comment['id']}", json={"commentText": "Hijack"}, headers=headers_for(admin)
        )
        own = client.patch(
            f"/api/v1/hiring/comments/{comment['id']}", json={"commentText": "Final"}, headers=headers_for(manager)
        )

        assert other.status_code == 403
        assert own.json()["commentText"] == "Final"

    def test_admin_soft_deletes(self, client, manager, admin, headers_for, create_application):
        application = create_application()
        url = f"/api/v1/hiring/applications/{application['id']}/comments"
        comment = client.post(url, json={"commentText": "Remove me"}, headers=headers_for(manager)).json()

        client.delete(f"/api/v1/hiring/comments/{comment['id']}", headers=headers_for(admin))

        assert client.get(url, headers=headers_for(manager)).json() == []
        deleted = client.get(url, params={"includeDeleted": True}, headers=headers_for(manager)).json()
        assert deleted[0]["isDeleted"] is True


@pytest.mark.integration
class TestPresence:
    def test_join_heartbeat_leave(self, client, manager, admin, headers_for):
        client.post("/api/v1/hiring/presence/join", headers=headers_for(manager))
        joined = client.post("/api/v1/hiring/presence/join", headers=headers_for(admin)).json()
        beat = client.post("/api/v1/hiring/presence/heartbeat", headers=headers_for(manager)).json()

        client.post("/api/v1/hiring/presence/leave", headers=headers_for(admin))
        remaining = client.get("/api/v1/hiring/presence", headers=headers_for(manager)).json()

        assert {v["userId"] for v in joined["viewers"]} == {manager.id, admin.id}
        assert len(beat["viewers"]) == 2
        assert [v["userId"] for v in remaining["viewers"]] == [manager.id]
