"""
Integration tests for A/B test management and public visitor tracking.
"""

import pytest

from guardcrm.database import SessionLocal
from guardcrm.domain.experiments.schemas import ConversionRequest, VisitorAssignRequest
from guardcrm.domain.experiments.service import ExperimentService
from guardcrm.models import Organization
from guardcrm.models_experiment import ABTestVariant

TEST_PAYLOAD = {
    "name": "Application form layout",
    "testType": "form_variant",
    "hypothesis": "A shorter form gets more completed applications",
    "minimumSampleSize": 100,
    "variants": [
        {"name": "Control", "config": {"layout": "long"}, "trafficPercentage": 50},
        {"name": "Short form", "config": {"layout": "short"}, "trafficPercentage": 50},
    ],
}


@pytest.fixture
def running_test(client, manager, headers_for):
    response = client.post("/api/v1/experiments", json=TEST_PAYLOAD, headers=headers_for(manager))
    assert response.status_code == 201
    test_id = response.json()["id"]
    launched = client.post(f"/api/v1/experiments/{test_id}/launch", headers=headers_for(manager))
    assert launched.status_code == 200
    return launched.json()


@pytest.mark.integration
class TestExperimentSetup:
    def test_create_marks_first_variant_as_control(self, client, manager, headers_for):
        response = client.post("/api/v1/experiments", json=TEST_PAYLOAD, headers=headers_for(manager))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "draft"
        assert [v["isControl"] for v in body["variants"]] == [True, False]
        assert body["variants"][1]["config"] == {"layout": "short"}

    def test_traffic_must_sum_to_100(self, client, manager, headers_for):
        payload = dict(TEST_PAYLOAD)
        payload["variants"] = [
            {"name": "Control", "trafficPercentage": 50},
            {"name": "Short form", "trafficPercentage": 40},
        ]

        response = client.post("/api/v1/experiments", json=payload, headers=headers_for(manager))

        assert response.status_code == 400
        assert "Traffic percentages must sum to 100" in response.json()["detail"]

    def test_launch_requires_two_variants(self, client, manager, headers_for):
        payload = dict(TEST_PAYLOAD)
        payload["variants"] = [{"name": "Only", "trafficPercentage": 100}]
        test_id = client.post("/api/v1/experiments", json=payload, headers=headers_for(manager)).json()["id"]

        response = client.post(f"/api/v1/experiments/{test_id}/launch", headers=headers_for(manager))

        assert response.status_code == 400
        assert "two variants" in response.json()["detail"]

    def test_launch_only_from_draft(self, client, manager, headers_for, running_test):
        response = client.post(f"/api/v1/experiments/{running_test['id']}/launch", headers=headers_for(manager))

        assert response.status_code == 400

    def test_guard_cannot_manage_tests(self, client, guard, headers_for):
        assert client.get("/api/v1/experiments", headers=headers_for(guard)).status_code == 403
        assert client.post("/api/v1/experiments", json=TEST_PAYLOAD, headers=headers_for(guard)).status_code == 403

    def test_list_by_status(self, client, manager, headers_for, running_test):
        client.post("/api/v1/experiments", json=TEST_PAYLOAD, headers=headers_for(manager))

        everything = client.get("/api/v1/experiments", headers=headers_for(manager)).json()
        running = client.get("/api/v1/experiments", params={"status": "running"}, headers=headers_for(manager)).json()

        assert len(everything) == 2
        assert [t["id"] for t in running] == [running_test["id"]]


@pytest.mark.integration
class TestVisitorTracking:
    def test_assignment_before_launch_is_rejected(self, client, manager, headers_for):
        test_id = client.post("/api/v1/experiments", json=TEST_PAYLOAD, headers=headers_for(manager)).json()["id"]

        response = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Test is not running"

    def test_assignment_is_deterministic_and_sticky(self, client, running_test):
        test_id = running_test["id"]
        control, short_form = running_test["variants"]

        first = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"}).json()
        again = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"}).json()
        other = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "a"}).json()

        assert first["variantId"] == control["id"]
        assert first["isNewAssignment"] is True
        assert again["variantId"] == control["id"]
        assert again["isNewAssignment"] is False
        assert other["variantId"] == short_form["id"]
        assert other["config"] == {"layout": "short"}

    def test_repeat_visit_does_not_count_twice(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        for _ in range(3):
            client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"})

        detail = client.get(f"/api/v1/experiments/{test_id}", headers=headers_for(manager)).json()

        assert [v["visitors"] for v in detail["variants"]] == [1, 0]

    def test_conversion_requires_assignment(self, client, running_test):
        response = client.post(
            f"/api/v1/experiments/{running_test['id']}/conversions", json={"visitorId": "stranger"}
        )

        assert response.status_code == 400

    def test_conversion_recorded_once(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "a"})

        first = client.post(f"/api/v1/experiments/{test_id}/conversions", json={"visitorId": "a"}).json()
        second = client.post(f"/api/v1/experiments/{test_id}/conversions", json={"visitorId": "a"}).json()
        detail = client.get(f"/api/v1/experiments/{test_id}", headers=headers_for(manager)).json()

        assert first == {"recorded": True, "message": "Conversion recorded", "variantId": running_test["variants"][1]["id"]}
        assert second == {"recorded": False, "message": "Conversion already recorded"}
        assert detail["variants"][1]["conversions"] == 1

    def test_counters_survive_a_stale_session(self, db, manager, running_test):
        test_id = running_test["id"]
        short_form_id = running_test["variants"][1]["id"]
        stale = ExperimentService(db)
        loaded = stale.get_test(test_id, manager)
        assert [v.visitors for v in loaded.variants] == [0, 0]
        other = SessionLocal()
        try:
            first = ExperimentService(other).assign_visitor(test_id, VisitorAssignRequest(visitorId="a"))
            ExperimentService(other).record_conversion(test_id, ConversionRequest(visitorId="a"))
        finally:
            other.close()

        second = stale.assign_visitor(test_id, VisitorAssignRequest(visitorId="b"))
        stale.record_conversion(test_id, ConversionRequest(visitorId="b"))

        db.expire_all()
        variant = db.get(ABTestVariant, short_form_id)
        assert first["variantId"] == second["variantId"] == short_form_id
        assert variant.visitors == 2
        assert variant.conversions == 2

    def test_paused_test_keeps_existing_assignments(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"})
        client.post(f"/api/v1/experiments/{test_id}/pause", headers=headers_for(manager))

        returning = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"})
        newcomer = client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "a"})

        assert returning.status_code == 200
        assert returning.json()["isNewAssignment"] is False
        assert newcomer.status_code == 400

    def test_unknown_test_is_404(self, client):
        response = client.post("/api/v1/experiments/9999/assign", json={"visitorId": "ab"})

        assert response.status_code == 404


@pytest.mark.integration
class TestExperimentLifecycle:
    def test_pause_and_resume(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]

        paused = client.post(f"/api/v1/experiments/{test_id}/pause", headers=headers_for(manager))
        paused_again = client.post(f"/api/v1/experiments/{test_id}/pause", headers=headers_for(manager))
        resumed = client.post(f"/api/v1/experiments/{test_id}/resume", headers=headers_for(manager))

        assert paused.json()["status"] == "paused"
        assert paused_again.status_code == 400
        assert resumed.json()["status"] == "running"

    def test_resume_requires_paused(self, client, manager, headers_for, running_test):
        response = client.post(f"/api/v1/experiments/{running_test['id']}/resume", headers=headers_for(manager))

        assert response.status_code == 400

    def test_results(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        for visitor in ("a", "ab"):
            client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": visitor})
        client.post(f"/api/v1/experiments/{test_id}/conversions", json={"visitorId": "a"})

        results = client.get(f"/api/v1/experiments/{test_id}/results", headers=headers_for(manager)).json()

        assert results["totalVisitors"] == 2
        assert results["totalConversions"] == 1
        assert results["isSignificant"] is False
        assert [v["visitors"] for v in results["variants"]] == [1, 1]
        assert results["variants"][1]["conversionRate"] == 1.0

    def test_stop_without_significance_keeps_control(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "a"})
        client.post(f"/api/v1/experiments/{test_id}/conversions", json={"visitorId": "a"})

        response = client.post(
            f"/api/v1/experiments/{test_id}/stop",
            json={"analysisNotes": "Too little traffic to call it"},
            headers=headers_for(manager),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "completed"
        assert body["winnerVariantId"] == running_test["variants"][0]["id"]
        assert body["analysisNotes"] == "Too little traffic to call it"
        assert body["results"]["totalVisitors"] == 1
        assert body["endedAt"] is not None

    def test_completed_test_cannot_stop_or_track(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        client.post(f"/api/v1/experiments/{test_id}/stop", headers=headers_for(manager))

        assert client.post(f"/api/v1/experiments/{test_id}/stop", headers=headers_for(manager)).status_code == 400
        assert client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "ab"}).status_code == 400

    def test_running_summary(self, client, manager, headers_for, running_test):
        test_id = running_test["id"]
        client.post(f"/api/v1/experiments/{test_id}/assign", json={"visitorId": "a"})
        client.post(f"/api/v1/experiments/{test_id}/conversions", json={"visitorId": "a"})

        summary = client.get("/api/v1/experiments/running/summary", headers=headers_for(manager)).json()

        assert summary == [
            {
                "testId": test_id,
                "name": "Application form layout",
                "visitors": 1,
                "conversions": 1,
                "isSignificant": False,
                "leadingVariant": "Short form",
            }
        ]

    def test_other_tenant_cannot_see_test(self, client, db, headers_for, user_factory, running_test):
        rival = Organization(name="Rival Guards", slug="rival-guards")
        db.add(rival)
        db.commit()
        outsider = user_factory("manager", organization_id=rival.id)

        response = client.get(f"/api/v1/experiments/{running_test['id']}", headers=headers_for(outsider))

        assert response.status_code == 404
