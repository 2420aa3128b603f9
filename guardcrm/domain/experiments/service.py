"""A/B testing service - test lifecycle, visitor assignment, conversions and analysis"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import User
from ...models_experiment import ABTest, ABTestConversion, ABTestVariant, VisitorAssignment
from ...utils.sanitization import sanitize_dict, sanitize_text
from .schemas import ABTestCreate, ConversionRequest, VisitorAssignRequest
from .statistics import ExperimentError, analyze, pick_variant, select_winner, validate_traffic_split

logger = logging.getLogger(__name__)


def serialize_test(test: ABTest) -> dict:
    return {
        "id": test.id,
        "name": test.name,
        "description": test.description,
        "testType": test.test_type,
        "hypothesis": test.hypothesis,
        "successMetric": test.success_metric,
        "status": test.status,
        "confidenceLevel": test.confidence_level,
        "minimumSampleSize": test.minimum_sample_size,
        "minimumEffectSize": test.minimum_effect_size,
        "winnerVariantId": test.winner_variant_id,
        "results": test.results,
        "analysisNotes": test.analysis_notes,
        "startedAt": test.started_at,
        "endedAt": test.ended_at,
        "createdAt": test.created_at,
        "variants": [
            {
                "id": v.id,
                "name": v.name,
                "description": v.description,
                "config": v.config or {},
                "trafficPercentage": v.traffic_percentage,
                "isControl": v.is_control,
                "visitors": v.visitors,
                "conversions": v.conversions,
            }
            for v in test.variants
        ],
    }


def _variant_counts(test: ABTest) -> list[dict]:
    return [
        {
            "id": v.id,
            "name": v.name,
            "visitors": v.visitors or 0,
            "conversions": v.conversions or 0,
            "is_control": v.is_control,
        }
        for v in test.variants
    ]


class ExperimentService:
    def __init__(self, db: Session):
        self.db = db

    def _get_test(self, test_id: int, organization_id: Optional[int] = None) -> ABTest:
        query = self.db.query(ABTest).filter(ABTest.id == test_id)
        if organization_id is not None:
            query = query.filter(ABTest.organization_id == organization_id)
        test = query.first()
        if not test:
            raise HTTPException(status_code=404, detail="Test not found")
        return test

    def get_test(self, test_id: int, user: User) -> ABTest:
        return self._get_test(test_id, user.organization_id)

    def list_tests(self, user: User, status: Optional[str] = None) -> list[ABTest]:
        query = self.db.query(ABTest).filter(ABTest.organization_id == user.organization_id)
        if status:
            query = query.filter(ABTest.status == status)
        return query.order_by(ABTest.created_at.desc(), ABTest.id.desc()).all()

    def create_test(self, data: ABTestCreate, user: User) -> ABTest:
        try:
            validate_traffic_split([v.trafficPercentage for v in data.variants])
        except ExperimentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        test = ABTest(
            organization_id=user.organization_id,
            name=sanitize_text(data.name, 255),
            description=sanitize_text(data.description, 2000) if data.description else None,
            test_type=data.testType,
            hypothesis=sanitize_text(data.hypothesis, 2000) if data.hypothesis else None,
            success_metric=data.successMetric,
            status="draft",
            confidence_level=data.confidenceLevel,
            minimum_sample_size=data.minimumSampleSize,
            minimum_effect_size=data.minimumEffectSize,
            created_by=user.id,
        )
        for position, variant in enumerate(data.variants):
            test.variants.append(
                ABTestVariant(
                    position=position,
                    name=sanitize_text(variant.name, 255),
                    description=sanitize_text(variant.description, 2000) if variant.description else None,
                    config=sanitize_dict(variant.config),
                    traffic_percentage=variant.trafficPercentage,
                    is_control=position == 0,
                    visitors=0,
                    conversions=0,
                )
            )
        self.db.add(test)
        self.db.commit()
        self.db.refresh(test)
        logger.info(f"🆕 A/B test {test.id} '{test.name}' created with {len(data.variants)} variants")
        return test

    def launch_test(self, test_id: int, user: User) -> ABTest:
        test = self.get_test(test_id, user)
        if test.status != "draft":
            raise HTTPException(status_code=400, detail=f"Only draft tests can be launched (test is {test.status})")
        if len(test.variants) < 2:
            raise HTTPException(status_code=400, detail="A test needs at least two variants")
        try:
            validate_traffic_split([v.traffic_percentage for v in test.variants])
        except ExperimentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if not any(v.is_control for v in test.variants):
            raise HTTPException(status_code=400, detail="A test needs a control variant")

        test.status = "running"
        test.started_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(test)
        logger.info(f"🚀 A/B test {test.id} launched")
        return test

    # ========================================================================
    # VISITORS
    # ========================================================================

    def assign_visitor(self, test_id: int, data: VisitorAssignRequest) -> dict:
        """Deterministic variant for a visitor; repeat calls return the stored assignment"""
        test = self._get_test(test_id)
        existing = self._assignment(test.id, data.visitorId)
        if existing:
            return self._assignment_view(test, existing, is_new=False)
        if test.status != "running":
            raise HTTPException(status_code=400, detail="Test is not running")

        variant = pick_variant(data.visitorId, list(test.variants))
        assignment = VisitorAssignment(
            test_id=test.id,
            variant_id=variant.id,
            visitor_id=data.visitorId,
            user_agent=data.userAgent,
            referrer=data.referrer,
        )
        self.db.add(assignment)
        try:
            self._increment(variant.id, ABTestVariant.visitors)
            self.db.commit()
        except IntegrityError:
            # Concurrent first visit for the same visitor
            self.db.rollback()
            existing = self._assignment(test.id, data.visitorId)
            if not existing:
                raise
            return self._assignment_view(test, existing, is_new=False)
        self.db.refresh(assignment)
        return self._assignment_view(test, assignment, is_new=True)

    def _increment(self, variant_id: int, counter) -> None:
        """Counter bump done in SQL so concurrent requests do not lose updates"""
        self.db.query(ABTestVariant).filter(ABTestVariant.id == variant_id).update(
            {counter: func.coalesce(counter, 0) + 1}, synchronize_session=False
        )

    def _assignment(self, test_id: int, visitor_id: str) -> Optional[VisitorAssignment]:
        return (
            self.db.query(VisitorAssignment)
            .filter(VisitorAssignment.test_id == test_id, VisitorAssignment.visitor_id == visitor_id)
            .first()
        )

    def _assignment_view(self, test: ABTest, assignment: VisitorAssignment, is_new: bool) -> dict:
        variant = next(v for v in test.variants if v.id == assignment.variant_id)
        return {
            "testId": test.id,
            "variantId": variant.id,
            "variantName": variant.name,
            "config": variant.config or {},
            "isNewAssignment": is_new,
        }

    def record_conversion(self, test_id: int, data: ConversionRequest) -> dict:
        test = self._get_test(test_id)
        assignment = self._assignment(test.id, data.visitorId)
        if not assignment:
            raise HTTPException(status_code=400, detail="Visitor has no assignment for this test")

        existing = (
            self.db.query(ABTestConversion)
            .filter(ABTestConversion.test_id == test.id, ABTestConversion.visitor_id == data.visitorId)
            .first()
        )
        if existing:
            return {"recorded": False, "message": "Conversion already recorded"}

        self.db.add(
            ABTestConversion(
                test_id=test.id,
                variant_id=assignment.variant_id,
                visitor_id=data.visitorId,
                conversion_value=data.conversionValue,
                conversion_data=sanitize_dict(data.conversionData) if data.conversionData else None,
            )
        )
        try:
            self._increment(assignment.variant_id, ABTestVariant.conversions)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return {"recorded": False, "message": "Conversion already recorded"}
        return {"recorded": True, "message": "Conversion recorded", "variantId": assignment.variant_id}

    # ========================================================================
    # ANALYSIS
    # ========================================================================

    def get_results(self, test_id: int, user: User) -> dict:
        test = self.get_test(test_id, user)
        try:
            analysis = analyze(
                _variant_counts(test), test.confidence_level, test.minimum_sample_size, test.minimum_effect_size
            )
        except ExperimentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return analysis.to_dict()

    def stop_test(self, test_id: int, user: User, analysis_notes: Optional[str] = None) -> ABTest:
        test = self.get_test(test_id, user)
        if test.status not in ("running", "paused"):
            raise HTTPException(status_code=400, detail=f"Cannot stop a {test.status} test")
        try:
            analysis = analyze(
                _variant_counts(test), test.confidence_level, test.minimum_sample_size, test.minimum_effect_size
            )
        except ExperimentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        winner = select_winner(analysis)
        test.status = "completed"
        test.ended_at = datetime.utcnow()
        test.winner_variant_id = winner.variant_id
        test.results = analysis.to_dict()
        if analysis_notes:
            test.analysis_notes = sanitize_text(analysis_notes)
        self.db.commit()
        self.db.refresh(test)
        logger.info(f"🏁 A/B test {test.id} completed, winner variant {winner.variant_id}")
        return test

    def pause_test(self, test_id: int, user: User) -> ABTest:
        test = self.get_test(test_id, user)
        if test.status != "running":
            raise HTTPException(status_code=400, detail="Only running tests can be paused")
        test.status = "paused"
        self.db.commit()
        self.db.refresh(test)
        return test

    def resume_test(self, test_id: int, user: User) -> ABTest:
        test = self.get_test(test_id, user)
        if test.status != "paused":
            raise HTTPException(status_code=400, detail="Only paused tests can be resumed")
        test.status = "running"
        self.db.commit()
        self.db.refresh(test)
        return test

    def get_running_summary(self, user: User) -> list[dict]:
        summary = []
        for test in self.list_tests(user, status="running"):
            analysis = analyze(
                _variant_counts(test), test.confidence_level, test.minimum_sample_size, test.minimum_effect_size
            )
            leader = max(analysis.variants, key=lambda v: v.conversion_rate)
            summary.append(
                {
                    "testId": test.id,
                    "name": test.name,
                    "visitors": analysis.total_visitors,
                    "conversions": analysis.total_conversions,
                    "isSignificant": analysis.significance.is_significant,
                    "leadingVariant": leader.name,
                }
            )
        return summary
