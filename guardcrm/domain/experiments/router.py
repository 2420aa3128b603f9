"""A/B testing router - test management plus public visitor and conversion tracking"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_role
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter
from .schemas import ABTestCreate, ConversionRequest, StopTestRequest, VisitorAssignRequest
from .service import ExperimentService, serialize_test

router = APIRouter(prefix="/api/v1/experiments", tags=["A/B Testing"])

manager_access = require_role("manager")
tracking_limit = create_rate_limiter(limit=120, window_seconds=60, key_prefix="ab_tracking")


def get_experiment_service(db: Session = Depends(get_db)) -> ExperimentService:
    """Dependency injection for ExperimentService"""
    return ExperimentService(db)


# ============================================================================
# PUBLIC TRACKING
# ============================================================================


@router.post("/{test_id}/assign")
async def assign_visitor(
    test_id: int,
    data: VisitorAssignRequest,
    _: None = Depends(tracking_limit),
    service: ExperimentService = Depends(get_experiment_service),
):
    return service.assign_visitor(test_id, data)


@router.post("/{test_id}/conversions")
async def record_conversion(
    test_id: int,
    data: ConversionRequest,
    _: None = Depends(tracking_limit),
    service: ExperimentService = Depends(get_experiment_service),
):
    return service.record_conversion(test_id, data)


# ============================================================================
# TEST MANAGEMENT
# ============================================================================


@router.get("/running/summary")
async def get_running_summary(
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return service.get_running_summary(current_user)


@router.get("")
async def list_tests(
    status: Optional[str] = Query(None),
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return [serialize_test(t) for t in service.list_tests(current_user, status)]


@router.post("", status_code=201)
async def create_test(
    data: ABTestCreate,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return serialize_test(service.create_test(data, current_user))


@router.get("/{test_id}")
async def get_test(
    test_id: int,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return serialize_test(service.get_test(test_id, current_user))


@router.get("/{test_id}/results")
async def get_results(
    test_id: int,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return service.get_results(test_id, current_user)


@router.post("/{test_id}/launch")
async def launch_test(
    test_id: int,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return serialize_test(service.launch_test(test_id, current_user))


@router.post("/{test_id}/pause")
async def pause_test(
    test_id: int,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return serialize_test(service.pause_test(test_id, current_user))


@router.post("/{test_id}/resume")
async def resume_test(
    test_id: int,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    return serialize_test(service.resume_test(test_id, current_user))


@router.post("/{test_id}/stop")
async def stop_test(
    test_id: int,
    data: Optional[StopTestRequest] = None,
    current_user: User = Depends(manager_access),
    service: ExperimentService = Depends(get_experiment_service),
):
    notes = data.analysisNotes if data else None
    return serialize_test(service.stop_test(test_id, current_user, notes))
