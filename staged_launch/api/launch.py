"""
Launch API endpoints

Operator surface over the staged launch controller. Each route maps onto
one controller operation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from staged_launch.api.dependencies import get_api_key, get_controller
from staged_launch.core.errors import ConfigError, ErrorCode, UnknownFeatureError, build_error
from staged_launch.core.launch.controller import StagedLaunchController
from staged_launch.core.launch.models import LaunchMetrics, LaunchStage
from staged_launch.core.launch.validation import TestResults, generate_validation_report

logger = logging.getLogger(__name__)
router = APIRouter()


class StartRequest(BaseModel):
    feature_key: str = Field(..., description="Registered feature key")
    stage: LaunchStage = Field(LaunchStage.DEV, description="Stage to start at")


class AdvanceRequest(BaseModel):
    test_results: Optional[Dict[str, Any]] = Field(None, description="Test snapshot for validation")


class RollbackRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the feature is rolled back")


class ForceRequest(BaseModel):
    stage: LaunchStage
    reason: str = Field(..., min_length=1, description="Why the override is needed")


class MetricsSample(BaseModel):
    success_rate: float = Field(..., ge=0.0, le=1.0, allow_inf_nan=False)
    error_count: int = Field(..., ge=0)
    response_time_ms: float = Field(..., ge=0.0, allow_inf_nan=False)
    user_engagement: float = Field(..., ge=0.0, le=1.0, allow_inf_nan=False)
    timestamp: Optional[datetime] = None


class ValidateRequest(BaseModel):
    target_stage: Optional[LaunchStage] = Field(None, description="Defaults to the next stage")
    test_results: Optional[Dict[str, Any]] = None
    environment_checks: Optional[Dict[str, Optional[bool]]] = Field(
        None, description="Precomputed environment checks; probed when omitted"
    )


class AdvanceResponse(BaseModel):
    advanced: bool
    status: Dict[str, Any]


class MetricsResponse(BaseModel):
    rollback_triggered: bool
    status: Dict[str, Any]


class ValidateResponse(BaseModel):
    passed: bool
    errors: List[str]
    warnings: List[str]
    recommendations: List[str]
    report: str


def _not_found(exc: UnknownFeatureError) -> HTTPException:
    err = build_error(ErrorCode.UNKNOWN_FEATURE, exc.message, feature_key=exc.feature_key)
    return HTTPException(status_code=404, detail=err)


def _parse_test_results(data: Optional[Dict[str, Any]]) -> Optional[TestResults]:
    if data is None:
        return None
    try:
        return TestResults.from_dict(data)
    except (TypeError, ValueError) as e:
        err = build_error(ErrorCode.VALIDATION_FAILED, f"Malformed test results: {e}")
        raise HTTPException(status_code=422, detail=err)


@router.post("/start")
async def start_launch(
    payload: StartRequest,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    """Start (or restart) a launch."""
    try:
        status = await controller.start(payload.feature_key, payload.stage)
    except UnknownFeatureError as e:
        raise _not_found(e)
    except (ConfigError, ValueError) as e:
        err = build_error(ErrorCode.CONFIG_ERROR, str(e), feature_key=payload.feature_key)
        raise HTTPException(status_code=422, detail=err)
    return status.to_dict()


@router.post("/{feature_key}/advance", response_model=AdvanceResponse)
async def advance_launch(
    feature_key: str,
    payload: Optional[AdvanceRequest] = None,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    """Try to advance to the next stage. Refusal is not an error."""
    if not controller.registry.is_registered(feature_key):
        raise _not_found(UnknownFeatureError(feature_key))
    test_results = _parse_test_results(payload.test_results if payload else None)
    advanced = await controller.advance_stage(feature_key, test_results)
    return AdvanceResponse(
        advanced=advanced, status=controller.get_launch_status(feature_key).to_dict()
    )


@router.post("/{feature_key}/rollback")
async def rollback_launch(
    feature_key: str,
    payload: RollbackRequest,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    try:
        await controller.rollback(feature_key, payload.reason)
    except UnknownFeatureError as e:
        raise _not_found(e)
    return controller.get_launch_status(feature_key).to_dict()


@router.post("/{feature_key}/force")
async def force_launch_stage(
    feature_key: str,
    payload: ForceRequest,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    """Emergency override to an arbitrary stage."""
    try:
        status = await controller.force_stage(feature_key, payload.stage, payload.reason)
    except UnknownFeatureError as e:
        raise _not_found(e)
    return status.to_dict()


@router.post("/{feature_key}/metrics", response_model=MetricsResponse)
async def record_launch_metrics(
    feature_key: str,
    payload: MetricsSample,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    """Record a health sample; a breaching sample rolls the feature back."""
    sample = LaunchMetrics(**payload.model_dump(exclude_none=True))
    try:
        rolled_back = await controller.record_metrics(feature_key, sample)
    except UnknownFeatureError as e:
        raise _not_found(e)
    return MetricsResponse(
        rollback_triggered=rolled_back,
        status=controller.get_launch_status(feature_key).to_dict(),
    )


@router.get("/status")
async def list_launch_status(
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    return {"launches": [s.to_dict() for s in controller.list_launches()]}


@router.get("/metrics")
async def get_launch_metrics(
    feature: str = Query(..., description="Feature key"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Most recent N samples"),
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    if not controller.registry.is_registered(feature):
        raise _not_found(UnknownFeatureError(feature))
    samples = controller.metrics_store.recent(feature, limit)
    return {"feature_key": feature, "metrics": [m.to_dict() for m in samples]}


@router.get("/{feature_key}/status")
async def get_launch_status(
    feature_key: str,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    return controller.get_launch_status(feature_key).to_dict()


@router.post("/{feature_key}/validate", response_model=ValidateResponse)
async def validate_launch(
    feature_key: str,
    payload: Optional[ValidateRequest] = None,
    controller: StagedLaunchController = Depends(get_controller),
    api_key: str = Depends(get_api_key),
):
    """Dry-run pre-flight validation and render the markdown report."""
    payload = payload or ValidateRequest()
    test_results = _parse_test_results(payload.test_results)
    try:
        result, context = await controller.validate_launch(
            feature_key,
            target_stage=payload.target_stage,
            test_results=test_results,
            environment_checks=payload.environment_checks,
        )
    except UnknownFeatureError as e:
        raise _not_found(e)
    return ValidateResponse(
        **result.to_dict(), report=generate_validation_report(result, context)
    )
