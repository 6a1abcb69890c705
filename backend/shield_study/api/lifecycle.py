"""Lifecycle endpoints for the host runtime.

The host calls one endpoint per add-on lifecycle hook. Events are handled
serially by the coordinator held on app state.
"""
from fastapi import APIRouter, Depends, HTTPException, Request

from shield_study.middleware.auth import require_host_key
from shield_study.middleware.logging import get_logger
from shield_study.schemas.lifecycle import (
    AddonEventRequest,
    LifecycleEventResponse,
    StudyInfoResponse,
)
from shield_study.services.coordinator import LifecycleCoordinator
from shield_study.services.study_utils import StudyNotConfiguredError
from shield_study.services.variations import ConfigurationError

router = APIRouter()
logger = get_logger()


def get_coordinator(request: Request) -> LifecycleCoordinator:
    """Dependency returning the coordinator built at startup."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Study coordinator is not initialized")
    return coordinator


def build_response(event: str, event_request: AddonEventRequest, coordinator: LifecycleCoordinator) -> LifecycleEventResponse:
    snapshot = coordinator.snapshot()
    return LifecycleEventResponse(
        event=event,
        reason=event_request.reason.name,
        state=snapshot["state"],
        ending_reason=snapshot["ending_reason"],
        variation=snapshot["variation"],
        uninstall_requested=snapshot["uninstall_requested"]
    )


@router.post("/addon/install", response_model=LifecycleEventResponse)
async def addon_install(
    event_request: AddonEventRequest,
    host_key: str = Depends(require_host_key),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Install notification. Observed and logged only."""
    coordinator.on_install(event_request.addon, event_request.reason)
    return build_response("install", event_request, coordinator)


@router.post("/addon/startup", response_model=LifecycleEventResponse)
async def addon_startup(
    event_request: AddonEventRequest,
    host_key: str = Depends(require_host_key),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """
    Startup event.

    - Resolves the variation (operator override first)
    - On INSTALL/UPGRADE checks eligibility
    - Starts the feature unless the study has expired
    """
    try:
        await coordinator.startup(event_request.addon, event_request.reason)
    except ConfigurationError as e:
        logger.error(
            "startup_configuration_error",
            addon_id=event_request.addon.id,
            error=str(e)
        )
        raise HTTPException(status_code=500, detail=str(e))

    return build_response("startup", event_request, coordinator)


@router.post("/addon/shutdown", response_model=LifecycleEventResponse)
async def addon_shutdown(
    event_request: AddonEventRequest,
    host_key: str = Depends(require_host_key),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Shutdown event. Only UNINSTALL/DISABLE tear the study down."""
    await coordinator.shutdown(event_request.addon, event_request.reason)
    return build_response("shutdown", event_request, coordinator)


@router.post("/addon/uninstall", response_model=LifecycleEventResponse)
async def addon_uninstall(
    event_request: AddonEventRequest,
    host_key: str = Depends(require_host_key),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Uninstall notification. Observed and logged only."""
    coordinator.on_uninstall(event_request.addon, event_request.reason)
    return build_response("uninstall", event_request, coordinator)


@router.get("/study/info", response_model=StudyInfoResponse)
async def study_info(
    host_key: str = Depends(require_host_key),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Snapshot of the coordinator and, once set up, the study service."""
    try:
        study = coordinator.study.info()
    except StudyNotConfiguredError:
        study = None

    return StudyInfoResponse(coordinator=coordinator.snapshot(), study=study)
