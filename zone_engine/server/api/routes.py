# zone_engine/server/api/routes.py

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

import zone_engine.node.utils.time_utils as time_utils
from zone_engine.__version__ import __version__
from zone_engine.node.core.controller.controller_core import ControllerCore
from zone_engine.node.core.enums import ErrorKind
from zone_engine.node.core.models import ControlResult
from zone_engine.node.core.zone_manager import ZoneManager
from zone_engine.node.exceptions import ScheduleValidationError, ValidationError
from zone_engine.node.utils.logger import get_recent_log_handler
from zone_engine.server.schemas import (
    ControlResponse,
    CreateScheduleRequest,
    HealthResponse,
    LogsResponse,
    RainDelayModel,
    RainDelayRequest,
    RainDelayResponse,
    ScheduleModel,
    StartZoneRequest,
    StatusResponse,
    UpdateScheduleRequest,
    ZoneModel,
    last_run_model,
    run_log_models,
    schedule_model,
)


router = APIRouter()

RECENT_RUNS_IN_STATUS = 5

ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.POLICY: 409,
    ErrorKind.HARDWARE: 502,
}


# ===========================================================================================================
# Dependencies & helpers
# ===========================================================================================================

def get_controller(request: Request) -> ControllerCore:
    return request.app.state.controller

def get_zone_manager(controller: ControllerCore = Depends(get_controller)) -> ZoneManager:
    return controller.zone_manager


def control_response(result: ControlResult) -> JSONResponse:
    """Translate a ControlResult into a {success, message} response with a matching status code."""
    status_code = 200 if result.success else ERROR_STATUS_CODES.get(result.error, 400)
    body = ControlResponse(success=result.success, message=result.message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


def failure_response(status_code: int, message: str) -> JSONResponse:
    body = ControlResponse(success=False, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


# ===========================================================================================================
# Health & status
# ===========================================================================================================

@router.get("/health", summary="Liveness and basic runtime information", response_model=HealthResponse)
def health(request: Request, controller: ControllerCore = Depends(get_controller)):
    started_at = getattr(request.app.state, "started_at", None) or time_utils.now()
    now = time_utils.now()
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_sec=max(0, time_utils.elapsed_seconds(started_at, now)),
        relay_mode=controller.relay_driver.mode.value,
        scheduler_running=controller.task_scheduler.is_running,
        recent_messages=[message for _, message in get_recent_log_handler().logs],
        timestamp=now,
    )


@router.get("/status", summary="Current engine snapshot", response_model=StatusResponse)
def status(zone_manager: ZoneManager = Depends(get_zone_manager)):
    snapshot = zone_manager.get_status()
    return StatusResponse(
        active_zone_id=snapshot.active_zone_id,
        active_zone_name=snapshot.active_zone_name,
        time_remaining=snapshot.time_remaining,
        elapsed_sec=snapshot.elapsed_sec,
        rain_delay=RainDelayModel.model_validate(snapshot.rain_delay),
        last_run=last_run_model(snapshot.last_run),
        recent_runs=run_log_models(zone_manager.get_recent_runs(RECENT_RUNS_IN_STATUS)),
        heartbeat=snapshot.heartbeat,
    )


# ===========================================================================================================
# Zones
# ===========================================================================================================

@router.get("/zones", summary="List configured zones", response_model=list[ZoneModel])
def list_zones(zone_manager: ZoneManager = Depends(get_zone_manager)):
    return [ZoneModel.model_validate(zone) for zone in zone_manager.get_zones()]


@router.post("/zones/{zone_id}/start", summary="Start a zone, stopping any other active zone",
             response_model=ControlResponse)
def start_zone(zone_id: int, req: StartZoneRequest | None = None,
               zone_manager: ZoneManager = Depends(get_zone_manager)):
    duration = req.duration if req is not None else None
    return control_response(zone_manager.start_zone(zone_id, duration))


@router.post("/zones/{zone_id}/stop", summary="Stop a zone", response_model=ControlResponse)
def stop_zone(zone_id: int, zone_manager: ZoneManager = Depends(get_zone_manager)):
    return control_response(zone_manager.stop_zone(zone_id))


# ===========================================================================================================
# Run log
# ===========================================================================================================

@router.get("/logs", summary="Run history, newest first", response_model=LogsResponse)
def get_logs(limit: int | None = None, zone_manager: ZoneManager = Depends(get_zone_manager)):
    if limit is not None and limit < 0:
        return failure_response(400, "limit must not be negative")
    logs = zone_manager.get_run_logs(limit)
    return LogsResponse(logs=run_log_models(logs), total=zone_manager.count_run_logs())


@router.delete("/logs", summary="Clear the run history", response_model=ControlResponse)
def clear_logs(zone_manager: ZoneManager = Depends(get_zone_manager)):
    zone_manager.clear_run_logs()
    return ControlResponse(success=True, message="Logs cleared")


# ===========================================================================================================
# Rain delay
# ===========================================================================================================

@router.post("/rain-delay", summary="Suspend zone starts for a number of hours", response_model=RainDelayResponse)
def start_rain_delay(req: RainDelayRequest, zone_manager: ZoneManager = Depends(get_zone_manager)):
    try:
        delay = zone_manager.start_rain_delay(req.hours)
    except ValidationError as e:
        return failure_response(400, str(e))
    return RainDelayResponse(
        success=True,
        message=f"Rain delay set for {req.hours:g} hours",
        expires_at=delay.expires_at,
        hours_remaining=delay.hours_remaining,
    )


@router.delete("/rain-delay", summary="Cancel the rain delay", response_model=ControlResponse)
def clear_rain_delay(zone_manager: ZoneManager = Depends(get_zone_manager)):
    zone_manager.clear_rain_delay()
    return ControlResponse(success=True, message="Rain delay cancelled")


# ===========================================================================================================
# Schedules
# ===========================================================================================================

@router.get("/schedules", summary="List schedules", response_model=list[ScheduleModel])
def list_schedules(zone_manager: ZoneManager = Depends(get_zone_manager)):
    return [schedule_model(schedule) for schedule in zone_manager.get_schedules()]


@router.post("/schedules", summary="Create a schedule", response_model=ScheduleModel, status_code=201)
def create_schedule(req: CreateScheduleRequest, zone_manager: ZoneManager = Depends(get_zone_manager)):
    try:
        schedule = zone_manager.create_schedule(
            zone_id=req.zone_id,
            start_time=req.start_time,
            days_of_week=req.days_of_week,
            duration_sec=req.duration_sec,
            enabled=req.enabled,
        )
    except ScheduleValidationError as e:
        return failure_response(400, str(e))
    return schedule_model(schedule)


@router.put("/schedules/{schedule_id}", summary="Update a schedule", response_model=ScheduleModel)
def update_schedule(schedule_id: str, req: UpdateScheduleRequest,
                    zone_manager: ZoneManager = Depends(get_zone_manager)):
    updates = req.model_dump(exclude_unset=True)
    try:
        schedule = zone_manager.update_schedule(schedule_id, **updates)
    except ScheduleValidationError as e:
        return failure_response(400, str(e))
    if schedule is None:
        return failure_response(404, "Schedule not found")
    return schedule_model(schedule)


@router.delete("/schedules/{schedule_id}", summary="Delete a schedule", response_model=ControlResponse)
def delete_schedule(schedule_id: str, zone_manager: ZoneManager = Depends(get_zone_manager)):
    if not zone_manager.delete_schedule(schedule_id):
        return failure_response(404, "Schedule not found")
    return ControlResponse(success=True, message="Schedule deleted")
