from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from zone_engine.node.core.enums import RunSource, ZoneState
from zone_engine.node.core.models import LastRun, RunLogEntry, Schedule


class ApiModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ========================= Requests =========================

class StartZoneRequest(ApiModel):
    duration: int | None = Field(None, description="Run duration in seconds, defaults to the configured duration")

class RainDelayRequest(ApiModel):
    hours: float = Field(..., description="Rain delay length in hours, at most 24")

class CreateScheduleRequest(ApiModel):
    zone_id: int
    start_time: str = Field(..., description="HH:MM")
    days_of_week: list[int] = Field(..., description="0 = Sunday ... 6 = Saturday")
    duration_sec: int
    enabled: bool = True

class UpdateScheduleRequest(ApiModel):
    zone_id: int | None = None
    start_time: str | None = None
    days_of_week: list[int] | None = None
    duration_sec: int | None = None
    enabled: bool | None = None


# ========================= Responses =========================

class ControlResponse(ApiModel):
    success: bool
    message: str

class RainDelayModel(ApiModel):
    is_active: bool
    expires_at: datetime | None = None
    hours_remaining: int

class RainDelayResponse(ControlResponse):
    expires_at: datetime | None = None
    hours_remaining: int | None = None

class LastRunModel(ApiModel):
    zone_id: int
    zone_name: str
    started_at: datetime
    duration_sec: int

class RunLogEntryModel(ApiModel):
    id: str
    zone_id: int
    zone_name: str
    source: RunSource
    started_at: datetime
    stopped_at: datetime
    duration_sec: int
    success: bool

class StatusResponse(ApiModel):
    active_zone_id: int | None
    active_zone_name: str | None
    time_remaining: int
    elapsed_sec: int
    rain_delay: RainDelayModel
    last_run: LastRunModel | None = None
    recent_runs: list[RunLogEntryModel]
    heartbeat: datetime

class LogsResponse(ApiModel):
    logs: list[RunLogEntryModel]
    total: int

class ScheduleModel(ApiModel):
    id: str
    zone_id: int
    start_time: str
    days_of_week: list[int]
    duration_sec: int
    enabled: bool
    last_run: datetime | None = None

class ZoneModel(ApiModel):
    id: int
    name: str
    state: ZoneState
    is_active: bool
    end_time: datetime | None = None

class HealthResponse(ApiModel):
    status: str
    version: str
    uptime_sec: int
    relay_mode: str
    scheduler_running: bool
    recent_messages: list[str]
    timestamp: datetime


def run_log_models(entries: list[RunLogEntry]) -> list[RunLogEntryModel]:
    return [RunLogEntryModel.model_validate(entry) for entry in entries]

def last_run_model(last_run: LastRun | None) -> LastRunModel | None:
    return LastRunModel.model_validate(last_run) if last_run else None

def schedule_model(schedule: Schedule) -> ScheduleModel:
    return ScheduleModel.model_validate(schedule)
