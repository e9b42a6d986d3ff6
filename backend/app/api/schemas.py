"""
API schemas (Pydantic models) for request/response validation.
"""

from typing import Optional
from pydantic import BaseModel, Field

from app.config import GimbalData, OnGroundAt


# ============================================================================
# Flight Schemas
# ============================================================================

class FlightSummaryResponse(BaseModel):
    """Summary of a flight for listing."""
    id: str
    name: str
    source_file: str
    recorded_at: Optional[str] = None
    duration_ms: int
    section_count: int
    leg_count: int
    has_flight_data: bool
    input_is_video: bool


class LocationResponse(BaseModel):
    """Flight-local location in metres."""
    northing_m: float
    easting_m: float


class GlobalLocationResponse(BaseModel):
    latitude: float
    longitude: float


class FlightDetailResponse(BaseModel):
    """Full description of a processed flight."""
    id: str
    name: str
    source_file: str
    has_flight_data: bool
    load_error: Optional[str] = None
    input_is_video: bool
    recorded_at: Optional[str] = None
    duration_ms: int
    section_count: int
    step_count: int
    leg_count: int
    use_flight_legs: bool
    describe_path: str
    origin: Optional[GlobalLocationResponse] = None
    min_location: Optional[LocationResponse] = None
    max_location: Optional[LocationResponse] = None
    min_altitude_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    avg_speed_mps: Optional[float] = None
    avg_height_over_dem_m: Optional[float] = None
    min_height_over_dsm_m: Optional[float] = None
    on_ground_at_fix_start_m: float = 0.0
    on_ground_at_fix_end_m: float = 0.0
    on_ground_at_valid: bool = True
    run_from_ms: int
    run_to_ms: int
    google_maps_link: str


class StepResponse(BaseModel):
    """One derived flight step."""
    step_id: int
    leg_id: int
    sum_time_ms: int
    time_ms: Optional[int] = None
    location: Optional[LocationResponse] = None
    lineal_m: Optional[float] = None
    sum_lineal_m: Optional[float] = None
    speed_mps: float
    yaw_deg: Optional[float] = None
    delta_yaw_deg: Optional[float] = None
    pitch_deg: Optional[float] = None
    roll_deg: Optional[float] = None
    altitude_m: Optional[float] = None
    fixed_altitude_m: Optional[float] = None
    dem_m: Optional[float] = None
    dsm_m: Optional[float] = None
    image_center: Optional[LocationResponse] = None
    image_size_m: Optional[tuple[float, float]] = None
    in_run_scope: bool


class StepListResponse(BaseModel):
    flight_id: str
    steps: list[StepResponse]


class LegResponse(BaseModel):
    """One flight leg."""
    leg_id: int
    name: str
    why_leg_ended: str
    min_step_id: Optional[int] = None
    max_step_id: Optional[int] = None
    min_sum_time_ms: Optional[int] = None
    max_sum_time_ms: Optional[int] = None
    lineal_m: float
    percent_overlap_with_run: int


class LegListResponse(BaseModel):
    flight_id: str
    use_flight_legs: bool
    legs: list[LegResponse]


class SettingResponse(BaseModel):
    name: str
    value: str


class SettingsResponse(BaseModel):
    flight_id: str
    settings: list[SettingResponse]


class ConfigUpdateRequest(BaseModel):
    """User editable drone settings. Omitted fields are unchanged."""
    gimbal_data_avail: Optional[GimbalData] = None
    fixed_camera_down_deg: Optional[int] = Field(default=None, ge=0, le=90)
    min_camera_down_deg: Optional[int] = Field(default=None, ge=0, le=90)
    on_ground_at: Optional[OnGroundAt] = None
    smooth_section_radius: Optional[int] = Field(default=None, ge=0)
    use_legs: Optional[bool] = None
    run_video_from_s: Optional[float] = Field(default=None, ge=0)
    run_video_to_s: Optional[float] = Field(default=None, ge=0)
    # Leg thresholds
    max_leg_step_altitude_delta_m: Optional[float] = Field(default=None, ge=0)
    max_leg_sum_altitude_delta_m: Optional[float] = Field(default=None, ge=0)
    max_leg_step_delta_yaw_deg: Optional[float] = Field(default=None, ge=0)
    max_leg_sum_delta_yaw_deg: Optional[float] = Field(default=None, ge=0)
    max_leg_step_pitch_deg: Optional[float] = Field(default=None, ge=0)
    max_leg_sum_pitch_deg: Optional[float] = Field(default=None, ge=0)
    min_leg_duration_ms: Optional[int] = Field(default=None, ge=0)
    min_leg_distance_m: Optional[float] = Field(default=None, ge=0)
    max_leg_gap_duration_ms: Optional[int] = Field(default=None, ge=0)
    leg_start_trim_ms: Optional[int] = Field(default=None, ge=0)


# ============================================================================
# Folder Management Schemas
# ============================================================================

class SetFolderRequest(BaseModel):
    """Request to set the data folder."""
    path: str


class FolderInfoResponse(BaseModel):
    """Information about the current data folder."""
    path: Optional[str]
    flight_count: int


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    code: Optional[str] = None
