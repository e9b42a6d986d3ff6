"""
API routes for drone flights.
"""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.api.schemas import (
    ConfigUpdateRequest,
    FlightDetailResponse,
    FlightSummaryResponse,
    FolderInfoResponse,
    GlobalLocationResponse,
    LegListResponse,
    LegResponse,
    LocationResponse,
    SetFolderRequest,
    SettingResponse,
    SettingsResponse,
    StepListResponse,
    StepResponse,
)
from app.models.flight import FlightStep
from app.services.drone import Drone
from app.services.repository import get_repository
from app.utils.coordinates import DroneLocation


router = APIRouter(prefix="/flights", tags=["flights"])


def _location(location: Optional[DroneLocation]) -> Optional[LocationResponse]:
    if location is None:
        return None
    return LocationResponse(northing_m=location.northing_m, easting_m=location.easting_m)


def _get_drone_or_404(flight_id: str) -> Drone:
    drone = get_repository().get_drone(flight_id)
    if drone is None:
        raise HTTPException(status_code=404, detail=f"Flight not found: {flight_id}")
    return drone


def _build_step_response(drone: Drone, step: FlightStep) -> StepResponse:
    core = step.core
    return StepResponse(
        step_id=step.step_id,
        leg_id=drone.legs.leg_id_of(step.step_id) if drone.legs is not None else 0,
        sum_time_ms=core.sum_time_ms,
        time_ms=core.time_ms,
        location=_location(core.location),
        lineal_m=core.lineal_m,
        sum_lineal_m=core.sum_lineal_m,
        speed_mps=core.speed_mps,
        yaw_deg=core.yaw_deg,
        delta_yaw_deg=core.delta_yaw_deg,
        pitch_deg=core.pitch_deg,
        roll_deg=core.roll_deg,
        altitude_m=core.altitude_m,
        fixed_altitude_m=step.fixed_altitude_m,
        dem_m=step.dem_m,
        dsm_m=step.dsm_m,
        image_center=_location(step.input_image_center),
        image_size_m=step.input_image_size_m,
        in_run_scope=drone.is_step_in_run_scope(step),
    )


def _build_detail_response(flight_id: str, drone: Drone) -> FlightDetailResponse:
    """Build detail response from a processed Drone."""
    response = FlightDetailResponse(
        id=flight_id,
        name=drone.name,
        source_file=str(drone.input_path) if drone.input_path else "",
        has_flight_data=drone.has_flight_sections,
        load_error=drone.load_error,
        input_is_video=drone.input_is_video,
        duration_ms=drone.duration_ms(),
        section_count=len(drone.sections) if drone.sections is not None else 0,
        step_count=len(drone.steps) if drone.steps is not None else 0,
        leg_count=len(drone.legs) if drone.has_flight_legs else 0,
        use_flight_legs=drone.use_flight_legs,
        describe_path=drone.describe_flight_path(),
        on_ground_at_valid=drone.on_ground_at_is_valid(),
        run_from_ms=drone.config.run_from_ms,
        run_to_ms=drone.config.run_to_ms,
        google_maps_link=drone.google_maps_link(),
    )

    if drone.has_flight_sections:
        sections = drone.sections
        if sections.min_date_time is not None:
            response.recorded_at = sections.min_date_time.isoformat()
        if sections.origin is not None:
            response.origin = GlobalLocationResponse(
                latitude=sections.origin.latitude,
                longitude=sections.origin.longitude,
            )
        response.min_location = _location(sections.summary.min_location)
        response.max_location = _location(sections.summary.max_location)

    if drone.has_flight_steps:
        steps = drone.steps
        response.min_altitude_m = steps.summary.tardis.min_altitude_m
        response.max_altitude_m = steps.summary.tardis.max_altitude_m
        response.avg_speed_mps = steps.summary.avg_speed_mps
        response.avg_height_over_dem_m = steps.avg_height_over_dem_m
        response.min_height_over_dsm_m = steps.min_height_over_dsm_m
        response.on_ground_at_fix_start_m = steps.on_ground_at_fix_start_m
        response.on_ground_at_fix_end_m = steps.on_ground_at_fix_end_m

    return response


@router.get("", response_model=list[FlightSummaryResponse])
async def list_flights():
    """
    List all available flights.

    Returns summaries sorted by recording date (newest first).
    """
    repo = get_repository()
    return [
        FlightSummaryResponse(
            id=s.id,
            name=s.name,
            source_file=s.source_file,
            recorded_at=s.recorded_at,
            duration_ms=s.duration_ms,
            section_count=s.section_count,
            leg_count=s.leg_count,
            has_flight_data=s.has_flight_data,
            input_is_video=s.input_is_video,
        )
        for s in repo.list_flights()
    ]


@router.get("/{flight_id}", response_model=FlightDetailResponse)
async def get_flight(flight_id: str):
    """
    Get the processed description of a flight.

    A flight without telemetry is returned with has_flight_data false.
    """
    drone = _get_drone_or_404(flight_id)
    return _build_detail_response(flight_id, drone)


@router.get("/{flight_id}/steps", response_model=StepListResponse)
async def get_flight_steps(
    flight_id: str,
    from_ms: Optional[int] = Query(None, ge=0, description="First step time in ms"),
    to_ms: Optional[int] = Query(None, ge=0, description="Last step time in ms"),
):
    """
    Get the derived flight steps, optionally limited to a time window.

    Warning: a long flight has thousands of steps.
    """
    drone = _get_drone_or_404(flight_id)
    if not drone.has_flight_steps:
        return StepListResponse(flight_id=flight_id, steps=[])

    steps = []
    for step_id in sorted(drone.steps.steps):
        step = drone.steps.steps[step_id]
        ms = step.core.sum_time_ms
        if from_ms is not None and ms < from_ms:
            continue
        if to_ms is not None and ms > to_ms:
            continue
        steps.append(_build_step_response(drone, step))
    return StepListResponse(flight_id=flight_id, steps=steps)


@router.get("/{flight_id}/legs", response_model=LegListResponse)
async def get_flight_legs(flight_id: str):
    """Get the flight legs."""
    drone = _get_drone_or_404(flight_id)
    from_ms = drone.config.run_from_ms
    to_ms = drone.config.run_to_ms
    legs = drone.legs.legs if drone.legs is not None else []
    return LegListResponse(
        flight_id=flight_id,
        use_flight_legs=drone.use_flight_legs,
        legs=[
            LegResponse(
                leg_id=leg.leg_id,
                name=leg.name,
                why_leg_ended=leg.why_leg_ended,
                min_step_id=leg.min_step_id,
                max_step_id=leg.max_step_id,
                min_sum_time_ms=leg.min_sum_time_ms,
                max_sum_time_ms=leg.max_sum_time_ms,
                lineal_m=leg.lineal_m,
                percent_overlap_with_run=leg.percent_overlap_with_run_from_to(from_ms, to_ms),
            )
            for leg in legs
        ],
    )


@router.get("/{flight_id}/nearest", response_model=StepResponse)
async def get_nearest_step(
    flight_id: str,
    ms: int = Query(..., ge=0, description="Flight time in ms"),
):
    """Get the step nearest to a flight time."""
    drone = _get_drone_or_404(flight_id)
    step = drone.nearest_step_at_time_ms(ms)
    if step is None:
        raise HTTPException(status_code=404, detail=f"Flight has no steps: {flight_id}")
    return _build_step_response(drone, step)


@router.get("/{flight_id}/settings", response_model=SettingsResponse)
async def get_flight_settings(flight_id: str):
    """Get the flight overview, config and summary settings as name/value pairs."""
    drone = _get_drone_or_404(flight_id)
    return SettingsResponse(
        flight_id=flight_id,
        settings=[SettingResponse(name=name, value=value) for name, value in drone.get_settings()],
    )


@router.put("/{flight_id}/config", response_model=FlightDetailResponse)
async def update_flight_config(flight_id: str, request: ConfigUpdateRequest):
    """
    Change drone settings and recompute the flight.

    Altitude correction, camera footprints, summaries and legs are recomputed.
    """
    repo = get_repository()
    changes = request.model_dump(exclude_none=True)
    run_from_s = changes.pop("run_video_from_s", None)
    run_to_s = changes.pop("run_video_to_s", None)

    # Reject a bad run range before any setting is changed
    drone = _get_drone_or_404(flight_id)
    run_range = None
    if run_from_s is not None or run_to_s is not None:
        from_s = run_from_s if run_from_s is not None else drone.config.run_video_from_s
        to_s = run_to_s if run_to_s is not None else drone.config.run_video_to_s
        if from_s > to_s:
            raise HTTPException(status_code=400, detail="Invalid run range")
        run_range = (int(from_s * 1000), int(to_s * 1000))

    drone = repo.update_config(flight_id, changes)
    if drone is None:
        raise HTTPException(status_code=404, detail=f"Flight not found: {flight_id}")
    if run_range is not None:
        drone.config.set_run_from_to(*run_range)

    return _build_detail_response(flight_id, drone)


# ============================================================================
# Folder Management Routes
# ============================================================================

folder_router = APIRouter(prefix="/folder", tags=["folder"])


@folder_router.get("", response_model=FolderInfoResponse)
async def get_folder_info():
    """Get information about the current data folder."""
    repo = get_repository()

    return FolderInfoResponse(
        path=str(repo.data_folder) if repo.data_folder else None,
        flight_count=repo.flight_count,
    )


@folder_router.post("", response_model=FolderInfoResponse)
async def set_folder(request: SetFolderRequest):
    """
    Set the data folder to scan for flights.

    This will clear the current cache and re-scan.
    """
    repo = get_repository()

    path = Path(request.path)
    if not path.exists():
        raise HTTPException(status_code=400, detail=f"Folder does not exist: {request.path}")
    if not path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {request.path}")

    count = repo.set_data_folder(path)

    return FolderInfoResponse(
        path=str(path),
        flight_count=count,
    )


@folder_router.post("/rescan", response_model=FolderInfoResponse)
async def rescan_folder():
    """
    Rescan the current data folder for new flights.
    """
    repo = get_repository()

    if repo.data_folder is None:
        raise HTTPException(status_code=400, detail="No data folder set")

    repo.clear_cache()
    count = repo.scan_folder(repo.data_folder)

    return FolderInfoResponse(
        path=str(repo.data_folder),
        flight_count=count,
    )
