"""
Altitude bias correction ("OnGroundAt").

Drone altitudes come from barometric pressure and drift. If the flight
started and/or ended on the ground, the ground elevation (DEM) at that
endpoint gives a correction that is blended linearly across the flight.

The correction is stored per step as FlightStep.fix_alt_m. The raw altitude
is never modified, so recomputing the correction is idempotent.
"""

import logging
from typing import Optional

from app.config import DroneConfig, OnGroundAt
from app.models.flight import FlightSections, FlightStep, FlightSteps
from app.services.elevation import ElevationModel, has_elevation_data


logger = logging.getLogger(__name__)


def altitude_less_dem_dsm(
    altitude_m: Optional[float],
    step: FlightStep,
    accuracy_m: float,
) -> tuple[Optional[float], Optional[float]]:
    """
    Height of the drone above the DEM and above the DSM (generally positive).

    Returns (None, None) if the altitude or DEM is unknown, or if the height
    above the DEM is within the elevation accuracy.
    """
    if altitude_m is None or step.dem_m is None:
        return None, None
    alt_less_dem = altitude_m - step.dem_m
    if abs(alt_less_dem) <= accuracy_m:
        return None, None
    alt_less_dsm = None if step.dsm_m is None else altitude_m - step.dsm_m
    return alt_less_dem, alt_less_dsm


def dem_less_input_altitude(step: Optional[FlightStep], accuracy_m: float) -> float:
    """Correction that moves the step's raw altitude onto the DEM. 0 if unknown or already close."""
    if step is None:
        return 0.0
    alt_less_dem, _ = altitude_less_dem_dsm(step.core.altitude_m, step, accuracy_m)
    if alt_less_dem is None:
        return 0.0
    return -alt_less_dem


def _min_dem_m(steps: FlightSteps) -> Optional[float]:
    values = [step.dem_m for step in steps.steps.values() if step.dem_m is not None]
    return min(values) if values else None


def calculate_on_ground_at_fix(
    steps: FlightSteps,
    sections: FlightSections,
    elevation_model: Optional[ElevationModel],
    config: DroneConfig,
) -> tuple[float, float]:
    """
    Altitude corrections (start_m, end_m) for the flight endpoints.

    Start/End: one endpoint gives the correction for both ends.
    Both: each endpoint gives its own correction.
    Auto: if the lowest raw altitude is below the lowest ground elevation
    (seen on flights launched from a beach), lift the whole flight by the
    difference.
    Neither: no correction.
    Without elevation data there is never a correction.
    """
    if not steps.steps or not has_elevation_data(elevation_model):
        return 0.0, 0.0

    accuracy = config.elevation_accuracy_m
    first = steps.step_id_to_nearest_step(sections.min_tardis_id)
    last = steps.step_id_to_nearest_step(sections.max_tardis_id)

    mode = config.on_ground_at
    if mode == OnGroundAt.START:
        fix = dem_less_input_altitude(first, accuracy)
        return fix, fix
    if mode == OnGroundAt.END:
        fix = dem_less_input_altitude(last, accuracy)
        return fix, fix
    if mode == OnGroundAt.BOTH:
        return dem_less_input_altitude(first, accuracy), dem_less_input_altitude(last, accuracy)
    if mode == OnGroundAt.AUTO:
        min_dem = _min_dem_m(steps)
        min_alt = sections.summary.min_altitude_m
        if min_dem is not None and min_alt is not None and min_alt < min_dem:
            fix = min_dem - min_alt
            return fix, fix
    return 0.0, 0.0


def apply_on_ground_at(steps: FlightSteps, fix_start_m: float, fix_end_m: float, max_step_id: int) -> None:
    """Blend the endpoint corrections linearly by step id into each step's fix_alt_m."""
    steps.on_ground_at_fix_start_m = fix_start_m
    steps.on_ground_at_fix_end_m = fix_end_m
    for step in steps.steps.values():
        if max_step_id <= 0:
            step.fix_alt_m = fix_start_m
            continue
        step_id = step.step_id
        step.fix_alt_m = (
            fix_start_m * (max_step_id - step_id) / max_step_id
            + fix_end_m * step_id / max_step_id
        )


def correct_altitude(
    steps: FlightSteps,
    sections: FlightSections,
    elevation_model: Optional[ElevationModel],
    config: DroneConfig,
) -> None:
    """Calculate and apply the OnGroundAt correction for the configured mode."""
    fix_start, fix_end = calculate_on_ground_at_fix(steps, sections, elevation_model, config)
    apply_on_ground_at(steps, fix_start, fix_end, sections.max_tardis_id or 0)
    if steps.has_on_ground_at_fix:
        logger.info(
            f"OnGroundAt {config.on_ground_at.value}: altitude fix {fix_start:.2f}m at start, {fix_end:.2f}m at end"
        )
