"""
Flight step derivation.

Derives one FlightStep per FlightSection: smooths the raw location, yaw,
pitch and altitude over a window of neighbouring sections, looks up the
ground (DEM) and surface (DSM) elevation, applies the altitude correction
and works out the ground area seen by the camera.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from app.config import DroneConfig
from app.errors import InvariantViolation
from app.models.flight import (
    MAX_SENSIBLE_SECTION_DURATION_MS,
    CameraModel,
    FlightSection,
    FlightSections,
    FlightStep,
    FlightSteps,
)
from app.models.summary import StepSummary
from app.models.tardis import ELEVATION_NDP, YAW_EPSILON_DEG, TardisCore
from app.services.altitude import altitude_less_dem_dsm, correct_altitude
from app.services.elevation import ElevationKind, ElevationModel
from app.utils.coordinates import DroneLocation, add_unit_vector


logger = logging.getLogger(__name__)


# Smoothing must not move values much outside the raw section envelope
SMOOTH_EPSILON = 0.3
SMOOTH_SPEED_EPSILON = 0.5
SMOOTH_PITCH_EPSILON = 1 + SMOOTH_EPSILON
# A drone can turn 80 degrees in ~1s, spread over 5 sections
SMOOTH_DELTA_YAW_EPSILON = 3.0

# Line of sight walk towards the image centre
PACE_FORWARD_M = 2
MIN_WALK_FORWARD_M = 3
MIN_WALK_HEIGHT_M = 3


@dataclass
class SmoothSums:
    """Weighted sums collected over a smoothing window."""

    location_weight: float = 0.0
    northing_m: float = 0.0
    easting_m: float = 0.0
    # Location against time offset from the middle section, for a weighted linear fit
    offset_ms: float = 0.0
    offset_ms_sq: float = 0.0
    offset_northing: float = 0.0
    offset_easting: float = 0.0
    pos_yaw_deg: float = 0.0
    pos_yaw_weight: float = 0.0
    neg_yaw_deg: float = 0.0
    neg_yaw_weight: float = 0.0
    pitch_deg: float = 0.0
    pitch_weight: float = 0.0
    altitude_m: float = 0.0
    altitude_weight: float = 0.0


def smooth_weight(middle: bool, steps_distance: int, radius: int) -> float:
    """Most weight to the middle section, less to sections further away."""
    if middle:
        return 1.0
    return max(0.0, min(0.9, (radius - steps_distance) / radius))


def collect_smooth_sums(section: FlightSection, sections: FlightSections, radius: int) -> Optional[SmoothSums]:
    """
    Weighted sums over the window of sections within radius ids of section.

    The window is narrowed near the flight ends so it stays centred on the
    section. Returns None if the section or any neighbour follows a large
    time gap: the weighting assumes a similar number of sensible neighbours
    either side.
    """
    if section.core.time_ms is not None and section.core.time_ms > MAX_SENSIBLE_SECTION_DURATION_MS:
        return None

    sums = SmoothSums()
    this_id = section.section_id
    window = radius
    if sections.min_tardis_id is not None:
        window = max(0, min(radius, this_id - sections.min_tardis_id, sections.max_tardis_id - this_id))
    for near_id in range(this_id - window, this_id + window + 1):
        nearby = sections.sections.get(near_id)
        if nearby is None:
            continue
        core = nearby.core
        if core.time_ms is not None and core.time_ms > MAX_SENSIBLE_SECTION_DURATION_MS:
            return None

        middle = near_id == this_id
        if not middle and core.sum_time_ms == section.core.sum_time_ms:
            continue
        weight = smooth_weight(middle, abs(this_id - near_id), radius)

        if core.location is not None:
            offset = core.sum_time_ms - section.core.sum_time_ms
            sums.location_weight += weight
            sums.northing_m += core.location.northing_m * weight
            sums.easting_m += core.location.easting_m * weight
            sums.offset_ms += offset * weight
            sums.offset_ms_sq += offset * offset * weight
            sums.offset_northing += offset * core.location.northing_m * weight
            sums.offset_easting += offset * core.location.easting_m * weight

        if core.yaw_deg is not None:
            if core.yaw_deg >= 0:
                sums.pos_yaw_deg += core.yaw_deg * weight
                sums.pos_yaw_weight += weight
            else:
                sums.neg_yaw_deg += core.yaw_deg * weight
                sums.neg_yaw_weight += weight

        if core.pitch_deg is not None:
            sums.pitch_deg += core.pitch_deg * weight
            sums.pitch_weight += weight

        if core.altitude_m is not None:
            sums.altitude_m += core.altitude_m * weight
            sums.altitude_weight += weight
    return sums


def smoothed_location(sums: SmoothSums) -> DroneLocation:
    """
    Weighted linear fit of location against time, evaluated at the middle section.

    Sections are not evenly spaced in time (e.g. 300ms then 200ms), so a plain
    weighted centroid drifts off the middle section's time and the smoothed
    speed can exceed the raw speed.
    """
    weight = sums.location_weight
    mean_offset = sums.offset_ms / weight
    mean_northing = sums.northing_m / weight
    mean_easting = sums.easting_m / weight
    spread = sums.offset_ms_sq - weight * mean_offset * mean_offset
    if spread <= 1e-9:
        return DroneLocation(mean_northing, mean_easting)
    northing_per_ms = (sums.offset_northing - weight * mean_offset * mean_northing) / spread
    easting_per_ms = (sums.offset_easting - weight * mean_offset * mean_easting) / spread
    return DroneLocation(
        mean_northing - northing_per_ms * mean_offset,
        mean_easting - easting_per_ms * mean_offset,
    )


def _snap_zero(value: Optional[float]) -> Optional[float]:
    if value is not None and abs(value) < YAW_EPSILON_DEG:
        return 0.0
    return value


def smooth_location_yaw_pitch(step: FlightStep, sections: FlightSections, radius: int) -> bool:
    """
    Smooth the step's location, yaw and pitch from the raw sections.

    Returns False (step left unsmoothed) if the step is near a large time gap.
    """
    sums = collect_smooth_sums(step.section, sections, radius)
    if sums is None:
        return False

    core = step.core
    if sums.location_weight > 1:
        core.location = smoothed_location(sums)

    # Averaging across the +180/-180 transition is meaningless so leave yaw alone
    if sums.pos_yaw_weight > 0 and sums.neg_yaw_weight > 0:
        pass
    elif sums.neg_yaw_weight > 0:
        core.yaw_deg = sums.neg_yaw_deg / sums.neg_yaw_weight
    elif sums.pos_yaw_weight > 0:
        core.yaw_deg = sums.pos_yaw_deg / sums.pos_yaw_weight
    core.yaw_deg = _snap_zero(core.yaw_deg)

    if sums.pitch_weight > 0:
        core.pitch_deg = sums.pitch_deg / sums.pitch_weight
    core.pitch_deg = _snap_zero(core.pitch_deg)
    return True


def smooth_altitude(step: FlightStep, sections: FlightSections, radius: int) -> bool:
    sums = collect_smooth_sums(step.section, sections, radius)
    if sums is None:
        return False
    if sums.altitude_weight > 0:
        step.core.altitude_m = sums.altitude_m / sums.altitude_weight
    return True


def _can_smooth(steps: FlightSteps, radius: int) -> bool:
    return radius >= 1 and len(steps) > 2 * radius


def assert_smoothing_envelope(step: FlightStep, sections: FlightSections) -> None:
    """Smoothing must not generate values much outside the raw section envelope."""
    original = sections.summary
    core = step.core

    def check(condition: bool, message: str) -> None:
        if not condition:
            raise InvariantViolation(f"Step {step.step_id} smoothing: {message}")

    if core.location is not None and original.max_location is not None:
        check(core.location.northing_m <= original.max_location.northing_m + SMOOTH_EPSILON, "bad northing")
        check(core.location.easting_m <= original.max_location.easting_m + SMOOTH_EPSILON, "bad easting")
    if core.time_ms is not None and original.max_time_ms is not None:
        check(core.time_ms <= original.max_time_ms + SMOOTH_EPSILON, "bad time_ms")
    if core.lineal_m is not None and original.max_lineal_m is not None:
        check(core.lineal_m <= original.max_lineal_m + SMOOTH_EPSILON,
              f"lineal_m {core.lineal_m} > {original.max_lineal_m}")
    if original.max_speed_mps is not None:
        check(core.speed_mps <= original.max_speed_mps + SMOOTH_SPEED_EPSILON,
              f"speed_mps {core.speed_mps} > {original.max_speed_mps}")
    if core.pitch_deg is not None and original.max_pitch_deg is not None:
        check(core.pitch_deg <= original.max_pitch_deg + SMOOTH_PITCH_EPSILON,
              f"pitch {core.pitch_deg} > {original.max_pitch_deg}")
        check(core.pitch_deg >= original.min_pitch_deg - SMOOTH_PITCH_EPSILON,
              f"pitch {core.pitch_deg} < {original.min_pitch_deg}")
    if core.delta_yaw_deg is not None and original.max_delta_yaw_deg is not None:
        check(core.delta_yaw_deg <= original.max_delta_yaw_deg + SMOOTH_DELTA_YAW_EPSILON,
              f"delta yaw {core.delta_yaw_deg} > {original.max_delta_yaw_deg}")
        check(core.delta_yaw_deg >= original.min_delta_yaw_deg - SMOOTH_DELTA_YAW_EPSILON,
              f"delta yaw {core.delta_yaw_deg} < {original.min_delta_yaw_deg}")


def copy_sections_to_steps(sections: FlightSections) -> FlightSteps:
    steps = FlightSteps()
    for section_id, section in sections.sections.items():
        steps.steps[section_id] = FlightStep(core=section.core.copy(), section=section)
    return steps


def calculate_smoothed_location_yaw_pitch(steps: FlightSteps, sections: FlightSections, radius: int) -> None:
    """Smooth location, yaw and pitch, then recalculate lineal distance and delta yaw."""
    smooth = _can_smooth(steps, radius)
    prev: Optional[TardisCore] = None
    for step_id in sorted(steps.steps):
        step = steps.steps[step_id]
        sensible = True
        if smooth:
            sensible = smooth_location_yaw_pitch(step, sections, radius)
        if sensible:
            step.core.calculate_lineal_m(prev)
            step.core.calculate_delta_yaw_deg(prev)
        assert_smoothing_envelope(step, sections)
        prev = step.core


def calculate_smoothed_altitude(steps: FlightSteps, sections: FlightSections, radius: int) -> None:
    if not _can_smooth(steps, radius):
        return
    for step in steps.steps.values():
        smooth_altitude(step, sections, radius)


def reset_altitude(steps: FlightSteps) -> None:
    for step in steps.steps.values():
        step.core.altitude_m = step.section.core.altitude_m


def calculate_dem_dsm(steps: FlightSteps, elevation_model: Optional[ElevationModel]) -> None:
    if elevation_model is None:
        return
    for step in steps.steps.values():
        if step.core.location is None:
            continue
        step.dem_m = elevation_model.elevation_at(step.core.location, ElevationKind.DEM)
        step.dsm_m = elevation_model.elevation_at(step.core.location, ElevationKind.DSM)


def calculate_input_image_footprint(
    step: FlightStep,
    config: DroneConfig,
    camera: Optional[CameraModel],
    elevation_model: Optional[ElevationModel],
) -> None:
    """
    Calculate the centre and size of the ground area seen by the camera.

    The area is forward of the drone when the camera is not pointing
    straight down. Where the surface (e.g. a hill or trees) rises into the
    line of sight, the centre is pulled back towards the drone.
    """
    step.input_image_center = None
    step.input_image_size_m = None

    if step.dsm_m is None or step.core.location is None or camera is None:
        return
    distance_down = step.fixed_distance_down_m
    if distance_down is None:
        return

    # An image that includes the horizon is huge and useless for detection
    cam_to_vert_deg = step.camera_to_vertical_forward_deg(config)
    if cam_to_vert_deg >= 90 - camera.vfov_deg / 2:
        return
    cam_to_vert_rad = math.radians(cam_to_vert_deg)

    flat_earth_forward_m = distance_down * math.tan(cam_to_vert_rad)
    unit = step.input_image_unit_vector
    drone_locn = step.core.location
    flat_earth_locn = add_unit_vector(drone_locn, unit, flat_earth_forward_m)

    center: Optional[DroneLocation] = None
    fixed_altitude = step.fixed_altitude_m
    if (flat_earth_forward_m > MIN_WALK_FORWARD_M
            and fixed_altitude is not None
            and fixed_altitude > step.dsm_m + MIN_WALK_HEIGHT_M
            and elevation_model is not None):
        # Walk towards the flat earth centre until the surface meets the line of sight
        pace_dsm_fall = math.cos(cam_to_vert_rad)
        num_paces = int(flat_earth_forward_m / PACE_FORWARD_M)
        for pace_num in range(1, num_paces):
            pace_m = pace_num * PACE_FORWARD_M
            pace_locn = add_unit_vector(drone_locn, unit, pace_m)
            view_dsm = fixed_altitude - pace_dsm_fall * pace_m
            pace_dsm = elevation_model.elevation_at(pace_locn, ElevationKind.DSM)
            center = pace_locn
            if pace_dsm is not None and pace_dsm >= view_dsm:
                break
    if center is None:
        center = flat_earth_locn

    view_length = math.sqrt(distance_down * distance_down + flat_earth_forward_m * flat_earth_forward_m)
    size_x = view_length * 2 * math.sin(math.radians(camera.hfov_deg) / 2)
    zoom = step.core.zoom if step.core.zoom is not None and step.core.zoom >= 1 else 1.0
    size_x /= zoom

    step.input_image_center = center
    step.input_image_size_m = (size_x, size_x * camera.image_height / camera.image_width)


def calculate_footprints(
    steps: FlightSteps,
    config: DroneConfig,
    camera: Optional[CameraModel],
    elevation_model: Optional[ElevationModel],
) -> None:
    for step in steps.steps.values():
        calculate_input_image_footprint(step, config, camera, elevation_model)


def summarise_steps(steps: FlightSteps, from_step_id: int, to_step_id: int) -> StepSummary:
    """Summary of the steps in [from_step_id, to_step_id], using corrected altitudes."""
    summary = StepSummary.empty()
    num_steps = 0
    sum_speed = 0.0
    for step_id in sorted(steps.steps):
        if step_id < from_step_id or step_id > to_step_id:
            continue
        step = steps.steps[step_id]
        core = step.core.copy()
        core.altitude_m = step.fixed_altitude_m
        summary.summarise_step(core, step.dem_m, step.dsm_m)
        num_steps += 1
        sum_speed += core.speed_mps
    if num_steps > 0:
        summary.avg_speed_mps = sum_speed / num_steps
    return summary


def calculate_summary(steps: FlightSteps, sections: FlightSections) -> None:
    """Summarise all steps and check they are a good revision of the sections."""
    steps.summary = summarise_steps(steps, sections.min_tardis_id, sections.max_tardis_id)
    steps.summary.tardis.assert_good_revision(sections.summary)


def calculate_avg_and_min_height(steps: FlightSteps, accuracy_m: float) -> None:
    """Average height above the DEM and minimum height above the DSM."""
    steps.avg_height_over_dem_m = None
    steps.min_height_over_dsm_m = None

    num_steps = 0
    sum_alt_less_dem = 0.0
    min_alt_less_dsm: Optional[float] = None
    for step in steps.steps.values():
        alt_less_dem, alt_less_dsm = altitude_less_dem_dsm(step.fixed_altitude_m, step, accuracy_m)
        if alt_less_dem is None or alt_less_dem <= 0:
            continue
        num_steps += 1
        sum_alt_less_dem += alt_less_dem
        if alt_less_dsm is not None and alt_less_dsm > 0:
            if min_alt_less_dsm is None or alt_less_dsm < min_alt_less_dsm:
                min_alt_less_dsm = alt_less_dsm

    if num_steps > 0:
        steps.avg_height_over_dem_m = round(sum_alt_less_dem / num_steps, ELEVATION_NDP)
        if min_alt_less_dsm is not None:
            steps.min_height_over_dsm_m = round(min_alt_less_dsm, ELEVATION_NDP)


def derive_steps(
    sections: FlightSections,
    elevation_model: Optional[ElevationModel],
    config: DroneConfig,
    camera: Optional[CameraModel],
) -> FlightSteps:
    """
    Derive flight steps from flight sections.

    Args:
        sections: Assembled raw sections
        elevation_model: Ground/surface elevations. May be None.
        config: Smoothing, camera and OnGroundAt settings
        camera: Camera properties for the image footprint. May be None.

    Raises:
        InvariantViolation: if smoothing widens the section envelope
    """
    steps = copy_sections_to_steps(sections)
    if not steps.steps:
        return steps

    radius = config.smooth_section_radius
    calculate_smoothed_location_yaw_pitch(steps, sections, radius)
    calculate_smoothed_altitude(steps, sections, radius)
    calculate_dem_dsm(steps, elevation_model)
    correct_altitude(steps, sections, elevation_model, config)
    calculate_footprints(steps, config, camera, elevation_model)
    calculate_summary(steps, sections)
    calculate_avg_and_min_height(steps, config.elevation_accuracy_m)

    logger.info(
        f"Derived {len(steps)} flight steps (smooth radius {radius}){steps.describe_lineal_m()}"
    )
    return steps


def recalculate_after_config_change(
    steps: FlightSteps,
    sections: FlightSections,
    elevation_model: Optional[ElevationModel],
    config: DroneConfig,
    camera: Optional[CameraModel],
) -> None:
    """Redo the config dependent stages: altitude smoothing and correction, footprints and summaries."""
    if not steps.steps:
        return
    reset_altitude(steps)
    calculate_smoothed_altitude(steps, sections, config.smooth_section_radius)
    correct_altitude(steps, sections, elevation_model, config)
    calculate_footprints(steps, config, camera, elevation_model)
    calculate_summary(steps, sections)
    calculate_avg_and_min_height(steps, config.elevation_accuracy_m)
