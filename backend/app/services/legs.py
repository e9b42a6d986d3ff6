"""
Flight leg segmentation.

A leg is a run of steps where the drone flies at a near constant altitude
in a near constant direction, for a significant duration and distance.
Search grid flights are mostly legs joined by turns.

Pass 1 finds the leg step ranges, pass 2 is reserved for cross-leg
refinement, pass 3 summarises the legs and builds the step -> leg table.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import DroneConfig, GimbalData
from app.models.flight import FlightLeg, FlightLegs, FlightSections, FlightStep, FlightSteps
from app.models.summary import TardisSummary
from app.utils.coordinates import distance_m


logger = logging.getLogger(__name__)


MIN_VIDEO_SECTIONS_FOR_LEGS = 200
MIN_IMAGE_SECTIONS_FOR_LEGS = 20
MIN_LEGS_FOR_LEGS = 2
MIN_LEG_LINEAL_FRACTION = 0.33

NO_MORE_STEPS = "No more steps"
NO_FLIGHT_DATA = "N/A"


@dataclass
class LegCandidate:
    """Step range of a leg found by pass 1."""

    step_ids: list[int]
    why_leg_ended: str = ""

    @property
    def min_step_id(self) -> int:
        return self.step_ids[0]

    @property
    def max_step_id(self) -> int:
        return self.step_ids[-1]


def _abs_or_none(value: Optional[float]) -> Optional[float]:
    return None if value is None else abs(value)


def can_start_leg(step: FlightStep, config: DroneConfig) -> bool:
    """A leg starts on a step that is not turning and (without a gimbal) not pitched."""
    delta_yaw = _abs_or_none(step.core.delta_yaw_deg)
    if delta_yaw is None or delta_yaw >= config.max_leg_step_delta_yaw_deg:
        return False
    pitch = _abs_or_none(step.core.pitch_deg)
    if not config.use_gimbal_data and pitch is not None and pitch >= config.max_leg_step_pitch_deg:
        return False
    return True


def why_leg_ends(
    start: FlightStep,
    prev: FlightStep,
    step: FlightStep,
    config: DroneConfig,
) -> Optional[str]:
    """Reason step cannot extend the leg that started at start, or None if it can."""
    sum_yaw = abs(start.core.yaw_degs_delta(step.core))
    if sum_yaw > config.max_leg_sum_delta_yaw_deg:
        return f"Yaw change too large: {sum_yaw:.1f}"

    step_yaw = _abs_or_none(step.core.delta_yaw_deg)
    if step_yaw is not None and step_yaw > config.max_leg_step_delta_yaw_deg:
        return f"Step yaw change too large: {step_yaw:.1f}"

    pitch = step.core.pitch_deg
    if pitch is not None and start.core.pitch_deg is not None:
        if abs(start.core.pitch_deg - pitch) >= config.max_leg_sum_pitch_deg:
            return f"Sum pitch too large: {start.core.pitch_deg:.1f} to {pitch:.1f}"

    gap_ms = step.section.core.time_ms or 0
    if gap_ms > config.max_leg_gap_duration_ms:
        return f"Gap too large: {gap_ms}ms"

    if pitch is not None:
        if not config.use_gimbal_data and abs(pitch) >= config.max_leg_step_pitch_deg:
            return f"Step pitch too large: {pitch:.1f}"
        if config.use_gimbal_data and abs(pitch) < config.min_camera_down_deg:
            return f"Step camera down too small: {pitch:.1f}"

    altitude = step.fixed_altitude_m
    if altitude is not None:
        prev_altitude = prev.fixed_altitude_m
        if prev_altitude is not None and abs(altitude - prev_altitude) > config.max_leg_step_altitude_delta_m:
            return f"Step altitude change too large: {prev_altitude:.1f} to {altitude:.1f}"
        start_altitude = start.fixed_altitude_m
        if start_altitude is not None and abs(altitude - start_altitude) > config.max_leg_sum_altitude_delta_m:
            return f"Sum altitude change too large: {start_altitude:.1f} to {altitude:.1f}"

    return None


def is_good_leg(candidate: LegCandidate, steps: FlightSteps, config: DroneConfig) -> bool:
    """A leg needs more than one step, the minimum duration and the minimum distance."""
    if len(candidate.step_ids) < 2:
        return False
    first = steps.steps[candidate.min_step_id]
    last = steps.steps[candidate.max_step_id]
    if last.core.sum_time_ms - first.core.sum_time_ms < config.min_leg_duration_ms:
        return False
    if distance_m(first.core.location, last.core.location) < config.min_leg_distance_m:
        return False
    return True


def calculate_pass1(sections: FlightSections, steps: FlightSteps, config: DroneConfig) -> list[LegCandidate]:
    """
    Scan the steps in id order, growing a candidate leg.

    A step that breaks a rule closes the candidate, which is kept only if
    it is a good leg, and may start the next candidate. Legs need yaw data.
    Without pitch data the pitch rules are skipped.
    """
    if not sections.has_yaw_data():
        logger.debug("No yaw data: no flight legs")
        return []

    legs: list[LegCandidate] = []
    candidate: Optional[LegCandidate] = None
    prev: Optional[FlightStep] = None
    for step_id in sorted(steps.steps):
        step = steps.steps[step_id]
        if candidate is not None:
            start = steps.steps[candidate.min_step_id]
            why = why_leg_ends(start, prev, step, config)
            if why is None:
                candidate.step_ids.append(step_id)
                prev = step
                continue
            candidate.why_leg_ended = why
            if is_good_leg(candidate, steps, config):
                legs.append(candidate)
            candidate = None

        if can_start_leg(step, config):
            candidate = LegCandidate(step_ids=[step_id])
        prev = step

    if candidate is not None:
        candidate.why_leg_ended = NO_MORE_STEPS
        if is_good_leg(candidate, steps, config):
            legs.append(candidate)

    if config.leg_start_trim_ms > 0 and config.gimbal_data_avail == GimbalData.MANUAL_NO:
        legs = [leg for leg in (trim_leg_start(leg, steps, config.leg_start_trim_ms) for leg in legs) if leg]
    return legs


def trim_leg_start(candidate: LegCandidate, steps: FlightSteps, trim_ms: int) -> Optional[LegCandidate]:
    """
    Drop the first trim_ms of a leg.

    After a turn the gimbal can still be re-centering as the leg starts.
    Returns None if too little of the leg remains.
    """
    start_ms = steps.steps[candidate.min_step_id].core.sum_time_ms + trim_ms
    kept = [step_id for step_id in candidate.step_ids if steps.steps[step_id].core.sum_time_ms >= start_ms]
    if len(kept) < 2:
        return None
    return LegCandidate(step_ids=kept, why_leg_ended=candidate.why_leg_ended)


def calculate_pass2(candidates: list[LegCandidate]) -> list[LegCandidate]:
    """Reserved for cross-leg refinement. Leg membership is final after pass 1."""
    return candidates


def summarise_leg(leg: FlightLeg, step_ids: list[int], steps: FlightSteps) -> None:
    leg.summary = TardisSummary()
    for step_id in step_ids:
        step = steps.steps[step_id]
        core = step.core.copy()
        core.altitude_m = step.fixed_altitude_m
        leg.summary.summarise(core)


def calculate_pass3(candidates: list[LegCandidate], steps: FlightSteps) -> FlightLegs:
    """Summarise each leg, number them from 1 and build the step -> leg table."""
    legs = FlightLegs()
    for leg_id, candidate in enumerate(candidates, start=1):
        leg = FlightLeg(leg_id=leg_id, why_leg_ended=candidate.why_leg_ended)
        summarise_leg(leg, candidate.step_ids, steps)
        if steps.summary.tardis.has_data:
            leg.summary.assert_good_subset(steps.summary.tardis)
        legs.legs.append(leg)
        for step_id in candidate.step_ids:
            legs.step_leg_ids[step_id] = leg_id
    return legs


def calculate_legs(sections: FlightSections, steps: FlightSteps, config: DroneConfig) -> FlightLegs:
    """Segment the flight steps into legs."""
    candidates = calculate_pass1(sections, steps, config)
    candidates = calculate_pass2(candidates)
    legs = calculate_pass3(candidates, steps)
    legs.assert_good(has_steps=bool(steps.steps))
    logger.info(f"Found {len(legs)} flight legs covering {legs.sum_lineal_m():.0f}m")
    return legs


def no_flight_data_legs(config: DroneConfig) -> FlightLegs:
    """A single leg spanning the run range, for flights without telemetry."""
    leg = FlightLeg(leg_id=1, why_leg_ended=NO_FLIGHT_DATA)
    leg.summary.min_sum_time_ms = config.run_from_ms
    leg.summary.max_sum_time_ms = config.run_to_ms
    return FlightLegs(legs=[leg])


def should_use_legs(sections: FlightSections, legs: FlightLegs, config: DroneConfig) -> bool:
    """
    Whether legs scope downstream processing.

    Needs enough sections, more than two legs, and legs covering a third of
    the distance flown.
    """
    if not config.use_legs:
        return False
    min_sections = MIN_VIDEO_SECTIONS_FOR_LEGS if sections.input_is_video else MIN_IMAGE_SECTIONS_FOR_LEGS
    if len(sections) <= min_sections:
        return False
    if len(legs) <= MIN_LEGS_FOR_LEGS:
        return False
    total_lineal_m = sections.last_sum_lineal_m
    if total_lineal_m <= 0:
        return False
    return legs.sum_lineal_m() / total_lineal_m > MIN_LEG_LINEAL_FRACTION
