"""
Drone facade.

Owns the flight data of one video or image batch and runs the pipeline
stages in order: parse -> sections -> steps (incl. altitude correction) ->
legs -> run range. Answers the time and step queries the API needs.
"""

import logging
from pathlib import Path
from typing import Optional

from app.config import DroneConfig, GimbalData, OnGroundAt
from app.errors import ParseError
from app.models.flight import (
    LEG_BOUNDARY_MS,
    CameraModel,
    FlightLeg,
    FlightLegs,
    FlightSections,
    FlightStep,
    FlightSteps,
)
from app.models.raw import RawFlightLog
from app.models.tardis import SettingsList, ms_to_time_string
from app.services.elevation import ElevationModel, has_elevation_data
from app.services.legs import calculate_legs, no_flight_data_legs, should_use_legs
from app.services.parsers import parse_flight_log
from app.services.sections import build_sections
from app.services.steps import derive_steps, recalculate_after_config_change


logger = logging.getLogger(__name__)


# OnGroundAt Start/End/Both are counter-indicated if the drone is below the
# ground more than this percentage of the flight
MAX_PERCENT_ALTITUDE_BELOW_DEM = 10

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"


class Drone:
    """Flight data and derived products for one flight."""

    def __init__(
        self,
        config: Optional[DroneConfig] = None,
        elevation_model: Optional[ElevationModel] = None,
        camera: Optional[CameraModel] = None,
    ):
        self.config = config or DroneConfig()
        self.elevation_model = elevation_model
        self.camera = camera

        self.input_path: Optional[Path] = None
        self.raw: Optional[RawFlightLog] = None
        self.load_error: Optional[str] = None

        self.sections: Optional[FlightSections] = None
        self.steps: Optional[FlightSteps] = None
        self.legs: Optional[FlightLegs] = None
        self.use_flight_legs = False
        self._smooth_radius = self.config.smooth_section_radius

    @property
    def has_flight_sections(self) -> bool:
        return self.sections is not None and len(self.sections) > 0

    @property
    def has_flight_steps(self) -> bool:
        return self.steps is not None and len(self.steps) > 0

    @property
    def has_flight_legs(self) -> bool:
        return self.has_flight_steps and self.legs is not None and len(self.legs) > 0

    @property
    def has_drone_altitude(self) -> bool:
        return self.has_flight_sections and self.sections.summary.max_altitude_m is not None

    @property
    def has_drone_speed(self) -> bool:
        return self.has_flight_steps and self.steps.summary.tardis.max_speed_mps is not None

    @property
    def has_drone_yaw(self) -> bool:
        return self.has_flight_steps and self.steps.summary.tardis.max_delta_yaw_deg is not None

    @property
    def has_drone_pitch(self) -> bool:
        return self.has_flight_steps and self.steps.summary.tardis.max_pitch_deg is not None

    @property
    def has_drone_roll(self) -> bool:
        return self.has_flight_steps and self.steps.summary.tardis.max_roll_deg is not None

    @property
    def has_ground_data(self) -> bool:
        return has_elevation_data(self.elevation_model)

    @property
    def input_is_video(self) -> bool:
        if self.sections is not None:
            return self.sections.input_is_video
        if self.raw is not None:
            return self.raw.input_is_video
        return self.input_path is None or not self.input_path.is_dir()

    @property
    def input_is_images(self) -> bool:
        return not self.input_is_video

    @property
    def name(self) -> str:
        if self.raw is not None:
            return self.raw.name
        if self.input_path is not None:
            return self.input_path.stem
        return ""

    def load_flight_log(self, filepath: Path) -> bool:
        """
        Parse the flight log for a video, log file or image folder.

        A flight without usable telemetry degrades to "no flight data":
        the error is logged and kept in load_error, never raised.

        Returns:
            True if flight data was loaded
        """
        self.input_path = Path(filepath)
        try:
            raw = parse_flight_log(self.input_path)
        except ParseError as e:
            logger.warning(f"No flight data for {filepath}: {e}")
            self.load_error = str(e)
            self.raw = None
            return False
        self.load_raw(raw)
        return True

    def load_raw(self, raw: RawFlightLog) -> None:
        """Use an already parsed flight log."""
        self.raw = raw
        self.load_error = None
        if self.camera is None:
            self.camera = raw.camera
        if raw.gimbal_data == GimbalData.AUTO_YES and self.config.gimbal_data_avail == GimbalData.MANUAL_NO:
            self.config.gimbal_data_avail = GimbalData.AUTO_YES
            self.config.validate()

    def calculate_settings(self) -> None:
        """Run the pipeline: sections, steps (incl. altitude fix), legs and run range."""
        self.sections = None
        self.steps = None
        self.legs = None
        self.use_flight_legs = False

        if self.raw is not None:
            try:
                self.sections = build_sections(self.raw, self.config.country_crs)
            except ParseError as e:
                logger.warning(f"No usable flight sections in {self.raw.name}: {e}")
                self.load_error = str(e)

        if not self.has_flight_sections:
            self.legs = no_flight_data_legs(self.config)
            if self.camera is not None and self.camera.duration_ms > 0:
                self.config.set_run_from_to(0, self.camera.duration_ms)
            return

        self.steps = derive_steps(self.sections, self.elevation_model, self.config, self.camera)
        self._smooth_radius = self.config.smooth_section_radius
        self._calculate_legs()
        self.set_default_run_range()
        logger.info(f"Flight {self.name}: {self.describe_flight_path()}")

    def _calculate_legs(self) -> None:
        self.legs = calculate_legs(self.sections, self.steps, self.config)
        self.use_flight_legs = should_use_legs(self.sections, self.legs, self.config)
        logger.info(f"Flight {self.name}: {len(self.legs)} legs, use legs {self.use_flight_legs}")

    def config_has_changed(self) -> None:
        """
        Re-validate the config and recompute the config dependent products.

        A new smoothing radius changes every step so the steps are derived
        again. Otherwise only altitudes, footprints, summaries and legs are.
        """
        self.config.validate()
        if not self.has_flight_steps:
            self.legs = no_flight_data_legs(self.config)
            return
        if self.config.smooth_section_radius != self._smooth_radius:
            self.steps = derive_steps(self.sections, self.elevation_model, self.config, self.camera)
            self._smooth_radius = self.config.smooth_section_radius
        else:
            recalculate_after_config_change(self.steps, self.sections, self.elevation_model, self.config, self.camera)
        self._calculate_legs()

    def on_ground_at_is_valid(self) -> bool:
        """
        Whether the OnGroundAt setting is plausible for this flight.

        Start/End/Both are counter-indicated if the ground elevation range
        exceeds the drone altitude range, or the corrected drone altitude is
        below the ground for much of the flight.
        """
        if self.config.on_ground_at in (OnGroundAt.NEITHER, OnGroundAt.AUTO):
            return True
        if not (self.has_ground_data and self.has_flight_steps):
            return True
        summary = self.steps.summary
        if summary.max_dem_m is not None and summary.tardis.max_altitude_m is not None:
            dem_range = summary.max_dem_m - summary.min_dem_m
            altitude_range = summary.tardis.max_altitude_m - summary.tardis.min_altitude_m
            if dem_range > altitude_range:
                return False
        return self.steps.percent_altitude_less_than_dem() <= MAX_PERCENT_ALTITUDE_BELOW_DEM

    def nearest_step_at_time_ms(self, flight_ms: int) -> Optional[FlightStep]:
        """
        Step closest to flight_ms.

        Processing often starts and ends on leg boundaries, so the legs are
        checked first.
        """
        if not self.has_flight_steps:
            return None

        if self.has_flight_legs:
            for leg in self.legs.legs:
                if leg.min_step_id is None:
                    continue
                if abs(leg.min_sum_time_ms - flight_ms) < LEG_BOUNDARY_MS:
                    return self.steps.steps[leg.min_step_id]
                if abs(leg.max_sum_time_ms - flight_ms) < LEG_BOUNDARY_MS:
                    return self.steps.steps[leg.max_step_id]
                if leg.min_sum_time_ms < flight_ms < leg.max_sum_time_ms:
                    return leg.nearest_step_at_time_ms(flight_ms, self.steps)

        return self.steps.nearest_step_at_time_ms(flight_ms)

    def is_step_in_run_scope(self, step: FlightStep) -> bool:
        """Without a gimbal, or with the camera pointing well below the horizon."""
        if not self.config.use_gimbal_data or step.core.pitch_deg is None:
            return True
        return abs(step.core.pitch_deg) >= self.config.min_camera_down_deg

    def section_id_to_video_ms(self, section_id: int) -> int:
        if not self.has_flight_steps:
            return 0
        step = self.steps.step_id_to_nearest_step(section_id)
        if step is None:
            return 0
        return step.core.sum_time_ms

    def default_run_range(self) -> tuple[int, int]:
        """
        Default (from_ms, to_ms) processing window.

        Image batches cover every image. Otherwise the first to last leg if
        legs are used, else the whole flight, else the whole video.
        """
        if self.has_flight_steps:
            first = self.steps.steps[self.steps.min_step_id]
            last = self.steps.steps[self.steps.max_step_id]
            if self.input_is_video and self.use_flight_legs and self.has_flight_legs:
                return (
                    self.section_id_to_video_ms(self.legs.legs[0].min_step_id),
                    self.section_id_to_video_ms(self.legs.legs[-1].max_step_id),
                )
            return first.core.sum_time_ms, last.core.sum_time_ms
        if self.camera is not None:
            return 0, self.camera.duration_ms
        return self.config.run_from_ms, self.config.run_to_ms

    def set_default_run_range(self) -> None:
        from_ms, to_ms = self.default_run_range()
        self.config.set_run_from_to(from_ms, to_ms)

    def set_run_range_by_steps(self, start_step_id: int, end_step_id: int) -> None:
        if self.has_flight_steps:
            self.config.set_run_from_to(
                self.section_id_to_video_ms(start_step_id),
                self.section_id_to_video_ms(end_step_id),
            )

    def run_steps(self) -> list[FlightStep]:
        """Steps inside the run range that are in run scope."""
        if not self.has_flight_steps:
            return []
        from_ms = self.config.run_from_ms
        to_ms = self.config.run_to_ms
        return [
            self.steps.steps[step_id]
            for step_id in sorted(self.steps.steps)
            if from_ms <= self.steps.steps[step_id].core.sum_time_ms <= to_ms
            and self.is_step_in_run_scope(self.steps.steps[step_id])
        ]

    def leg_for_step(self, step_id: int) -> Optional[FlightLeg]:
        if self.legs is None:
            return None
        return self.legs.leg_for_step(step_id)

    def describe_flight_path(self) -> str:
        answer = ""
        if self.has_flight_sections:
            answer += self.sections.describe_path()
        if self.has_flight_legs:
            answer += self.legs.describe_legs()
        if self.has_flight_steps:
            answer += self.steps.describe_lineal_m()
        return answer

    def google_maps_link(self) -> str:
        if self.has_flight_sections and self.sections.max_global_location is not None:
            location = self.sections.max_global_location
            lat_long = f"{location.latitude},{location.longitude}"
            return f"https://www.google.com/maps?q={lat_long}&ll={lat_long}&z=10"
        return ""

    def duration_ms(self) -> int:
        if self.has_flight_steps:
            return self.steps.steps[self.steps.max_step_id].core.sum_time_ms
        if self.camera is not None:
            return self.camera.duration_ms
        return 0

    def flight_overview(self) -> SettingsList:
        """Short description of the flight: when, how long and where."""
        date = ""
        time = ""
        country_x = ""
        country_y = ""
        easting_m = ""
        northing_m = ""
        if self.has_flight_sections:
            when = self.sections.min_date_time
            if when is not None:
                date = when.strftime(DATE_FORMAT)
                time = when.strftime(TIME_FORMAT)
            max_country = self.sections.max_country_location
            min_country = self.sections.min_country_location
            if max_country is not None and min_country is not None:
                country_x = f"{max_country.easting_m:.0f}"
                country_y = f"{max_country.northing_m:.0f}"
                easting_m = str(int(max_country.easting_m - min_country.easting_m))
                northing_m = str(int(max_country.northing_m - min_country.northing_m))

        return [
            ("Date", date),
            ("Time", time),
            ("Duration", ms_to_time_string(self.duration_ms())),
            ("Country X", country_x),
            ("Country Y", country_y),
            ("Easting M", easting_m),
            ("Northing M", northing_m),
            ("File name", self.input_path.name if self.input_path is not None else ""),
            ("Google Maps", self.google_maps_link()),
        ]

    def get_settings(self) -> SettingsList:
        answer = self.flight_overview() + self.config.get_settings()
        answer.append(("Use Legs Active", "true" if self.use_flight_legs else "false"))
        answer.append(("OnGroundAt Valid", "true" if self.on_ground_at_is_valid() else "false"))
        if self.has_flight_sections:
            answer += self.sections.get_settings()
        if self.has_flight_steps:
            answer += self.steps.get_settings()
        return answer


def load_drone(
    filepath: Path,
    config: Optional[DroneConfig] = None,
    elevation_model: Optional[ElevationModel] = None,
) -> Drone:
    """Load and process one flight."""
    drone = Drone(config=config, elevation_model=elevation_model)
    drone.load_flight_log(filepath)
    drone.calculate_settings()
    return drone
