"""
Flight data model: sections (raw ticks), steps (derived ticks) and legs.

Sections and steps embed a TardisCore; the collections and legs embed a
TardisSummary. Algorithms that build these live in app.services.
"""

import bisect
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.config import DroneConfig, SECTION_MIN_MS
from app.errors import InvariantViolation
from app.models.summary import StepSummary, TardisSummary
from app.models.tardis import (
    DEGREES_NDP,
    ELEVATION_NDP,
    FIRST_FREE_SETTING,
    LOCATION_NDP,
    SettingsList,
    TardisCore,
    format_float,
    parse_float,
    parse_int,
)
from app.utils.coordinates import (
    CountryLocation,
    DroneLocation,
    GlobalLocation,
    add_unit_vector,
    global_to_country_projection,
)


# A gap in the flight log can give a section a duration of > 1900ms.
# Sections longer than this are not smoothed.
MAX_SENSIBLE_SECTION_DURATION_MS = 500

LAT_LONG_NDP = 7

# Steps whose time differs by less than this from a leg boundary resolve to it
LEG_BOUNDARY_MS = 100

# Section settings (1-based, follow the Tardis settings)
LONGITUDE_SETTING = FIRST_FREE_SETTING
LATITUDE_SETTING = FIRST_FREE_SETTING + 1
IMAGE_FILE_SETTING = FIRST_FREE_SETTING + 2
MIN_RAW_HEAT_SETTING = FIRST_FREE_SETTING + 3
MAX_RAW_HEAT_SETTING = FIRST_FREE_SETTING + 4

# Step settings (1-based, follow the Tardis settings)
LEG_ID_SETTING = FIRST_FREE_SETTING
LEG_NAME_SETTING = FIRST_FREE_SETTING + 1
DSM_M_SETTING = FIRST_FREE_SETTING + 2
DEM_M_SETTING = FIRST_FREE_SETTING + 3
FIX_ALT_M_SETTING = FIRST_FREE_SETTING + 4
IMAGE_CENTER_N_SETTING = FIRST_FREE_SETTING + 5
IMAGE_CENTER_E_SETTING = FIRST_FREE_SETTING + 6
IMAGE_SIZE_X_SETTING = FIRST_FREE_SETTING + 7
IMAGE_SIZE_Y_SETTING = FIRST_FREE_SETTING + 8


def ms_to_rough_section_id(ms: int) -> int:
    """Bucket a log timestamp into a section id (at most one section per 250ms)."""
    return int(ms) // SECTION_MIN_MS


def id_to_letter(leg_id: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    if leg_id <= 0:
        return ""
    letters = ""
    n = leg_id
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


# Drone and camera combinations with known flight log formats
DJI_GENERIC = "DJI"
DJI_M2E = "DJI M2E Dual"
DJI_MAVIC3 = "DJI Mavic 3"
DJI_M3T = "DJI M3T"
DJI_M300_XT2 = "DJI M300 XT2"
DJI_M4T = "DJI M4T"
DJI_H20T = "ZH20T"
DJI_H20N = "ZH20N"


@dataclass
class CameraModel:
    """Thermal camera / video properties needed for footprint geometry."""

    camera_type: str = ""
    hfov_deg: float = 38.2
    image_width: int = 1280
    image_height: int = 1024
    fps: float = 30.0
    focal_length: Optional[float] = None
    duration_ms: int = 0
    file_name: str = ""

    @property
    def vfov_deg(self) -> float:
        return self.hfov_deg * self.image_height / self.image_width

    def frame_id_to_approx_ms(self, frame_id: int) -> int:
        """Approximate only, as drone video fps is approximate."""
        if frame_id <= 0 or self.fps <= 0:
            return 0
        return int(1000.0 * frame_id / self.fps)


@dataclass
class FlightSection:
    """One raw telemetry tick."""

    core: TardisCore
    global_location: GlobalLocation
    image_file_name: str = ""
    min_raw_heat: Optional[int] = None
    max_raw_heat: Optional[int] = None
    recorded_at: Optional[datetime] = None

    @property
    def section_id(self) -> int:
        return self.core.tardis_id

    def get_settings(self) -> SettingsList:
        return self.core.get_settings("Section") + [
            ("Longitude", f"{self.global_location.longitude:.{LAT_LONG_NDP}f}"),
            ("Latitude", f"{self.global_location.latitude:.{LAT_LONG_NDP}f}"),
            ("Image File", self.image_file_name),
            ("Min Raw Heat", "" if self.min_raw_heat is None else str(self.min_raw_heat)),
            ("Max Raw Heat", "" if self.max_raw_heat is None else str(self.max_raw_heat)),
        ]

    @classmethod
    def from_settings(cls, values: list[str]) -> "FlightSection":
        core = TardisCore(tardis_id=0)
        core.load_settings(values)
        return cls(
            core=core,
            global_location=GlobalLocation(
                latitude=float(values[LATITUDE_SETTING - 1]),
                longitude=float(values[LONGITUDE_SETTING - 1]),
            ),
            image_file_name=values[IMAGE_FILE_SETTING - 1],
            min_raw_heat=parse_int(values[MIN_RAW_HEAT_SETTING - 1]),
            max_raw_heat=parse_int(values[MAX_RAW_HEAT_SETTING - 1]),
        )


@dataclass
class FlightSections:
    """Time ordered raw sections of one flight, plus their summary."""

    file_name: str
    sections: dict[int, FlightSection] = field(default_factory=dict)
    summary: TardisSummary = field(default_factory=TardisSummary)
    input_is_video: bool = True

    # Local frame origin: south west corner of the global bounding box
    origin: Optional[GlobalLocation] = None
    min_global_location: Optional[GlobalLocation] = None
    max_global_location: Optional[GlobalLocation] = None

    min_date_time: Optional[datetime] = None
    max_date_time: Optional[datetime] = None

    country_crs: str = "EPSG:2193"

    def __len__(self) -> int:
        return len(self.sections)

    @property
    def min_tardis_id(self) -> Optional[int]:
        return self.summary.min_tardis_id

    @property
    def max_tardis_id(self) -> Optional[int]:
        return self.summary.max_tardis_id

    def has_yaw_data(self) -> bool:
        return any(s.core.yaw_deg not in (None, 0.0) for s in self.sections.values())

    def has_pitch_data(self) -> bool:
        return any(s.core.pitch_deg not in (None, 0.0) for s in self.sections.values())

    @property
    def last_sum_lineal_m(self) -> float:
        if not self.sections:
            return 0.0
        last = self.sections[max(self.sections)]
        return last.core.sum_lineal_m or 0.0

    @property
    def global_centroid(self) -> Optional[GlobalLocation]:
        if self.min_global_location is None or self.max_global_location is None:
            return None
        return GlobalLocation(
            (self.min_global_location.latitude + self.max_global_location.latitude) / 2,
            (self.min_global_location.longitude + self.max_global_location.longitude) / 2,
        )

    @property
    def min_country_location(self) -> Optional[CountryLocation]:
        if self.min_global_location is None:
            return None
        return global_to_country_projection(
            self.min_global_location.latitude, self.min_global_location.longitude, self.country_crs
        )

    @property
    def max_country_location(self) -> Optional[CountryLocation]:
        if self.max_global_location is None:
            return None
        return global_to_country_projection(
            self.max_global_location.latitude, self.max_global_location.longitude, self.country_crs
        )

    def describe_path(self) -> str:
        if not self.sections:
            return ""
        answer = self.summary.describe_path()
        altitude = self.summary.describe_altitude()
        if altitude:
            answer += f", altitude {altitude}"
        return answer

    def assert_good(self) -> None:
        """Non-negative ids, monotonic time and valid lat/long."""
        prev: Optional[FlightSection] = None
        for section_id, section in self.sections.items():
            if section_id < 0 or section_id != section.section_id:
                raise InvariantViolation(f"FlightSections.assert_good: bad section id {section_id}")
            if not section.global_location.is_valid():
                raise InvariantViolation(f"FlightSections.assert_good: bad location for section {section_id}")
            if prev is not None:
                if section_id <= prev.section_id:
                    raise InvariantViolation("FlightSections.assert_good: ids not increasing")
                if section.core.start_time_ms < prev.core.start_time_ms:
                    raise InvariantViolation(f"FlightSections.assert_good: time goes backwards at {section_id}")
            if section.core.time_ms is not None and section.core.time_ms < 0:
                raise InvariantViolation(f"FlightSections.assert_good: negative time_ms at {section_id}")
            prev = section

    def get_settings(self) -> SettingsList:
        answer: SettingsList = [
            ("File Name", self.file_name),
            ("Min Date Time", self.min_date_time.isoformat() if self.min_date_time else ""),
            ("Max Date Time", self.max_date_time.isoformat() if self.max_date_time else ""),
            ("Min Global Location", str(self.min_global_location) if self.min_global_location else ""),
            ("Max Global Location", str(self.max_global_location) if self.max_global_location else ""),
        ]
        if self.min_country_location is not None:
            answer.append(("Min Country M", str(self.min_country_location)))
            answer.append(("Max Country M", str(self.max_country_location)))
        return answer + self.summary.get_settings("Section")


@dataclass
class FlightStep:
    """One derived telemetry tick (1:1 with a FlightSection)."""

    core: TardisCore
    section: FlightSection = field(repr=False)

    dem_m: Optional[float] = None  # ground elevation below the drone
    dsm_m: Optional[float] = None  # surface (incl. trees) elevation below the drone
    fix_alt_m: float = 0.0         # altitude bias correction applied to this step

    input_image_center: Optional[DroneLocation] = None
    input_image_size_m: Optional[tuple[float, float]] = None  # (across, along) metres

    @property
    def step_id(self) -> int:
        return self.core.tardis_id

    @property
    def dsm_else_dem_m(self) -> Optional[float]:
        return self.dsm_m if self.dsm_m is not None else self.dem_m

    @property
    def fixed_altitude_m(self) -> Optional[float]:
        """Best estimate of altitude: raw altitude plus the bias correction."""
        if self.core.altitude_m is None:
            return None
        return self.core.altitude_m + self.fix_alt_m

    @property
    def fixed_distance_down_m(self) -> Optional[float]:
        if self.fixed_altitude_m is None or self.dem_m is None:
            return None
        return self.fixed_altitude_m - self.dem_m

    @property
    def input_image_unit_vector(self) -> tuple[float, float]:
        """(northing, easting) unit vector the camera points along. Yaw 0 is north."""
        yaw = self.core.yaw_rad or 0.0
        return (math.cos(yaw), math.sin(yaw))

    def camera_to_vertical_forward_deg(self, config: DroneConfig) -> float:
        """
        Camera angle from the vertical, positive looking forward.

        Without gimbal data the configured fixed camera angle is used.
        With gimbal data the pitch (normally -45 to -90) gives the angle.
        """
        if not config.use_gimbal_data or self.core.pitch_deg is None:
            return float(config.fixed_camera_to_vertical_deg)
        return 90.0 + self.core.pitch_deg

    def input_image_corners(self) -> Optional[tuple[DroneLocation, DroneLocation, DroneLocation, DroneLocation]]:
        """Corners (front left, front right, back right, back left) of the camera footprint."""
        if self.input_image_center is None or self.input_image_size_m is None:
            return None
        fwd = self.input_image_unit_vector
        right = (-fwd[1], fwd[0])
        half_x = self.input_image_size_m[0] / 2
        half_y = self.input_image_size_m[1] / 2
        corners = []
        for along, across in ((half_y, -half_x), (half_y, half_x), (-half_y, half_x), (-half_y, -half_x)):
            locn = add_unit_vector(self.input_image_center, fwd, along)
            corners.append(add_unit_vector(locn, right, across))
        return corners[0], corners[1], corners[2], corners[3]

    def image_feature_location(self, horizontal_fraction: float, vertical_fraction: float) -> Optional[DroneLocation]:
        """
        Ground location of an image position (0,0 = top left of the image).

        Does not consider land contour undulations within the image area.
        """
        if self.input_image_center is None or self.input_image_size_m is None:
            return None
        fwd = self.input_image_unit_vector
        right = (-fwd[1], fwd[0])
        across = self.input_image_size_m[0] * (horizontal_fraction - 0.5)
        along = self.input_image_size_m[1] * (0.5 - vertical_fraction)
        locn = add_unit_vector(self.input_image_center, fwd, along)
        return add_unit_vector(locn, right, across)

    def get_settings(self, leg_id: int = 0) -> SettingsList:
        center = self.input_image_center
        size = self.input_image_size_m
        return self.core.get_settings("Step") + [
            ("Leg Id", str(leg_id)),
            ("Leg Name", id_to_letter(leg_id)),
            ("DSM", format_float(self.dsm_m, ELEVATION_NDP)),
            ("DEM", format_float(self.dem_m, ELEVATION_NDP)),
            ("Fix Alt M", format_float(self.fix_alt_m, ELEVATION_NDP)),
            ("Img Center N", format_float(center.northing_m if center else None, LOCATION_NDP)),
            ("Img Center E", format_float(center.easting_m if center else None, LOCATION_NDP)),
            ("Img Size X", format_float(size[0] if size else None, LOCATION_NDP)),
            ("Img Size Y", format_float(size[1] if size else None, LOCATION_NDP)),
        ]

    def load_settings(self, values: list[str]) -> int:
        """Load from settings values. Returns the stored leg id."""
        self.core.load_settings(values)
        self.dsm_m = parse_float(values[DSM_M_SETTING - 1])
        self.dem_m = parse_float(values[DEM_M_SETTING - 1])
        self.fix_alt_m = parse_float(values[FIX_ALT_M_SETTING - 1]) or 0.0
        north = parse_float(values[IMAGE_CENTER_N_SETTING - 1])
        east = parse_float(values[IMAGE_CENTER_E_SETTING - 1])
        self.input_image_center = None if north is None or east is None else DroneLocation(north, east)
        size_x = parse_float(values[IMAGE_SIZE_X_SETTING - 1])
        size_y = parse_float(values[IMAGE_SIZE_Y_SETTING - 1])
        self.input_image_size_m = None if size_x is None or size_y is None else (size_x, size_y)
        return parse_int(values[LEG_ID_SETTING - 1]) or 0


@dataclass
class FlightSteps:
    """Derived steps of one flight, keyed by step id (== section id)."""

    steps: dict[int, FlightStep] = field(default_factory=dict)
    summary: StepSummary = field(default_factory=StepSummary.empty)

    avg_height_over_dem_m: Optional[float] = None
    min_height_over_dsm_m: Optional[float] = None
    on_ground_at_fix_start_m: float = 0.0
    on_ground_at_fix_end_m: float = 0.0

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def min_step_id(self) -> Optional[int]:
        return min(self.steps) if self.steps else None

    @property
    def max_step_id(self) -> Optional[int]:
        return max(self.steps) if self.steps else None

    @property
    def has_on_ground_at_fix(self) -> bool:
        return self.on_ground_at_fix_start_m != 0 or self.on_ground_at_fix_end_m != 0

    def _ordered(self) -> tuple[list[int], list[FlightStep]]:
        ordered = [self.steps[k] for k in sorted(self.steps)]
        return [s.core.sum_time_ms for s in ordered], ordered

    def nearest_step_at_time_ms(self, flight_ms: int) -> Optional[FlightStep]:
        """Step whose start time is closest to flight_ms (binary search)."""
        if not self.steps:
            return None
        times, ordered = self._ordered()
        idx = bisect.bisect_left(times, flight_ms)
        if idx <= 0:
            return ordered[0]
        if idx >= len(ordered):
            return ordered[-1]
        before, after = ordered[idx - 1], ordered[idx]
        if flight_ms - before.core.sum_time_ms <= after.core.sum_time_ms - flight_ms:
            return before
        return after

    def step_at_or_before_time_ms(self, flight_ms: int) -> Optional[FlightStep]:
        if not self.steps:
            return None
        times, ordered = self._ordered()
        idx = bisect.bisect_right(times, flight_ms)
        return ordered[max(0, idx - 1)]

    def step_id_to_nearest_step(self, step_id: int) -> Optional[FlightStep]:
        """
        Step with this id, else the nearest existing id within 8 either side.

        The flight log sometimes has a gap of say 1.5s without data, so
        nearby ids stand in. Beyond 8 ids either side, gives up.
        """
        if step_id in self.steps:
            return self.steps[step_id]
        for offset in range(1, 9):
            if step_id + offset in self.steps:
                return self.steps[step_id + offset]
            if step_id - offset in self.steps:
                return self.steps[step_id - offset]
        return None

    def percent_altitude_less_than_dem(self) -> int:
        """
        Percentage of steps where the corrected altitude is more than 1m below the ground.

        A good answer is 0. A bad OnGroundAt setting can give say 45%.
        """
        if not self.steps:
            return 0
        below = 0
        for step in self.steps.values():
            if step.fixed_altitude_m is None or step.dem_m is None:
                continue
            if step.dem_m - step.fixed_altitude_m > 1:
                below += 1
        return int(100 * below / len(self.steps))

    def describe_lineal_m(self) -> str:
        return self.summary.tardis.describe_lineal_m()

    def get_settings(self) -> SettingsList:
        return self.summary.get_settings("Step") + [
            ("Avg Height Over DEM M", format_float(self.avg_height_over_dem_m, ELEVATION_NDP)),
            ("Min Height Over DSM M", format_float(self.min_height_over_dsm_m, ELEVATION_NDP)),
            ("On Ground At Fix Start M", format_float(self.on_ground_at_fix_start_m, ELEVATION_NDP)),
            ("On Ground At Fix End M", format_float(self.on_ground_at_fix_end_m, ELEVATION_NDP)),
        ]


@dataclass
class FlightLeg:
    """A contiguous run of steps at near-constant altitude and direction."""

    leg_id: int
    why_leg_ended: str = ""
    summary: TardisSummary = field(default_factory=TardisSummary)

    @property
    def name(self) -> str:
        return id_to_letter(self.leg_id)

    @property
    def min_step_id(self) -> Optional[int]:
        return self.summary.min_tardis_id

    @property
    def max_step_id(self) -> Optional[int]:
        return self.summary.max_tardis_id

    @property
    def min_sum_time_ms(self) -> Optional[int]:
        return self.summary.min_sum_time_ms

    @property
    def max_sum_time_ms(self) -> Optional[int]:
        return self.summary.max_sum_time_ms

    @property
    def duration_ms(self) -> int:
        if self.min_sum_time_ms is None:
            return 0
        return self.max_sum_time_ms - self.min_sum_time_ms

    @property
    def lineal_m(self) -> float:
        lo = self.summary.min_sum_lineal_m
        hi = self.summary.max_sum_lineal_m
        if lo is None or hi is None or lo < 0:
            return 0.0
        return hi - lo

    def contains_step(self, step_id: int) -> bool:
        return self.min_step_id is not None and self.min_step_id <= step_id <= self.max_step_id

    def overlaps_run_from_to(self, from_ms: int, to_ms: int) -> bool:
        if self.min_sum_time_ms is None:
            return False
        return self.min_sum_time_ms <= to_ms and self.max_sum_time_ms >= from_ms

    def percent_overlap_with_run_from_to(self, from_ms: int, to_ms: int) -> int:
        """Percentage of this leg's duration inside the run window."""
        if self.min_sum_time_ms is None or self.duration_ms <= 0:
            return 0
        overlap = min(self.max_sum_time_ms, to_ms) - max(self.min_sum_time_ms, from_ms)
        if overlap <= 0:
            return 0
        return int(100 * overlap / self.duration_ms)

    def nearest_step_at_time_ms(self, flight_ms: int, steps: FlightSteps) -> Optional[FlightStep]:
        best: Optional[FlightStep] = None
        best_delta = None
        for step_id in range(self.min_step_id, self.max_step_id + 1):
            step = steps.steps.get(step_id)
            if step is None:
                continue
            delta = abs(step.core.sum_time_ms - flight_ms)
            if best_delta is None or delta < best_delta:
                best, best_delta = step, delta
        return best

    def get_settings(self) -> SettingsList:
        return [
            ("Leg Id", str(self.leg_id)),
            ("Leg Name", self.name),
            ("Why Ended", self.why_leg_ended),
        ] + self.summary.get_settings("Step")

    @classmethod
    def from_settings(cls, values: list[str]) -> "FlightLeg":
        leg = cls(leg_id=int(values[0]), why_leg_ended=values[2])
        leg.summary.load_settings(values[3:])
        return leg


@dataclass
class FlightLegs:
    """Ordered legs of a flight plus the step id -> leg id association table."""

    legs: list[FlightLeg] = field(default_factory=list)
    step_leg_ids: dict[int, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.legs)

    def leg_id_of(self, step_id: int) -> int:
        return self.step_leg_ids.get(step_id, 0)

    def leg_for_step(self, step_id: int) -> Optional[FlightLeg]:
        leg_id = self.leg_id_of(step_id)
        if leg_id <= 0:
            return None
        for leg in self.legs:
            if leg.leg_id == leg_id:
                return leg
        return None

    def sum_lineal_m(self) -> float:
        """Lineal distance travelled inside legs."""
        return sum(leg.lineal_m for leg in self.legs)

    def overlapping_legs_range(self, from_ms: int, to_ms: int) -> tuple[Optional[int], Optional[int]]:
        """First and last leg ids of the first contiguous run overlapping the window."""
        first_id: Optional[int] = None
        last_id: Optional[int] = None
        for leg in self.legs:
            if leg.overlaps_run_from_to(from_ms, to_ms):
                if first_id is None:
                    first_id = leg.leg_id
                last_id = leg.leg_id
            elif first_id is not None:
                break
        return first_id, last_id

    def describe_legs(self) -> str:
        if not self.legs:
            return ""
        return f", {len(self.legs)} legs"

    def assert_good(self, has_steps: bool) -> None:
        prev: Optional[FlightLeg] = None
        for expected_id, leg in enumerate(self.legs, start=1):
            if leg.leg_id != expected_id:
                raise InvariantViolation(f"FlightLegs.assert_good: leg ids not sequential at {leg.leg_id}")
            if not has_steps:
                continue
            if leg.min_step_id is None or leg.min_step_id < 0 or leg.max_step_id < leg.min_step_id:
                raise InvariantViolation(f"FlightLegs.assert_good: bad step range for leg {leg.name}")
            if prev is not None and leg.min_step_id <= prev.max_step_id:
                raise InvariantViolation(f"FlightLegs.assert_good: legs {prev.name} and {leg.name} overlap")
            prev = leg
        for step_id, leg_id in self.step_leg_ids.items():
            leg = self.leg_for_step(step_id)
            if leg is None or not leg.contains_step(step_id):
                raise InvariantViolation(f"FlightLegs.assert_good: step {step_id} not inside leg {leg_id}")

    def get_settings(self) -> list[SettingsList]:
        return [leg.get_settings() for leg in self.legs]
