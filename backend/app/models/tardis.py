"""
Tardis record model ("time and relative distance in space").

One TardisCore holds the time, location and attitude of a single telemetry
tick. Raw sections and derived steps both embed one. Unknown values are None.
"""

import math
from dataclasses import dataclass, replace
from typing import Optional

from app.utils.coordinates import DroneLocation, distance_m, rotate_point


# Settings are a 1-based ordered list of (name, value) pairs.
# The index values below must align with TardisCore.get_settings().
TARDIS_ID_SETTING = 1
START_TIME_SETTING = 2
TIME_MS_SETTING = 3
SUM_TIME_MS_SETTING = 4
NORTHING_M_SETTING = 5
EASTING_M_SETTING = 6
LINEAL_CM_SETTING = 7
SUM_LINEAL_M_SETTING = 8
SPEED_MPS_SETTING = 9
YAW_DEG_SETTING = 10
DELTA_YAW_DEG_SETTING = 11
PITCH_DEG_SETTING = 12
ROLL_DEG_SETTING = 13
ALTITUDE_M_SETTING = 14
FOCAL_LENGTH_SETTING = 15
ZOOM_SETTING = 16
FIRST_FREE_SETTING = 17

LOCATION_NDP = 2
DEGREES_NDP = 2
ELEVATION_NDP = 2

SettingsList = list[tuple[str, str]]

YAW_EPSILON_DEG = 0.001


def format_float(value: Optional[float], ndp: int) -> str:
    """Format an optional float for settings. Unknown values become ''."""
    if value is None:
        return ""
    return f"{value:.{ndp}f}"


def parse_float(text: str) -> Optional[float]:
    text = text.strip()
    if text == "":
        return None
    return float(text)


def parse_int(text: str) -> Optional[int]:
    value = parse_float(text)
    return None if value is None else int(round(value))


def ms_to_time_string(ms: int) -> str:
    """Format milliseconds as HH:MM:SS.fff."""
    hours, rem = divmod(int(ms), 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def time_string_to_ms(text: str) -> int:
    """Parse HH:MM:SS.fff (or HH:MM:SS,fff) into milliseconds."""
    text = text.strip().replace(",", ".")
    parts = text.split(":")
    hours = int(parts[0]) if len(parts) == 3 else 0
    minutes = int(parts[-2]) if len(parts) >= 2 else 0
    seconds = float(parts[-1])
    return int(round((hours * 3600 + minutes * 60 + seconds) * 1000))


def wrap_degrees(delta: float) -> float:
    """Wrap an angle difference into (-180, 180]."""
    while delta > 180:
        delta -= 360
    while delta <= -180:
        delta += 360
    return delta


@dataclass
class TardisCore:
    """Time + pose sample shared by flight sections and flight steps."""

    tardis_id: int

    start_time_ms: int = 0         # offset from the start of the log/video
    time_ms: Optional[int] = None  # delta since previous record, may be > 1000 in gaps

    location: Optional[DroneLocation] = None  # relative to the flight bounding box

    lineal_m: Optional[float] = None      # straight line distance since previous record
    sum_lineal_m: Optional[float] = None  # cumulative path length

    yaw_deg: Optional[float] = None       # [-180, 180)
    delta_yaw_deg: Optional[float] = None
    pitch_deg: Optional[float] = None
    roll_deg: Optional[float] = None

    altitude_m: Optional[float] = None    # raw, uncorrected (aka absolute altitude)

    focal_length: Optional[float] = None
    zoom: Optional[float] = None

    @property
    def sum_time_ms(self) -> int:
        return self.start_time_ms

    @property
    def speed_mps(self) -> float:
        if self.time_ms is None or self.lineal_m is None:
            return 0.0
        if self.time_ms <= 0 or self.lineal_m <= 0:
            return 0.0
        return 1000.0 * self.lineal_m / self.time_ms

    @property
    def yaw_rad(self) -> Optional[float]:
        return None if self.yaw_deg is None else math.radians(self.yaw_deg)

    @property
    def delta_yaw_rad(self) -> Optional[float]:
        return None if self.delta_yaw_deg is None else math.radians(self.delta_yaw_deg)

    def copy(self) -> "TardisCore":
        # DroneLocation is immutable so a shallow dataclass copy is a deep copy
        return replace(self)

    def copy_from(self, other: "TardisCore") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(other, name))

    def yaw_degs_delta(self, other: Optional["TardisCore"]) -> float:
        """
        Signed yaw change from this record to other, wrapped into (-180, 180].

        Returns 0 if either yaw is unknown or the change is negligible.
        """
        if other is None or self.yaw_deg is None or other.yaw_deg is None:
            return 0.0
        delta = wrap_degrees(other.yaw_deg - self.yaw_deg)
        if abs(delta) < YAW_EPSILON_DEG:
            return 0.0
        return delta

    def calculate_time_ms(self, prev: Optional["TardisCore"]) -> None:
        if prev is None:
            self.time_ms = self.start_time_ms
        else:
            self.time_ms = max(0, self.start_time_ms - prev.start_time_ms)

    def calculate_lineal_m(self, prev: Optional["TardisCore"]) -> None:
        self.lineal_m = 0.0
        self.sum_lineal_m = 0.0
        if self.location is not None and prev is not None and prev.location is not None:
            self.lineal_m = distance_m(self.location, prev.location)
            self.sum_lineal_m = (prev.sum_lineal_m or 0.0) + self.lineal_m

    def calculate_delta_yaw_deg(self, prev: Optional["TardisCore"]) -> None:
        if prev is None:
            self.delta_yaw_deg = 0.0 if self.yaw_deg is not None else None
            return
        if self.yaw_deg is None or prev.yaw_deg is None:
            self.delta_yaw_deg = None
            return
        self.delta_yaw_deg = prev.yaw_degs_delta(self)

    def direction_chevron(self) -> tuple[tuple[float, float], tuple[float, float], tuple[float, float]]:
        """Arrow head (in pixels) showing the direction of flight."""
        width = 8
        yaw = self.yaw_rad or 0.0
        return (
            rotate_point((-width / 2, width / 2), yaw),
            (0.0, 0.0),
            rotate_point((width / 2, width / 2), yaw),
        )

    def get_settings(self, kind: str = "Tardis") -> SettingsList:
        """Settings as ordered (name, value) pairs. Must align with the *_SETTING indexes."""
        loc = self.location
        lineal_cm = None if self.lineal_m is None else str(int(self.lineal_m * 100))
        return [
            (kind, str(self.tardis_id)),
            ("Start Time", ms_to_time_string(self.start_time_ms)),
            ("Time Ms", "" if self.time_ms is None else str(self.time_ms)),
            ("Sum Time Ms", str(self.sum_time_ms)),
            ("Northing M", format_float(loc.northing_m if loc else None, LOCATION_NDP)),
            ("Easting M", format_float(loc.easting_m if loc else None, LOCATION_NDP)),
            ("Lineal CM", lineal_cm or ""),
            ("Sum Lineal M", format_float(self.sum_lineal_m, LOCATION_NDP)),
            ("Speed Mps", format_float(self.speed_mps, LOCATION_NDP)),
            ("Yaw", format_float(self.yaw_deg, DEGREES_NDP)),
            ("Delta Yaw", format_float(self.delta_yaw_deg, DEGREES_NDP)),
            ("Pitch", format_float(self.pitch_deg, DEGREES_NDP)),
            ("Roll", format_float(self.roll_deg, DEGREES_NDP)),
            ("Altitude M", format_float(self.altitude_m, ELEVATION_NDP)),
            ("Focal Len", format_float(self.focal_length, 2)),
            ("Zoom", format_float(self.zoom, 2)),
        ]

    def load_settings(self, values: list[str]) -> None:
        """Load from settings values. Must align with get_settings()."""

        def at(index: int) -> str:
            return values[index - 1]

        self.tardis_id = int(at(TARDIS_ID_SETTING))
        self.start_time_ms = time_string_to_ms(at(START_TIME_SETTING))
        self.time_ms = parse_int(at(TIME_MS_SETTING))
        # Sum time and speed are derived.
        northing = parse_float(at(NORTHING_M_SETTING))
        easting = parse_float(at(EASTING_M_SETTING))
        self.location = None if northing is None or easting is None else DroneLocation(northing, easting)
        lineal_cm = parse_float(at(LINEAL_CM_SETTING))
        self.lineal_m = None if lineal_cm is None else lineal_cm / 100
        self.sum_lineal_m = parse_float(at(SUM_LINEAL_M_SETTING))
        self.yaw_deg = parse_float(at(YAW_DEG_SETTING))
        self.delta_yaw_deg = parse_float(at(DELTA_YAW_DEG_SETTING))
        self.pitch_deg = parse_float(at(PITCH_DEG_SETTING))
        self.roll_deg = parse_float(at(ROLL_DEG_SETTING))
        self.altitude_m = parse_float(at(ALTITUDE_M_SETTING))
        self.focal_length = parse_float(at(FOCAL_LENGTH_SETTING))
        self.zoom = parse_float(at(ZOOM_SETTING))
