"""
Summary accumulators over sequences of Tardis records.

A TardisSummary folds records into min/max bounds. Derived sequences
(smoothed steps, legs, subsets) are checked against their source summary
with assert_good_subset / assert_good_revision.
"""

import math
from dataclasses import dataclass, fields
from typing import Optional

from app.errors import InvariantViolation
from app.models.tardis import (
    DEGREES_NDP,
    ELEVATION_NDP,
    LOCATION_NDP,
    SettingsList,
    TardisCore,
    format_float,
    parse_float,
    parse_int,
)
from app.utils.coordinates import DroneLocation


# Absorbs floating point round-off in location/angle comparisons
ROUNDING_TOLERANCE = 0.001
REVISION_EPSILON = 0.2

# Scalar TardisCore attributes folded into <name>: min_<name>, max_<name>
SUMMARY_FIELDS = (
    "tardis_id",
    "time_ms",
    "sum_time_ms",
    "lineal_m",
    "sum_lineal_m",
    "speed_mps",
    "yaw_deg",
    "delta_yaw_deg",
    "pitch_deg",
    "roll_deg",
    "altitude_m",
    "focal_length",
    "zoom",
)


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise InvariantViolation(message)


def _fold(current_min, current_max, value):
    if value is None:
        return current_min, current_max
    if current_max is None:
        return value, value
    return min(current_min, value), max(current_max, value)


@dataclass
class TardisSummary:
    """Min/max bounds of every numeric Tardis field plus a location bounding box."""

    min_tardis_id: Optional[int] = None
    max_tardis_id: Optional[int] = None
    min_time_ms: Optional[int] = None
    max_time_ms: Optional[int] = None
    min_sum_time_ms: Optional[int] = None
    max_sum_time_ms: Optional[int] = None
    min_lineal_m: Optional[float] = None
    max_lineal_m: Optional[float] = None
    min_sum_lineal_m: Optional[float] = None
    max_sum_lineal_m: Optional[float] = None
    min_speed_mps: Optional[float] = None
    max_speed_mps: Optional[float] = None
    min_yaw_deg: Optional[float] = None
    max_yaw_deg: Optional[float] = None
    min_delta_yaw_deg: Optional[float] = None
    max_delta_yaw_deg: Optional[float] = None
    min_pitch_deg: Optional[float] = None
    max_pitch_deg: Optional[float] = None
    min_roll_deg: Optional[float] = None
    max_roll_deg: Optional[float] = None
    min_altitude_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    min_focal_length: Optional[float] = None
    max_focal_length: Optional[float] = None
    min_zoom: Optional[float] = None
    max_zoom: Optional[float] = None

    min_location: Optional[DroneLocation] = None
    max_location: Optional[DroneLocation] = None

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, None)

    def copy_from(self, other: "TardisSummary") -> None:
        # All members are immutable values
        for f in fields(TardisSummary):
            setattr(self, f.name, getattr(other, f.name))

    def copy(self) -> "TardisSummary":
        answer = TardisSummary()
        answer.copy_from(self)
        return answer

    @property
    def has_data(self) -> bool:
        return self.max_tardis_id is not None

    def summarise(self, record: TardisCore) -> None:
        """Fold one record into the bounds. Unknown values are skipped."""
        for name in SUMMARY_FIELDS:
            lo, hi = _fold(
                getattr(self, f"min_{name}"),
                getattr(self, f"max_{name}"),
                getattr(record, name),
            )
            setattr(self, f"min_{name}", lo)
            setattr(self, f"max_{name}", hi)

        loc = record.location
        if loc is not None:
            if self.max_location is None:
                self.min_location = loc
                self.max_location = loc
            else:
                self.min_location = DroneLocation(
                    min(self.min_location.northing_m, loc.northing_m),
                    min(self.min_location.easting_m, loc.easting_m),
                )
                self.max_location = DroneLocation(
                    max(self.max_location.northing_m, loc.northing_m),
                    max(self.max_location.easting_m, loc.easting_m),
                )

    def assert_good_subset(self, original: "TardisSummary", check_id_range: bool = True) -> None:
        """
        Check this summary (of fewer records) lies inside the original envelope.

        Altitude is deliberately not checked: the OnGroundAt correction can
        legitimately move altitudes outside the raw envelope. This exemption
        means altitude containment is not guaranteed for derived summaries.
        """
        if check_id_range and self.has_data:
            _check(self.min_tardis_id >= original.min_tardis_id, "assert_good_subset: bad min_tardis_id")
            _check(self.max_tardis_id <= original.max_tardis_id, "assert_good_subset: bad max_tardis_id")

        if self.min_location is not None:
            _check(original.min_location is not None, "assert_good_subset: original has no locations")
            tol = ROUNDING_TOLERANCE
            _check(self.min_location.northing_m + tol >= original.min_location.northing_m,
                   "assert_good_subset: bad min northing")
            _check(self.min_location.easting_m + tol >= original.min_location.easting_m,
                   "assert_good_subset: bad min easting")
            _check(self.max_location.northing_m - tol <= original.max_location.northing_m,
                   "assert_good_subset: bad max northing")
            _check(self.max_location.easting_m - tol <= original.max_location.easting_m,
                   "assert_good_subset: bad max easting")

        for name in ("pitch_deg", "roll_deg"):
            lo = getattr(self, f"min_{name}")
            hi = getattr(self, f"max_{name}")
            orig_lo = getattr(original, f"min_{name}")
            orig_hi = getattr(original, f"max_{name}")
            if lo is not None and orig_lo is not None:
                _check(lo + ROUNDING_TOLERANCE >= orig_lo, f"assert_good_subset: bad min_{name} {lo} < {orig_lo}")
            if hi is not None and orig_hi is not None:
                _check(hi - ROUNDING_TOLERANCE <= orig_hi, f"assert_good_subset: bad max_{name} {hi} > {orig_hi}")

    def assert_good_revision(self, original: "TardisSummary", epsilon: float = REVISION_EPSILON) -> None:
        """
        Check a same-range revision (e.g. after smoothing) of the original.

        Id and time ranges must match exactly. Lineal, speed and delta yaw
        ranges must stay within the original envelope plus epsilon.
        """
        _check(self.min_tardis_id == original.min_tardis_id, "assert_good_revision: bad min_tardis_id")
        _check(self.max_tardis_id == original.max_tardis_id, "assert_good_revision: bad max_tardis_id")
        _check(self.min_time_ms == original.min_time_ms, "assert_good_revision: bad min_time_ms")
        _check(self.max_time_ms == original.max_time_ms, "assert_good_revision: bad max_time_ms")
        _check(self.min_sum_time_ms == original.min_sum_time_ms, "assert_good_revision: bad min_sum_time_ms")
        _check(self.max_sum_time_ms == original.max_sum_time_ms, "assert_good_revision: bad max_sum_time_ms")

        self.assert_good_subset(original)

        for name in ("sum_lineal_m", "speed_mps", "delta_yaw_deg"):
            lo = getattr(self, f"min_{name}")
            hi = getattr(self, f"max_{name}")
            orig_lo = getattr(original, f"min_{name}")
            orig_hi = getattr(original, f"max_{name}")
            if lo is None or orig_lo is None:
                continue
            _check(lo + epsilon >= orig_lo, f"assert_good_revision: bad min_{name} {lo} < {orig_lo}")
            _check(hi - epsilon <= orig_hi, f"assert_good_revision: bad max_{name} {hi} > {orig_hi}")

    def northing_range_m(self) -> float:
        if self.min_location is None:
            return 0.0
        return self.max_location.northing_m - self.min_location.northing_m

    def easting_range_m(self) -> float:
        if self.min_location is None:
            return 0.0
        return self.max_location.easting_m - self.min_location.easting_m

    def area_m2(self) -> float:
        return self.northing_range_m() * self.easting_range_m()

    def floor_min_delta_yaw_deg(self) -> int:
        """Graph axis lower bound for delta yaw."""
        if self.min_delta_yaw_deg is None:
            return -1
        return min(-1, math.floor(self.min_delta_yaw_deg))

    def ceiling_max_delta_yaw_deg(self) -> int:
        if self.max_delta_yaw_deg is None:
            return 1
        return max(1, math.ceil(self.max_delta_yaw_deg))

    def describe_path(self) -> str:
        return f"{self.northing_range_m():.0f}x{self.easting_range_m():.0f}m"

    def describe_lineal_m(self) -> str:
        if self.max_sum_lineal_m is None:
            return ""
        return f", {self.max_sum_lineal_m:.0f}m traveled"

    def describe_altitude(self) -> str:
        if self.max_altitude_m is None:
            return ""
        return f"{self.min_altitude_m:.0f} to {self.max_altitude_m:.0f}m"

    def get_settings(self, prefix: str = "Tardis") -> SettingsList:
        """Settings as ordered (name, value) pairs. Must align with load_settings()."""

        def loc(value: Optional[DroneLocation], attr: str) -> str:
            return format_float(getattr(value, attr) if value is not None else None, LOCATION_NDP)

        def num(value, ndp: int) -> str:
            return format_float(value, ndp)

        return [
            (f"Min {prefix} Id", "" if self.min_tardis_id is None else str(self.min_tardis_id)),
            (f"Max {prefix} Id", "" if self.max_tardis_id is None else str(self.max_tardis_id)),
            ("Min Northing M", loc(self.min_location, "northing_m")),
            ("Min Easting M", loc(self.min_location, "easting_m")),
            ("Max Northing M", loc(self.max_location, "northing_m")),
            ("Max Easting M", loc(self.max_location, "easting_m")),
            ("Min Time Ms", "" if self.min_time_ms is None else str(self.min_time_ms)),
            ("Max Time Ms", "" if self.max_time_ms is None else str(self.max_time_ms)),
            ("Min Sum Time Ms", "" if self.min_sum_time_ms is None else str(self.min_sum_time_ms)),
            ("Max Sum Time Ms", "" if self.max_sum_time_ms is None else str(self.max_sum_time_ms)),
            ("Min Lineal M", num(self.min_lineal_m, LOCATION_NDP)),
            ("Max Lineal M", num(self.max_lineal_m, LOCATION_NDP)),
            ("Min Sum Lineal M", num(self.min_sum_lineal_m, LOCATION_NDP)),
            ("Max Sum Lineal M", num(self.max_sum_lineal_m, LOCATION_NDP)),
            ("Min Speed Mps", num(self.min_speed_mps, LOCATION_NDP)),
            ("Max Speed Mps", num(self.max_speed_mps, LOCATION_NDP)),
            ("Min Yaw", num(self.min_yaw_deg, DEGREES_NDP)),
            ("Max Yaw", num(self.max_yaw_deg, DEGREES_NDP)),
            ("Min Delta Yaw", num(self.min_delta_yaw_deg, DEGREES_NDP)),
            ("Max Delta Yaw", num(self.max_delta_yaw_deg, DEGREES_NDP)),
            ("Min Pitch", num(self.min_pitch_deg, DEGREES_NDP)),
            ("Max Pitch", num(self.max_pitch_deg, DEGREES_NDP)),
            ("Min Roll", num(self.min_roll_deg, DEGREES_NDP)),
            ("Max Roll", num(self.max_roll_deg, DEGREES_NDP)),
            ("Min Altitude M", num(self.min_altitude_m, ELEVATION_NDP)),
            ("Max Altitude M", num(self.max_altitude_m, ELEVATION_NDP)),
            ("Min Focal Len", num(self.min_focal_length, 2)),
            ("Max Focal Len", num(self.max_focal_length, 2)),
            ("Min Zoom", num(self.min_zoom, 2)),
            ("Max Zoom", num(self.max_zoom, 2)),
        ]

    def load_settings(self, values: list[str]) -> None:
        """Load from settings values (1-based order of get_settings())."""
        it = iter(values)

        def nxt_int() -> Optional[int]:
            return parse_int(next(it))

        def nxt_float() -> Optional[float]:
            return parse_float(next(it))

        self.min_tardis_id = nxt_int()
        self.max_tardis_id = nxt_int()
        min_n, min_e, max_n, max_e = nxt_float(), nxt_float(), nxt_float(), nxt_float()
        self.min_location = None if min_n is None or min_e is None else DroneLocation(min_n, min_e)
        self.max_location = None if max_n is None or max_e is None else DroneLocation(max_n, max_e)
        self.min_time_ms = nxt_int()
        self.max_time_ms = nxt_int()
        self.min_sum_time_ms = nxt_int()
        self.max_sum_time_ms = nxt_int()
        self.min_lineal_m = nxt_float()
        self.max_lineal_m = nxt_float()
        self.min_sum_lineal_m = nxt_float()
        self.max_sum_lineal_m = nxt_float()
        self.min_speed_mps = nxt_float()
        self.max_speed_mps = nxt_float()
        self.min_yaw_deg = nxt_float()
        self.max_yaw_deg = nxt_float()
        self.min_delta_yaw_deg = nxt_float()
        self.max_delta_yaw_deg = nxt_float()
        self.min_pitch_deg = nxt_float()
        self.max_pitch_deg = nxt_float()
        self.min_roll_deg = nxt_float()
        self.max_roll_deg = nxt_float()
        self.min_altitude_m = nxt_float()
        self.max_altitude_m = nxt_float()
        self.min_focal_length = nxt_float()
        self.max_focal_length = nxt_float()
        self.min_zoom = nxt_float()
        self.max_zoom = nxt_float()


@dataclass
class StepSummary:
    """Step-specific summary: embeds a TardisSummary and adds ground data."""

    tardis: TardisSummary
    avg_speed_mps: Optional[float] = None
    min_dem_m: Optional[float] = None
    max_dem_m: Optional[float] = None
    min_dsm_m: Optional[float] = None
    max_dsm_m: Optional[float] = None

    @classmethod
    def empty(cls) -> "StepSummary":
        return cls(tardis=TardisSummary())

    def reset(self) -> None:
        self.tardis.reset()
        self.avg_speed_mps = None
        self.min_dem_m = None
        self.max_dem_m = None
        self.min_dsm_m = None
        self.max_dsm_m = None

    def copy(self) -> "StepSummary":
        return StepSummary(
            tardis=self.tardis.copy(),
            avg_speed_mps=self.avg_speed_mps,
            min_dem_m=self.min_dem_m,
            max_dem_m=self.max_dem_m,
            min_dsm_m=self.min_dsm_m,
            max_dsm_m=self.max_dsm_m,
        )

    def summarise_step(self, core: TardisCore, dem_m: Optional[float], dsm_m: Optional[float]) -> None:
        self.tardis.summarise(core)
        self.min_dem_m, self.max_dem_m = _fold(self.min_dem_m, self.max_dem_m, dem_m)
        self.min_dsm_m, self.max_dsm_m = _fold(self.min_dsm_m, self.max_dsm_m, dsm_m)

    def assert_good_step_revision(self, original: "StepSummary") -> None:
        """Revision check that also bounds the average speed."""
        self.tardis.assert_good_revision(original.tardis)
        if self.avg_speed_mps is not None and original.avg_speed_mps is not None:
            _check(self.avg_speed_mps <= original.avg_speed_mps * 1.01 + ROUNDING_TOLERANCE,
                   "assert_good_step_revision: bad avg_speed_mps")

    def min_max_vertical_axis_m(self) -> tuple[float, float]:
        """Altitude/elevation range for graphing, padded to whole metres."""
        values = [
            v for v in (
                self.tardis.min_altitude_m, self.tardis.max_altitude_m,
                self.min_dem_m, self.max_dem_m, self.min_dsm_m, self.max_dsm_m,
            )
            if v is not None
        ]
        if not values:
            return (0.0, 0.0)
        return (float(math.floor(min(values))), float(math.ceil(max(values))))

    def get_settings(self, prefix: str = "Step") -> SettingsList:
        return self.tardis.get_settings(prefix) + [
            ("Avg Speed Mps", format_float(self.avg_speed_mps, LOCATION_NDP)),
            ("Min DEM M", format_float(self.min_dem_m, ELEVATION_NDP)),
            ("Max DEM M", format_float(self.max_dem_m, ELEVATION_NDP)),
            ("Min DSM M", format_float(self.min_dsm_m, ELEVATION_NDP)),
            ("Max DSM M", format_float(self.max_dsm_m, ELEVATION_NDP)),
        ]

    def load_settings(self, values: list[str]) -> None:
        n = len(self.tardis.get_settings())
        self.tardis.load_settings(values[:n])
        rest = [parse_float(v) for v in values[n:n + 5]]
        self.avg_speed_mps, self.min_dem_m, self.max_dem_m, self.min_dsm_m, self.max_dsm_m = rest
