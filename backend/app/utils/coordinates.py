"""
Coordinate transformation utilities.

Converts GPS coordinates (WGS84 lat/lon) to the flight-local planar frame
(northing/easting metres from the flight bounding box corner) and to a
country map projection. Also holds the small 2D geometry helpers used for
camera footprints and direction chevrons.
"""

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pyproj import Transformer


EARTH_RADIUS_M = 6371000.0  # Earth's mean radius in meters

WGS84_CRS = "EPSG:4326"


@dataclass(frozen=True)
class DroneLocation:
    """Flight-local planar location in metres."""
    northing_m: float
    easting_m: float

    def __str__(self) -> str:
        return f"{self.northing_m:.2f},{self.easting_m:.2f}"


@dataclass(frozen=True)
class GlobalLocation:
    """WGS84 location in degrees."""
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return (
            -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
            and not (self.latitude == 0.0 and self.longitude == 0.0)
        )

    def __str__(self) -> str:
        return f"{self.latitude:.6f},{self.longitude:.6f}"


@dataclass(frozen=True)
class CountryLocation:
    """Location in a country map projection (e.g. NZTM), in metres."""
    northing_m: float
    easting_m: float

    def __str__(self) -> str:
        return f"{self.northing_m:.0f},{self.easting_m:.0f}"


def global_to_local(
    lat: float,
    lon: float,
    origin_lat: float,
    origin_lon: float,
) -> DroneLocation:
    """
    Convert a global location into flight-local northing/easting metres.

    Small-angle (equirectangular) approximation. Valid over flight-scale
    distances; not valid near the poles or across the anti-meridian.

    Args:
        lat, lon: Point coordinates in degrees
        origin_lat, origin_lon: Local frame origin in degrees

    Returns:
        DroneLocation relative to the origin
    """
    northing = math.radians(lat - origin_lat) * EARTH_RADIUS_M
    easting = math.radians(lon - origin_lon) * EARTH_RADIUS_M * math.cos(math.radians(origin_lat))
    return DroneLocation(northing, easting)


def local_to_global(
    location: DroneLocation,
    origin_lat: float,
    origin_lon: float,
) -> GlobalLocation:
    """Inverse of global_to_local."""
    lat = origin_lat + math.degrees(location.northing_m / EARTH_RADIUS_M)
    lon = origin_lon + math.degrees(
        location.easting_m / (EARTH_RADIUS_M * math.cos(math.radians(origin_lat)))
    )
    return GlobalLocation(lat, lon)


@lru_cache(maxsize=8)
def _country_transformer(crs: str) -> Transformer:
    return Transformer.from_crs(WGS84_CRS, crs, always_xy=True)


def global_to_country_projection(lat: float, lon: float, crs: str) -> CountryLocation:
    """
    Project a WGS84 location into a country map projection.

    Args:
        lat, lon: Coordinates in degrees
        crs: Target coordinate reference system, e.g. "EPSG:2193" (NZTM2000)
    """
    easting, northing = _country_transformer(crs).transform(lon, lat)
    return CountryLocation(float(northing), float(easting))


def local_to_country_projection(
    location: DroneLocation,
    origin_lat: float,
    origin_lon: float,
    crs: str,
) -> CountryLocation:
    """Project a flight-local location into a country map projection."""
    glob = local_to_global(location, origin_lat, origin_lon)
    return global_to_country_projection(glob.latitude, glob.longitude, crs)


def translate(location: DroneLocation, delta: DroneLocation) -> DroneLocation:
    return DroneLocation(location.northing_m + delta.northing_m, location.easting_m + delta.easting_m)


def negate(location: DroneLocation) -> DroneLocation:
    return DroneLocation(-location.northing_m, -location.easting_m)


def rotate_point(point: tuple[float, float], angle_rad: float) -> tuple[float, float]:
    """Rotate an (x, y) point about the origin by angle_rad (counter-clockwise)."""
    x, y = point
    cos_a = math.cos(angle_rad)
    sin_a = math.sin(angle_rad)
    return (x * cos_a - y * sin_a, x * sin_a + y * cos_a)


def distance_m(a: Optional[DroneLocation], b: Optional[DroneLocation]) -> float:
    """Planar distance between two locations (0 if either is unknown)."""
    if a is None or b is None:
        return 0.0
    return math.hypot(a.northing_m - b.northing_m, a.easting_m - b.easting_m)


def add_unit_vector(
    location: DroneLocation,
    unit_vector: tuple[float, float],
    distance: float,
) -> DroneLocation:
    """Move distance metres from location along a (northing, easting) unit vector."""
    return DroneLocation(
        location.northing_m + unit_vector[0] * distance,
        location.easting_m + unit_vector[1] * distance,
    )
