"""
Flight section assembly.

Converts a RawFlightLog into FlightSections: drops rows without a usable
location, projects into the flight-local frame, fills in time/lineal/yaw
deltas and summarises.
"""

import logging
from datetime import timedelta
from typing import Optional

import numpy as np

from app.errors import ParseError
from app.models.flight import FlightSection, FlightSections
from app.models.raw import RawFlightLog
from app.models.tardis import TardisCore
from app.utils.coordinates import GlobalLocation, global_to_local


logger = logging.getLogger(__name__)


def normalize_yaw_deg(yaw: float) -> float:
    """Normalize a heading into [-180, 180)."""
    return ((yaw + 180.0) % 360.0) - 180.0


def _value(values: Optional[np.ndarray], index: int) -> Optional[float]:
    if values is None:
        return None
    value = values[index]
    if np.isnan(value):
        return None
    return float(value)


def location_mask(lat: np.ndarray, lon: np.ndarray) -> np.ndarray:
    """Rows whose latitude/longitude are present, in range and not (0, 0)."""
    finite = np.isfinite(lat) & np.isfinite(lon)
    in_range = (np.abs(np.nan_to_num(lat)) <= 90.0) & (np.abs(np.nan_to_num(lon)) <= 180.0)
    # ATTI or OPTI flight modes report a zero location
    not_zero = ~((np.nan_to_num(lat) == 0.0) & (np.nan_to_num(lon) == 0.0))
    return finite & in_range & not_zero


def valid_location_mask(raw: RawFlightLog) -> np.ndarray:
    return location_mask(raw.latitude, raw.longitude)


def build_sections(raw: RawFlightLog, country_crs: str = "EPSG:2193") -> FlightSections:
    """
    Assemble FlightSections from a raw flight log.

    Args:
        raw: Parser output
        country_crs: Map projection used for country coordinates

    Raises:
        ParseError: if no row has a usable location
    """
    mask = valid_location_mask(raw)
    indexes = np.flatnonzero(mask)
    if len(indexes) == 0:
        raise ParseError(f"No flight log rows with a valid location in {raw.name}", raw.source_file)
    dropped = len(raw) - len(indexes)
    if dropped:
        logger.debug(f"Dropped {dropped} rows without a valid location from {raw.name}")

    lats = raw.latitude[indexes]
    lons = raw.longitude[indexes]
    min_global = GlobalLocation(float(np.min(lats)), float(np.min(lons)))
    max_global = GlobalLocation(float(np.max(lats)), float(np.max(lons)))

    sections = FlightSections(
        file_name=raw.source_file.name,
        input_is_video=raw.input_is_video,
        origin=min_global,
        min_global_location=min_global,
        max_global_location=max_global,
        min_date_time=raw.min_date_time,
        max_date_time=raw.max_date_time,
        country_crs=country_crs,
    )

    prev: Optional[TardisCore] = None
    for position, index in enumerate(indexes):
        if raw.section_ids is not None:
            section_id = int(raw.section_ids[index])
        else:
            section_id = position

        start_ms = int(raw.time_ms[index])
        if prev is not None and start_ms < prev.start_time_ms:
            logger.debug(f"Section {section_id} time {start_ms}ms precedes previous; clamped")
            start_ms = prev.start_time_ms

        lat = float(raw.latitude[index])
        lon = float(raw.longitude[index])
        yaw = _value(raw.yaw, index)

        core = TardisCore(
            tardis_id=section_id,
            start_time_ms=start_ms,
            location=global_to_local(lat, lon, min_global.latitude, min_global.longitude),
            yaw_deg=None if yaw is None else normalize_yaw_deg(yaw),
            pitch_deg=_value(raw.pitch, index),
            roll_deg=_value(raw.roll, index),
            altitude_m=_value(raw.altitude, index),
            focal_length=_value(raw.focal_length, index),
            zoom=_value(raw.zoom, index),
        )
        core.calculate_time_ms(prev)
        core.calculate_lineal_m(prev)
        core.calculate_delta_yaw_deg(prev)

        section = FlightSection(core=core, global_location=GlobalLocation(lat, lon))
        if raw.image_file_names is not None:
            section.image_file_name = raw.image_file_names[index]
        if raw.min_raw_heat is not None:
            section.min_raw_heat = raw.min_raw_heat[index]
        if raw.max_raw_heat is not None:
            section.max_raw_heat = raw.max_raw_heat[index]
        if raw.min_date_time is not None:
            section.recorded_at = raw.min_date_time + timedelta(milliseconds=start_ms)

        sections.sections[section_id] = section
        sections.summary.summarise(core)
        prev = core

    sections.assert_good()
    logger.info(f"Assembled {len(sections)} flight sections from {raw.name}: {sections.describe_path()}")
    return sections
