"""
DJI CSV flight log adapter.

Newer drones (the DJI Matrice 4T is the only known case) provide the flight
log as a CSV rather than a subtitle track. Section assembly happens in
app.services.sections.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from app.config import GimbalData
from app.errors import ParseError
from app.models.flight import DJI_M4T, CameraModel
from app.models.raw import RawFlightLog
from app.services.sections import location_mask


logger = logging.getLogger(__name__)


MIN_STEP_TIME_DELTA_MS = 33  # rows closer than this to the previous kept row are duplicates

REQUIRED_COLUMNS = (
    "time",
    "longitude",
    "latitude",
    "altitude_amsl",  # altitude above mean sea level
    "gimbal:pitch",
    "gimbal:roll",
    "gimbal:heading",
)


def m4t_camera(duration_ms: int = 0, file_name: str = "") -> CameraModel:
    """DJI Matrice 4T thermal camera (high resolution mode)."""
    return CameraModel(
        camera_type=DJI_M4T,
        hfov_deg=38.2,
        image_width=1280,
        image_height=1024,
        fps=30.0,
        focal_length=53.0,
        duration_ms=duration_ms,
        file_name=file_name,
    )


def _find_log_file(filepath: Path) -> Optional[Path]:
    if filepath.suffix.lower() == ".csv":
        return filepath if filepath.is_file() else None
    for suffix in (".csv", ".CSV"):
        candidate = filepath.with_suffix(suffix)
        if candidate.is_file():
            return candidate
    return None


def interpolate_sparse_gps(
    time_ms: NDArray[np.int64],
    latitude: NDArray[np.float64],
    longitude: NDArray[np.float64],
) -> None:
    """
    Interpolate GPS values that were only refreshed every few rows (in place).

    The M4T only evaluates GPS every couple of seconds, but every row carries
    the latest value. When a location repeats and then changes, the repeated
    (middle) row is placed between its neighbours by elapsed-time fraction.
    Rows without a usable location are ignored, so the triples are
    consecutive usable rows.
    """
    usable = np.flatnonzero(location_mask(latitude, longitude))
    for i in range(2, len(usable)):
        first, middle, last = usable[i - 2], usable[i - 1], usable[i]
        middle_moved = latitude[middle] != latitude[last] or longitude[middle] != longitude[last]
        repeated = latitude[first] == latitude[middle] and longitude[first] == longitude[middle]
        if not (middle_moved and repeated):
            continue

        t0, t1, t2 = float(time_ms[first]), float(time_ms[middle]), float(time_ms[last])
        frac = (t1 - t0) / (t2 - t0) if t2 != t0 else 0.0
        frac = min(1.0, max(0.0, frac))
        latitude[middle] = latitude[first] + frac * (latitude[last] - latitude[first])
        longitude[middle] = longitude[first] + frac * (longitude[last] - longitude[first])


class DjiCsvParser:
    """Parser for DJI CSV flight logs."""

    def parse_file(self, filepath: Path) -> RawFlightLog:
        df = self._read_csv(filepath)
        col_map = self._map_columns(df.columns.tolist())

        missing = [name for name in REQUIRED_COLUMNS if col_map.get(name) is None]
        if missing:
            raise ParseError(f"CSV flight log is missing columns: {', '.join(missing)}", filepath)

        times = pd.to_datetime(df[col_map["time"]], errors="coerce")
        total_rows = len(times)
        keep = self._deduplicate(times)
        if not keep:
            raise ParseError("CSV flight log has no rows with a usable time", filepath)

        df = df.iloc[keep].reset_index(drop=True)
        times = times.iloc[keep].reset_index(drop=True)

        first_time = times.iloc[0]
        time_ms = ((times - first_time).dt.total_seconds() * 1000).round().astype(np.int64).values

        latitude = self._extract_column(df, col_map, "latitude")
        longitude = self._extract_column(df, col_map, "longitude")
        altitude = self._extract_column(df, col_map, "altitude_amsl")
        pitch = self._extract_column(df, col_map, "gimbal:pitch")
        roll = self._extract_column(df, col_map, "gimbal:roll")
        yaw = self._extract_column(df, col_map, "gimbal:heading")

        gimbal_data = GimbalData.MANUAL_NO
        pose = np.concatenate([pitch, roll, yaw])
        if np.any(np.nan_to_num(pose) != 0):
            gimbal_data = GimbalData.AUTO_YES

        interpolate_sparse_gps(time_ms, latitude, longitude)

        n_rows = len(time_ms)
        duration_ms = int(time_ms[-1]) if n_rows else 0
        camera = m4t_camera(duration_ms=duration_ms, file_name=filepath.name)

        # Not known whether the CSV time is UTC or local
        min_date_time = first_time.to_pydatetime()
        max_date_time = times.iloc[-1].to_pydatetime()

        logger.debug(f"CSV {filepath.name}: kept {n_rows} of {total_rows} rows")

        return RawFlightLog(
            source="dji_csv",
            source_file=filepath,
            name=filepath.stem,
            time_ms=time_ms,
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            yaw=yaw,
            pitch=pitch,
            roll=roll,
            focal_length=np.full(n_rows, camera.focal_length, dtype=np.float64),
            zoom=np.ones(n_rows, dtype=np.float64),
            gimbal_data=gimbal_data,
            camera=camera,
            input_is_video=True,
            min_date_time=min_date_time,
            max_date_time=max_date_time,
        )

    def _read_csv(self, filepath: Path) -> pd.DataFrame:
        try:
            df = pd.read_csv(
                filepath,
                sep=r"[\t,]",
                engine="python",
                dtype=str,
                skip_blank_lines=True,
                on_bad_lines="skip",
                encoding="utf-8-sig",
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise ParseError(f"Unable to read CSV flight log: {e}", filepath) from e
        df.columns = df.columns.str.strip()
        return df

    def _map_columns(self, columns: list[str]) -> dict[str, Optional[str]]:
        """Case-insensitive lookup of the required columns."""
        lowered = {c.strip().lower(): c for c in columns}
        return {name: lowered.get(name) for name in REQUIRED_COLUMNS}

    def _deduplicate(self, times: pd.Series) -> list[int]:
        """Row positions to keep: timed rows at least MIN_STEP_TIME_DELTA_MS apart."""
        keep: list[int] = []
        prev_time = None
        for pos, t in enumerate(times):
            if pd.isna(t):
                logger.debug(f"Skipping CSV row {pos}: unparseable time")
                continue
            if prev_time is not None and (t - prev_time).total_seconds() * 1000 < MIN_STEP_TIME_DELTA_MS:
                continue
            keep.append(pos)
            prev_time = t
        return keep

    def _extract_column(
        self,
        df: pd.DataFrame,
        col_map: dict[str, Optional[str]],
        std_name: str,
    ) -> NDArray[np.float64]:
        col = col_map[std_name]
        return pd.to_numeric(df[col], errors="coerce").values.astype(np.float64)


class DjiCsvAdapter:
    """Adapter for DJI CSV flight logs (a .csv file, or the .csv beside a video)."""

    name = "dji_csv"

    def can_parse(self, filepath: Path) -> bool:
        return _find_log_file(filepath) is not None

    def parse(self, filepath: Path) -> RawFlightLog:
        log_file = _find_log_file(filepath)
        if log_file is None:
            raise ParseError("No CSV flight log found", filepath)
        return DjiCsvParser().parse_file(log_file)
