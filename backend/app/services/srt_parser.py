"""
DJI subtitle track (SRT) flight log adapter.

The SRT file sits beside the video with the same name. It repeats a
paragraph per video frame:
    a frame count line
    a time span line, e.g. "00:00:01,595 --> 00:00:01,711"
    2 to 10 data lines (drone and camera specific, may include a blank line)
    one blank line
"""

import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import numpy as np

from app.config import GimbalData
from app.errors import ParseError
from app.models.flight import (
    DJI_GENERIC,
    DJI_H20N,
    DJI_H20T,
    DJI_M2E,
    DJI_M300_XT2,
    DJI_M3T,
    DJI_MAVIC3,
    CameraModel,
    ms_to_rough_section_id,
)
from app.models.raw import RawFlightLog


logger = logging.getLogger(__name__)


# Four is the fewest lines seen in a flight log paragraph
MIN_PARAGRAPH_LINES = 4

# Sensible zooms are 2, 4, 8 etc. Some files contain [dzoom_ratio: 10000, delta:0]
MAX_SENSIBLE_ZOOM = 100

CAMERA_TYPE_BY_PARAGRAPH_LINES = {
    12: DJI_H20T,
    11: DJI_H20N,
    6: DJI_MAVIC3,
    5: DJI_M3T,
    4: DJI_M300_XT2,
}

_NUMBER = r"(-?\d+(?:\.\d+)?)"
_TAG = re.compile(r"<[^>]+>")

# Token patterns are matched against lines with all spaces removed
FOCAL_LEN_RE = re.compile(r"\[focal_len:" + _NUMBER + r"\]")
DZOOM_RE = re.compile(r"\[dzoom_ratio:" + _NUMBER + r"[\],]")
LATITUDE_RE = re.compile(r"\[latitude:" + _NUMBER + r"\]")
LONGTITUDE_RE = re.compile(r"\[longtitude:" + _NUMBER + r"\]")  # sic, older firmware
LONGITUDE_RE = re.compile(r"\[longitude:" + _NUMBER + r"\]")
ALTITUDE_RE = re.compile(r"\[altitude:" + _NUMBER + r"\]")
ABS_ALT_RE = re.compile(r"abs_alt:" + _NUMBER + r"\]")
GIMBAL_RE = re.compile(r"gb_yaw:" + _NUMBER + r"gb_pitch:" + _NUMBER + r"gb_roll:" + _NUMBER + r"\]")
DRONE_YAW_RE = re.compile(r"Yaw:" + _NUMBER + r",")
DRONE_PITCH_RE = re.compile(r"Pitch:" + _NUMBER + r",")
DRONE_ROLL_RE = re.compile(r"Roll:" + _NUMBER + r"\]")
M300_GPS_RE = re.compile(r"GPS\(" + _NUMBER + r"," + _NUMBER + r",[^)]*\)BAROMETER:" + _NUMBER + r"M")

DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y.%m.%d %H:%M:%S",
)


def _token(pattern: re.Pattern, line: str) -> Optional[float]:
    match = pattern.search(line)
    if match:
        return float(match.group(1))
    return None


def read_paragraphs(lines: list[str]) -> list[list[str]]:
    """
    Split SRT lines into paragraphs on blank lines.

    A "<font>" to "</font>" clause may contain a blank line, so blank lines
    inside an open font clause do not end the paragraph.
    """
    paragraphs: list[list[str]] = []
    current: list[str] = []
    in_font_clause = False
    for raw_line in lines:
        line = raw_line.strip()
        if not line and not in_font_clause:
            if current:
                paragraphs.append(current)
            current = []
            continue
        if in_font_clause:
            in_font_clause = "</font>" not in line
        else:
            in_font_clause = "<font" in line and "</font>" not in line
        if line:
            current.append(line)
    if current:
        paragraphs.append(current)
    return paragraphs


def parse_duration_ms(line: str) -> int:
    """
    Start of a time span line "00:02:59,000 --> 00:03:00,000" in milliseconds.

    Handles the M300 edge case "00:02:60,000" and millisecond fields >= 1000.
    """
    start = line.replace(" ", "").split("-->")[0]
    clock, _, millis = start.partition(",")
    parts = [int(p) for p in clock.split(":")]
    while len(parts) < 3:
        parts.insert(0, 0)
    hours, minutes, seconds = parts
    total_ms = ((hours * 60 + minutes) * 60 + seconds) * 1000
    if millis:
        total_ms += int(re.sub(r"\D", "", millis) or 0)
    return total_ms


def parse_date_time(line: str) -> Optional[datetime]:
    """Parse e.g. "2022-04-10 18:03:55,167,480", "2022-06-27 14:31:29.480" or "2021.09.18 21:23:30"."""
    line = _TAG.sub("", line).strip()
    extra_ms = 0
    if "," in line:
        base, rest = line.split(",", 1)
        millis = rest.split(",")[0].strip()
        if millis.isdigit():
            extra_ms = int(millis)
        line = base.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(line, fmt) + timedelta(milliseconds=extra_ms)
        except ValueError:
            continue
    return None


def _find_srt_file(filepath: Path) -> Optional[Path]:
    if filepath.suffix.lower() == ".srt":
        return filepath if filepath.is_file() else None
    for suffix in (".SRT", ".srt"):
        candidate = filepath.with_suffix(suffix)
        if candidate.is_file():
            return candidate
    return None


class SrtParser:
    """Parser for DJI SRT flight logs."""

    def parse_file(self, filepath: Path) -> RawFlightLog:
        with open(filepath, "r", encoding="utf-8-sig", errors="replace") as f:
            lines = f.read().splitlines()

        rows: list[dict] = []
        camera_type = DJI_GENERIC
        gimbal_data = GimbalData.MANUAL_NO
        min_date_time: Optional[datetime] = None
        max_date_time: Optional[datetime] = None

        # At most one section per SECTION_MIN_MS. A rare long gap in the log
        # leaves gaps in the section id sequence.
        want_section_id = 0
        for paragraph in read_paragraphs(lines):
            if len(paragraph) < MIN_PARAGRAPH_LINES:
                # The log sometimes ends mid paragraph
                break

            if camera_type == DJI_GENERIC:
                camera_type = CAMERA_TYPE_BY_PARAGRAPH_LINES.get(len(paragraph), DJI_GENERIC)

            try:
                start_ms = parse_duration_ms(paragraph[1])
            except ValueError:
                logger.debug(f"Skipping SRT paragraph with bad time span: {paragraph[1]!r}")
                continue

            section_id = ms_to_rough_section_id(start_ms)
            if section_id < want_section_id:
                continue
            want_section_id = section_id + 1

            row = {
                "section_id": section_id,
                "time_ms": start_ms,
                "latitude": np.nan,
                "longitude": np.nan,
                "altitude": np.nan,
                "yaw": np.nan,
                "pitch": np.nan,
                "roll": np.nan,
                "focal_length": np.nan,
                "zoom": np.nan,
            }

            date_line = paragraph[2]
            if date_line[:2] == "20":
                # Matrice 300: date line then "GPS(-44.3266, 170.5650, 0.0M) BAROMETER: 363.3M"
                good = self._parse_m300(paragraph, row)
            else:
                date_line = paragraph[3]
                good, saw_gimbal, saw_longtitude = self._parse_tokens(paragraph[4:], row)
                if saw_gimbal:
                    gimbal_data = GimbalData.AUTO_YES
                if saw_longtitude:
                    camera_type = DJI_M2E

            when = parse_date_time(date_line)
            if when is not None:
                if min_date_time is None:
                    min_date_time = when
                else:
                    max_date_time = when

            if good:
                rows.append(row)
            else:
                logger.debug(f"Skipping SRT paragraph at {start_ms}ms: no location")

        if not rows:
            raise ParseError("SRT flight log contains no usable paragraphs", filepath)

        def column(name: str) -> np.ndarray:
            return np.array([r[name] for r in rows], dtype=np.float64)

        time_ms = np.array([r["time_ms"] for r in rows], dtype=np.int64)
        camera = CameraModel(camera_type=camera_type, file_name=filepath.name, duration_ms=int(time_ms[-1]))
        focal = column("focal_length")
        if not np.all(np.isnan(focal)):
            camera.focal_length = float(np.nanmax(focal))

        return RawFlightLog(
            source="dji_srt",
            source_file=filepath,
            name=filepath.stem,
            time_ms=time_ms,
            latitude=column("latitude"),
            longitude=column("longitude"),
            altitude=column("altitude"),
            yaw=column("yaw"),
            pitch=column("pitch"),
            roll=column("roll"),
            focal_length=focal,
            zoom=column("zoom"),
            section_ids=np.array([r["section_id"] for r in rows], dtype=np.int64),
            gimbal_data=gimbal_data,
            camera=camera,
            input_is_video=True,
            min_date_time=min_date_time,
            max_date_time=max_date_time,
        )

    def _parse_m300(self, paragraph: list[str], row: dict) -> bool:
        match = M300_GPS_RE.search(paragraph[3].replace(" ", ""))
        if match is None:
            return False
        row["latitude"] = float(match.group(1))
        row["longitude"] = float(match.group(2))
        row["altitude"] = float(match.group(3))
        return True

    def _parse_tokens(self, data_lines: list[str], row: dict) -> tuple[bool, bool, bool]:
        """Parse bracketed tokens. Returns (has_location, saw_gimbal, saw_longtitude)."""
        has_location = False
        saw_gimbal = False
        saw_longtitude = False
        for raw_line in data_lines:
            line = _TAG.sub("", raw_line).replace(" ", "")

            value = _token(FOCAL_LEN_RE, line)
            if value is not None:
                row["focal_length"] = value

            value = _token(DZOOM_RE, line)
            if value is not None and value < MAX_SENSIBLE_ZOOM:
                row["zoom"] = value

            value = _token(LATITUDE_RE, line)
            if value is not None:
                row["latitude"] = value

            value = _token(LONGTITUDE_RE, line)
            if value is not None:
                saw_longtitude = True
            else:
                value = _token(LONGITUDE_RE, line)
            if value is not None:
                row["longitude"] = value
                has_location = True

            value = _token(ALTITUDE_RE, line)
            if value is None:
                # DJI Mini: [rel_alt: 1.100 abs_alt: -70.436]
                value = _token(ABS_ALT_RE, line)
            if value is not None:
                row["altitude"] = value

            # Mavic 3T: [gb_yaw: -142.5 gb_pitch: -28.7 gb_roll: 0.0]
            match = GIMBAL_RE.search(line)
            if match:
                saw_gimbal = True
                row["yaw"] = float(match.group(1))
                row["pitch"] = float(match.group(2))
                row["roll"] = float(match.group(3))
                continue

            # Older DJIs: [Drone: Yaw:147.9, Pitch:4.5, Roll:-0.1]
            for key, pattern in (("yaw", DRONE_YAW_RE), ("pitch", DRONE_PITCH_RE), ("roll", DRONE_ROLL_RE)):
                value = _token(pattern, line)
                if value is not None:
                    row[key] = value

        return has_location, saw_gimbal, saw_longtitude


class SrtAdapter:
    """Adapter for DJI SRT flight logs (a .srt file, or the .SRT beside a video)."""

    name = "dji_srt"

    def can_parse(self, filepath: Path) -> bool:
        return _find_srt_file(filepath) is not None

    def parse(self, filepath: Path) -> RawFlightLog:
        srt_file = _find_srt_file(filepath)
        if srt_file is None:
            raise ParseError("No SRT flight log found", filepath)
        return SrtParser().parse_file(srt_file)
