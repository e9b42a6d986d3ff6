"""
Shared fixtures: synthetic flight logs and flight log files.
"""

import math
from pathlib import Path

import numpy as np
import pytest

from app.config import DroneConfig, GimbalData, OnGroundAt
from app.models.flight import CameraModel
from app.models.raw import RawFlightLog
from app.utils.coordinates import EARTH_RADIUS_M


ORIGIN_LAT = -43.5
ORIGIN_LON = 172.5


def straight_flight_raw(
    n_rows: int = 500,
    step_ms: int = 250,
    length_m: float = 400.0,
    yaw_deg: float = 90.0,
    yaw_jitter_deg: float = 0.5,
    altitude_m=50.0,
    pitch_deg=None,
    name: str = "synthetic",
) -> RawFlightLog:
    """
    A flight flying east at a constant altitude.

    Yaw alternates yaw_deg +/- yaw_jitter_deg. altitude_m may be a number or
    an array of per-row altitudes.
    """
    time_ms = np.arange(n_rows, dtype=np.int64) * step_ms
    east_m = np.linspace(0.0, length_m, n_rows)
    lon_per_m = 1.0 / (math.radians(1.0) * EARTH_RADIUS_M * math.cos(math.radians(ORIGIN_LAT)))
    longitude = ORIGIN_LON + east_m * lon_per_m
    latitude = np.full(n_rows, ORIGIN_LAT)
    jitter = np.where(np.arange(n_rows) % 2 == 0, yaw_jitter_deg, -yaw_jitter_deg)
    if np.isscalar(altitude_m):
        altitude = np.full(n_rows, float(altitude_m))
    else:
        altitude = np.asarray(altitude_m, dtype=np.float64)
    pitch = np.full(n_rows, np.nan if pitch_deg is None else float(pitch_deg))
    return RawFlightLog(
        source="synthetic",
        source_file=Path(f"{name}.srt"),
        name=name,
        time_ms=time_ms,
        latitude=latitude,
        longitude=longitude,
        altitude=altitude,
        yaw=yaw_deg + jitter,
        pitch=pitch,
        roll=np.full(n_rows, np.nan),
        camera=CameraModel(camera_type="test", duration_ms=int(time_ms[-1])),
        input_is_video=True,
    )


@pytest.fixture
def make_raw():
    """Factory for synthetic straight flights."""
    return straight_flight_raw


@pytest.fixture
def leg_config():
    """Config with no smoothing and no altitude correction."""
    return DroneConfig(
        gimbal_data_avail=GimbalData.MANUAL_NO,
        on_ground_at=OnGroundAt.NEITHER,
        smooth_section_radius=0,
        use_legs=True,
    )


def srt_paragraph(frame: int, start_ms: int, lat: float, lon: float, abs_alt: float, gimbal=None) -> str:
    """One DJI Mavic 3 style subtitle paragraph."""
    end_ms = start_ms + 33

    def span(ms: int) -> str:
        hours, rem = divmod(ms, 3_600_000)
        minutes, rem = divmod(rem, 60_000)
        seconds, millis = divmod(rem, 1000)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"

    tokens = (
        f"[iso : 110] [shutter : 1/30.0] [fnum : 170] [focal_len : 24.00] "
        f"[latitude: {lat:.6f}] [longitude: {lon:.6f}] [rel_alt: 1.100 abs_alt: {abs_alt:.3f}]"
    )
    if gimbal is not None:
        tokens += f" [gb_yaw: {gimbal[0]:.1f} gb_pitch: {gimbal[1]:.1f} gb_roll: {gimbal[2]:.1f}]"
    return (
        f"{frame}\n"
        f"{span(start_ms)} --> {span(end_ms)}\n"
        f'<font size="28">FrameCnt: {frame}, DiffTime: 33ms\n'
        f"2023-01-15 10:20:{30 + start_ms // 1000:02d}.123\n"
        f"{tokens}\n"
        f"</font>\n"
        f"\n"
    )


@pytest.fixture
def srt_content():
    """30 frames, 100ms apart, flying north."""
    return "".join(
        srt_paragraph(i + 1, i * 100, ORIGIN_LAT + i * 0.00001, ORIGIN_LON, 120.0, gimbal=(10.0, -90.0, 0.0))
        for i in range(30)
    )


@pytest.fixture
def csv_content():
    """DJI M4T style CSV flight log: 40 rows, 250ms apart."""
    lines = ["time,longitude,latitude,altitude_amsl,gimbal:pitch,gimbal:roll,gimbal:heading"]
    for i in range(40):
        seconds = i * 0.25
        lines.append(
            f"2025-02-06 21:54:{15 + seconds:06.3f},{ORIGIN_LON + i * 0.00001:.7f},"
            f"{ORIGIN_LAT:.7f},120.0,-90.0,0.0,90.0"
        )
    return "\n".join(lines) + "\n"


def exif_block(file_name: str, create_date: str, lat_dms: str, lon_dms: str, yaw: float) -> str:
    return (
        f"======== ./{file_name}\n"
        f"Camera Model Name               : M3T\n"
        f"Create Date                     : {create_date}\n"
        f"Image Width                     : 640\n"
        f"Image Height                    : 512\n"
        f"Field Of View                   : 61.0 deg\n"
        f"Absolute Altitude               : +120.500\n"
        f"GPS Latitude                    : {lat_dms}\n"
        f"GPS Longitude                   : {lon_dms}\n"
        f"Gimbal Pitch Degree             : -90.00\n"
        f"Flight Yaw Degree               : {yaw:+.2f}\n"
        f"Flight Roll Degree              : +0.10\n"
        f"Min Raw Heat                    : 21000\n"
        f"Max Raw Heat                    : 23500\n"
    )


@pytest.fixture
def image_folder(tmp_path):
    """Folder of three thermal images (listed out of time order) with exiftool output."""
    folder = tmp_path / "images"
    folder.mkdir()
    names = [
        "DJI_20250206215417_0003_T.JPG",
        "DJI_20250206215415_0001_T.JPG",
        "DJI_20250206215416_0002_T.JPG",
    ]
    for name in names + ["DJI_20250206215415_0001_W.JPG"]:
        (folder / name).write_bytes(b"")
    text = (
        exif_block(names[0], "2025:02:06 21:54:17", "43 deg 29' 58.00\" S", "172 deg 30' 2.00\" E", 45.0)
        + exif_block(names[1], "2025:02:06 21:54:15", "43 deg 30' 0.00\" S", "172 deg 30' 0.00\" E", 44.0)
        + exif_block(names[2], "2025:02:06 21:54:16", "43 deg 29' 59.00\" S", "172 deg 30' 1.00\" E", 46.0)
    )
    (folder / "metadata.txt").write_text(text)
    return folder
