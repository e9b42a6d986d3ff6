"""
Drone processing configuration.

Defaults can be overridden with DRONE_* environment variables.
"""

import os
from dataclasses import dataclass
from enum import Enum


class GimbalData(Enum):
    """Availability of camera gimbal pitch/yaw/roll data."""

    AUTO_YES = "AutoYes"      # flight log contains gimbal data
    MANUAL_YES = "ManualYes"  # user says the camera is gimbal stabilised
    MANUAL_NO = "ManualNo"    # no gimbal data; airframe attitude used instead


class OnGroundAt(Enum):
    """Which flight endpoints are known to be at ground level."""

    START = "Start"
    END = "End"
    BOTH = "Both"
    NEITHER = "Neither"
    AUTO = "Auto"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default) not in ("0", "false", "False")


SECTION_MIN_MS = 250  # raw sections are bucketed at most once per 250ms

RUN_VIDEO_FROM_S = float(os.getenv("DRONE_RUN_VIDEO_FROM_S", "5"))
RUN_VIDEO_TO_S = float(os.getenv("DRONE_RUN_VIDEO_TO_S", "10"))
GIMBAL_DATA_AVAIL = GimbalData(os.getenv("DRONE_GIMBAL_DATA", GimbalData.MANUAL_NO.value))
FIXED_CAMERA_DOWN_DEG = int(os.getenv("DRONE_FIXED_CAMERA_DOWN_DEG", "80"))
MIN_CAMERA_DOWN_DEG = int(os.getenv("DRONE_MIN_CAMERA_DOWN_DEG", "15"))
ON_GROUND_AT = OnGroundAt(os.getenv("DRONE_ON_GROUND_AT", OnGroundAt.AUTO.value))
SMOOTH_SECTION_RADIUS = int(os.getenv("DRONE_SMOOTH_SECTION_RADIUS", "2"))
USE_LEGS = _env_bool("DRONE_USE_LEGS", "1")
COUNTRY_CRS = os.getenv("DRONE_COUNTRY_CRS", "EPSG:2193")  # NZTM2000
ELEVATION_ACCURACY_M = float(os.getenv("DRONE_ELEVATION_ACCURACY_M", "1.0"))

# Pitch thresholds are meaningless once a gimbal compensates for drone attitude
GIMBAL_MAX_LEG_PITCH_DEG = 95.0
MAX_LEG_STEP_PITCH_DEG = 12.0
MAX_LEG_SUM_PITCH_DEG = 18.0


@dataclass
class DroneConfig:
    """User-editable settings consumed by the flight pipeline."""

    run_video_from_s: float = RUN_VIDEO_FROM_S
    run_video_to_s: float = RUN_VIDEO_TO_S

    gimbal_data_avail: GimbalData = GIMBAL_DATA_AVAIL
    fixed_camera_down_deg: int = FIXED_CAMERA_DOWN_DEG  # 90 = straight down
    min_camera_down_deg: int = MIN_CAMERA_DOWN_DEG

    on_ground_at: OnGroundAt = ON_GROUND_AT
    smooth_section_radius: int = SMOOTH_SECTION_RADIUS
    use_legs: bool = USE_LEGS

    # Leg thresholds
    max_leg_step_altitude_delta_m: float = 0.1
    max_leg_sum_altitude_delta_m: float = 1.0
    max_leg_step_delta_yaw_deg: float = 4.0
    max_leg_sum_delta_yaw_deg: float = 10.0
    max_leg_step_pitch_deg: float = MAX_LEG_STEP_PITCH_DEG
    max_leg_sum_pitch_deg: float = MAX_LEG_SUM_PITCH_DEG
    min_leg_duration_ms: int = 2000
    min_leg_distance_m: float = 5.0
    max_leg_gap_duration_ms: int = 2 * SECTION_MIN_MS
    leg_start_trim_ms: int = 0  # only applied when gimbal data is ManualNo

    country_crs: str = COUNTRY_CRS
    elevation_accuracy_m: float = ELEVATION_ACCURACY_M

    def __post_init__(self) -> None:
        self.validate()

    @property
    def use_gimbal_data(self) -> bool:
        return self.gimbal_data_avail != GimbalData.MANUAL_NO

    @property
    def smooth_section_size(self) -> int:
        """Width of the smoothing window (excluding the middle section)."""
        return 2 * self.smooth_section_radius

    @property
    def fixed_camera_to_vertical_deg(self) -> int:
        return 90 - self.fixed_camera_down_deg

    @property
    def run_from_ms(self) -> int:
        return int(self.run_video_from_s * 1000)

    @property
    def run_to_ms(self) -> int:
        return int(self.run_video_to_s * 1000)

    def validate(self) -> None:
        """Clamp angles into range and widen pitch thresholds for gimbal data."""
        self.fixed_camera_down_deg = max(25, min(90, int(self.fixed_camera_down_deg)))
        self.min_camera_down_deg = max(15, min(90, int(self.min_camera_down_deg)))
        self.smooth_section_radius = max(0, int(self.smooth_section_radius))
        if self.use_gimbal_data:
            self.max_leg_step_pitch_deg = GIMBAL_MAX_LEG_PITCH_DEG
            self.max_leg_sum_pitch_deg = GIMBAL_MAX_LEG_PITCH_DEG
        elif self.max_leg_step_pitch_deg == GIMBAL_MAX_LEG_PITCH_DEG:
            self.max_leg_step_pitch_deg = MAX_LEG_STEP_PITCH_DEG
            self.max_leg_sum_pitch_deg = MAX_LEG_SUM_PITCH_DEG

    def set_run_from_to(self, start_ms: int, end_ms: int) -> None:
        self.run_video_from_s = start_ms / 1000.0
        self.run_video_to_s = end_ms / 1000.0

    def get_settings(self) -> list[tuple[str, str]]:
        return [
            ("Run From S", f"{self.run_video_from_s:.2f}"),
            ("Run To S", f"{self.run_video_to_s:.2f}"),
            ("Gimbal Data", self.gimbal_data_avail.value),
            ("Camera Down Deg", str(self.fixed_camera_down_deg)),
            ("Min Camera Down Deg", str(self.min_camera_down_deg)),
            ("On Ground At", self.on_ground_at.value),
            ("Smooth Radius", str(self.smooth_section_radius)),
            ("Use Legs", "true" if self.use_legs else "false"),
            ("Max Leg Step Alt M", f"{self.max_leg_step_altitude_delta_m:g}"),
            ("Max Leg Sum Alt M", f"{self.max_leg_sum_altitude_delta_m:g}"),
            ("Max Leg Step Yaw Deg", f"{self.max_leg_step_delta_yaw_deg:g}"),
            ("Max Leg Sum Yaw Deg", f"{self.max_leg_sum_delta_yaw_deg:g}"),
            ("Max Leg Step Pitch Deg", f"{self.max_leg_step_pitch_deg:g}"),
            ("Max Leg Sum Pitch Deg", f"{self.max_leg_sum_pitch_deg:g}"),
            ("Min Leg Duration Ms", str(self.min_leg_duration_ms)),
            ("Min Leg Distance M", f"{self.min_leg_distance_m:g}"),
            ("Max Leg Gap Ms", str(self.max_leg_gap_duration_ms)),
        ]
