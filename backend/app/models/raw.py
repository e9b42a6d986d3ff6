"""
Raw flight log model (source-format, unnormalized).

Adapters load source files into this structure before section assembly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from app.config import GimbalData
from app.models.flight import CameraModel


@dataclass
class RawFlightLog:
    """Raw telemetry extracted from a flight log, one row per retained tick."""

    source: str
    source_file: Path
    name: str

    time_ms: NDArray[np.int64]        # offset from start of log/video
    latitude: NDArray[np.float64]
    longitude: NDArray[np.float64]
    altitude: NDArray[np.float64]     # NaN where unknown

    yaw: NDArray[np.float64]          # degrees, NaN where unknown
    pitch: NDArray[np.float64]
    roll: NDArray[np.float64]

    focal_length: Optional[NDArray[np.float64]] = None
    zoom: Optional[NDArray[np.float64]] = None

    # Bucketed section ids (None: sequential 0..n-1)
    section_ids: Optional[NDArray[np.int64]] = None

    # Image-batch only
    image_file_names: Optional[list[str]] = None
    min_raw_heat: Optional[list[Optional[int]]] = None
    max_raw_heat: Optional[list[Optional[int]]] = None

    gimbal_data: GimbalData = GimbalData.MANUAL_NO
    camera: CameraModel = field(default_factory=CameraModel)

    input_is_video: bool = True
    min_date_time: Optional[datetime] = None
    max_date_time: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.time_ms)

    @property
    def recorded_at(self) -> Optional[datetime]:
        return self.min_date_time
