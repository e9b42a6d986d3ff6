"""
Flight Repository - finds flights in a data folder and caches processed Drone objects.

A flight is a drone video (with its SRT or CSV flight log beside it), a
flight log without a video, or a folder of thermal images.
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.config import DroneConfig
from app.services.drone import Drone, load_drone
from app.services.elevation import ElevationModel
from app.services.image_parser import is_thermal_image


logger = logging.getLogger(__name__)


VIDEO_SUFFIXES = (".mp4", ".mov")
LOG_SUFFIXES = (".srt", ".csv")


@dataclass
class FlightSummary:
    """Lightweight flight description for listings."""

    id: str
    name: str
    source_file: str
    recorded_at: Optional[str]
    duration_ms: int
    section_count: int
    leg_count: int
    has_flight_data: bool
    input_is_video: bool

    @classmethod
    def from_drone(cls, flight_id: str, drone: Drone) -> "FlightSummary":
        recorded_at = None
        if drone.has_flight_sections and drone.sections.min_date_time is not None:
            recorded_at = drone.sections.min_date_time.isoformat()
        return cls(
            id=flight_id,
            name=drone.name,
            source_file=str(drone.input_path) if drone.input_path else "",
            recorded_at=recorded_at,
            duration_ms=drone.duration_ms(),
            section_count=len(drone.sections) if drone.sections is not None else 0,
            leg_count=len(drone.legs) if drone.has_flight_legs else 0,
            has_flight_data=drone.has_flight_sections,
            input_is_video=drone.input_is_video,
        )


def is_image_folder(folder: Path) -> bool:
    return folder.is_dir() and any(p.is_file() and is_thermal_image(p.name) for p in folder.iterdir())


class FlightRepository:
    """
    Repository for drone flights.

    Processes flights on first access and caches the Drone objects.
    """

    def __init__(self, data_folder: Optional[Path] = None, elevation_model: Optional[ElevationModel] = None):
        """
        Initialize the repository.

        Args:
            data_folder: Folder containing flights. If None, must be set later.
            elevation_model: Ground/surface elevations shared by all flights
        """
        self._data_folder: Optional[Path] = data_folder
        self._elevation_model = elevation_model
        self._cache: dict[str, Drone] = {}
        self._index: dict[str, Path] = {}  # id -> input path

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    @property
    def flight_count(self) -> int:
        return len(self._index)

    def set_data_folder(self, folder: Path) -> int:
        """
        Set the data folder and scan it for flights.

        Returns:
            Number of flights found
        """
        self._data_folder = folder
        self._cache.clear()
        self._index.clear()
        return self.scan_folder(folder)

    def scan_folder(self, folder: Path) -> int:
        """
        Scan a folder for flights and build the index.

        A flight log whose name matches a video is part of that video's flight.

        Returns:
            Number of flights found
        """
        if not folder.exists():
            logger.warning(f"Data folder does not exist: {folder}")
            return 0

        inputs: list[Path] = []
        video_stems: set[str] = set()
        for path in sorted(folder.iterdir()):
            if path.is_file() and path.suffix.lower() in VIDEO_SUFFIXES:
                inputs.append(path)
                video_stems.add(path.stem)
        for path in sorted(folder.iterdir()):
            if path.is_file() and path.suffix.lower() in LOG_SUFFIXES and path.stem not in video_stems:
                inputs.append(path)
            elif is_image_folder(path):
                inputs.append(path)

        for path in inputs:
            flight_id = self._filepath_to_id(path)
            self._index[flight_id] = path
            logger.debug(f"Indexed flight: {flight_id} -> {path.name}")

        logger.info(f"Scanned {len(inputs)} flights in {folder}")
        return len(inputs)

    def list_flights(self) -> list[FlightSummary]:
        """
        List all available flights, newest first.
        """
        summaries = []
        for flight_id in self._index:
            drone = self.get_drone(flight_id)
            if drone is not None:
                summaries.append(FlightSummary.from_drone(flight_id, drone))

        summaries.sort(key=lambda s: (s.recorded_at or "", s.name), reverse=True)
        return summaries

    def get_drone(self, flight_id: str) -> Optional[Drone]:
        """
        Get a processed flight by ID.

        Returns:
            Drone if found, None otherwise
        """
        if flight_id in self._cache:
            return self._cache[flight_id]
        if flight_id not in self._index:
            return None
        return self._load_drone(flight_id, self._index[flight_id])

    def update_config(self, flight_id: str, changes: dict) -> Optional[Drone]:
        """
        Apply config changes to a flight and recompute what depends on them.

        Args:
            flight_id: The flight identifier
            changes: DroneConfig field name -> new value
        """
        drone = self.get_drone(flight_id)
        if drone is None:
            return None
        for name, value in changes.items():
            setattr(drone.config, name, value)
        drone.config_has_changed()
        return drone

    def clear_cache(self) -> None:
        """Clear the in-memory cache."""
        self._cache.clear()
        logger.info("Flight cache cleared")

    def _load_drone(self, flight_id: str, path: Path) -> Drone:
        drone = load_drone(path, config=DroneConfig(), elevation_model=self._elevation_model)
        self._cache[flight_id] = drone
        logger.debug(f"Loaded and cached flight: {flight_id}")
        return drone

    def _filepath_to_id(self, filepath: Path) -> str:
        """Generate a consistent ID from filepath."""
        stat = filepath.stat()
        id_string = f"{filepath.name}_{stat.st_size}_{stat.st_mtime}"
        return hashlib.sha256(id_string.encode()).hexdigest()[:16]


# Global repository instance (set up by app initialization)
_repository: Optional[FlightRepository] = None


def get_repository() -> FlightRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = FlightRepository()
    return _repository


def init_repository(data_folder: Path, elevation_model: Optional[ElevationModel] = None) -> FlightRepository:
    """Initialize the global repository with a data folder."""
    global _repository
    _repository = FlightRepository(data_folder, elevation_model)
    return _repository
