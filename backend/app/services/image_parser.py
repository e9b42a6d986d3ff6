"""
Image metadata batch adapter.

Each thermal image in a folder becomes one flight section, ordered by
capture time. Image metadata is read from exiftool output saved beside the
images, in any of these forms:
    metadata.json          exiftool -j output for the folder
    metadata.txt           exiftool default output with "======== file" headers
    <image>.txt            exiftool default output for a single image
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np

from app.config import GimbalData
from app.errors import ParseError
from app.models.flight import CameraModel
from app.models.raw import RawFlightLog


logger = logging.getLogger(__name__)


METADATA_JSON = "metadata.json"
METADATA_TXT = "metadata.txt"
BLOCK_HEADER = "======== "
CREATE_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Match format like: 175 deg 36' 20.81" E
DMS_RE = re.compile(r"(\d+)\s*deg\s*(\d+)'\s*([\d.]+)\"\s*([NSEW])", re.IGNORECASE)

# Exiftool labels read from each image
LABELS = (
    "Camera Model Name",
    "Create Date",
    "Focal Length",
    "Image Width",
    "Image Height",
    "Digital Zoom Ratio",
    "Field Of View",
    "Absolute Altitude",
    "GPS Altitude",
    "GPS Latitude",
    "GPS Longitude",
    "Latitude",
    "Longitude",
    "Gimbal Roll Degree",
    "Gimbal Yaw Degree",
    "Gimbal Pitch Degree",
    "Flight Roll Degree",
    "Flight Yaw Degree",
    "Flight Pitch Degree",
    "LRF Target Lat",
    "LRF Target Lon",
    "Min Raw Heat",
    "Max Raw Heat",
)


def is_thermal_image(name: str) -> bool:
    """DJI thermal images are named like DJI_20250206215415_0240_T.JPG."""
    path = Path(name)
    return path.suffix.lower() in (".jpg", ".jpeg") and "_T" in path.stem.upper()


def parse_dms_coordinate(text: str) -> float:
    match = DMS_RE.search(text.strip())
    if not match:
        raise ValueError(f"Not a DMS coordinate: {text!r}")
    degrees = float(match.group(1))
    minutes = float(match.group(2))
    seconds = float(match.group(3))
    answer = degrees + minutes / 60.0 + seconds / 3600.0
    if match.group(4).upper() in ("S", "W"):
        answer = -answer
    return answer


def _first_number(text: Optional[str]) -> Optional[float]:
    """Leading numeric token of an exiftool value, e.g. "531.899 m Above Sea Level"."""
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    try:
        return float(text.split()[0])
    except ValueError:
        return None


def _coordinate(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    if " deg " in text:
        try:
            return parse_dms_coordinate(text)
        except ValueError:
            return None
    return _first_number(text)


def parse_exif_text(output: str) -> dict[str, str]:
    """Pick the known labels out of exiftool default output."""
    values: dict[str, str] = {}
    for line in output.splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        label = label.strip()
        if label in LABELS and label not in values:
            values[label] = value.strip()
    return values


def parse_exif_json(entry: dict) -> dict[str, str]:
    """Map one exiftool -j entry onto the text labels."""
    values: dict[str, str] = {}
    for label in LABELS:
        key = label.replace(" ", "")
        if key in entry and entry[key] is not None:
            values[label] = str(entry[key])
    if "Camera Model Name" not in values and "Model" in entry:
        values["Camera Model Name"] = str(entry["Model"])
    return values


@dataclass
class ImageMetadata:
    """Location and pose of one drone image."""

    file_name: str
    create_date: datetime
    latitude: Optional[float]
    longitude: Optional[float]
    altitude: Optional[float]
    yaw: Optional[float]
    pitch: Optional[float]
    roll: Optional[float]
    focal_length: Optional[float] = None
    zoom: Optional[float] = None
    camera_model: str = ""
    image_width: Optional[int] = None
    image_height: Optional[int] = None
    hfov_deg: Optional[float] = None
    min_raw_heat: Optional[int] = None
    max_raw_heat: Optional[int] = None

    @classmethod
    def from_values(cls, file_name: str, values: dict[str, str]) -> Optional["ImageMetadata"]:
        """Build from exiftool values. Returns None if the capture time is unusable."""
        try:
            create_date = datetime.strptime(values.get("Create Date", "").strip(), CREATE_DATE_FORMAT)
        except ValueError:
            return None

        def number(label: str) -> Optional[float]:
            return _first_number(values.get(label))

        # The laser range finder target is the best location; fall back to GPS
        latitude = number("LRF Target Lat")
        longitude = number("LRF Target Lon")
        if latitude is None or abs(latitude) <= 0.001:
            latitude = _coordinate(values.get("GPS Latitude")) or _coordinate(values.get("Latitude"))
        if longitude is None or abs(longitude) <= 0.001:
            longitude = _coordinate(values.get("GPS Longitude")) or _coordinate(values.get("Longitude"))

        altitude = number("GPS Altitude")
        if altitude is None:
            altitude = number("Absolute Altitude")

        width = number("Image Width")
        height = number("Image Height")
        answer = cls(
            file_name=file_name,
            create_date=create_date,
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            yaw=number("Flight Yaw Degree"),
            pitch=number("Gimbal Pitch Degree"),  # camera down angle matters, not airframe pitch
            roll=number("Flight Roll Degree"),
            focal_length=number("Focal Length"),
            zoom=number("Digital Zoom Ratio"),
            camera_model=values.get("Camera Model Name", ""),
            image_width=None if width is None else int(width),
            image_height=None if height is None else int(height),
            hfov_deg=number("Field Of View"),
        )

        # Raw radiometric range is auxiliary; a bad value never drops the image
        try:
            if "Min Raw Heat" in values:
                answer.min_raw_heat = int(values["Min Raw Heat"])
            if "Max Raw Heat" in values:
                answer.max_raw_heat = int(values["Max Raw Heat"])
        except ValueError:
            logger.debug(f"Ignoring unreadable raw heat range for {file_name}")
        return answer


class ImageMetadataParser:
    """Parser for a folder of drone images with exiftool metadata."""

    def read_folder(self, folder: Path) -> list[ImageMetadata]:
        entries = self._read_values(folder)
        metadata: list[ImageMetadata] = []
        for file_name, values in entries:
            if not is_thermal_image(file_name):
                continue
            item = ImageMetadata.from_values(file_name, values)
            if item is None:
                logger.debug(f"Skipping image {file_name}: no usable create date")
                continue
            metadata.append(item)
        metadata.sort(key=lambda m: (m.create_date, m.file_name))
        return metadata

    def parse_folder(self, folder: Path) -> RawFlightLog:
        metadata = self.read_folder(folder)
        if not metadata:
            raise ParseError("No image metadata with a usable capture time", folder)

        first_date = metadata[0].create_date

        def column(attr: str) -> np.ndarray:
            return np.array(
                [np.nan if getattr(m, attr) is None else getattr(m, attr) for m in metadata],
                dtype=np.float64,
            )

        time_ms = np.array(
            [int((m.create_date - first_date).total_seconds() * 1000) for m in metadata],
            dtype=np.int64,
        )

        first = metadata[0]
        camera = CameraModel(
            camera_type=first.camera_model,
            focal_length=first.focal_length,
            duration_ms=int(time_ms[-1]),
            file_name=folder.name,
        )
        if first.image_width and first.image_height:
            camera.image_width = first.image_width
            camera.image_height = first.image_height
        if first.hfov_deg:
            camera.hfov_deg = first.hfov_deg

        return RawFlightLog(
            source="image_metadata",
            source_file=folder,
            name=folder.name,
            time_ms=time_ms,
            latitude=column("latitude"),
            longitude=column("longitude"),
            altitude=column("altitude"),
            yaw=column("yaw"),
            pitch=column("pitch"),
            roll=column("roll"),
            focal_length=column("focal_length"),
            zoom=column("zoom"),
            image_file_names=[m.file_name for m in metadata],
            min_raw_heat=[m.min_raw_heat for m in metadata],
            max_raw_heat=[m.max_raw_heat for m in metadata],
            gimbal_data=GimbalData.AUTO_YES,
            camera=camera,
            input_is_video=False,
            min_date_time=first_date,
            max_date_time=metadata[-1].create_date,
        )

    def _read_values(self, folder: Path) -> list[tuple[str, dict[str, str]]]:
        json_file = folder / METADATA_JSON
        if json_file.is_file():
            try:
                with open(json_file, "r", encoding="utf-8") as f:
                    entries = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ParseError(f"Unable to read {METADATA_JSON}: {e}", json_file) from e
            return [
                (Path(str(entry.get("SourceFile", ""))).name, parse_exif_json(entry))
                for entry in entries
                if isinstance(entry, dict)
            ]

        txt_file = folder / METADATA_TXT
        if txt_file.is_file():
            return self._read_blocks(txt_file.read_text(encoding="utf-8", errors="replace"))

        answer = []
        for image in sorted(folder.iterdir()):
            if not image.is_file() or not is_thermal_image(image.name):
                continue
            for sidecar in (image.with_suffix(".txt"), image.with_name(image.name + ".txt")):
                if sidecar.is_file():
                    text = sidecar.read_text(encoding="utf-8", errors="replace")
                    answer.append((image.name, parse_exif_text(text)))
                    break
        return answer

    def _read_blocks(self, text: str) -> list[tuple[str, dict[str, str]]]:
        """Split multi-file exiftool output on its "======== <file>" headers."""
        answer = []
        name: Optional[str] = None
        block: list[str] = []
        for line in text.splitlines():
            if line.startswith(BLOCK_HEADER):
                if name is not None:
                    answer.append((name, parse_exif_text("\n".join(block))))
                name = Path(line[len(BLOCK_HEADER):].strip()).name
                block = []
            else:
                block.append(line)
        if name is not None:
            answer.append((name, parse_exif_text("\n".join(block))))
        return answer


class ImageMetadataAdapter:
    """Adapter for a folder of thermal images."""

    name = "image_metadata"

    def can_parse(self, filepath: Path) -> bool:
        return filepath.is_dir()

    def parse(self, filepath: Path) -> RawFlightLog:
        return ImageMetadataParser().parse_folder(filepath)
