"""
Flight log adapter chain.

Adapters are tried in order: subtitle track, CSV flight log, image metadata.
The first adapter that parses the input wins.
"""

import logging
from pathlib import Path
from typing import Protocol

from app.errors import NoFlightDataError, ParseError
from app.models.raw import RawFlightLog
from app.services.csv_parser import DjiCsvAdapter
from app.services.image_parser import ImageMetadataAdapter
from app.services.srt_parser import SrtAdapter


logger = logging.getLogger(__name__)


class FlightLogAdapter(Protocol):
    """Adapter interface for raw flight log sources."""

    name: str

    def can_parse(self, filepath: Path) -> bool:
        ...

    def parse(self, filepath: Path) -> RawFlightLog:
        ...


ADAPTERS: list[FlightLogAdapter] = [
    SrtAdapter(),
    DjiCsvAdapter(),
    ImageMetadataAdapter(),
]


def applicable_adapters(filepath: Path) -> list[FlightLogAdapter]:
    return [adapter for adapter in ADAPTERS if adapter.can_parse(filepath)]


def parse_flight_log(filepath: Path) -> RawFlightLog:
    """
    Parse a flight log via the adapter chain.

    Args:
        filepath: A video file (whose log sits beside it), a log file, or an
            image folder

    Raises:
        NoFlightDataError: if no applicable adapter could parse the input
    """
    failures: list[str] = []
    for adapter in applicable_adapters(filepath):
        try:
            raw = adapter.parse(filepath)
        except ParseError as e:
            logger.warning(f"Adapter {adapter.name} failed on {filepath}: {e}")
            failures.append(f"{adapter.name}: {e}")
            continue
        logger.info(f"Parsed {len(raw)} flight log rows from {raw.source_file} using {adapter.name}")
        return raw

    detail = "; ".join(failures) if failures else "no applicable adapter"
    raise NoFlightDataError(f"No flight data available for {filepath} ({detail})", filepath)
