"""
Exception taxonomy for flight data processing.
"""

from pathlib import Path
from typing import Optional


class FlightDataError(Exception):
    """Base class for flight data processing errors."""


class ParseError(FlightDataError):
    """A flight log could not be parsed by a particular adapter."""

    def __init__(self, message: str, filepath: Optional[Path] = None):
        super().__init__(message)
        self.filepath = filepath


class NoFlightDataError(ParseError):
    """No adapter in the chain could recover telemetry from the input."""


class InvariantViolation(AssertionError):
    """A derived sequence claims values outside its source envelope."""
