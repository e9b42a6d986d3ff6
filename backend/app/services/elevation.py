"""
Ground (DEM) and surface (DSM) elevation models.

Elevation raster storage is external; the pipeline only sees the
ElevationModel protocol. GridElevationModel samples numpy grids laid out in
the flight-local frame.
"""

import logging
import math
from enum import Enum
from typing import Optional, Protocol

import numpy as np
from numpy.typing import NDArray

from app.utils.coordinates import DroneLocation


logger = logging.getLogger(__name__)


class ElevationKind(Enum):
    DEM = "dem"  # ground (terrain)
    DSM = "dsm"  # surface, including trees and buildings


class ElevationModel(Protocol):
    """Elevation collaborator consumed by step derivation and altitude correction."""

    def elevation_at(self, location: DroneLocation, kind: ElevationKind) -> Optional[float]:
        ...

    def has_elevation_data(self) -> bool:
        ...

    def min_max_elevation(self, kind: ElevationKind) -> tuple[Optional[float], Optional[float]]:
        ...


class ConstantElevationModel:
    """Flat terrain at a fixed elevation (optionally with a fixed canopy height)."""

    def __init__(self, dem_m: Optional[float], dsm_m: Optional[float] = None):
        self.dem_m = dem_m
        self.dsm_m = dsm_m

    def _value(self, kind: ElevationKind) -> Optional[float]:
        return self.dem_m if kind == ElevationKind.DEM else self.dsm_m

    def elevation_at(self, location: DroneLocation, kind: ElevationKind) -> Optional[float]:
        return self._value(kind)

    def has_elevation_data(self) -> bool:
        return self.dem_m is not None

    def min_max_elevation(self, kind: ElevationKind) -> tuple[Optional[float], Optional[float]]:
        value = self._value(kind)
        return (value, value)


class GridElevationModel:
    """
    Elevation grids in the flight-local frame.

    Row i, column j of a grid holds the elevation at
    northing = min_northing_m + i * cell_size_m,
    easting = min_easting_m + j * cell_size_m.
    NaN cells are unknown.
    """

    def __init__(
        self,
        dem: NDArray[np.float64],
        dsm: Optional[NDArray[np.float64]] = None,
        min_northing_m: float = 0.0,
        min_easting_m: float = 0.0,
        cell_size_m: float = 1.0,
    ):
        if dsm is not None and dsm.shape != dem.shape:
            raise ValueError(f"DSM shape {dsm.shape} does not match DEM shape {dem.shape}")
        if cell_size_m <= 0:
            raise ValueError("cell_size_m must be positive")
        self.dem = np.asarray(dem, dtype=np.float64)
        self.dsm = None if dsm is None else np.asarray(dsm, dtype=np.float64)
        self.min_northing_m = min_northing_m
        self.min_easting_m = min_easting_m
        self.cell_size_m = cell_size_m

    def _grid(self, kind: ElevationKind) -> Optional[NDArray[np.float64]]:
        return self.dem if kind == ElevationKind.DEM else self.dsm

    def elevation_at(self, location: DroneLocation, kind: ElevationKind) -> Optional[float]:
        """Bilinear interpolation. None outside the grid or next to unknown cells."""
        grid = self._grid(kind)
        if grid is None or location is None:
            return None

        row = (location.northing_m - self.min_northing_m) / self.cell_size_m
        col = (location.easting_m - self.min_easting_m) / self.cell_size_m
        n_rows, n_cols = grid.shape
        if row < 0 or col < 0 or row > n_rows - 1 or col > n_cols - 1:
            return None

        r0 = min(int(math.floor(row)), n_rows - 1)
        c0 = min(int(math.floor(col)), n_cols - 1)
        r1 = min(r0 + 1, n_rows - 1)
        c1 = min(c0 + 1, n_cols - 1)
        fr = row - r0
        fc = col - c0

        corners = grid[[r0, r0, r1, r1], [c0, c1, c0, c1]]
        if np.any(np.isnan(corners)):
            return None
        top = corners[0] * (1 - fc) + corners[1] * fc
        bottom = corners[2] * (1 - fc) + corners[3] * fc
        return float(top * (1 - fr) + bottom * fr)

    def has_elevation_data(self) -> bool:
        return bool(np.any(np.isfinite(self.dem)))

    def min_max_elevation(self, kind: ElevationKind) -> tuple[Optional[float], Optional[float]]:
        grid = self._grid(kind)
        if grid is None or not np.any(np.isfinite(grid)):
            return (None, None)
        return (float(np.nanmin(grid)), float(np.nanmax(grid)))


def has_elevation_data(model: Optional[ElevationModel]) -> bool:
    return model is not None and model.has_elevation_data()


def load_elevation_model(ground_elevation_m: Optional[str]) -> Optional[ElevationModel]:
    """
    Elevation model for the server, from the DRONE_GROUND_ELEVATION_M setting.

    Without a setting there is no ground data and altitude correction is skipped.
    """
    if not ground_elevation_m:
        return None
    try:
        dem_m = float(ground_elevation_m)
    except ValueError:
        logger.warning(f"Ignoring bad ground elevation: {ground_elevation_m}")
        return None
    logger.info(f"Using flat ground at {dem_m}m")
    return ConstantElevationModel(dem_m)
