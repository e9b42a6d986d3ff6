"""
FastAPI application for drone flight telemetry.

Run with `uvicorn app.main:app`. The flight folder and a constant ground
elevation can be preset through DRONE_DATA_FOLDER and DRONE_GROUND_ELEVATION_M.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.flights import router as flights_router, folder_router
from app.services.elevation import load_elevation_model
from app.services.repository import init_repository, get_repository


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


APP_NAME = "Drone Flight Telemetry"
APP_VERSION = "0.1.0"

DEFAULT_DATA_FOLDER = Path("./data/flights")
DATA_FOLDER_ENV = "DRONE_DATA_FOLDER"
GROUND_ELEVATION_ENV = "DRONE_GROUND_ELEVATION_M"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Index the flight folder on startup unless one is already set."""
    repo = get_repository()
    if repo.data_folder is None:
        data_folder = Path(os.getenv(DATA_FOLDER_ENV, str(DEFAULT_DATA_FOLDER)))
        if data_folder.exists():
            repo = init_repository(data_folder, load_elevation_model(os.getenv(GROUND_ELEVATION_ENV)))
            logger.info(f"Indexed {repo.flight_count} flights in {data_folder}")
        else:
            logger.warning(f"No flight folder at {data_folder}; set one with POST /folder")

    yield

    logger.info(f"{APP_NAME} stopped")


app = FastAPI(
    title=APP_NAME,
    description="""
    Parse drone flight logs and derive a smoothed, altitude corrected flight path.

    Inputs are DJI SRT video subtitles, flight log CSVs and thermal image
    folders. Each flight is converted to a local metre grid, smoothed,
    corrected against ground elevation and split into legs.

    Typical use: POST /folder, GET /flights, then GET /flights/{id}/steps
    and /legs. PUT /flights/{id}/config changes settings and recomputes.
    """,
    version=APP_VERSION,
    lifespan=lifespan,
)


# The viewer is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(flights_router)
app.include_router(folder_router)


@app.get("/")
async def root():
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Report the indexed folder and flight count."""
    repo = get_repository()

    return {
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "flight_count": repo.flight_count,
    }
