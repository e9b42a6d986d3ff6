#!/usr/bin/env python3
"""
Launch script for Drone Flight Telemetry Backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST] [--ground-m M]

Examples:
    python run_server.py                    # Use default ./data/flights folder
    python run_server.py /path/to/flights   # Use custom folder
    python run_server.py --ground-m 120     # Flat ground at 120m for altitude correction
"""

import argparse
import os
import sys
from pathlib import Path

# Add app to path
sys.path.insert(0, str(Path(__file__).parent))


def main():
    parser = argparse.ArgumentParser(description="Drone Flight Telemetry Backend Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default="./data/flights",
        help="Folder containing drone videos, SRT/CSV flight logs or image folders (default: ./data/flights)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--ground-m", "-g",
        type=float,
        default=None,
        help="Flat ground elevation in metres, used for altitude correction"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)

    print("Drone Flight Telemetry Backend")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Server: http://{args.host}:{args.port}")
    print("=" * 40)

    if not data_folder.exists():
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("You can set it later via POST /folder")

    # Configure data folder for FastAPI lifespan
    if data_folder.exists():
        os.environ["DRONE_DATA_FOLDER"] = str(data_folder)
    if args.ground_m is not None:
        os.environ["DRONE_GROUND_ELEVATION_M"] = str(args.ground_m)

    print("\nAPI Endpoints:")
    print("  GET  /                       - Health check")
    print("  GET  /health                 - Detailed health")
    print("  GET  /folder                 - Current folder info")
    print("  POST /folder                 - Set data folder")
    print("  GET  /flights                - List all flights")
    print("  GET  /flights/{id}           - Get flight description")
    print("  GET  /flights/{id}/steps     - Get flight steps")
    print("  GET  /flights/{id}/legs      - Get flight legs")
    print("  GET  /flights/{id}/nearest   - Get step nearest a time")
    print("  GET  /flights/{id}/settings  - Get flight settings")
    print("  PUT  /flights/{id}/config    - Change drone settings")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
