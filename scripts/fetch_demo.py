#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from air_data import AirDataError, fetch_sources, save_snapshot
from wind_grid import build_grid, fetch_bounds, view_bounds

DEFAULT_OUTPUT = Path(__file__).resolve().parent.parent / "static" / "demo-data.json"


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch current wind and air quality into a demo snapshot.")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)
    parser.add_argument("--margin-steps", type=int, default=None, help="fetch margin around the view, in grid steps")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    view = view_bounds()
    area = fetch_bounds(view) if args.margin_steps is None else fetch_bounds(view, args.margin_steps)
    grid = build_grid(area)
    print(f"Fetching {len(grid)} grid points...")

    try:
        weather, air_quality = fetch_sources(grid)
    except AirDataError as exc:
        print(str(exc))
        return 1

    save_snapshot(args.output, grid, weather, air_quality)
    size_mb = args.output.stat().st_size / 1024 / 1024
    print(f"Saved {len(grid)} points ({size_mb:.1f} MB) -> {args.output}")
    print(f"Serve with: DEMO_DATA_PATH={args.output} uvicorn app:app")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
