from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import requests

from aqi_colors import DEFAULT_METRIC, METRIC_KEYS
from spline_field import (
    CityDatum,
    RawSample,
    VectorDatum,
    compute_city_data,
    fine_step_for,
    interpolate_grid,
    polar_to_components,
)
from wind_grid import (
    GeoBounds,
    GridKey,
    GridPoint,
    build_grid,
    fetch_bounds,
    grid_key,
    view_bounds,
    visible_cities,
)

WEATHER_API_URL = "https://api.open-meteo.com/v1/forecast"
AIR_QUALITY_API_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"
WEATHER_CURRENT_FIELDS = ("wind_speed_10m", "wind_direction_10m")
AIR_QUALITY_DOMAIN = "cams_global"
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
SAMPLE_REFRESH_SECONDS = float(os.getenv("SAMPLE_REFRESH_SECONDS", "600"))
REFRESH_FAILURE_BACKOFF_SECONDS = float(os.getenv("REFRESH_FAILURE_BACKOFF_SECONDS", "60"))
DEMO_DATA_PATH = os.getenv("DEMO_DATA_PATH", "").strip()
FIELD_CACHE_MAX_ENTRIES = 32
ERROR_BODY_MAX_CHARS = 500
LOGGER = logging.getLogger("aqi_wind.air_data")


class AirDataError(RuntimeError):
    """Base class for sample ingestion failures."""


class FetchError(AirDataError):
    """Raised when an upstream API request fails or answers non-OK."""

    def __init__(self, source: str, status_code: int | None, body: str) -> None:
        self.source = source
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "no response"
        super().__init__(f"{source} API error: {status} {body}".strip())


class SnapshotError(AirDataError):
    """Raised when a demo snapshot cannot be read or decoded."""


def _as_list(payload) -> List[Dict[str, object]]:
    return payload if isinstance(payload, list) else [payload]


def _coordinate_params(grid: Sequence[GridPoint]) -> Dict[str, str]:
    return {
        "latitude": ",".join(str(p.lat) for p in grid),
        "longitude": ",".join(str(p.lon) for p in grid),
    }


def _get_json(source: str, url: str, params: Dict[str, str]) -> List[Dict[str, object]]:
    try:
        response = requests.get(url, params=params, timeout=FETCH_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        LOGGER.warning("%s fetch failed: %s", source, exc)
        raise FetchError(source, None, str(exc)) from exc
    if not response.ok:
        body = response.text[:ERROR_BODY_MAX_CHARS]
        LOGGER.warning("%s fetch failed status=%s body=%s", source, response.status_code, body)
        raise FetchError(source, response.status_code, body)
    try:
        return _as_list(response.json())
    except ValueError as exc:
        raise FetchError(source, response.status_code, "invalid JSON payload") from exc


def fetch_weather(grid: Sequence[GridPoint]) -> List[Dict[str, object]]:
    params = _coordinate_params(grid)
    params["current"] = ",".join(WEATHER_CURRENT_FIELDS)
    params["wind_speed_unit"] = "ms"
    return _get_json("Weather", WEATHER_API_URL, params)


def fetch_air_quality(grid: Sequence[GridPoint]) -> List[Dict[str, object]]:
    params = _coordinate_params(grid)
    params["current"] = ",".join(METRIC_KEYS)
    params["domains"] = AIR_QUALITY_DOMAIN
    return _get_json("AQ", AIR_QUALITY_API_URL, params)


def fetch_sources(grid: Sequence[GridPoint]) -> Tuple[List[Dict[str, object]], List[Dict[str, object]]]:
    """Fetch both sources in parallel; returns only once both have completed."""
    started = time.monotonic()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sample-fetch") as pool:
        weather_future = pool.submit(fetch_weather, grid)
        air_future = pool.submit(fetch_air_quality, grid)
        weather = weather_future.result()
        air_quality = air_future.result()
    LOGGER.info(
        "Fetched samples points=%d weather=%d air_quality=%d elapsed=%.2fs",
        len(grid),
        len(weather),
        len(air_quality),
        time.monotonic() - started,
    )
    return weather, air_quality


def _current_block(responses: Sequence[Dict[str, object]], index: int) -> Dict[str, object]:
    if index >= len(responses) or not isinstance(responses[index], dict):
        return {}
    current = responses[index].get("current")
    return current if isinstance(current, dict) else {}


def _optional_float(value) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def merge_samples(
    grid: Sequence[GridPoint],
    weather: Sequence[Dict[str, object]],
    air_quality: Sequence[Dict[str, object]],
) -> Dict[GridKey, RawSample]:
    """Merge index-aligned API responses back onto ``grid``."""
    samples: Dict[GridKey, RawSample] = {}
    for index, point in enumerate(grid):
        wind = _current_block(weather, index)
        air = _current_block(air_quality, index)
        speed = _optional_float(wind.get("wind_speed_10m"))
        direction = _optional_float(wind.get("wind_direction_10m"))
        if speed is None or direction is None:
            u, v = 0.0, 0.0
        else:
            u, v = polar_to_components(speed, direction)
        metrics = {key: _optional_float(air.get(key)) for key in METRIC_KEYS}
        samples[grid_key(point.lat, point.lon)] = RawSample(u=u, v=v, metrics=metrics)
    return samples


def save_snapshot(
    path: Path,
    grid: Sequence[GridPoint],
    weather: Sequence[Dict[str, object]],
    air_quality: Sequence[Dict[str, object]],
    fetched_at: datetime | None = None,
) -> None:
    moment = fetched_at or datetime.now(timezone.utc)
    payload = {
        "fetchedAt": moment.isoformat(),
        "grid": [{"lat": p.lat, "lon": p.lon} for p in grid],
        "weather": list(weather),
        "airQuality": list(air_quality),
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload))
    os.replace(tmp_path, path)
    LOGGER.info("Saved snapshot points=%d path=%s bytes=%d", len(grid), path, path.stat().st_size)


def _parse_timestamp(value) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise SnapshotError(f"Invalid fetchedAt timestamp: {value}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def load_snapshot(
    path: Path,
) -> Tuple[datetime, List[GridPoint], List[Dict[str, object]], List[Dict[str, object]]]:
    path = Path(path)
    try:
        payload = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise SnapshotError(f"Cannot read snapshot {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise SnapshotError(f"Snapshot {path} is not a JSON object")

    try:
        grid = [GridPoint(lat=float(p["lat"]), lon=float(p["lon"])) for p in payload["grid"]]
        weather = _as_list(payload["weather"])
        air_quality = _as_list(payload["airQuality"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotError(f"Snapshot {path} is missing or has malformed fields: {exc}") from exc
    return _parse_timestamp(payload.get("fetchedAt")), grid, weather, air_quality


def time_ago(moment: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    mins = int((now - moment).total_seconds() // 60)
    if mins < 1:
        return "just now"
    if mins < 60:
        return f"{mins}m ago"
    hrs = mins // 60
    if hrs < 24:
        return f"{hrs}h ago"
    return f"{hrs // 24}d ago"


class AirQualityStore:
    """Current sample set plus memoized fine fields over the view box."""

    def __init__(self, demo_path: str | Path | None = None) -> None:
        self._view = view_bounds()
        self._fetch = fetch_bounds(self._view)
        self._grid = build_grid(self._fetch)
        configured = DEMO_DATA_PATH if demo_path is None else str(demo_path)
        self._demo_path = Path(configured) if configured else None

        self._samples: Dict[GridKey, RawSample] = {}
        self._generation = 0
        self._fetched_at: datetime | None = None
        self._refreshed_at: float | None = None
        self._failed_at: float | None = None
        self._last_error: AirDataError | None = None
        self._refresh_inflight = False

        self._field_cache: Dict[Tuple[object, ...], List[VectorDatum]] = {}
        self._field_guard = threading.Lock()
        self._key_locks: Dict[Tuple[object, ...], threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._refresh_guard = threading.Lock()
        self._refresh_state_guard = threading.Lock()

    @property
    def view(self) -> GeoBounds:
        return self._view

    @property
    def fetch_area(self) -> GeoBounds:
        return self._fetch

    @property
    def grid(self) -> List[GridPoint]:
        return list(self._grid)

    @property
    def source(self) -> str:
        return "demo" if self._demo_path is not None else "live"

    def samples(self) -> Dict[GridKey, RawSample]:
        """Samples for reads; a failed stale refresh falls back to the held set."""
        try:
            self.refresh(force=False)
        except AirDataError as exc:
            with self._field_guard:
                held = self._samples
            if not held:
                raise
            LOGGER.warning("Refresh failed, serving samples fetched_at=%s: %s", self._fetched_at, exc)
        with self._field_guard:
            return self._samples

    def refresh(self, force: bool = False) -> bool:
        """Replace the sample set if forced or stale; returns True on reload."""
        with self._refresh_state_guard:
            if self._skip_refresh(force):
                return False
            if not force and self._refresh_inflight and self._samples:
                return False

        with self._refresh_guard:
            with self._refresh_state_guard:
                if self._skip_refresh(force):
                    return False
                self._refresh_inflight = True
            try:
                fetched_at, samples = self._load_samples()
            except AirDataError as exc:
                with self._refresh_state_guard:
                    self._failed_at = time.monotonic()
                    self._last_error = exc
                raise
            finally:
                with self._refresh_state_guard:
                    self._refresh_inflight = False

            with self._field_guard:
                self._samples = samples
                self._generation += 1
                self._field_cache.clear()
            with self._key_locks_guard:
                self._key_locks.clear()
            with self._refresh_state_guard:
                self._fetched_at = fetched_at
                self._refreshed_at = time.monotonic()
                self._failed_at = None
                self._last_error = None
            return True

    def _load_samples(self) -> Tuple[datetime, Dict[GridKey, RawSample]]:
        if self._demo_path is not None:
            fetched_at, grid, weather, air_quality = load_snapshot(self._demo_path)
            LOGGER.info("Loaded demo snapshot path=%s points=%d", self._demo_path, len(grid))
        else:
            grid = self._grid
            weather, air_quality = fetch_sources(grid)
            fetched_at = datetime.now(timezone.utc)
        return fetched_at, merge_samples(grid, weather, air_quality)

    def _skip_refresh(self, force: bool) -> bool:
        # Caller holds _refresh_state_guard.
        if force:
            return False
        if not self._is_stale():
            return True
        if self._failed_at is not None and time.monotonic() - self._failed_at < REFRESH_FAILURE_BACKOFF_SECONDS:
            if self._samples:
                return True
            raise self._last_error
        return False

    def _is_stale(self) -> bool:
        if self._refreshed_at is None:
            return True
        if self._demo_path is not None:
            return False
        return time.monotonic() - self._refreshed_at > SAMPLE_REFRESH_SECONDS

    def get_vectors(self, metric_key: str = DEFAULT_METRIC, fineness: int = 5) -> List[VectorDatum]:
        self.samples()
        with self._field_guard:
            samples = self._samples
            key = (self._generation, self._view, int(fineness), metric_key)
            cached = self._field_cache.get(key)
        if cached is not None:
            LOGGER.debug("Field cache hit metric=%s fineness=%s", metric_key, fineness)
            return cached

        with self._get_key_lock(key):
            with self._field_guard:
                cached = self._field_cache.get(key)
            if cached is not None:
                return cached
            started = time.monotonic()
            vectors = interpolate_grid(samples, self._view, int(fineness), metric_key)
            LOGGER.debug(
                "Interpolated field metric=%s fineness=%s points=%d elapsed=%.3fs",
                metric_key,
                fineness,
                len(vectors),
                time.monotonic() - started,
            )
            with self._field_guard:
                if key[0] != self._generation:
                    return vectors
                if len(self._field_cache) >= FIELD_CACHE_MAX_ENTRIES:
                    self._field_cache.pop(next(iter(self._field_cache)))
                self._field_cache[key] = vectors
            return vectors

    def get_city_data(self, metric_key: str = DEFAULT_METRIC, fineness: int = 5) -> List[CityDatum]:
        vectors = self.get_vectors(metric_key, fineness)
        return compute_city_data(visible_cities(self._view), vectors, self._view, fine_step_for(int(fineness)))

    def status(self) -> Dict[str, object]:
        fetched_at = self._fetched_at
        return {
            "source": self.source,
            "grid_points": len(self._grid),
            "sample_points": len(self._samples),
            "fetched_at": fetched_at.isoformat() if fetched_at else None,
            "age": time_ago(fetched_at) if fetched_at else None,
        }

    def _get_key_lock(self, key: Tuple[object, ...]) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock
