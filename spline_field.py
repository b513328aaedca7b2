"""Catmull-Rom reconstruction of coarse wind/pollution samples.

The coarse samples live on a uniform lat/lon lattice (``wind_grid.STEP``)
keyed by ``wind_grid.grid_key``. ``interpolate_grid`` resamples them onto a
finer lattice with ``fineness`` cells per coarse step using a separable
bicubic Catmull-Rom stencil; ``compute_city_data`` reads named locations
back out of the resulting field.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

import numpy as np

from aqi_colors import DEFAULT_METRIC
from wind_grid import STEP, City, GeoBounds, GridKey, axis_values, grid_key, round1, round_half_up

# Stencil offsets in coarse steps, relative to the enclosing cell's lower corner.
STENCIL_OFFSETS = (-1, 0, 1, 2)


@dataclass(frozen=True)
class RawSample:
    u: float
    v: float
    metrics: Mapping[str, float | None] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorDatum:
    lat: float
    lon: float
    wind_speed: float
    wind_direction: float
    metric: float


@dataclass(frozen=True)
class CityDatum:
    name: str
    lat: float
    lon: float
    metric: float | None
    wind_speed: float
    wind_dir: int


def catmull_rom(p0, p1, p2, p3, t):
    """Catmull-Rom cubic between ``p1`` and ``p2`` at ``t`` in [0, 1].

    Works element-wise on numpy arrays.
    """
    return 0.5 * (
        2 * p1
        + (-p0 + p2) * t
        + (2 * p0 - 5 * p1 + 4 * p2 - p3) * t * t
        + (-p0 + 3 * p1 - 3 * p2 + p3) * t * t * t
    )


def wind_direction_deg(u, v):
    """Meteorological direction (blowing from), in [0, 360)."""
    return (np.degrees(np.arctan2(-u, -v)) + 360.0) % 360.0


def _sample_tables(
    raw: Mapping[GridKey, RawSample],
    metric_key: str,
    lat_nodes: np.ndarray,
    lon_nodes: np.ndarray,
    step: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    shape = (lat_nodes.size, lon_nodes.size)
    u_tab = np.zeros(shape, dtype=np.float64)
    v_tab = np.zeros(shape, dtype=np.float64)
    m_tab = np.zeros(shape, dtype=np.float64)
    for i, lat_idx in enumerate(lat_nodes):
        for j, lon_idx in enumerate(lon_nodes):
            sample = raw.get(grid_key(float(lat_idx) * step, float(lon_idx) * step))
            if sample is None:
                continue
            u_tab[i, j] = sample.u or 0.0
            v_tab[i, j] = sample.v or 0.0
            value = sample.metrics.get(metric_key)
            m_tab[i, j] = 0.0 if value is None else float(value)
    return u_tab, v_tab, m_tab


def _bicubic(table: np.ndarray, rows: np.ndarray, cols: np.ndarray, fy: np.ndarray, fx: np.ndarray) -> np.ndarray:
    row_values = [
        catmull_rom(
            table[rows + dy, cols],
            table[rows + dy, cols + 1],
            table[rows + dy, cols + 2],
            table[rows + dy, cols + 3],
            fx,
        )
        for dy in range(len(STENCIL_OFFSETS))
    ]
    return catmull_rom(row_values[0], row_values[1], row_values[2], row_values[3], fy)


def interpolate_grid(
    raw: Mapping[GridKey, RawSample],
    area: GeoBounds,
    fineness: int,
    metric_key: str = DEFAULT_METRIC,
    step: float = STEP,
) -> List[VectorDatum]:
    """Interpolate a fine grid of vectors over ``area``.

    ``raw`` must extend at least two coarse steps beyond ``area`` on every
    side to fill the 4x4 stencil; absent samples read as zero.
    """
    fine_step = step / fineness
    lats = np.asarray(axis_values(area.lat_min, area.lat_max, fine_step), dtype=np.float64)
    lons = np.asarray(axis_values(area.lon_min, area.lon_max, fine_step), dtype=np.float64)
    if lats.size == 0 or lons.size == 0:
        return []
    lat, lon = np.meshgrid(lats, lons, indexing="ij")
    lat = lat.ravel()
    lon = lon.ravel()

    lat_cell = np.floor(lat / step)
    lon_cell = np.floor(lon / step)
    fy = (lat - lat_cell * step) / step
    fx = (lon - lon_cell * step) / step

    first_lat = int(lat_cell.min()) + STENCIL_OFFSETS[0]
    first_lon = int(lon_cell.min()) + STENCIL_OFFSETS[0]
    lat_nodes = np.arange(first_lat, int(lat_cell.max()) + STENCIL_OFFSETS[-1] + 1)
    lon_nodes = np.arange(first_lon, int(lon_cell.max()) + STENCIL_OFFSETS[-1] + 1)
    u_tab, v_tab, m_tab = _sample_tables(raw, metric_key, lat_nodes, lon_nodes, step)

    rows = lat_cell.astype(np.int64) - first_lat + STENCIL_OFFSETS[0]
    cols = lon_cell.astype(np.int64) - first_lon + STENCIL_OFFSETS[0]
    u = _bicubic(u_tab, rows, cols, fy, fx)
    v = _bicubic(v_tab, rows, cols, fy, fx)
    m = _bicubic(m_tab, rows, cols, fy, fx)

    speed = np.sqrt(u * u + v * v)
    direction = wind_direction_deg(u, v)
    metric = np.maximum(0.0, m)

    return [
        VectorDatum(
            lat=round1(float(lat[k])),
            lon=round1(float(lon[k])),
            wind_speed=float(speed[k]),
            wind_direction=float(direction[k]),
            metric=float(metric[k]),
        )
        for k in range(lat.size)
    ]


def compute_city_data(
    cities: Iterable[City],
    vecs: Iterable[VectorDatum],
    area: GeoBounds,
    fine_step: float,
) -> List[CityDatum]:
    """Label each city with its nearest fine-grid cell."""
    lookup: Dict[GridKey, VectorDatum] = {grid_key(v.lat, v.lon): v for v in vecs}

    out: List[CityDatum] = []
    for c in cities:
        near_lat = round1(area.lat_min + round_half_up((c.lat - area.lat_min) / fine_step) * fine_step)
        near_lon = round1(area.lon_min + round_half_up((c.lon - area.lon_min) / fine_step) * fine_step)
        best = lookup.get(grid_key(near_lat, near_lon))
        if best is None:
            out.append(CityDatum(name=c.name, lat=c.lat, lon=c.lon, metric=None, wind_speed=0.0, wind_dir=0))
            continue
        out.append(
            CityDatum(
                name=c.name,
                lat=c.lat,
                lon=c.lon,
                metric=best.metric,
                wind_speed=round1(best.wind_speed),
                wind_dir=round_half_up(best.wind_direction),
            )
        )
    return out


def fine_step_for(fineness: int, step: float = STEP) -> float:
    return step / fineness


def field_shape(area: GeoBounds, fineness: int, step: float = STEP) -> Tuple[int, int]:
    """(rows, cols) of the fine lattice ``interpolate_grid`` emits for ``area``."""
    fine_step = step / fineness
    return (
        len(axis_values(area.lat_min, area.lat_max, fine_step)),
        len(axis_values(area.lon_min, area.lon_max, fine_step)),
    )


def polar_to_components(speed: float, direction_deg: float) -> Tuple[float, float]:
    """Inverse of the meteorological convention used by ``interpolate_grid``."""
    theta = math.radians(direction_deg)
    return -speed * math.sin(theta), -speed * math.cos(theta)
