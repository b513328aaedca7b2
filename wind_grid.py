from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Iterable, List, Tuple

STEP = 2.0
CENTER_LON = float(os.getenv("MAP_CENTER_LON", "125"))
CENTER_LAT = float(os.getenv("MAP_CENTER_LAT", "38"))
MIN_LON_SPAN = float(os.getenv("MAP_MIN_LON_SPAN", "42"))
MIN_LAT_SPAN = float(os.getenv("MAP_MIN_LAT_SPAN", "22"))
FETCH_MARGIN_STEPS = int(os.getenv("FETCH_MARGIN_STEPS", "8"))
# The 4x4 spline stencil reaches two coarse steps past the enclosing cell.
MIN_FETCH_MARGIN_STEPS = 2
GRID_EPSILON = 0.01
CITY_VIEW_TOLERANCE_DEG = 1.0

GridKey = Tuple[int, int]


@dataclass(frozen=True)
class GeoBounds:
    lon_min: float
    lon_max: float
    lat_min: float
    lat_max: float

    def as_dict(self) -> dict:
        return {
            "lon_min": self.lon_min,
            "lon_max": self.lon_max,
            "lat_min": self.lat_min,
            "lat_max": self.lat_max,
        }


@dataclass(frozen=True)
class GridPoint:
    lat: float
    lon: float


@dataclass(frozen=True)
class City:
    name: str
    lat: float
    lon: float


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def grid_key(lat: float, lon: float) -> GridKey:
    """Composite map key in tenths of a degree."""
    return round_half_up(lat * 10), round_half_up(lon * 10)


def snap_down(value: float, step: float = STEP) -> float:
    return math.floor(value / step) * step


def snap_up(value: float, step: float = STEP) -> float:
    return math.ceil(value / step) * step


def view_bounds(
    center_lon: float = CENTER_LON,
    center_lat: float = CENTER_LAT,
    min_lon_span: float = MIN_LON_SPAN,
    min_lat_span: float = MIN_LAT_SPAN,
    step: float = STEP,
) -> GeoBounds:
    return GeoBounds(
        lon_min=snap_down(center_lon - min_lon_span / 2, step),
        lon_max=snap_up(center_lon + min_lon_span / 2, step),
        lat_min=snap_down(center_lat - min_lat_span / 2, step),
        lat_max=snap_up(center_lat + min_lat_span / 2, step),
    )


def fetch_bounds(view: GeoBounds, margin_steps: int = FETCH_MARGIN_STEPS, step: float = STEP) -> GeoBounds:
    margin = max(MIN_FETCH_MARGIN_STEPS, int(margin_steps)) * step
    return GeoBounds(
        lon_min=view.lon_min - margin,
        lon_max=view.lon_max + margin,
        lat_min=view.lat_min - margin,
        lat_max=view.lat_max + margin,
    )


def axis_values(start: float, stop: float, step: float) -> List[float]:
    # Accumulated stepping; the epsilon absorbs float drift at the far edge.
    values: List[float] = []
    value = start
    while value <= stop + GRID_EPSILON:
        values.append(value)
        value += step
    return values


def build_grid(bounds: GeoBounds, step: float = STEP) -> List[GridPoint]:
    """Enumerate the sample lattice over ``bounds``, row-major by latitude."""
    lons = axis_values(bounds.lon_min, bounds.lon_max, step)
    return [
        GridPoint(lat=round1(lat), lon=round1(lon))
        for lat in axis_values(bounds.lat_min, bounds.lat_max, step)
        for lon in lons
    ]


def visible_cities(view: GeoBounds, cities: Iterable[City] | None = None) -> List[City]:
    tol = CITY_VIEW_TOLERANCE_DEG
    return [
        c
        for c in (CITY_COORDS if cities is None else cities)
        if view.lat_min - tol <= c.lat <= view.lat_max + tol
        and view.lon_min - tol <= c.lon <= view.lon_max + tol
    ]


CITY_COORDS: Tuple[City, ...] = (
    # China, north-east and north
    City("Harbin", 45.75, 126.65),
    City("Changchun", 43.88, 125.32),
    City("Shenyang", 41.80, 123.40),
    City("Dalian", 38.91, 121.60),
    City("Beijing", 39.91, 116.40),
    City("Tianjin", 39.09, 117.20),
    City("Hohhot", 40.85, 111.73),
    City("Ordos", 39.63, 109.97),
    City("Baotou", 40.66, 109.84),
    City("Qiqihar", 47.35, 123.92),
    City("Daqing", 46.60, 125.02),
    City("Mudanjiang", 44.58, 129.60),
    City("Jilin", 43.84, 126.56),
    City("Yanji", 42.89, 129.51),
    City("Dandong", 40.00, 124.35),
    City("Fushun", 41.87, 123.96),
    City("Anshan", 41.12, 122.99),
    # China, central and east
    City("Shijiazhuang", 38.04, 114.50),
    City("Taiyuan", 37.87, 112.55),
    City("Jinan", 36.67, 116.98),
    City("Qingdao", 36.06, 120.38),
    City("Zhengzhou", 34.75, 113.65),
    City("Xi'an", 34.26, 108.94),
    City("Zhangjiakou", 40.82, 114.88),
    City("Erenhot", 43.65, 111.98),
    City("Yinchuan", 38.47, 106.27),
    City("Lanzhou", 36.06, 103.83),
    City("Xining", 36.62, 101.77),
    City("Kashgar", 39.47, 75.99),
    City("Korla", 41.76, 86.15),
    City("Hami", 42.83, 93.51),
    City("Jiayuguan", 39.77, 98.29),
    City("Dunhuang", 40.14, 94.66),
    City("Zhongwei", 37.51, 105.19),
    City("Golmud", 36.42, 94.90),
    City("Karamay", 45.58, 84.87),
    City("Nanjing", 32.06, 118.80),
    City("Shanghai", 31.23, 121.47),
    City("Wuhan", 30.59, 114.31),
    City("Hangzhou", 30.27, 120.15),
    City("Xuzhou", 34.26, 117.18),
    City("Yantai", 37.46, 121.45),
    City("Tangshan", 39.63, 118.18),
    City("Chengdu", 30.57, 104.07),
    City("Chongqing", 29.56, 106.55),
    City("Changsha", 28.23, 112.94),
    City("Nanchang", 28.68, 115.86),
    City("Hefei", 31.82, 117.23),
    City("Fuzhou", 26.07, 119.30),
    City("Xiamen", 24.48, 118.09),
    City("Guiyang", 26.65, 106.63),
    City("Kunming", 25.04, 102.68),
    City("Nanning", 22.82, 108.32),
    City("Guangzhou", 23.13, 113.26),
    City("Shenzhen", 22.54, 114.06),
    City("Dongguan", 23.04, 113.75),
    City("Wenzhou", 28.00, 120.67),
    City("Luoyang", 34.62, 112.45),
    City("Kaifeng", 34.80, 114.31),
    City("Handan", 36.60, 114.49),
    City("Linyi", 35.10, 118.35),
    City("Suzhou", 31.30, 120.62),
    City("Wuxi", 31.57, 120.30),
    City("Ningbo", 29.87, 121.55),
    City("Urumqi", 43.80, 87.60),
    # Korea
    City("Pyongyang", 39.02, 125.75),
    City("Seoul", 37.57, 126.98),
    City("Incheon", 37.46, 126.70),
    City("Busan", 35.18, 129.08),
    City("Daegu", 35.87, 128.60),
    City("Daejeon", 36.35, 127.38),
    City("Gwangju", 35.16, 126.85),
    City("Chuncheon", 37.90, 127.73),
    City("Jeju", 33.35, 126.53),
    City("Ulsan", 35.54, 129.31),
    City("Suwon", 37.26, 127.03),
    City("Hamhung", 39.92, 127.54),
    City("Wonsan", 39.15, 127.44),
    # Japan
    City("Fukuoka", 33.59, 130.40),
    City("Osaka", 34.69, 135.50),
    City("Nagoya", 35.18, 136.91),
    City("Tokyo", 35.68, 139.69),
    City("Sendai", 38.27, 140.87),
    City("Sapporo", 43.06, 141.35),
    City("Hiroshima", 34.39, 132.46),
    City("Kyoto", 35.01, 135.77),
    City("Toyama", 36.70, 137.21),
    City("Niigata", 37.90, 139.02),
    City("Akita", 39.72, 140.10),
    City("Hakodate", 41.77, 140.73),
    City("Asahikawa", 43.77, 142.37),
    City("Nagasaki", 32.75, 129.87),
    City("Kagoshima", 31.60, 130.56),
    City("Kobe", 34.69, 135.18),
    City("Yokohama", 35.44, 139.64),
    City("Kanazawa", 36.56, 136.65),
    City("Aomori", 40.82, 140.74),
    City("Kushiro", 42.98, 144.38),
    City("Kitakyushu", 33.88, 130.88),
    City("Kumamoto", 32.79, 130.74),
    City("Matsuyama", 33.84, 132.77),
    City("Okayama", 34.66, 133.92),
    City("Shizuoka", 34.98, 138.38),
    # Russia and Mongolia
    City("Vladivostok", 43.12, 131.87),
    City("Ulaanbaatar", 47.91, 106.91),
    City("Khabarovsk", 48.48, 135.07),
    City("Ussuriysk", 43.80, 131.95),
    City("Yuzhno-Sakhalinsk", 46.96, 142.74),
    City("Blagoveshchensk", 50.27, 127.54),
    City("Darkhan", 49.46, 106.01),
    City("Choibalsan", 48.07, 114.54),
    # Taiwan
    City("Taipei", 25.03, 121.57),
)
