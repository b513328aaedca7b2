from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Tuple

NO_DATA_COLOR = "#6b7280"
DEFAULT_METRIC = "us_aqi"
AQI_MAX = 500.0

RGB = Tuple[int, int, int]


@dataclass(frozen=True)
class VariableConfig:
    key: str
    label: str
    unit: str
    domain: Tuple[float, float]
    color_type: str


@dataclass(frozen=True)
class AqiBand:
    min: float
    max: float
    color: str
    label: str


AQI_BANDS: Tuple[AqiBand, ...] = (
    AqiBand(0, 50, "#22c55e", "Good"),
    AqiBand(51, 100, "#eab308", "Moderate"),
    AqiBand(101, 150, "#f97316", "USG"),
    AqiBand(151, 200, "#ef4444", "Unhealthy"),
    AqiBand(201, 300, "#a855f7", "Very Unhealthy"),
    AqiBand(301, 500, "#991b1b", "Hazardous"),
)

# (value, r, g, b); each hue is held flat across its band, then blended.
AQI_STOPS: Tuple[Tuple[float, int, int, int], ...] = (
    (0, 0x22, 0xC5, 0x5E),
    (50, 0x22, 0xC5, 0x5E),
    (75, 0xEA, 0xB3, 0x08),
    (100, 0xEA, 0xB3, 0x08),
    (125, 0xF9, 0x73, 0x16),
    (150, 0xF9, 0x73, 0x16),
    (175, 0xEF, 0x44, 0x44),
    (200, 0xEF, 0x44, 0x44),
    (250, 0xA8, 0x55, 0xF7),
    (300, 0xA8, 0x55, 0xF7),
    (400, 0x99, 0x1B, 0x1B),
    (500, 0x99, 0x1B, 0x1B),
)

SEQ_STOPS: Tuple[RGB, ...] = (
    (0x22, 0xC5, 0x5E),
    (0xEA, 0xB3, 0x08),
    (0xF9, 0x73, 0x16),
    (0xEF, 0x44, 0x44),
)

BAND_LABELS = ("Low", "Moderate", "Elevated", "High", "Very High")

VARIABLE_CONFIGS: Tuple[VariableConfig, ...] = (
    VariableConfig("us_aqi", "US AQI", "", (0.0, 500.0), "aqi"),
    VariableConfig("european_aqi", "EU AQI", "", (0.0, 100.0), "aqi"),
    VariableConfig("pm2_5", "PM2.5", "μg/m³", (0.0, 150.0), "sequential"),
    VariableConfig("pm10", "PM10", "μg/m³", (0.0, 300.0), "sequential"),
    VariableConfig("dust", "Dust", "μg/m³", (0.0, 200.0), "sequential"),
    VariableConfig("aerosol_optical_depth", "AOD", "", (0.0, 2.0), "sequential"),
    VariableConfig("carbon_monoxide", "CO", "μg/m³", (0.0, 5000.0), "sequential"),
    VariableConfig("nitrogen_dioxide", "NO₂", "μg/m³", (0.0, 100.0), "sequential"),
    VariableConfig("sulphur_dioxide", "SO₂", "μg/m³", (0.0, 100.0), "sequential"),
    VariableConfig("ozone", "O₃", "μg/m³", (0.0, 200.0), "sequential"),
)
VARIABLE_MAP: Dict[str, VariableConfig] = {cfg.key: cfg for cfg in VARIABLE_CONFIGS}
METRIC_KEYS: Tuple[str, ...] = tuple(cfg.key for cfg in VARIABLE_CONFIGS)


def _channel(a: int, b: int, t: float) -> int:
    # Half-up so x.5 channels match the browser palette.
    return int(math.floor(a + (b - a) * t + 0.5))


def _rgb_string(r: int, g: int, b: int) -> str:
    return f"rgb({r},{g},{b})"


def aqi_color(aqi: float | None) -> str:
    """Piecewise-linear AQI gradient over 0-500."""
    if aqi is None:
        return NO_DATA_COLOR
    v = max(0.0, min(AQI_MAX, float(aqi)))
    i = 0
    while i < len(AQI_STOPS) - 1 and AQI_STOPS[i + 1][0] < v:
        i += 1
    if i >= len(AQI_STOPS) - 1:
        _, r, g, b = AQI_STOPS[-1]
        return _rgb_string(r, g, b)
    a, b = AQI_STOPS[i], AQI_STOPS[i + 1]
    t = 0.0 if b[0] == a[0] else (v - a[0]) / (b[0] - a[0])
    return _rgb_string(_channel(a[1], b[1], t), _channel(a[2], b[2], t), _channel(a[3], b[3], t))


def sequential_color(t: float | None) -> str:
    """Four-stop green-to-red gradient over a normalized [0, 1] input."""
    if t is None:
        return NO_DATA_COLOR
    clamped = max(0.0, min(1.0, float(t)))
    scaled = clamped * (len(SEQ_STOPS) - 1)
    i = min(int(math.floor(scaled)), len(SEQ_STOPS) - 2)
    f = scaled - i
    a, b = SEQ_STOPS[i], SEQ_STOPS[i + 1]
    return _rgb_string(_channel(a[0], b[0], f), _channel(a[1], b[1], f), _channel(a[2], b[2], f))


def get_variable_config(key: str) -> VariableConfig:
    return VARIABLE_MAP.get(key, VARIABLE_CONFIGS[0])


def metric_color(value: float | None, config: VariableConfig) -> str:
    if value is None:
        return NO_DATA_COLOR
    if config.color_type == "aqi":
        return aqi_color(value)
    lo, hi = config.domain
    return sequential_color((value - lo) / (hi - lo))


def generate_bands(config: VariableConfig) -> List[AqiBand]:
    lo, hi = config.domain
    n = len(BAND_LABELS)
    step = (hi - lo) / n
    return [
        AqiBand(
            min=lo + i * step,
            max=lo + (i + 1) * step,
            color=sequential_color((i + 0.5) / n),
            label=BAND_LABELS[i],
        )
        for i in range(n)
    ]


def legend_for_variable(key: str) -> List[AqiBand]:
    config = get_variable_config(key)
    if config.key == DEFAULT_METRIC:
        return list(AQI_BANDS)
    return generate_bands(config)


def color_to_rgb(color: str) -> RGB:
    """Parse ``rgb(r,g,b)`` or ``#rrggbb`` into an integer triple."""
    text = color.strip()
    if text.startswith("#") and len(text) == 7:
        return int(text[1:3], 16), int(text[3:5], 16), int(text[5:7], 16)
    if text.startswith("rgb(") and text.endswith(")"):
        parts = [p.strip() for p in text[4:-1].split(",")]
        if len(parts) == 3:
            return int(parts[0]), int(parts[1]), int(parts[2])
    raise ValueError(f"Unsupported color string: {color}")
