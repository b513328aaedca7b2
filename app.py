from __future__ import annotations

from dataclasses import asdict
from io import BytesIO
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List

import numpy as np
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from PIL import Image

from air_data import AirDataError, AirQualityStore
from aqi_colors import (
    DEFAULT_METRIC,
    VARIABLE_CONFIGS,
    VARIABLE_MAP,
    VariableConfig,
    color_to_rgb,
    legend_for_variable,
    metric_color,
)
from spline_field import field_shape, fine_step_for
from wind_grid import STEP

INTERP_DEFAULT = int(os.getenv("INTERP_DEFAULT", "5"))
MAX_FINENESS = 12
HEATMAP_ALPHA = 170
MAX_HEATMAP_SCALE = 16
STATIC_DIR = Path(__file__).resolve().parent / "static"


def _configure_logging() -> logging.Logger:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("aqi_wind")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = os.getenv("AQI_WIND_LOG_FILE", "logs/aqi_wind.log").strip()
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=2))
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    logger.info("Logger configured level=%s file=%s", logging.getLevelName(level), log_file or "disabled")
    return logger


LOGGER = _configure_logging()


app = FastAPI(title="Wind & Air Quality Explorer")


def _allowed_cors_origins(raw: str | None = None) -> List[str]:
    """Comma-separated CORS_ALLOW_ORIGINS, or the local dev servers when unset."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "") if raw is None else raw
    origins = [v.strip() for v in raw.split(",") if v.strip()]
    return origins or ["http://localhost:8000", "http://localhost:5173"]


app.add_middleware(CORSMiddleware, allow_origins=_allowed_cors_origins(), allow_methods=["GET", "POST"])

store = AirQualityStore()


def _validate_variable(value: str) -> VariableConfig:
    variable_id = str(value or "").strip()
    config = VARIABLE_MAP.get(variable_id)
    if config is None:
        raise HTTPException(status_code=400, detail=f"Unknown variable_id: {variable_id}")
    return config


def _variable_payload(config: VariableConfig) -> Dict[str, object]:
    return {
        "variable_id": config.key,
        "label": config.label,
        "unit": config.unit,
        "range": list(config.domain),
        "color_type": config.color_type,
        "legend": [asdict(band) for band in legend_for_variable(config.key)],
    }


@app.on_event("startup")
def _startup() -> None:
    LOGGER.info("App startup source=%s", store.source)


@app.get("/api/metadata")
def metadata() -> Dict[str, object]:
    return {
        "step": STEP,
        "default_fineness": INTERP_DEFAULT,
        "max_fineness": MAX_FINENESS,
        "default_variable": DEFAULT_METRIC,
        "view": store.view.as_dict(),
        "fetch": store.fetch_area.as_dict(),
        "variables": [_variable_payload(cfg) for cfg in VARIABLE_CONFIGS],
        "status": store.status(),
    }


@app.get("/api/vectors")
def vectors(
    variable_id: str = Query(DEFAULT_METRIC),
    fineness: int = Query(INTERP_DEFAULT, ge=1, le=MAX_FINENESS),
) -> Dict[str, object]:
    config = _validate_variable(variable_id)
    try:
        field = store.get_vectors(config.key, fineness)
    except AirDataError as exc:
        LOGGER.warning("Vector request failed variable=%s: %s", config.key, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {
        "status": "ready",
        "variable_id": config.key,
        "fineness": fineness,
        "fine_step": fine_step_for(fineness),
        "bounds": store.view.as_dict(),
        "vectors": [asdict(v) for v in field],
    }


@app.get("/api/cities")
def cities(
    variable_id: str = Query(DEFAULT_METRIC),
    fineness: int = Query(INTERP_DEFAULT, ge=1, le=MAX_FINENESS),
) -> Dict[str, object]:
    config = _validate_variable(variable_id)
    try:
        labels = store.get_city_data(config.key, fineness)
    except AirDataError as exc:
        LOGGER.warning("City request failed variable=%s: %s", config.key, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    out = []
    for city in labels:
        item = asdict(city)
        item["color"] = metric_color(city.metric, config)
        out.append(item)
    return {"variable_id": config.key, "fineness": fineness, "cities": out}


@app.get("/api/heatmap/{variable_id}.png")
def heatmap(
    variable_id: str,
    fineness: int = Query(INTERP_DEFAULT, ge=1, le=MAX_FINENESS),
    scale: int = Query(4, ge=1, le=MAX_HEATMAP_SCALE),
) -> Response:
    config = _validate_variable(variable_id)
    try:
        field = store.get_vectors(config.key, fineness)
    except AirDataError as exc:
        LOGGER.warning("Heatmap request failed variable=%s: %s", config.key, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception:
        LOGGER.exception("Heatmap request unexpected failure variable=%s fineness=%s", config.key, fineness)
        raise

    rgba = render_heatmap_rgba([v.metric for v in field], field_shape(store.view, fineness), config)
    image = Image.fromarray(rgba)
    if scale > 1:
        image = image.resize((image.width * scale, image.height * scale), Image.Resampling.NEAREST)
    buf = BytesIO()
    image.save(buf, format="PNG", optimize=True)
    return Response(content=buf.getvalue(), media_type="image/png", headers={"Cache-Control": "no-store"})


@app.post("/api/refresh")
def refresh() -> Dict[str, object]:
    try:
        reloaded = store.refresh(force=True)
    except AirDataError as exc:
        LOGGER.warning("Refresh failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "reloaded": bool(reloaded), "status": store.status()}


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


if STATIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")


def render_heatmap_rgba(values: List[float | None], shape: tuple[int, int], config: VariableConfig) -> np.ndarray:
    """Color a row-major (south to north) field into a north-up RGBA raster."""
    rows, cols = shape
    rgba = np.zeros((rows, cols, 4), dtype=np.uint8)
    if rows * cols != len(values):
        raise ValueError(f"Field size {len(values)} does not match shape {rows}x{cols}")
    parsed: Dict[str, tuple[int, int, int]] = {}
    for idx, value in enumerate(values):
        color = metric_color(value, config)
        rgb = parsed.get(color)
        if rgb is None:
            rgb = color_to_rgb(color)
            parsed[color] = rgb
        row, col = divmod(idx, cols)
        rgba[rows - 1 - row, col, :3] = rgb
    rgba[..., 3] = HEATMAP_ALPHA
    return rgba
