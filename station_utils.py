from __future__ import annotations

import io
import json
from pathlib import Path

import geopandas as gpd
import pandas as pd
import requests
from rich.console import Console

STATION_COLUMNS = ["id", "lat", "lon"]

console = Console()
# Fetch and parse failures go here
error_console = Console(stderr=True)


class ResourceFetchFailure(RuntimeError):
    """A static resource could not be fetched."""

    def __init__(self, resource: str, source: str, reason: Exception | str):
        super().__init__(f"{resource} ({source}): {reason}")
        self.resource = resource
        self.source = source
        self.reason = reason


class InvalidStationRow(ValueError):
    pass


def fetch_resource(source: str | Path, resource: str, timeout: float = 60) -> str:
    """Return the text of ``source``.

    ``http://`` and ``https://`` sources are downloaded with ``requests``; any
    other value is treated as a local file path.
    """
    source = str(source)
    if source.startswith(("http://", "https://")):
        try:
            r = requests.get(source, timeout=timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise ResourceFetchFailure(resource, source, exc) from exc
        return r.text
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise ResourceFetchFailure(resource, source, exc) from exc


def parse_stations(
    text: str,
    *,
    id_column: str = "ID",
    lat_column: str = "lat",
    lon_column: str = "lon",
    on_invalid_row: str = "skip",
) -> pd.DataFrame:
    """Parse station CSV text into a frame with ``id``, ``lat`` and ``lon``.

    The ID column is kept as text and coordinate columns are coerced to
    numbers. Rows without an ID, or whose coordinates are missing or not
    numeric, are dropped with a warning, or raise
    :class:`InvalidStationRow` when ``on_invalid_row`` is ``"raise"``.
    """
    if on_invalid_row not in ("skip", "raise"):
        raise ValueError(f"on_invalid_row must be 'skip' or 'raise', not {on_invalid_row!r}")

    df = pd.read_csv(io.StringIO(text), dtype={id_column: str})
    missing = [c for c in (id_column, lat_column, lon_column) if c not in df.columns]
    if missing:
        raise ValueError(f"station CSV is missing column(s): {', '.join(missing)}")

    stations = pd.DataFrame(
        {
            "id": df[id_column],
            "lat": pd.to_numeric(df[lat_column], errors="coerce"),
            "lon": pd.to_numeric(df[lon_column], errors="coerce"),
        }
    )
    invalid = stations["id"].isna() | stations["lat"].isna() | stations["lon"].isna()
    if invalid.any():
        # +2: header row plus 1-based numbering
        rows = [int(i) + 2 for i in stations.index[invalid]]
        if on_invalid_row == "raise":
            raise InvalidStationRow(f"missing ID or invalid coordinates on CSV row(s) {rows}")
        console.log(f"[yellow]Skipping {len(rows)} station row(s) without an ID or valid coordinates: {rows}")
        stations = stations[~invalid]
    return stations.reset_index(drop=True)


def load_stations(
    source: str | Path,
    *,
    id_column: str = "ID",
    lat_column: str = "lat",
    lon_column: str = "lon",
    on_invalid_row: str = "skip",
    timeout: float = 60,
) -> pd.DataFrame:
    """Fetch and parse the station CSV.

    A fetch or parse failure is logged and an empty frame is returned.
    """
    try:
        text = fetch_resource(source, "station CSV", timeout=timeout)
        stations = parse_stations(
            text,
            id_column=id_column,
            lat_column=lat_column,
            lon_column=lon_column,
            on_invalid_row=on_invalid_row,
        )
    except InvalidStationRow:
        raise
    except (ResourceFetchFailure, ValueError) as exc:
        error_console.log(f"[red]Error fetching the CSV file: {exc}")
        return pd.DataFrame(columns=STATION_COLUMNS)
    console.log(f"[cyan]Loaded {len(stations)} stations from {source}")
    return stations


def parse_boundaries(text: str) -> gpd.GeoDataFrame:
    data = json.loads(text)
    if isinstance(data, dict) and data.get("type") not in ("Feature", "FeatureCollection"):
        # Bare geometry or GeometryCollection
        data = {"type": "Feature", "properties": {}, "geometry": data}
    if isinstance(data, dict) and data.get("type") == "Feature":
        data = {"type": "FeatureCollection", "features": [data]}
    return gpd.GeoDataFrame.from_features(data, crs="EPSG:4326")


def load_boundaries(source: str | Path, *, timeout: float = 60) -> gpd.GeoDataFrame | None:
    """Fetch and parse the boundary GeoJSON, or return ``None`` on failure."""
    try:
        text = fetch_resource(source, "boundary GeoJSON", timeout=timeout)
        gdf = parse_boundaries(text)
    except (ResourceFetchFailure, ValueError, TypeError, KeyError) as exc:
        error_console.log(f"[red]Error loading GeoJSON: {exc}")
        return None
    console.log(f"[cyan]Loaded {len(gdf)} boundary features from {source}")
    return gdf
