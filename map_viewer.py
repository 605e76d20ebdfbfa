#!/usr/bin/env python3
"""
Station Map Viewer
==================
Builds a self-contained Leaflet page showing weather stations from a CSV and
country boundaries from a GeoJSON file, with two base layers, a geocoding
search box, drawing tools and a mouse-position readout.

Country boundaries only show when zoomed in past the configured threshold.
"""

from __future__ import annotations

import argparse
import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import webbrowser

import folium
import yaml
from folium import plugins
from folium.template import Template
from rich.console import Console

from boundary_visibility import (
    ActiveOverlaySet,
    BoundaryVisibilityController,
    BoundaryZoomToggle,
    MembershipDecision,
    Viewport,
)
from station_utils import load_boundaries, load_stations

console = Console()

STATIONS_LAYER = "Weather Stations"
BOUNDARIES_LAYER = "Country Boundaries"

MARKER_ICON_URL = "https://unpkg.com/leaflet@1.7.1/dist/images/marker-icon.png"
MARKER_SHADOW_URL = "https://unpkg.com/leaflet@1.7.1/dist/images/marker-shadow.png"

BASE_LAYERS = [
    {
        "name": "OpenStreetMap",
        "tiles": "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
        "attr": "© OpenStreetMap contributors",
        "max_zoom": 19,
    },
    {
        "name": "Google Satellite",
        "tiles": "https://mt1.google.com/vt/lyrs=s&x={x}&y={y}&z={z}",
        "attr": "© Google",
        "max_zoom": 20,
    },
]

DEFAULT_CONFIG: Dict[str, Any] = {
    "center": [0, 20],
    "zoom": 3,
    "stations": {
        "source": "../public/african_stations_positions_addresses.csv",
        "id_column": "ID",
        "lat_column": "lat",
        "lon_column": "lon",
        "on_invalid_row": "skip",
    },
    "boundaries": {
        "source": "../public/africa_countries.geojson",
        "color": "#3388ff",
        "weight": 2,
        "zoom_threshold": 5,
    },
    "fetch_timeout": 60,
    "output": "station_map.html",
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: Path | None = None) -> Dict[str, Any]:
    """Load YAML configuration on top of :data:`DEFAULT_CONFIG`."""
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ValueError(f"Could not read config {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return _merge(DEFAULT_CONFIG, data)


# ---------------------------------------------------------------------------
# Map elements
# ---------------------------------------------------------------------------


class FitBoundsGeocoder(plugins.Geocoder):
    """Geocoder search box that fits the map to the selected result's bbox."""

    _template = Template(
        """
        {% macro script(this, kwargs) %}
            var geocoderOpts_{{ this.get_name() }} = {{ this.options|tojavascript }};
            var geocoderName_{{ this.get_name() }} = geocoderOpts_{{ this.get_name() }}["provider"];
            geocoderOpts_{{ this.get_name() }}["geocoder"] = L.Control.Geocoder[ geocoderName_{{ this.get_name() }} ](
                geocoderOpts_{{ this.get_name() }}["providerOptions"]
            );

            L.Control.geocoder(
                geocoderOpts_{{ this.get_name() }}
            ).on('markgeocode', function(e) {
                {{ this._parent.get_name() }}.fitBounds(e.geocode.bbox);
            }).addTo({{ this._parent.get_name() }});
        {% endmacro %}
        """
    )

    def __init__(self, position: str = "topright", **kwargs):
        super().__init__(position=position, add_marker=False, zoom=None, **kwargs)


def station_icon() -> folium.CustomIcon:
    return folium.CustomIcon(
        MARKER_ICON_URL,
        icon_size=(15, 24),
        icon_anchor=(7.5, 24),
        shadow_image=MARKER_SHADOW_URL,
        shadow_size=(24, 32),
        shadow_anchor=(7.5, 32),
        popup_anchor=(0, -20),
    )


def coordinate_readout() -> plugins.MousePosition:
    fmt = "function(num) {{return '{label}: ' + num.toFixed(5);}};"
    return plugins.MousePosition(
        position="bottomleft",
        separator=", ",
        lat_formatter=fmt.format(label="Lat"),
        lng_formatter=fmt.format(label="Lng"),
    )


# ---------------------------------------------------------------------------
# Application context
# ---------------------------------------------------------------------------


@dataclass
class MapContext:
    """Everything the event handlers need, in place of module-level state."""

    map: folium.Map
    viewport: Viewport
    base_layers: Dict[str, folium.TileLayer]
    markers: folium.FeatureGroup
    active: ActiveOverlaySet
    controller: BoundaryVisibilityController
    boundaries: Optional[folium.GeoJson] = None

    def group_members(self) -> list:
        """Layers held by the markers group (stations and drawn shapes)."""
        return [
            c for c in self.markers._children.values()
            if isinstance(c, (folium.Marker, folium.GeoJson))
        ]


def on_zoom_change(ctx: MapContext, zoom: int) -> MembershipDecision:
    ctx.viewport.zoom = int(zoom)
    decision = ctx.controller.handle_zoom(ctx.viewport.zoom)
    if ctx.boundaries is not None:
        ctx.boundaries.show = ctx.controller.visible
    return decision


def on_draw_created(ctx: MapContext, feature: Dict[str, Any]) -> folium.GeoJson:
    """Add a shape drawn with the draw toolbar (as GeoJSON) to the markers group."""
    layer = folium.GeoJson(feature)
    layer.add_to(ctx.markers)
    return layer


def on_draw_deleted(ctx: MapContext, layer) -> None:
    ctx.markers._children.pop(layer.get_name(), None)


def add_station_markers(group: folium.FeatureGroup, stations) -> int:
    for _, row in stations.iterrows():
        folium.Marker(
            location=[float(row["lat"]), float(row["lon"])],
            icon=station_icon(),
            popup=str(row["id"]),
        ).add_to(group)
    return len(stations)


def build_map(cfg: Dict[str, Any] | None = None) -> MapContext:
    """Assemble the map described by ``cfg`` (merged over the defaults)."""
    cfg = _merge(DEFAULT_CONFIG, cfg or {})
    station_cfg = cfg["stations"]
    boundary_cfg = cfg["boundaries"]
    timeout = cfg.get("fetch_timeout", 60)

    console.rule("[bold green]Build station map")
    viewport = Viewport(center=tuple(cfg["center"]), zoom=int(cfg["zoom"]))
    m = folium.Map(location=list(viewport.center), zoom_start=viewport.zoom, tiles=None)

    base_layers: Dict[str, folium.TileLayer] = {}
    for idx, layer_cfg in enumerate(BASE_LAYERS):
        base_layers[layer_cfg["name"]] = folium.TileLayer(
            tiles=layer_cfg["tiles"],
            attr=layer_cfg["attr"],
            name=layer_cfg["name"],
            max_zoom=layer_cfg["max_zoom"],
            overlay=False,
            control=True,
            show=idx == 0,
        ).add_to(m)

    active = ActiveOverlaySet()
    markers = folium.FeatureGroup(name=STATIONS_LAYER, show=True, control=True)

    FitBoundsGeocoder().add_to(m)

    stations = load_stations(
        station_cfg["source"],
        id_column=station_cfg.get("id_column", "ID"),
        lat_column=station_cfg.get("lat_column", "lat"),
        lon_column=station_cfg.get("lon_column", "lon"),
        on_invalid_row=station_cfg.get("on_invalid_row", "skip"),
        timeout=timeout,
    )
    count = add_station_markers(markers, stations)
    markers.add_to(m)
    active.add(STATIONS_LAYER, markers)
    console.log(f"[cyan]Added {count} station markers")

    plugins.Draw(
        feature_group=markers,
        show_geometry_on_click=False,
        draw_options={
            "polyline": True,
            "polygon": True,
            "marker": True,
            "circle": False,
            "circlemarker": False,
        },
    ).add_to(m)

    controller = BoundaryVisibilityController(
        active,
        name=BOUNDARIES_LAYER,
        threshold=int(boundary_cfg.get("zoom_threshold", 5)),
    )
    ctx = MapContext(
        map=m,
        viewport=viewport,
        base_layers=base_layers,
        markers=markers,
        active=active,
        controller=controller,
    )

    gdf = load_boundaries(boundary_cfg["source"], timeout=timeout)
    if gdf is not None:
        style = {"color": boundary_cfg["color"], "weight": boundary_cfg["weight"]}
        ctx.boundaries = folium.GeoJson(
            gdf,
            name=BOUNDARIES_LAYER,
            style_function=lambda feature: style,
        )
        controller.mark_loaded(ctx.boundaries)
        # Initial zoom decides whether boundaries start visible
        on_zoom_change(ctx, viewport.zoom)
        ctx.boundaries.add_to(m)
    else:
        console.log("[yellow]Country boundaries unavailable; zoom toggle disabled")

    BoundaryZoomToggle(ctx.boundaries, threshold=controller.threshold).add_to(m)
    coordinate_readout().add_to(m)

    # Both resources have settled, so the control lists only layers that exist
    folium.LayerControl().add_to(m)
    return ctx


def save_map(ctx: MapContext, output: Path, *, open_browser: bool = True) -> Path:
    output = Path(output)
    ctx.map.save(output)
    console.print(f"[bold cyan]Map saved to {output.resolve()}")
    if open_browser:
        try:
            webbrowser.open(output.resolve().as_uri())
        except webbrowser.Error as exc:
            console.log(f"[yellow]Could not open a browser: {exc}")
    return output


def main() -> None:
    ap = argparse.ArgumentParser(description="Build the interactive station map")
    ap.add_argument("config", nargs="?", help="Path to YAML config file")
    ap.add_argument("-o", "--output", help="HTML output file")
    ap.add_argument("--stations", help="Station CSV path or URL")
    ap.add_argument("--boundaries", help="Country boundary GeoJSON path or URL")
    ap.add_argument("--no-browser", action="store_true", help="Do not open the map in a browser")
    args = ap.parse_args()

    cfg = load_config(Path(args.config) if args.config else None)
    if args.stations:
        cfg["stations"]["source"] = args.stations
    if args.boundaries:
        cfg["boundaries"]["source"] = args.boundaries

    ctx = build_map(cfg)
    save_map(ctx, Path(args.output or cfg["output"]), open_browser=not args.no_browser)


if __name__ == "__main__":
    main()
