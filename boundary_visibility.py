"""Zoom-dependent visibility of the country boundary overlay."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from branca.element import MacroElement
from folium.template import Template

# Boundaries are hidden at this zoom level and below
BOUNDARY_ZOOM_THRESHOLD = 5


class MembershipDecision(Enum):
    SHOW = "show"
    HIDE = "hide"
    NO_OP = "no-op"


def on_zoom_change(
    zoom: int,
    boundary_loaded: bool,
    threshold: int = BOUNDARY_ZOOM_THRESHOLD,
) -> MembershipDecision:
    """Decide what to do with the boundary overlay after a zoom change.

    The threshold is inclusive on the hiding side: ``zoom <= threshold``
    hides the overlay, ``zoom > threshold`` shows it.
    """
    if not boundary_loaded:
        return MembershipDecision.NO_OP
    if zoom > threshold:
        return MembershipDecision.SHOW
    return MembershipDecision.HIDE


@dataclass
class Viewport:
    center: Tuple[float, float]
    zoom: int


class ActiveOverlaySet:
    """Overlay layers currently rendered on the map, keyed by name."""

    def __init__(self) -> None:
        self._layers: Dict[str, Any] = {}

    def add(self, name: str, layer) -> None:
        self._layers[name] = layer

    def discard(self, name: str) -> None:
        self._layers.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._layers

    def __len__(self) -> int:
        return len(self._layers)

    def names(self) -> list[str]:
        return list(self._layers)


class BoundaryVisibilityController:
    """Keep the boundary overlay's membership in step with the zoom level.

    ``boundary_loaded`` is the only state. It stays ``False`` until
    :meth:`mark_loaded` is called with the loaded layer, so a failed fetch
    leaves every zoom change a no-op.
    """

    def __init__(
        self,
        active: ActiveOverlaySet,
        name: str = "Country Boundaries",
        threshold: int = BOUNDARY_ZOOM_THRESHOLD,
    ) -> None:
        self.active = active
        self.name = name
        self.threshold = threshold
        self.layer = None
        self.boundary_loaded = False

    def mark_loaded(self, layer) -> None:
        self.layer = layer
        self.boundary_loaded = True

    def handle_zoom(self, zoom: int) -> MembershipDecision:
        decision = on_zoom_change(zoom, self.boundary_loaded, self.threshold)
        if decision is MembershipDecision.SHOW:
            self.active.add(self.name, self.layer)
        elif decision is MembershipDecision.HIDE:
            self.active.discard(self.name)
        return decision

    @property
    def visible(self) -> bool:
        return self.name in self.active


class BoundaryZoomToggle(MacroElement):
    """Browser-side ``zoomend`` handler applying the same threshold rule.

    Must be added to the map after ``layer`` so the layer variable exists
    when the script runs. With ``layer=None`` the handler never changes
    anything.
    """

    _template = Template(
        """
        {% macro script(this, kwargs) %}
            (function() {
                var map = {{ this._parent.get_name() }};
                var boundaries = {{ this.layer.get_name() if this.layer else "null" }};
                function applyBoundaryVisibility() {
                    if (!boundaries) { return; }
                    if (map.getZoom() > {{ this.threshold }}) {
                        if (!map.hasLayer(boundaries)) { map.addLayer(boundaries); }
                    } else if (map.hasLayer(boundaries)) {
                        map.removeLayer(boundaries);
                    }
                }
                map.on('zoomend', applyBoundaryVisibility);
            })();
        {% endmacro %}
        """
    )

    def __init__(self, layer=None, threshold: int = BOUNDARY_ZOOM_THRESHOLD):
        super().__init__()
        self._name = "BoundaryZoomToggle"
        self.layer = layer
        self.threshold = int(threshold)
