"""
Map visualisation utilities for PinRoute.

This module provides a helper function to build an interactive map
using the Folium library. It renders the user's pins and, once a tour
is known, numbers them in visiting order and draws the closed tour as a
polyline back to the depot. The map can be embedded directly in a
Streamlit app via ``streamlit_folium``.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import folium

DEFAULT_CENTRE = (35.6812, 139.7671)


def create_folium_map(
    order: Optional[Sequence[int]],
    coords: Sequence[Tuple[float, float]],
    zoom_start: int = 13,
) -> folium.Map:
    """Create a Folium map with pin markers and, if given, the tour.

    Args:
        order: Visiting order as list of indices into ``coords``, or
            ``None``/empty when no tour has been computed yet.
        coords: List of (lat, lng) pins.
        zoom_start: Initial zoom level.

    Returns:
        A Folium Map object ready for display.
    """
    if not coords:
        return folium.Map(location=list(DEFAULT_CENTRE), zoom_start=zoom_start)
    # Centre on the mean of all pins
    avg_lat = sum(lat for lat, _ in coords) / len(coords)
    avg_lng = sum(lng for _, lng in coords) / len(coords)
    m = folium.Map(location=[avg_lat, avg_lng], zoom_start=zoom_start, tiles="OpenStreetMap")

    if not order:
        for idx, (lat, lng) in enumerate(coords):
            folium.Marker(location=[lat, lng], tooltip=f"Pin {idx + 1}").add_to(m)
        return m

    for position, idx in enumerate(order, start=1):
        lat, lng = coords[idx]
        colour = "#dc3545" if position == 1 else "#007bff"
        folium.Marker(
            location=[lat, lng],
            popup=folium.Popup(f"{position}. Pin {idx + 1}", parse_html=True),
            icon=folium.DivIcon(html=f"<div style='font-size: 12px; color: white; background-color: {colour}; border-radius: 50%; width: 24px; height: 24px; text-align: center; line-height: 24px;'>{position}</div>")
        ).add_to(m)
    # Closed polyline: back to the depot at the end
    poly_coords = [[coords[idx][0], coords[idx][1]] for idx in order]
    poly_coords.append(poly_coords[0])
    folium.PolyLine(poly_coords, color="blue", weight=4, opacity=0.6).add_to(m)
    return m
