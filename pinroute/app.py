"""
Streamlit client for PinRoute.

This script lets a user drop pins by clicking on a map, sends the pins
to the PinRoute service and draws the returned tour. It only talks to
the service through ``POST /optimize``.

The service URL is read from Streamlit's secrets under
``PINROUTE_API_URL`` and defaults to a local server. To run the client
locally, start the service and execute:

    pinroute-server
    streamlit run pinroute/app.py
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import requests
import streamlit as st
from streamlit_folium import st_folium

import os
import sys
# Allow ``streamlit run pinroute/app.py`` to import the package when it is
# not installed: add the parent of the package directory to the search path.
parent_dir = os.path.dirname(os.path.dirname(__file__))
if parent_dir not in sys.path:
    sys.path.append(parent_dir)

from pinroute.visualisation import create_folium_map

DEFAULT_API_URL = "http://localhost:5000"


def service_url() -> str:
    """Return the service URL from secrets, or the local default."""
    try:
        return st.secrets.get("PINROUTE_API_URL", DEFAULT_API_URL)
    except FileNotFoundError:
        # no secrets.toml
        return DEFAULT_API_URL


def request_tour(api_url: str, coords: Sequence[Tuple[float, float]], timeout: float = 30) -> dict:
    """Ask the PinRoute service for a tour through ``coords``.

    Returns:
        The decoded response body, ``{"order", "distance", "suboptimal"}``.

    Raises:
        RuntimeError: if the service answers with an error status.
        requests.RequestException: if the service cannot be reached.
    """
    url = api_url.rstrip("/") + "/optimize"
    resp = requests.post(url, json={"coords": [[lat, lng] for lat, lng in coords]}, timeout=timeout)
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if resp.status_code != 200:
        raise RuntimeError(body.get("message") or f"service returned HTTP {resp.status_code}")
    return body


def format_tour_text(order: Sequence[int], distance: float, suboptimal: bool) -> str:
    """Format the visiting order for display."""
    if not order:
        return "No pins to visit."
    lines = ["Visiting order:\n"]
    for position, idx in enumerate(order, start=1):
        lines.append(f"{position}. Pin {idx + 1}")
    lines.append(f"{len(order) + 1}. Pin {order[0] + 1} (return)")
    lines.append(f"\nTotal distance: {distance:.6f}")
    if suboptimal:
        lines.append("The search stopped early; the tour may not be the shortest.")
    return "\n".join(lines)


def _reset_tour() -> None:
    st.session_state["tour"] = None


def main():
    st.set_page_config(page_title="PinRoute", layout="wide")
    st.title("📍 PinRoute tour planner")
    api_url = service_url()

    if "pins" not in st.session_state:
        st.session_state["pins"] = []
        st.session_state["last_click"] = None
        st.session_state["tour"] = None
    pins: List[Tuple[float, float]] = st.session_state["pins"]
    tour = st.session_state["tour"]

    col_map, col_side = st.columns([3, 1])
    with col_map:
        fol_map = create_folium_map(tour["order"] if tour else None, pins)
        output = st_folium(fol_map, width=800, height=550, key="map")
    clicked = output.get("last_clicked") if output else None
    if clicked:
        point = (clicked["lat"], clicked["lng"])
        # st_folium reports the last click on every rerun; only add new ones
        if point != st.session_state["last_click"]:
            st.session_state["last_click"] = point
            pins.append(point)
            _reset_tour()
            st.rerun()

    with col_side:
        st.subheader("Pins")
        st.write(f"{len(pins)} pin(s) placed. Click the map to add one.")
        if st.button("Remove last pin", disabled=not pins):
            pins.pop()
            _reset_tour()
            st.rerun()
        if st.button("Clear pins", disabled=not pins):
            pins.clear()
            _reset_tour()
            st.rerun()
        if st.button("Optimise route", type="primary", disabled=not pins):
            with st.spinner("Computing the tour…"):
                try:
                    st.session_state["tour"] = request_tour(api_url, pins)
                except (requests.RequestException, RuntimeError) as exc:
                    st.error(f"Could not optimise the route: {exc}")
                else:
                    st.rerun()
        if tour:
            st.text_area(
                "Tour",
                format_tour_text(tour["order"], tour["distance"], tour.get("suboptimal", False)),
                height=250,
            )


if __name__ == "__main__":
    main()
