"""
PinRoute package initialization.

This package provides the route optimisation service behind the PinRoute
map application. A user drops pins on a map and the service answers with
a visiting order and the length of a short closed tour through them.

Modules:
    geometry      – Euclidean distance and integer cost matrices.
    optimisation  – Construction heuristics, 2‑opt/Or‑opt local search and
                    pluggable solver strategies.
    handler       – Request validation and response shaping.
    config        – Environment based service settings.
    errors        – Error taxonomy shared by all modules.
    server        – Flask HTTP service exposing ``POST /optimize``.
    visualisation – Folium based map creation utilities.
    app           – Streamlit pin placing client.

Tours are near‑optimal for larger inputs; only small inputs are solved
exactly.
"""

__version__ = "0.1.0"

__all__ = [
    "geometry",
    "optimisation",
    "handler",
    "config",
    "errors",
    "server",
    "visualisation",
    "app",
]
