"""
Flask backend for PinRoute.

Exposes the route optimiser over HTTP for the map front-end:

    POST /optimize   {"coords": [[x, y], ...]} -> {"order": [...], "distance": ...}
    GET  /health     liveness check

To run the service locally:

    pinroute-server --port 5000

Every request is handled on its own thread by a stateless
``RequestHandler``, so requests share no solver state.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from pinroute import __version__
from pinroute.config import Settings, load_settings
from pinroute.errors import InternalError, ValidationError
from pinroute.handler import RequestHandler

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> Flask:
    """Build the Flask application for the given settings."""
    settings = settings or load_settings()
    app = Flask(__name__)
    CORS(app)
    handler = RequestHandler(settings)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "version": __version__}), 200

    @app.route("/optimize", methods=["POST"])
    def optimize_route():
        payload = request.get_json(silent=True)
        if payload is None:
            error = ValidationError("request body must be valid JSON")
            return jsonify(error.to_dict()), error.status_code
        status, body = handler.handle(payload)
        return jsonify(body), status

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "NotFound", "message": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "MethodNotAllowed", "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(_error):
        error = InternalError("internal server error")
        return jsonify(error.to_dict()), error.status_code

    return app


def parse_args(argv: Optional[List[str]] = None, settings: Optional[Settings] = None):
    settings = settings or Settings()
    parser = argparse.ArgumentParser(description="PinRoute tour optimisation service")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    settings = load_settings()
    args = parse_args(argv, settings)
    level = logging.DEBUG if args.debug else logging.getLevelName(settings.log_level.upper())
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Starting PinRoute on %s:%d with %s strategy", args.host, args.port, settings.strategy)
    app = create_app(settings)
    app.run(host=args.host, port=args.port, threaded=True)


if __name__ == "__main__":
    main()
