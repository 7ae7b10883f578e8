"""
Application factory for the OSCAR upload service.

Each upload route decodes the posted captures, runs them through the batch
worker and answers with a JSON list of per-file (or per-pair) results.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from OSCAR.config import QUANTITIES, Config
from OSCAR.src.core.types import ImageSource
from OSCAR.src.core.worker import BatchWorker

logger = logging.getLogger(__name__)

bp = Blueprint("upload", __name__)


def _worker() -> BatchWorker:
    return current_app.extensions["oscar_worker"]


def _sources(field: str) -> List[ImageSource]:
    """Read every uploaded file under ``field`` (``field[]`` is accepted too)."""
    files = request.files.getlist(field) or request.files.getlist(f"{field}[]")
    return [ImageSource(f.filename or field, f.read()) for f in files]


def _quantity() -> Optional[str]:
    quantity = (request.form.get("mode") or request.args.get("mode") or "voltage").lower()
    return quantity if quantity in QUANTITIES else None


def _bad_quantity():
    return jsonify({"error": f"mode must be one of {list(QUANTITIES)}"}), 400


@bp.route("/health", methods=["GET"])
def health():
    worker = _worker()
    return jsonify({"status": "ok", "workers": worker.max_workers, "state": worker.state})


@bp.route("/power/upload", methods=["POST"])
def power_upload():
    voltage = _sources("voltageFiles")
    current = _sources("currentFiles")
    if len(voltage) != len(current):
        logger.warning("power upload: %d voltage vs %d current files; pairing the first %d",
                       len(voltage), len(current), min(len(voltage), len(current)))
    pairs = list(zip(voltage, current))
    results = _worker().run_pairs(pairs)
    return jsonify([r.to_dict() for r in results])


@bp.route("/steady/upload", methods=["POST"])
def steady_upload():
    quantity = _quantity()
    if quantity is None:
        return _bad_quantity()
    results = _worker().run_files(_sources("files"), "steady", quantity)
    return jsonify([r.to_dict() for r in results])


@bp.route("/transient/upload", methods=["POST"])
def transient_upload():
    quantity = _quantity()
    if quantity is None:
        return _bad_quantity()
    results = _worker().run_files(_sources("files"), "transient", quantity)
    return jsonify([r.to_dict() for r in results])


@bp.route("/frequency/upload", methods=["POST"])
def frequency_upload():
    quantity = _quantity()
    if quantity is None:
        return _bad_quantity()
    results = _worker().run_files(_sources("files"), "frequency", quantity)
    return jsonify([r.to_dict() for r in results])


def create_app(config: Optional[Config] = None, max_workers: Optional[int] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    cfg = config if config is not None else Config.load()
    app.extensions["oscar_worker"] = BatchWorker(cfg, max_workers)
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def _too_large(_exc):
        return jsonify({"error": "upload too large"}), 413

    @app.errorhandler(500)
    def _internal_error(exc):
        logger.error("Unhandled error on %s: %s", request.path, exc)
        return jsonify({"error": "internal server error"}), 500

    return app
