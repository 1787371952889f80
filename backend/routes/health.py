"""
Health API Routes

- GET /health - database readiness plus pipeline cursor and backlog
"""
from flask import Blueprint, jsonify

from services.health import check_database_ready, pipeline_status

health_bp = Blueprint('health', __name__)


@health_bp.route("/health", methods=["GET"])
def health():
    if not check_database_ready():
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ok", **pipeline_status()})
