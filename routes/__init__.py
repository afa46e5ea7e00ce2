from flask import Blueprint, jsonify

from .booking import booking_bp
from .slots import slots_bp
from .availability import availability_bp

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200
