# Overview: Flask API route for the administration dashboard figures.

from flask import Blueprint, request

from ..api import api_ok
from ..services import stats_service

stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.get("/dashboard")
def dashboard():
    """Query params: recent (int, default 10, max 50)."""
    recent = request.args.get("recent", default=10, type=int)
    return api_ok(stats_service.dashboard(recent_limit=max(1, min(recent, 50))))
