"""
KPI Dashboard Blueprint

Organization, team and employee performance dashboards for the caller's
organization, served through the KPI cache.

Endpoints:
    GET  /api/v1/kpi/org                    — organization dashboard
    GET  /api/v1/kpi/team                   — organization-wide team dashboard
    GET  /api/v1/kpi/team/<workflow_id>     — team dashboard for one workflow
    POST /api/v1/kpi/refresh                — flush every cached dashboard
    GET  /api/v1/kpi/cache-status           — cache hit/miss/key statistics

The organization comes from the JWT tenant context, never from the request.
"""

import logging

from flask import Blueprint, g, jsonify, request

from opspilot.core.exceptions import DataSourceError
from opspilot.middleware.permission_required import current_organization_id, require_role
from opspilot.services import kpi_service
from opspilot.services.kpi_types import TeamScope
from opspilot.utils.errors import E, api_error

logger = logging.getLogger(__name__)

kpi_bp = Blueprint("kpi", __name__, url_prefix="/api/v1/kpi")

DASHBOARD_ROLES = ("OWNER", "PROJECT_MANAGER")
MAINTENANCE_ROLES = ("PROJECT_MANAGER",)


@kpi_bp.errorhandler(DataSourceError)
def _handle_data_source(error: DataSourceError):
    logger.error("KPI computation failed on %s: %s", request.endpoint, error,
                 exc_info=error.__cause__ or error,
                 extra={"organization_id": error.organization_id})
    return api_error(E.INTERNAL, "Internal server error")


@kpi_bp.route("/org", methods=["GET"])
@require_role(*DASHBOARD_ROLES, require_org_context=True)
def org_dashboard():
    """Organization-level KPI dashboard."""
    return jsonify(kpi_service.get_org_dashboard(current_organization_id())), 200


@kpi_bp.route("/team", methods=["GET"])
@require_role(*DASHBOARD_ROLES, require_org_context=True)
def team_dashboard():
    """Employee performance across every workflow of the organization."""
    payload = kpi_service.get_team_dashboard(current_organization_id(), TeamScope.organization())
    return jsonify(payload), 200


@kpi_bp.route("/team/<workflow_id>", methods=["GET"])
@require_role(*DASHBOARD_ROLES, require_org_context=True)
def workflow_team_dashboard(workflow_id):
    """Employee performance within a single workflow (team)."""
    payload = kpi_service.get_team_dashboard(current_organization_id(),
                                             TeamScope.workflow(workflow_id))
    return jsonify(payload), 200


@kpi_bp.route("/refresh", methods=["POST"])
@require_role(*MAINTENANCE_ROLES, require_org_context=True)
def refresh_kpi_cache():
    """Flush the KPI cache; dashboards recompute on their next read."""
    if not kpi_service.refresh_kpis():
        return api_error(E.INTERNAL, "Internal server error")
    logger.info("KPI cache flushed by user %s", g.jwt_user_id,
                extra={"organization_id": current_organization_id()})
    return jsonify({"success": True, "message": "KPI cache refreshed successfully"}), 200


@kpi_bp.route("/cache-status", methods=["GET"])
@require_role(*MAINTENANCE_ROLES, require_org_context=True)
def cache_status():
    """Hit/miss counters and live key count of the KPI cache."""
    return jsonify(kpi_service.cache_status()), 200
