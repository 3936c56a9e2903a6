"""
Role Decorators — JWT-aware RBAC for route protection.

Usage:
    @bp.route("/api/v1/kpi/org", methods=["GET"])
    @require_role("OWNER", "PROJECT_MANAGER", require_org_context=True)
    def org_dashboard():
        ...

ADMIN passes every role check. Responses:
    401 — no authenticated caller
    403 — caller's role not in the allowed set
    400 — organization context required but missing from the token
"""

import functools
import logging

from flask import g

from opspilot.utils.errors import E, api_error

logger = logging.getLogger(__name__)

SUPERUSER_ROLE = "ADMIN"


def current_organization_id():
    """Tenant the authenticated caller is acting in, or None."""
    return getattr(g, "jwt_organization_id", None)


def require_role(*roles: str, require_org_context: bool = False):
    """
    Decorator: require the JWT caller to hold one of *roles*.

    Args:
        roles: Allowed role names, e.g. "OWNER", "PROJECT_MANAGER".
        require_org_context: Reject callers whose token carries no organization.
    """
    allowed = set(roles) | {SUPERUSER_ROLE}

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")

            role = getattr(g, "jwt_role", None)
            if role not in allowed:
                logger.warning(
                    "User %s denied: role '%s' not in %s on %s",
                    user_id, role, sorted(allowed), f.__name__,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            if require_org_context and not current_organization_id():
                return api_error(E.ORGANIZATION_REQUIRED, "Organization context required")

            return f(*args, **kwargs)
        return decorated
    return decorator
