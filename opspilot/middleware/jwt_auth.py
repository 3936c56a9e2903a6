"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Populates the caller context consumed by ``require_role``:
    g.jwt_user_id          — token subject
    g.jwt_organization_id  — tenant the caller is acting in (may be None)
    g.jwt_role             — ADMIN | OWNER | PROJECT_MANAGER | MEMBER

An absent or invalid token leaves the context empty; protected routes then
answer 401 through their decorator.
"""

import logging

import jwt as pyjwt
from flask import g, request

from opspilot.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_organization_id = None
        g.jwt_role = None

        # Skip non-API routes and open endpoints
        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid token provided: %s", exc)
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_organization_id = payload.get("organization_id")
        g.jwt_role = payload.get("role")
