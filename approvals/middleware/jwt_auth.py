"""
Actor identity middleware — sets g.actor_id for every API request.

Priority order:
  1. JWT (Authorization: Bearer <token>)  →  g.actor_id from the "sub" claim
  2. X-User-Id header                     →  only when API_AUTH_ENABLED is false

Requests without a resolvable actor keep g.actor_id = None; routes that
need an actor answer 401 themselves.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from approvals.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip actor resolution entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _auth_enabled() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() == "true"


def _header_actor() -> int | None:
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric X-User-Id header: %r", raw[:32])
        return None


def init_jwt_middleware(app):
    """Register actor resolution as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                payload = decode_access_token(token)
                g.actor_id = int(payload["sub"])
                return
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired bearer token on %s", path)
            except (pyjwt.InvalidTokenError, KeyError, ValueError):
                logger.warning("Invalid bearer token on %s", path)

        if not _auth_enabled():
            g.actor_id = _header_actor()
