"""
Procurement approval engine
Blueprint registry and shared request helpers.
"""

from flask import g, request

from approvals.utils.errors import E, api_error


def actor_id() -> int | None:
    """The user resolved by the identity middleware, if any."""
    return getattr(g, "actor_id", None)


def actor_required() -> tuple[int | None, tuple | None]:
    """Return (actor_id, None) or (None, 401 response)."""
    actor = actor_id()
    if actor is None:
        return None, api_error(E.UNAUTHENTICATED, "An authenticated user is required")
    return actor, None


def json_object() -> tuple[dict | None, tuple | None]:
    """Return (body, None) for a JSON object body, or (None, 400 response)."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def parse_bool_arg(name: str) -> tuple[bool | None, tuple | None]:
    """Parse an optional ``true``/``false`` query parameter."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None, None
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True, None
    if lowered in ("false", "0", "no"):
        return False, None
    return None, api_error(E.VALIDATION_INVALID, f"{name} must be true or false")


def all_blueprints():
    """Blueprints registered by create_app, in registration order."""
    from approvals.blueprints.approval_bp import approval_bp
    from approvals.blueprints.health_bp import health_bp
    from approvals.blueprints.process_bp import process_bp

    return [health_bp, process_bp, approval_bp]
