# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .context import Identity, RequestContext
from .errors import AuthorizationError


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(f"{name} must be an integer")
    return int(raw)


def identity_from_headers(req) -> Identity | None:
    """
    Default identity provider: X-User-* headers set by the upstream gateway.

    Only consulted when TRUST_IDENTITY_HEADERS is enabled; the gateway must
    strip any client-supplied copies of these headers.
    """
    role = (req.headers.get("X-User-Role") or "").strip().lower()
    if not role:
        return None
    try:
        user_id = _header_int("X-User-Id")
        branch_id = _header_int("X-Branch-Id")
    except ValueError:
        return None
    email = (req.headers.get("X-User-Email") or "").strip() or None
    return Identity(user_id=user_id, role=role, branch_id=branch_id, email=email)


def resolve_identity() -> Identity | None:
    provider = current_app.config.get("IDENTITY_PROVIDER")
    if provider is not None:
        return provider(request)
    if not current_app.config.get("TRUST_IDENTITY_HEADERS"):
        return None
    return identity_from_headers(request)


def _client_ip() -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.headers.get("X-Real-IP") or request.remote_addr


def require_auth(f):
    """
    Require an authenticated identity and establish the request context.

    Sets the following Flask g attributes:
    - g.identity: The acting Identity (user_id, role, branch_id, email)
    - g.request_context: RequestContext passed explicitly into services

    Returns 401 when no identity can be resolved.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = resolve_identity()
        if identity is None:
            return jsonify({"success": False, "error": "Unauthorized", "code": "AUTHENTICATION_REQUIRED"}), 401

        g.identity = identity
        g.request_context = RequestContext(identity=identity, ip_address=_client_ip())
        return f(*args, **kwargs)

    return decorated_function


def require_owner(f):
    """
    Require the owner role. Must be stacked under @require_auth.

    Returns 403 for every other role.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = getattr(g, "identity", None)
        if identity is None or not identity.is_owner:
            error = AuthorizationError("Owner role required")
            return jsonify(error.to_dict()), error.status
        return f(*args, **kwargs)

    return decorated_function


def admin_tools_disabled_response():
    """Kill switch shared by the admin DB blueprint; None when enabled."""
    if not current_app.config.get("ADMIN_TOOLS_ENABLED"):
        error = AuthorizationError("Admin tools are disabled in this environment")
        return jsonify(error.to_dict()), error.status
    return None
