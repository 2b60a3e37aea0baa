import hmac
from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, request
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from marketplace.extensions import db
from marketplace.models.user import User
from marketplace.utils.response_formatter import error_response
from marketplace.utils.result import Result

INTERNAL_ROLE = "internal"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str


def verify_identity(*roles):
    """Resolve the caller from the bearer token. Never raises on auth failure."""
    try:
        verify_jwt_in_request()
    except (JWTExtendedException, PyJWTError) as e:
        return Result.failure("UNAUTHORIZED", str(e) or "Missing or invalid token", 401)

    uid = get_jwt_identity()
    user = db.session.get(User, uid) if uid else None
    if not user:
        return Result.failure("UNAUTHORIZED", "Unknown user", 401)

    if roles and user.role not in roles:
        return Result.failure("FORBIDDEN", f"{' or '.join(roles).capitalize()} access required", 403)

    return Result.success(Identity(user_id=user.id, role=user.role))


def verify_internal_caller():
    """Internal endpoints accept the shared service key or an admin token."""
    expected = current_app.config.get("INTERNAL_API_KEY")
    provided = request.headers.get("X-Internal-Key")
    if expected and provided:
        if hmac.compare_digest(expected.encode(), provided.encode()):
            return Result.success(Identity(user_id=INTERNAL_ROLE, role=INTERNAL_ROLE))
        return Result.failure("UNAUTHORIZED", "Invalid internal key", 401)
    return verify_identity("admin")


def _guard(check):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            result = check()
            if not result.ok:
                return error_response(result.error.code, result.error.message, status=result.error.status)
            g.identity = result.value
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def role_required(*roles):
    return _guard(lambda: verify_identity(*roles))


def internal_required(fn):
    return _guard(verify_internal_caller)(fn)


def current_identity():
    return g.identity
