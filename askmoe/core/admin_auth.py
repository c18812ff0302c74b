"""
Admin authentication for operator endpoints (plan changes, answer curation).

Shared-secret X-Admin-Key checked against ADMIN_KEY. With no key configured
every admin request is refused. Actions are logged with a hashed actor id,
never the key itself.
"""
import hashlib
import hmac
from dataclasses import dataclass
from fastapi import Request

from askmoe.core.config import settings
from askmoe.core.errors import PermissionError, UnauthorizedError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "key:<hash>"
    auth_mechanism: str = "x_admin_key"


def verify_admin_key(request: Request) -> AdminActor:
    """
    Raises:
        UnauthorizedError: header missing
        PermissionError: admin access disabled or key mismatch
    """
    expected_key = settings.ADMIN_KEY
    header_key = request.headers.get("X-Admin-Key", "").strip()
    request_id = getattr(request.state, "request_id", None)

    if not header_key:
        raise UnauthorizedError("Missing X-Admin-Key header", request_id=request_id)
    if not expected_key or not hmac.compare_digest(header_key, expected_key):
        raise PermissionError("Admin access denied", request_id=request_id)

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"key:{key_hash}")


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require admin authentication.

    Usage:
        @router.put("/v1/admin/users/{user_id}/plan")
        def change_plan(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = verify_admin_key(request)
    request.state.admin_actor = actor.actor_id
    return actor
