"""
Auth utilities for the askmoe API.

Verifies HS256 bearer tokens and extracts user_id from request context.
Falls back to X-User-Id header (tests, trusted internal callers).

Token issuance is external; this module only verifies signatures.
"""
from fastapi import Depends, Header, Request
from typing import Optional
import jwt
import logging

from askmoe.core.config import settings
from askmoe.core.errors import UnauthorizedError
from askmoe.core.ratelimit import AdmissionController, AdmissionTier, get_admission_controller
from askmoe.features.users.service import get_or_create_user, require_user

logger = logging.getLogger("askmoe")

JWT_ALGORITHMS = ["HS256"]


def verify_jwt(token: str) -> str:
    """
    Verify a bearer token and return its user id.

    The id is read from the 'sub' claim, or 'id' for older tokens.

    Raises:
        UnauthorizedError: no secret configured, bad signature, expired, or no id claim
    """
    if not settings.JWT_SECRET:
        logger.warning("JWT_SECRET not configured, rejecting bearer token")
        raise UnauthorizedError("Invalid token")

    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=JWT_ALGORITHMS)
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise UnauthorizedError("Invalid token")
    return str(user_id)


def _resolve_user_id(request: Request, x_user_id: Optional[str]) -> str:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return verify_jwt(auth_header[7:].strip())

    if x_user_id and x_user_id.strip():
        return x_user_id.strip()

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")


def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Trusted caller user ID"),
    admission: AdmissionController = Depends(get_admission_controller),
) -> str:
    """
    Identify the caller and make sure they have an entitlement record.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header

    Requests without a valid identity are counted against the
    unauthenticated admission tier before being rejected, so repeated
    bad credentials from one address end in 429 rather than 401.

    Raises:
        UnauthorizedError: no valid identity (401)
        RateLimitError: unauthenticated tier exhausted for this client (429)
    """
    request_id = getattr(request.state, "request_id", None)
    try:
        user_id = _resolve_user_id(request, x_user_id)
    except UnauthorizedError as exc:
        admission.check(admission.client_key(request), AdmissionTier.UNAUTHENTICATED, request_id=request_id)
        exc.request_id = request_id
        raise

    get_or_create_user(user_id)
    request.state.user_id = user_id
    return user_id


def admit_caller(request: Request, user_id: str, admission: AdmissionController) -> None:
    """Count an authenticated request against the caller's plan tier."""
    admission.check_plan(
        admission.client_key(request),
        require_user(user_id).plan,
        request_id=getattr(request.state, "request_id", None),
    )


def get_admitted_user_id(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    admission: AdmissionController = Depends(get_admission_controller),
) -> str:
    """Authenticated caller, counted against their plan's admission tier."""
    admit_caller(request, user_id, admission)
    return user_id
