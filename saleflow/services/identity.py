"""
Request identity.

Authentication happens upstream: the identity provider (or the gateway in
front of this service) resolves the user and forwards it as headers:

    X-User-Id          user reference (required, at most 64 characters)
    X-User-Role        "organization" | "buyer" (required)
    X-User-Name        display name, snapshotted onto comments (optional)
    X-Organization-Id  organization the user acts for (required for the
                       organization role)

This module only reads those headers; it never verifies credentials.

Usage:
    @workflow_bp.route("/documents/<int:document_id>/review", methods=["POST"])
    @require_identity(ROLE_ORGANIZATION)
    def review(document_id):
        who = g.identity
"""

import functools
import logging
from dataclasses import dataclass

from flask import g, request

from saleflow.models.document import ROLE_BUYER, ROLE_ORGANIZATION, UPLOADER_ROLES
from saleflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

MAX_ID_LENGTH = 64


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str
    name: str | None = None
    organization_id: str | None = None

    @property
    def is_organization(self) -> bool:
        return self.role == ROLE_ORGANIZATION

    @property
    def is_buyer(self) -> bool:
        return self.role == ROLE_BUYER


def resolve_identity() -> Identity | None:
    """Build the caller's Identity from request headers, or None if absent/invalid."""
    user_id = request.headers.get("X-User-Id", "").strip()
    role = request.headers.get("X-User-Role", "").strip().lower()
    if not user_id or len(user_id) > MAX_ID_LENGTH or role not in UPLOADER_ROLES:
        return None
    name = request.headers.get("X-User-Name", "").strip() or None
    org = request.headers.get("X-Organization-Id", "").strip() or None
    if role == ROLE_ORGANIZATION and org is None:
        return None
    if org is not None and len(org) > MAX_ID_LENGTH:
        return None
    return Identity(user_id=user_id, role=role, name=name, organization_id=org)


def require_identity(*roles: str):
    """
    Decorator: require an identified caller, optionally with one of ``roles``.

    Sets g.identity.  Missing identity → 401, role mismatch → 403.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = resolve_identity()
            if identity is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")
            if roles and identity.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s",
                    identity.role, request.path,
                    extra={"event_type": "access_denied"},
                )
                return api_error(
                    E.FORBIDDEN,
                    f"This action requires role: {', '.join(roles)}",
                )
            g.identity = identity
            return f(*args, **kwargs)

        return decorated

    return decorator
