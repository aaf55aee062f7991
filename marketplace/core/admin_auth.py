"""
Admin authentication for subscription operations.

Admin routes require the shared X-Admin-Key header. The acting admin is
identified by X-Actor-Id when provided; otherwise a stable hash of the key
is used so audit fields are never empty.
"""
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from marketplace.core.config import settings
from marketplace.core.errors import PermissionError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str
    auth_mechanism: str = "x_admin_key"


def get_admin_api_key() -> Optional[str]:
    """Get admin API key.
    Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY.
    """
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """Return AdminActor if X-Admin-Key matches, None otherwise."""
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        return None

    actor_id = request.headers.get("X-Actor-Id", "").strip()
    if not actor_id:
        key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
        actor_id = f"admin:{key_hash}"
    return AdminActor(actor_id=actor_id)


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency: reject requests without a valid admin key."""
    actor = verify_admin_key(request)
    if actor is None:
        raise PermissionError("Invalid or missing X-Admin-Key header")
    return actor
