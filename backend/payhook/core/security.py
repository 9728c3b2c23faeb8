"""Security dependencies for operator endpoints"""
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

from payhook.core.config import settings
from payhook.core.logging import security_logger


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> str:
    """Dependency: require the operator bearer token, return the caller label"""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(403, "Admin API disabled")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(401, "Missing bearer token")

    if not secrets.compare_digest(token.encode(), settings.ADMIN_API_TOKEN.encode()):
        security_logger.warning(
            f"Admin token rejected - IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(403, "Invalid admin token")

    return "admin"
