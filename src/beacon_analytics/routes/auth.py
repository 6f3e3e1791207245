"""
Admin login/logout and health routes.
"""

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from ..core.auth import AdminStore
from ..core.timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    """JSON error body used by every API route."""
    return JSONResponse({"error": message}, status_code=status_code)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def read_json_object(request: Request) -> dict | None:
    """Parse the request body as a JSON object, None if it is not one."""
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_auth_router(admin: AdminStore) -> APIRouter:
    """Create the admin auth and health router.

    Args:
        admin: Admin user/session store
    """
    router = APIRouter(tags=["auth"])

    @router.post("/api/auth/login")
    async def login(request: Request):
        """Exchange admin credentials for a bearer token."""
        body = await read_json_object(request) or {}
        email = body.get("email")
        password = body.get("password")
        email = email.strip() if isinstance(email, str) else ""

        if not email or not isinstance(password, str) or not password:
            return error_response(400, "Email and password are required.")

        try:
            user = await admin.verify_credentials(email, password)
            if user is None:
                logger.info(f"Rejected admin login for {email.lower()}")
                return error_response(401, "Invalid credentials.")

            token = await admin.create_session(user.id)
        except Exception:
            logger.exception("Error during admin login")
            return error_response(500, "Failed to log in")

        return {"token": token, "user": {"id": user.id, "email": user.email}}

    @router.post("/api/auth/logout")
    async def logout(authorization: str | None = Header(None)):
        """Revoke the bearer token if one is given. Unknown tokens are fine."""
        token = bearer_token(authorization)
        if token:
            try:
                await admin.revoke(token)
            except Exception:
                logger.exception("Error during admin logout")
                return error_response(500, "Failed to log out")
        return {"success": True}

    @router.get("/health")
    async def health():
        return {"status": "ok", "timestamp": format_timestamp(utc_now())}

    return router
