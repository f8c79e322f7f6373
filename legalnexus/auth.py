"""
Caller identity for org endpoints.

Browser calls carry a Supabase access token; server-to-server calls
carry X-Admin-Secret + X-User-ID. Either way X-Company-ID names the
company the call acts for, and the user must be a member of it.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from legalnexus.config import Settings, get_settings
from legalnexus.models import AuthenticatedUser
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.logging import set_context
from legalnexus.utils.security import secrets_match

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


class AuthenticationError(HTTPException):
    """Custom authentication error."""
    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        super().__init__(
            status_code=401,
            detail={"code": code, "message": message}
        )


class AuthorizationError(HTTPException):
    """Custom authorization error."""
    def __init__(self, message: str, code: str = "FORBIDDEN"):
        super().__init__(
            status_code=403,
            detail={"code": code, "message": message}
        )


def get_company_from_request(request: Request) -> str:
    """X-Company-ID header. Raises AuthorizationError if missing."""
    company_id = (request.headers.get("X-Company-ID") or "").strip()
    if not company_id:
        logger.warning(f"No company ID header for path '{request.url.path}'.")
        raise AuthorizationError("X-Company-ID header is required", "MISSING_COMPANY")
    return company_id


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address, handling proxies and Cloud Run.
    """
    # Cloud Run / load balancer headers
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip

    # Real IP header (some proxies)
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Direct connection
    if request.client:
        return request.client.host

    return "unknown"


def verify_admin_secret(request: Request, settings: Settings) -> None:
    """
    Verify the X-Admin-Secret header with a constant-time compare.
    Raises AuthenticationError on mismatch or when no secret is configured.
    """
    if not settings.admin_api_secret:
        logger.error("ADMIN_API_SECRET not configured")
        raise AuthenticationError("Admin authentication not configured", "ADMIN_NOT_CONFIGURED")

    if not secrets_match(request.headers.get("X-Admin-Secret"), settings.admin_api_secret):
        raise AuthenticationError("Invalid admin secret", "INVALID_ADMIN_SECRET")


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
    supabase: SupabaseClient = Depends(get_supabase_client),
) -> AuthenticatedUser:
    """
    Dependency for org endpoints: admin secret + X-User-ID, or a Supabase
    access token. The user must belong to the company in X-Company-ID.
    """
    email: Optional[str] = None

    if request.headers.get("X-Admin-Secret"):
        verify_admin_secret(request, settings)
        user_id = (request.headers.get("X-User-ID") or "").strip()
        if not user_id:
            raise AuthenticationError("X-User-ID header required for admin calls", "MISSING_USER_ID")
        logger.info(f"Admin call with X-User-ID: {user_id[:8]}...")
    else:
        if not credentials:
            raise AuthenticationError("Authorization header required", "MISSING_AUTH")
        user = supabase.get_user_from_token(credentials.credentials)
        if not user or not user.get("id"):
            raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")
        user_id = str(user["id"])
        email = user.get("email")

    company_id = get_company_from_request(request)
    if not supabase.check_company_membership(user_id, company_id):
        logger.warning(f"User {user_id[:8]}... is not a member of company {company_id[:8]}...")
        raise AuthorizationError("You don't have access to this company", "COMPANY_MISMATCH")

    set_context(company_id=company_id)
    return AuthenticatedUser(id=user_id, email=email, company_id=company_id)
