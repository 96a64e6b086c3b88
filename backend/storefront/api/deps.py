"""
FastAPI dependencies for database sessions, external clients and staff
authorization.

Services are built per request from these dependencies; nothing here is a
module-level service singleton apart from the rate limiter.
"""

from dataclasses import dataclass
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import bind_store_id, get_logger
from storefront.core.security import STAFF_ROLES, TokenError, decode_token
from storefront.database.connection import get_db
from storefront.services.notifications.service import EmailService
from storefront.services.payments.followup import PostConfirmationWorkflow
from storefront.services.payments.stripe_client import StripeClient

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

limiter = Limiter(key_func=get_remote_address)


@dataclass(frozen=True)
class StaffPrincipal:
    """Authenticated staff member taken from a verified access token."""

    subject: str
    role: str
    store_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def scope_store_id(self) -> Optional[UUID]:
        """Store the principal is limited to, None for platform admins."""
        return None if self.is_admin else self.store_id


def _principal_from_token(token: str) -> StaffPrincipal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(token)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code)
        raise credentials_exception from e

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in STAFF_ROLES:
        logger.warning(
            "Access denied: token is not a staff token",
            subject=subject,
            role=role,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    store_id: Optional[UUID] = None
    if payload.get("store_id"):
        try:
            store_id = UUID(str(payload["store_id"]))
        except ValueError as e:
            logger.warning("Authentication failed: invalid store_id claim", subject=subject)
            raise credentials_exception from e

    if role != "admin" and store_id is None:
        logger.warning("Access denied: store owner token without store scope", subject=subject)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    if store_id is not None:
        bind_store_id(str(store_id))

    return StaffPrincipal(subject=subject, role=role, store_id=store_id)


async def get_current_staff(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> StaffPrincipal:
    """
    Validate the Bearer token and return the staff principal.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if the
            token does not carry a staff role
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _principal_from_token(credentials.credentials)


async def get_optional_staff(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[StaffPrincipal]:
    """Return the staff principal when a Bearer token is sent, None otherwise."""
    if credentials is None:
        return None
    return _principal_from_token(credentials.credentials)


def get_stripe_client() -> StripeClient:
    return StripeClient.from_settings(get_settings())


def get_email_service() -> EmailService:
    return EmailService.from_settings(get_settings())


def get_followup(
    stripe_client: Annotated[StripeClient, Depends(get_stripe_client)],
    email_service: Annotated[EmailService, Depends(get_email_service)],
) -> PostConfirmationWorkflow:
    """Post-confirmation workflow run as a background task after the response."""
    return PostConfirmationWorkflow(stripe_client, email_service)


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentStaff = Annotated[StaffPrincipal, Depends(get_current_staff)]
OptionalStaff = Annotated[Optional[StaffPrincipal], Depends(get_optional_staff)]
StripeClientDep = Annotated[StripeClient, Depends(get_stripe_client)]
EmailServiceDep = Annotated[EmailService, Depends(get_email_service)]
FollowupDep = Annotated[PostConfirmationWorkflow, Depends(get_followup)]
