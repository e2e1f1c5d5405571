# -*- coding: utf-8 -*-
"""Location: ./ldapgate/routers/ldap_auth.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

LDAP Authentication Router.
This module provides FastAPI routes for LDAP bind authentication, the
directory connection test and filtered user searches. The connection test
and user search run as the service account and are admin-only: the host
application supplies the caller by overriding ``get_current_user``.

Examples:
    >>> from fastapi import FastAPI
    >>> from ldapgate.routers.ldap_auth import ldap_router
    >>> app = FastAPI()
    >>> app.include_router(ldap_router)
    >>> isinstance(ldap_router, APIRouter)
    True
"""

# Standard
from typing import Any, Generator, Optional

# Third-Party
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

# First-Party
from ldapgate.db import SessionLocal
from ldapgate.schemas import LdapLoginRequest, LdapLoginResponse, LdapPasswordChangeRequest, LdapTestResponse, LdapUserSearchRequest, LdapUserSearchResponse
from ldapgate.services.identity_service import IdentityService
from ldapgate.services.ldap_service import (
    DirectoryUnavailableError,
    LdapAuthenticationError,
    LdapAuthenticationProvider,
    PasswordChangeNotSupportedError,
    ProvisioningDisabledError,
)
from ldapgate.services.logging_service import LoggingService

# Initialize logging
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# Create router
ldap_router = APIRouter(prefix="/auth/ldap", tags=["LDAP Authentication"])


def get_db() -> Generator[Session, None, None]:
    """Database dependency.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_provider(db: Session = Depends(get_db)) -> LdapAuthenticationProvider:
    """Authentication provider dependency.

    Args:
        db: Database session

    Returns:
        LdapAuthenticationProvider using the SQLAlchemy identity store.
    """
    return LdapAuthenticationProvider(IdentityService(db))


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request.

    Args:
        request: FastAPI request object

    Returns:
        str: Client IP address
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_current_user() -> Optional[Any]:
    """Caller identity dependency.

    The host application replaces this through ``app.dependency_overrides``
    with its own authentication. Without an override there is no caller.

    Returns:
        None
    """
    return None


def require_admin(current_user: Optional[Any] = Depends(get_current_user)) -> Any:
    """Admin-only dependency for the endpoints that run as the service account.

    Args:
        current_user: Caller resolved by the host; anything with a truthy ``is_admin``

    Returns:
        The admin caller

    Raises:
        HTTPException: 403 if there is no caller or the caller is not an admin
    """
    if not getattr(current_user, "is_admin", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required for LDAP directory operations")
    return current_user


@ldap_router.post("/login", response_model=LdapLoginResponse)
def ldap_login(login_request: LdapLoginRequest, request: Request, provider: LdapAuthenticationProvider = Depends(get_provider)):
    """Authenticate a user via LDAP bind.

    Args:
        login_request: LDAP login credentials
        request: FastAPI request object
        provider: Authentication provider

    Returns:
        LdapLoginResponse: The resolved local identity

    Raises:
        HTTPException: 401 for bad credentials, 403 if provisioning is disabled, 503 if the directory is unreachable
    """
    ip_address = get_client_ip(request)
    try:
        outcome = provider.authenticate(login_request.username, login_request.password.get_secret_value())
    except ProvisioningDisabledError as exc:
        logger.info("LDAP login for %s from %s refused: %s", login_request.username, ip_address, exc.reason)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    except DirectoryUnavailableError as exc:
        if exc.phase == "user":
            logger.info("LDAP login failed for %s from %s: directory unavailable during user bind", login_request.username, ip_address)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)
        logger.error("LDAP server unreachable during login: %s", exc.__cause__)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="LDAP server is unreachable. Please try again later.")
    except LdapAuthenticationError as exc:
        logger.info("LDAP login failed for %s from %s: %s", login_request.username, ip_address, exc.reason)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)

    logger.info("LDAP login successful: %s from %s", outcome.username, ip_address)
    return LdapLoginResponse(
        username=outcome.username,
        is_admin=outcome.is_admin,
        enable_all_folders=outcome.enable_all_folders,
        enabled_folders=list(outcome.enabled_folders),
    )


@ldap_router.get("/test", response_model=LdapTestResponse)
def ldap_test(current_user: Any = Depends(require_admin), provider: LdapAuthenticationProvider = Depends(get_provider)):
    """Run the step-by-step LDAP connection test.

    Requires admin privileges.

    Args:
        current_user: Admin caller
        provider: Authentication provider

    Returns:
        LdapTestResponse: Report of each step

    Raises:
        HTTPException: 403 if not admin
    """
    logger.info("LDAP connection test requested by %s", getattr(current_user, "username", current_user))
    return LdapTestResponse(report=provider.test_connection())


@ldap_router.post("/users/search", response_model=LdapUserSearchResponse)
def ldap_search_users(
    search_request: LdapUserSearchRequest,
    current_user: Any = Depends(require_admin),
    provider: LdapAuthenticationProvider = Depends(get_provider),
):
    """List the DNs of directory entries matching a filter.

    Requires admin privileges.

    Args:
        search_request: Search filter
        current_user: Admin caller
        provider: Authentication provider

    Returns:
        LdapUserSearchResponse: Matching DNs

    Raises:
        HTTPException: 403 if not admin, 503 if the directory is unreachable
    """
    logger.info("LDAP user search %s requested by %s", search_request.search_filter, getattr(current_user, "username", current_user))
    try:
        dns = provider.get_filtered_users(search_request.search_filter)
    except DirectoryUnavailableError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="LDAP server is unreachable. Please try again later.")
    return LdapUserSearchResponse(dns=dns)


@ldap_router.post("/password")
def ldap_change_password(change_request: LdapPasswordChangeRequest, provider: LdapAuthenticationProvider = Depends(get_provider)):
    """Password changes are handled by the directory, never here.

    Args:
        change_request: Requested change
        provider: Authentication provider

    Raises:
        HTTPException: 501 always
    """
    try:
        identity = provider.identity_store.find_by_username(change_request.username)
        provider.change_password(identity, change_request.new_password.get_secret_value())
    except PasswordChangeNotSupportedError as exc:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(exc))
