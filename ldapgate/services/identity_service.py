# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/identity_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Local identity store.
Defines the narrow contract the authentication provider uses to look up,
create and update local identities, and a SQLAlchemy implementation of it
backed by the ``local_identities`` table.

Examples:
    >>> from unittest.mock import MagicMock
    >>> service = IdentityService(db=MagicMock())
    >>> isinstance(service, IdentityStore)
    True
"""

# Standard
from typing import List, Optional, Protocol, runtime_checkable

# Third-Party
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# First-Party
from ldapgate.db import LocalIdentity
from ldapgate.services.logging_service import LoggingService

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


class IdentityExistsError(Exception):
    """Raised when creating an identity whose username is already taken.

    Examples:
        >>> try:
        ...     raise IdentityExistsError("alice")
        ... except IdentityExistsError as e:
        ...     str(e)
        'alice'
    """


class Identity(Protocol):
    """Fields of a local identity that directory logins read or change."""

    username: str
    is_admin: bool
    enable_all_folders: bool
    enabled_folders: List[str]
    auth_provider: Optional[str]


@runtime_checkable
class IdentityStore(Protocol):
    """Lookup, creation and persistence of local identities."""

    def find_by_username(self, username: str) -> Optional[Identity]:
        """Return the identity for ``username`` or None."""

    def create_username(self, username: str) -> Identity:
        """Create and return a new identity; raise IdentityExistsError on duplicates."""

    def update_identity(self, identity: Identity) -> None:
        """Persist changes made to ``identity``."""


class IdentityService:
    """SQLAlchemy-backed identity store.

    Attributes:
        db: SQLAlchemy database session
    """

    def __init__(self, db: Session):
        """Initialize the identity service.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def find_by_username(self, username: str) -> Optional[LocalIdentity]:
        """Look up an identity by exact username.

        Args:
            username: Local username.

        Returns:
            LocalIdentity or None.
        """
        return self.db.execute(select(LocalIdentity).where(LocalIdentity.username == username)).scalar_one_or_none()

    def create_username(self, username: str) -> LocalIdentity:
        """Create an identity with default permissions.

        Args:
            username: Local username.

        Returns:
            The new, committed LocalIdentity.

        Raises:
            IdentityExistsError: If another identity with that username exists.
        """
        identity = LocalIdentity(username=username, is_admin=False, enable_all_folders=True, enabled_folders=[])
        self.db.add(identity)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Identity %s already exists", username)
            raise IdentityExistsError(username) from exc
        self.db.refresh(identity)
        logger.info("Created local identity %s", username)
        return identity

    def update_identity(self, identity: LocalIdentity) -> None:
        """Commit changes made to an identity.

        Args:
            identity: Identity attached to this session.
        """
        self.db.add(identity)
        self.db.commit()
        logger.debug("Updated local identity %s", identity.username)
