# -*- coding: utf-8 -*-
"""Location: ./ldapgate/db.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Local identity storage.
SQLAlchemy model for the local identity records that directory logins are
reconciled with, plus the engine and session factory.

Examples:
    >>> LocalIdentity.__tablename__
    'local_identities'
"""

# Standard
from datetime import datetime, timezone
from typing import List, Optional
import uuid

# Third-Party
from sqlalchemy import Boolean, create_engine, DateTime, JSON, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

# First-Party
from ldapgate.config import get_settings


def utc_now() -> datetime:
    """Current time, timezone-aware.

    Returns:
        datetime in UTC.

    Examples:
        >>> utc_now().tzinfo is timezone.utc
        True
    """
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for ldapgate tables."""


class LocalIdentity(Base):
    """A local user record that a directory account maps to."""

    __tablename__ = "local_identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_all_folders: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enabled_folders: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    auth_provider: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Debug representation.

        Returns:
            String with username and admin flag.
        """
        return f"<LocalIdentity username={self.username!r} is_admin={self.is_admin}>"


def _engine_kwargs(url: str) -> dict:
    """Engine options for the database URL.

    Args:
        url: SQLAlchemy URL.

    Returns:
        Keyword arguments for ``create_engine``.

    Examples:
        >>> _engine_kwargs("sqlite:///./x.db")
        {'connect_args': {'check_same_thread': False}}
        >>> _engine_kwargs("postgresql://u@h/db")
        {'pool_pre_ping': True}
    """
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(get_settings().database_url, **_engine_kwargs(get_settings().database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create the tables if they do not exist."""
    Base.metadata.create_all(bind=engine)
