# -*- coding: utf-8 -*-
"""Location: ./ldapgate/models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared enumerations for ldapgate.

Examples:
    >>> TlsMode("starttls") is TlsMode.START_TLS
    True
    >>> LogLevel.WARNING.upper()
    'WARNING'
"""

# Standard
from enum import Enum


class LogLevel(str, Enum):
    """Log severity levels (RFC 5424 names)."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"


class TlsMode(str, Enum):
    """Transport protection for the directory connection."""

    NONE = "none"  # plain LDAP, usually port 389
    LDAPS = "ldaps"  # implicit TLS, usually port 636
    START_TLS = "starttls"  # upgrade a plain connection before binding


class CertificatePolicy(str, Enum):
    """Server certificate handling."""

    VERIFY = "verify"
    SKIP = "skip"  # accept any certificate, operator opted-in


class UsernameMatch(str, Enum):
    """How located attribute values are compared with the requested username."""

    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"


class SearchScope(str, Enum):
    """Directory search scopes used by ldapgate."""

    BASE = "base"
    SUBTREE = "subtree"
