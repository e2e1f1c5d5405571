# -*- coding: utf-8 -*-
"""Location: ./ldapgate/schemas.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Request and response models for the LDAP HTTP endpoints.

Examples:
    >>> LdapLoginRequest(username="alice", password="pw").username
    'alice'
"""

# Standard
from typing import List

# Third-Party
from pydantic import BaseModel, ConfigDict, Field, SecretStr


class LdapLoginRequest(BaseModel):
    """Credentials for an LDAP login."""

    model_config = ConfigDict(str_strip_whitespace=False)

    username: str = Field(..., min_length=1, max_length=255, description="Login name as typed by the user")
    password: SecretStr = Field(..., description="Password, verified by the LDAP server")


class LdapLoginResponse(BaseModel):
    """Local identity resolved by a successful LDAP login.

    Examples:
        >>> LdapLoginResponse(username="alice", is_admin=False).enable_all_folders
        True
    """

    username: str
    is_admin: bool
    enable_all_folders: bool = True
    enabled_folders: List[str] = Field(default_factory=list)


class LdapTestResponse(BaseModel):
    """Report of the step-by-step connection test."""

    report: str


class LdapUserSearchRequest(BaseModel):
    """Filter for a directory user search."""

    search_filter: str = Field(..., min_length=1, description="LDAP filter, e.g. (objectClass=person)")


class LdapUserSearchResponse(BaseModel):
    """DNs returned by a directory user search.

    Examples:
        >>> LdapUserSearchResponse(dns=["uid=alice,dc=example,dc=com"]).count
        1
    """

    dns: List[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of DNs.

        Returns:
            Length of ``dns``.
        """
        return len(self.dns)


class LdapPasswordChangeRequest(BaseModel):
    """Password change request; always refused for LDAP users."""

    username: str
    new_password: SecretStr
