# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/user_locator.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

User lookup.
Searches the directory with the service account and picks the entry whose
username attributes match the requested login name.
"""

# Standard
from typing import Iterable, Optional, Sequence

# First-Party
from ldapgate.config import DirectoryConfiguration
from ldapgate.models import SearchScope, UsernameMatch
from ldapgate.services.ldap_connection import DirectoryConnection, DirectoryEntry, escape_filter_value
from ldapgate.services.logging_service import LoggingService
from ldapgate.services.referral_handler import SearchConstraints

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

USERNAME_PLACEHOLDER = "{username}"


def _same_name(left: str, right: str, mode: UsernameMatch) -> bool:
    """Compare two names under the configured mode.

    Args:
        left: Requested username.
        right: Attribute value.
        mode: Comparison mode.

    Returns:
        True if they match.

    Examples:
        >>> _same_name("Alice", "alice", UsernameMatch.CASE_INSENSITIVE)
        True
        >>> _same_name("Alice", "alice", UsernameMatch.EXACT)
        False
    """
    if mode == UsernameMatch.CASE_INSENSITIVE:
        return left.casefold() == right.casefold()
    return left == right


def match_username(entries: Iterable[DirectoryEntry], username: str, attributes: Sequence[str], mode: UsernameMatch = UsernameMatch.EXACT) -> Optional[DirectoryEntry]:
    """Return the first entry with an attribute value equal to ``username``.

    Entries are scanned in the order given, and for each entry the attributes
    in priority order. Scanning stops at the first matching value; an entry
    that does not match never ends the scan.

    Args:
        entries: Search results in server order.
        username: Requested login name.
        attributes: Username attributes, highest priority first.
        mode: Comparison mode.

    Returns:
        The matching entry, or None.

    Examples:
        >>> bob = DirectoryEntry("uid=bob,dc=x", {"uid": ("bob",)})
        >>> alice = DirectoryEntry("uid=alice,dc=x", {"uid": ("alice",), "mail": ("alice@x",)})
        >>> match_username([bob, alice], "alice@x", ["uid", "mail"]).dn
        'uid=alice,dc=x'
        >>> match_username([bob, alice], "carol", ["uid", "mail"]) is None
        True
    """
    found: Optional[DirectoryEntry] = None
    for entry in entries:
        for attribute in attributes:
            values = entry.get_values(attribute)
            if values is None:
                logger.debug("LDAP attribute %s not found for entry %s", attribute, entry.dn)
                continue
            for value in values:
                if _same_name(username, value, mode):
                    found = entry
                    break
            if found is not None:
                break
        if found is not None:
            break
    return found


def build_search_filter(template: str, username: str) -> str:
    """Fill the ``{username}`` placeholder of a filter template, if present.

    Args:
        template: Configured search filter.
        username: Requested login name, escaped before interpolation.

    Returns:
        The filter to send.
    """
    if USERNAME_PLACEHOLDER in template:
        return template.replace(USERNAME_PLACEHOLDER, escape_filter_value(username))
    return template


class UserLocator:
    """Finds the directory entry for a login name."""

    def __init__(self, config: DirectoryConfiguration):
        """Initialize the locator.

        Args:
            config: Configuration snapshot.
        """
        self.config = config

    def locate(self, connection: DirectoryConnection, username: str, constraints: Optional[SearchConstraints] = None) -> Optional[DirectoryEntry]:
        """Search the base DN and return the first entry matching ``username``.

        Args:
            connection: Connection bound as the service account.
            username: Requested login name.
            constraints: Referral constraints keyed to the service account.

        Returns:
            Matching entry, or None if no entry matches.

        Raises:
            LdapConnectionError: If a referred server cannot be reached.
            LdapBindError: If a referred server rejects the service account.
            LdapSearchError: If the search fails.
        """
        search_filter = build_search_filter(self.config.search_filter, username)
        entries = connection.search(
            self.config.base_dn,
            search_filter,
            scope=SearchScope.SUBTREE,
            attributes=self.config.projection,
            constraints=constraints,
        )
        logger.debug("Search: %s %s @ %s returned %d entries", self.config.base_dn, search_filter, connection.server, len(entries))

        entry = match_username(entries, username, self.config.search_attributes, self.config.username_match)
        if entry is None:
            logger.info("No LDAP entry matches username %s", username)
        return entry
