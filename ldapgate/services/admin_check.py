# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/admin_check.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Administrator determination.
The directory evaluates the configured admin filter against the user's own
entry; any returned entry grants the administrator flag.
"""

# First-Party
from ldapgate.models import SearchScope
from ldapgate.services.ldap_connection import DirectoryConnection
from ldapgate.services.logging_service import LoggingService
from ldapgate.services.referral_handler import SearchConstraints

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def is_admin(connection: DirectoryConnection, user_dn: str, admin_filter: str, constraints: SearchConstraints) -> bool:
    """Check the admin filter against exactly ``user_dn``.

    Args:
        connection: Connection bound as the user being checked.
        user_dn: DN of the located user.
        admin_filter: Filter that matches administrators.
        constraints: Referral constraints keyed to the user's credentials.

    Returns:
        True if the base-scoped search returns an entry.

    Raises:
        LdapConnectionError: If a referred server cannot be reached.
        LdapBindError: If a referred server rejects the user.
        LdapSearchError: If the search fails.
    """
    entries = connection.search(user_dn, admin_filter, scope=SearchScope.BASE, attributes=None, constraints=constraints, size_limit=1)
    granted = bool(entries)
    logger.debug("Admin filter %s %s %s", admin_filter, "matches" if granted else "does not match", user_dn)
    return granted
