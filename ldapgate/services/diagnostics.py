# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/diagnostics.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Directory connection diagnostics.
Walks through connect, StartTLS, service-account bind and a base search one
step at a time and reports each step, so operators can check a configuration
before turning LDAP logins on. The probe never raises.
"""

# Standard
from typing import List, Optional

# First-Party
from ldapgate.config import DirectoryConfiguration
from ldapgate.models import TlsMode
from ldapgate.services.ldap_connection import ALL_ENTRIES_FILTER, DirectoryConnection, LdapConnectionManager
from ldapgate.services.logging_service import LoggingService

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


class DirectoryDiagnostics:
    """Step-by-step connection test for a configuration snapshot.

    Examples:
        >>> from ldapgate.config import DirectoryConfiguration
        >>> probe = DirectoryDiagnostics(DirectoryConfiguration(server="ldap.example.com"))
        >>> isinstance(probe.manager, LdapConnectionManager)
        True
    """

    def __init__(self, config: DirectoryConfiguration, connection_manager: Optional[LdapConnectionManager] = None):
        """Initialize the probe.

        Args:
            config: Configuration snapshot.
            connection_manager: Manager to use; built from ``config`` when omitted.
        """
        self.config = config
        self.manager = connection_manager or LdapConnectionManager(config)

    def test_connection(self) -> str:
        """Run every step and describe the outcome.

        Returns:
            Report such as ``Connect (Success); Bind (Success); Base Search (Found 12 Entities)``,
            or the steps reached followed by ``Error: <message>)``.
        """
        report: List[str] = []
        connection: Optional[DirectoryConnection] = None
        try:
            report.append("Connect (")
            connection = self.manager.open_transport()
            report.append("Success)")

            if self.config.tls_mode == TlsMode.START_TLS:
                report.append("; Set StartTLS (")
                self.manager.start_tls(connection)
                report.append("Success)")

            report.append("; Bind (")
            self.manager.bind(connection, self.config.bind_dn, self.config.bind_password)
            report.append("Anonymous)" if connection.anonymous else "Success)")

            report.append("; Base Search (")
            count = sum(1 for _ in connection.iter_entries(self.config.base_dn, ALL_ENTRIES_FILTER, self.config.page_size))
            report.append(f"Found {count} Entities)")
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("LDAP test failed to connect or bind to server: %s", exc)
            report.append(f"Error: {exc})")
        finally:
            if connection is not None:
                connection.close()

        return "".join(report)
