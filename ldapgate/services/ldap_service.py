# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/ldap_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

LDAP / Active Directory Authentication Provider.
This module authenticates a username and password against the directory and
reconciles the result with the local identity store:

1. bind as the service account and locate the user entry
2. bind a new connection as that entry with the caller's password
3. optionally evaluate the admin filter against the user's own entry
4. look up, create or update the local identity

Examples:
    >>> from ldapgate.services.ldap_service import LdapAuthenticationProvider
    >>> isinstance(LdapAuthenticationProvider, type)
    True
"""

# Standard
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

# First-Party
from ldapgate.config import DirectoryConfiguration, get_settings
from ldapgate.services.admin_check import is_admin
from ldapgate.services.diagnostics import DirectoryDiagnostics
from ldapgate.services.identity_service import Identity, IdentityExistsError, IdentityStore
from ldapgate.services.ldap_connection import DirectoryEntry, LdapBindError, LdapConnectionError, LdapConnectionManager, LdapSearchError
from ldapgate.services.logging_service import LoggingService
from ldapgate.services.referral_handler import referral_constraints
from ldapgate.services.user_locator import UserLocator

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

AUTH_PROVIDER_NAME = "LDAP-Authentication"
INVALID_CREDENTIALS_MESSAGE = "Error completing LDAP login. Invalid username or password."
DIRECTORY_UNAVAILABLE_MESSAGE = "Failed to connect or bind to the LDAP server."


class LdapAuthenticationError(Exception):
    """Base class for classified authentication failures.

    ``message`` is safe to show to the person logging in; ``reason`` is an
    internal code for logs and callers that need to tell failures apart.

    Examples:
        >>> err = UserNotFoundError("alice")
        >>> str(err) == INVALID_CREDENTIALS_MESSAGE, err.reason
        (True, 'user_not_found')
    """

    reason = "authentication_failed"

    def __init__(self, message: str):
        """Create the error.

        Args:
            message: External message.
        """
        super().__init__(message)
        self.message = message


class DirectoryUnavailableError(LdapAuthenticationError):
    """The directory could not be reached, negotiated with or searched.

    ``phase`` is ``service`` (service-account bind and lookup), ``user``
    (bind with the caller's credentials) or ``admin`` (admin filter search).
    Failures in the ``user`` phase carry the invalid-credentials message.

    Examples:
        >>> DirectoryUnavailableError("service").message == DIRECTORY_UNAVAILABLE_MESSAGE
        True
        >>> DirectoryUnavailableError("user").message == INVALID_CREDENTIALS_MESSAGE
        True
    """

    reason = "directory_unavailable"

    def __init__(self, phase: str):
        """Create the error.

        Args:
            phase: Phase that failed.
        """
        super().__init__(INVALID_CREDENTIALS_MESSAGE if phase == "user" else DIRECTORY_UNAVAILABLE_MESSAGE)
        self.phase = phase


class UserNotFoundError(LdapAuthenticationError):
    """No directory entry matches the requested username."""

    reason = "user_not_found"

    def __init__(self, username: str):
        """Create the error.

        Args:
            username: Requested username.
        """
        super().__init__(INVALID_CREDENTIALS_MESSAGE)
        self.username = username


class InvalidCredentialsError(LdapAuthenticationError):
    """The located user's bind was rejected."""

    reason = "invalid_credentials"

    def __init__(self, username: str):
        """Create the error.

        Args:
            username: Requested username.
        """
        super().__init__(INVALID_CREDENTIALS_MESSAGE)
        self.username = username


class ProvisioningDisabledError(LdapAuthenticationError):
    """The user authenticated but has no local identity and auto-creation is off."""

    reason = "provisioning_disabled"

    def __init__(self, username: str):
        """Create the error.

        Args:
            username: Resolved username.
        """
        super().__init__(f"Automatic user creation is disabled and there is no local user for authorized uid: {username}")
        self.username = username


class PasswordChangeNotSupportedError(NotImplementedError):
    """Passwords are owned by the directory and cannot be changed here."""


@dataclass(frozen=True)
class AuthenticationOutcome:
    """Result of a successful authentication.

    Examples:
        >>> AuthenticationOutcome(username="alice", is_admin=False).enabled_folders
        ()
    """

    username: str
    is_admin: bool
    enable_all_folders: bool = True
    enabled_folders: Tuple[str, ...] = ()


class LdapAuthenticationProvider:
    """Authentication provider backed by an LDAP directory.

    Configuration is snapshotted once per call, either from the instance
    passed in or from the process settings.

    Examples:
        >>> from unittest.mock import MagicMock
        >>> provider = LdapAuthenticationProvider(identity_store=MagicMock(), config=DirectoryConfiguration(server="ldap.example.com"))
        >>> provider.name, provider.is_enabled
        ('LDAP-Authentication', True)
        >>> provider.has_password(MagicMock())
        True
    """

    name = AUTH_PROVIDER_NAME
    is_enabled = True

    def __init__(
        self,
        identity_store: IdentityStore,
        config: Optional[DirectoryConfiguration] = None,
        connection_manager_factory: Callable[[DirectoryConfiguration], LdapConnectionManager] = LdapConnectionManager,
    ):
        """Initialize the provider.

        Args:
            identity_store: Local identity store.
            config: Fixed configuration; when None each call reads the settings.
            connection_manager_factory: Builds the connection manager for a snapshot.
        """
        self.identity_store = identity_store
        self._config = config
        self._connection_manager_factory = connection_manager_factory

    def _snapshot(self) -> DirectoryConfiguration:
        """Configuration for one call.

        Returns:
            The injected configuration or a fresh snapshot of the settings.
        """
        if self._config is not None:
            return self._config
        return DirectoryConfiguration.from_settings(get_settings())

    def authenticate(self, username: str, password: str) -> AuthenticationOutcome:
        """Authenticate ``username`` with ``password`` against the directory.

        Args:
            username: Login name as typed.
            password: Password as typed.

        Returns:
            AuthenticationOutcome for the local identity.

        Raises:
            DirectoryUnavailableError: If the directory cannot be used.
            UserNotFoundError: If no entry matches the username.
            InvalidCredentialsError: If the password is rejected.
            ProvisioningDisabledError: If there is no local identity and creation is disabled.
        """
        config = self._snapshot()
        manager = self._connection_manager_factory(config)

        entry = self._locate(manager, config, username)

        resolved = entry.first_value(config.username_attribute)
        if not resolved:
            logger.error("LDAP entry %s has no %s attribute to use as username", entry.dn, config.username_attribute)
            raise UserNotFoundError(username)
        logger.debug("Setting username: %s", resolved)

        ldap_is_admin = self._verify(manager, config, entry, username, password)

        identity = self._reconcile(config, resolved, ldap_is_admin)
        logger.info("LDAP authentication successful for %s (DN: %s)", resolved, entry.dn)
        return AuthenticationOutcome(
            username=resolved,
            is_admin=bool(identity.is_admin),
            enable_all_folders=bool(identity.enable_all_folders),
            enabled_folders=tuple(identity.enabled_folders or ()),
        )

    def _locate(self, manager: LdapConnectionManager, config: DirectoryConfiguration, username: str) -> DirectoryEntry:
        """Find the user's entry with the service account.

        Args:
            manager: Connection manager.
            config: Configuration snapshot.
            username: Requested login name.

        Returns:
            The located entry.

        Raises:
            DirectoryUnavailableError: If the service account cannot connect, bind or search.
            UserNotFoundError: If no entry matches.
        """
        try:
            with manager.open(config.bind_dn, config.bind_password) as connection:
                constraints = referral_constraints(config, config.bind_dn, config.bind_password)
                entry = UserLocator(config).locate(connection, username, constraints)
        except (LdapConnectionError, LdapBindError, LdapSearchError) as exc:
            logger.error("Failed to connect, bind or search as service account %s on %s: %s", config.bind_dn, config.server, exc)
            raise DirectoryUnavailableError("service") from exc

        if entry is None:
            logger.error("Found no users matching %s in LDAP search", username)
            raise UserNotFoundError(username)
        return entry

    def _verify(self, manager: LdapConnectionManager, config: DirectoryConfiguration, entry: DirectoryEntry, username: str, password: str) -> bool:
        """Bind as the located entry and evaluate the admin filter on that bind.

        Args:
            manager: Connection manager.
            config: Configuration snapshot.
            entry: Located entry.
            username: Requested login name, for logs.
            password: Caller's password.

        Returns:
            Directory-derived admin flag; False when the admin filter is disabled.

        Raises:
            InvalidCredentialsError: If the password is empty or rejected.
            DirectoryUnavailableError: If the user connection or admin search fails.
        """
        if not password:
            logger.warning("LDAP bind rejected: empty password for user %s", username)
            raise InvalidCredentialsError(username)

        try:
            connection = manager.connect()
            manager.bind(connection, entry.dn, password)
        except LdapBindError as exc:
            logger.error("Error logging in, invalid LDAP username or password for %s", entry.dn)
            raise InvalidCredentialsError(username) from exc
        except LdapConnectionError as exc:
            logger.error("Failed to connect to LDAP server as user %s: %s", entry.dn, exc)
            raise DirectoryUnavailableError("user") from exc

        with connection:
            if not config.admin_check_enabled:
                return False
            constraints = referral_constraints(config, entry.dn, password)
            try:
                return is_admin(connection, entry.dn, config.admin_filter, constraints)
            except (LdapConnectionError, LdapBindError, LdapSearchError) as exc:
                logger.error("Admin filter search failed for %s: %s", entry.dn, exc)
                raise DirectoryUnavailableError("admin") from exc

    def _reconcile(self, config: DirectoryConfiguration, username: str, ldap_is_admin: bool) -> Identity:
        """Find, create or update the local identity.

        Args:
            config: Configuration snapshot.
            username: Resolved username.
            ldap_is_admin: Directory-derived admin flag.

        Returns:
            The local identity after reconciliation.

        Raises:
            ProvisioningDisabledError: If no identity exists and creation is disabled.
        """
        identity = self.identity_store.find_by_username(username)

        if identity is None:
            if not config.create_users:
                logger.error("User not configured for LDAP uid: %s", username)
                raise ProvisioningDisabledError(username)

            logger.debug("Creating new user %s - is admin? %s", username, ldap_is_admin)
            try:
                identity = self.identity_store.create_username(username)
            except IdentityExistsError:
                logger.info("User %s was created concurrently, fetching it again", username)
                identity = self.identity_store.find_by_username(username)
                if identity is None:
                    raise
            else:
                identity.auth_provider = AUTH_PROVIDER_NAME
                identity.is_admin = ldap_is_admin
                identity.enable_all_folders = config.enable_all_folders
                if not config.enable_all_folders:
                    identity.enabled_folders = list(config.enabled_folders)
                self.identity_store.update_identity(identity)
                return identity

        if config.admin_check_enabled and bool(identity.is_admin) != ldap_is_admin:
            logger.debug("Updating user %s admin status to: %s", username, ldap_is_admin)
            identity.is_admin = ldap_is_admin
            self.identity_store.update_identity(identity)
        return identity

    def get_filtered_users(self, search_filter: str) -> List[str]:
        """Return the DNs of all entries below the base DN that match a filter.

        Args:
            search_filter: LDAP filter.

        Returns:
            List of DNs in server order.

        Raises:
            DirectoryUnavailableError: If the service account cannot connect, bind or search.
        """
        config = self._snapshot()
        manager = self._connection_manager_factory(config)
        try:
            with manager.open(config.bind_dn, config.bind_password) as connection:
                constraints = referral_constraints(config, config.bind_dn, config.bind_password)
                entries = connection.search(config.base_dn, search_filter, attributes=config.search_attributes, constraints=constraints)
        except (LdapConnectionError, LdapBindError, LdapSearchError) as exc:
            logger.error("Filtered user search %s failed: %s", search_filter, exc)
            raise DirectoryUnavailableError("service") from exc
        return [entry.dn for entry in entries]

    def test_connection(self) -> str:
        """Run the diagnostics probe with the current configuration.

        Returns:
            Human-readable step report.
        """
        config = self._snapshot()
        return DirectoryDiagnostics(config, self._connection_manager_factory(config)).test_connection()

    def has_password(self, identity: Identity) -> bool:
        """Directory users always have a password, held by the directory.

        Args:
            identity: Local identity.

        Returns:
            True.
        """
        return True

    def change_password(self, identity: Identity, new_password: str) -> None:
        """Password changes are not supported.

        Args:
            identity: Local identity.
            new_password: Requested password.

        Raises:
            PasswordChangeNotSupportedError: Always.
        """
        raise PasswordChangeNotSupportedError("Passwords are managed by the LDAP server")
