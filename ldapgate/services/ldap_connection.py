# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/ldap_connection.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

LDAP connection management.
This module opens transports to the directory server (plain, LDAPS or
StartTLS), binds them, runs searches that can chase referrals with the
credentials of the current phase, and maps every ldap3 failure onto the
three protocol-level errors below. Connections are context managers and are
always closed before an error propagates.

Examples:
    >>> from ldapgate.services.ldap_connection import LdapConnectionManager
    >>> isinstance(LdapConnectionManager, type)
    True
"""

# Standard
from contextlib import contextmanager
from dataclasses import dataclass, field
import ssl
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

# First-Party
from ldapgate.config import DirectoryConfiguration
from ldapgate.models import CertificatePolicy, SearchScope, TlsMode
from ldapgate.services.logging_service import LoggingService
from ldapgate.services.referral_handler import parse_referral_url, SearchConstraints

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# LDAP result codes that still carry usable search results
RESULT_SUCCESS = 0
RESULT_TIME_LIMIT_EXCEEDED = 3
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_REFERRAL = 10
RESULT_NO_SUCH_OBJECT = 32
_PARTIAL_RESULTS = (RESULT_SUCCESS, RESULT_TIME_LIMIT_EXCEEDED, RESULT_SIZE_LIMIT_EXCEEDED)

ALL_ENTRIES_FILTER = "(objectClass=*)"


class LdapConnectionError(Exception):
    """Raised when the directory server cannot be reached or TLS negotiation fails.

    Examples:
        >>> try:
        ...     raise LdapConnectionError("Cannot connect")
        ... except LdapConnectionError as e:
        ...     str(e)
        'Cannot connect'
    """


class LdapBindError(Exception):
    """Raised when the directory rejects a bind, including binds at a referred server.

    Examples:
        >>> try:
        ...     raise LdapBindError("Bad credentials")
        ... except LdapBindError as e:
        ...     str(e)
        'Bad credentials'
    """


class LdapSearchError(Exception):
    """Raised when a search fails.

    Examples:
        >>> try:
        ...     raise LdapSearchError("Search failed")
        ... except LdapSearchError as e:
        ...     str(e)
        'Search failed'
    """


@dataclass(frozen=True)
class DirectoryEntry:
    """A search result entry: a DN and its attribute values.

    Attribute names are matched case-insensitively, as LDAP does.

    Examples:
        >>> entry = DirectoryEntry("uid=alice,dc=example,dc=com", {"uid": ("alice",), "mail": ("a@example.com",)})
        >>> entry.get_values("UID")
        ('alice',)
        >>> entry.first_value("cn") is None
        True
    """

    dn: str
    attributes: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def get_values(self, name: str) -> Optional[Tuple[str, ...]]:
        """Return all values of an attribute.

        Args:
            name: Attribute name, any case.

        Returns:
            Tuple of values, or None when the entry does not carry the attribute.
        """
        if name in self.attributes:
            return self.attributes[name]
        lowered = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == lowered:
                return values
        return None

    def first_value(self, name: str) -> Optional[str]:
        """Return the first value of an attribute.

        Args:
            name: Attribute name, any case.

        Returns:
            The first value, or None if the attribute is missing or empty.
        """
        values = self.get_values(name)
        return values[0] if values else None


def _get_ldap3():
    """Lazy import ldap3 so tests can substitute a fake directory.

    Returns:
        The ldap3 module.

    Raises:
        ImportError: If ldap3 is not installed.
    """
    try:
        import ldap3  # noqa: F811

        return ldap3
    except ImportError:
        raise ImportError("ldap3 is required for directory access. Install with: pip install ldap3")


def escape_filter_value(value: str) -> str:
    """Escape a value for safe interpolation into a search filter.

    Args:
        value: Raw user input.

    Returns:
        RFC 4515 escaped value.
    """
    return _get_ldap3().utils.conv.escape_filter_chars(value)


def _to_text(value: Any) -> str:
    """Render an attribute value as text.

    Args:
        value: Value as returned by ldap3.

    Returns:
        String form; bytes are decoded as UTF-8.

    Examples:
        >>> _to_text(b"caf\\xc3\\xa9")
        'café'
        >>> _to_text(42)
        '42'
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _normalize_attributes(raw: Optional[Dict[str, Any]]) -> Dict[str, Tuple[str, ...]]:
    """Turn ldap3 attribute values (single or multi-valued) into string tuples.

    Args:
        raw: ``attributes`` mapping of an ldap3 response item.

    Returns:
        Mapping of attribute name to a tuple of strings.

    Examples:
        >>> _normalize_attributes({"uid": "alice", "mail": ["a@x", "b@x"], "cn": None, "empty": []})
        {'uid': ('alice',), 'mail': ('a@x', 'b@x'), 'cn': (), 'empty': ()}
    """
    attributes: Dict[str, Tuple[str, ...]] = {}
    for name, value in (raw or {}).items():
        if value is None:
            attributes[name] = ()
        elif isinstance(value, (list, tuple)):
            attributes[name] = tuple(_to_text(v) for v in value)
        else:
            attributes[name] = (_to_text(value),)
    return attributes


def _describe(result: Optional[Dict[str, Any]]) -> str:
    """Short text for an ldap3 result dict.

    Args:
        result: ``connection.result``.

    Returns:
        Description and message of the result.

    Examples:
        >>> _describe({"result": 49, "description": "invalidCredentials", "message": "80090308"})
        'invalidCredentials (80090308)'
        >>> _describe(None)
        'unknown error'
    """
    if not result:
        return "unknown error"
    description = result.get("description") or f"result {result.get('result')}"
    message = result.get("message")
    return f"{description} ({message})" if message else description


class DirectoryConnection:
    """An open (and usually bound) connection to one directory server.

    Only the bound state is exposed; the bind identity stays internal.
    """

    def __init__(self, manager: "LdapConnectionManager", connection: Any, host: str, port: int):
        """Wrap an open ldap3 connection.

        Args:
            manager: Manager that opened the connection; used to chase referrals.
            connection: ldap3 Connection, already opened.
            host: Server host.
            port: Server port.
        """
        self._manager = manager
        self._conn = connection
        self.host = host
        self.port = port
        self._anonymous = False
        self._closed = False

    @property
    def bound(self) -> bool:
        """Whether the connection completed a bind.

        Returns:
            True if bound.
        """
        return bool(self._conn.bound) and not self._closed

    @property
    def anonymous(self) -> bool:
        """Whether the bind was anonymous.

        Returns:
            True if bound without a DN.
        """
        return self.bound and self._anonymous

    @property
    def server(self) -> str:
        """Server address for log messages.

        Returns:
            ``host:port``.
        """
        return f"{self.host}:{self.port}"

    def search(
        self,
        search_base: str,
        search_filter: str,
        scope: SearchScope = SearchScope.SUBTREE,
        attributes: Optional[Sequence[str]] = None,
        constraints: Optional[SearchConstraints] = None,
        size_limit: int = 0,
    ) -> List[DirectoryEntry]:
        """Run a search and return entries in server order.

        Referrals and continuation references are chased when ``constraints``
        allow it; their entries are appended in the order the references were
        returned.

        Args:
            search_base: DN to search from.
            search_filter: LDAP filter string.
            scope: BASE or SUBTREE.
            attributes: Attributes to request; None or empty requests none.
            constraints: Referral and time-limit options.
            size_limit: Maximum number of entries, 0 for server default.

        Returns:
            List of DirectoryEntry.

        Raises:
            LdapConnectionError: If this or a referred server drops or cannot be reached.
            LdapBindError: If the bind at a referred server is rejected.
            LdapSearchError: If the search fails.
        """
        return self._search(search_base, search_filter, scope, attributes, constraints or SearchConstraints(), size_limit, depth=0)

    def _search(
        self,
        search_base: str,
        search_filter: str,
        scope: SearchScope,
        attributes: Optional[Sequence[str]],
        constraints: SearchConstraints,
        size_limit: int,
        depth: int,
    ) -> List[DirectoryEntry]:
        """Search on this connection, chasing referrals up to the hop limit.

        Args:
            search_base: DN to search from.
            search_filter: LDAP filter string.
            scope: BASE or SUBTREE.
            attributes: Attributes to request.
            constraints: Referral and time-limit options.
            size_limit: Maximum number of entries.
            depth: Number of referral hops taken so far.

        Returns:
            List of DirectoryEntry.

        Raises:
            LdapConnectionError: If the connection drops during the search.
            LdapSearchError: If the search fails.
        """
        ldap3 = _get_ldap3()
        scope_value = ldap3.BASE if scope == SearchScope.BASE else ldap3.SUBTREE
        try:
            self._conn.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=scope_value,
                attributes=list(attributes) if attributes else ldap3.NO_ATTRIBUTES,
                size_limit=size_limit,
                time_limit=constraints.time_limit,
            )
        except ldap3.core.exceptions.LDAPCommunicationError as exc:
            logger.error("Connection lost while searching %s on %s: %s", search_base, self.server, exc)
            raise LdapConnectionError(f"Connection lost while searching {self.server}: {exc}") from exc
        except ldap3.core.exceptions.LDAPException as exc:
            logger.error("LDAP search failed on %s (base: %s, filter: %s): %s", self.server, search_base, search_filter, exc)
            raise LdapSearchError(f"LDAP search failed: {exc}") from exc

        result = self._conn.result or {}
        code = result.get("result", RESULT_SUCCESS)
        if code == RESULT_NO_SUCH_OBJECT:
            logger.debug("Search base %s does not exist on %s", search_base, self.server)
            return []
        if code not in _PARTIAL_RESULTS and code != RESULT_REFERRAL:
            logger.error("LDAP search failed on %s (base: %s, filter: %s): %s", self.server, search_base, search_filter, _describe(result))
            raise LdapSearchError(f"LDAP search failed: {_describe(result)}")

        entries: List[DirectoryEntry] = []
        referrals: List[str] = []
        for item in self._conn.response or []:
            item_type = item.get("type")
            if item_type == "searchResEntry":
                entries.append(DirectoryEntry(dn=item.get("dn", ""), attributes=_normalize_attributes(item.get("attributes"))))
            elif item_type == "searchResRef":
                referrals.extend(item.get("uri") or [])
        if code == RESULT_REFERRAL:
            referrals.extend(result.get("referrals") or [])

        if referrals:
            if constraints.chases_referrals:
                entries.extend(self._manager.follow_referrals(referrals, search_base, search_filter, scope, attributes, constraints, size_limit, depth))
            else:
                logger.info("Ignoring %d referral(s) from %s: referral following is not enabled", len(referrals), self.server)
        return entries

    def iter_entries(self, search_base: str, search_filter: str = ALL_ENTRIES_FILTER, page_size: int = 500) -> Iterator[DirectoryEntry]:
        """Enumerate every entry of a subtree using paged results.

        Entries carry no attributes; this is meant for counting.

        Args:
            search_base: DN to search from.
            search_filter: LDAP filter string.
            page_size: Entries per page.

        Yields:
            DirectoryEntry for each entry returned.

        Raises:
            LdapConnectionError: If the connection drops during the search.
            LdapSearchError: If the search fails.
        """
        ldap3 = _get_ldap3()
        try:
            pages = self._conn.extend.standard.paged_search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=ldap3.SUBTREE,
                attributes=ldap3.NO_ATTRIBUTES,
                paged_size=page_size,
                generator=True,
            )
            for item in pages:
                if item.get("type") == "searchResEntry":
                    yield DirectoryEntry(dn=item.get("dn", ""))
        except ldap3.core.exceptions.LDAPCommunicationError as exc:
            logger.error("Connection lost while enumerating %s on %s: %s", search_base, self.server, exc)
            raise LdapConnectionError(f"Connection lost while searching {self.server}: {exc}") from exc
        except ldap3.core.exceptions.LDAPException as exc:
            raise LdapSearchError(f"LDAP search failed: {exc}") from exc

        result = self._conn.result or {}
        if result.get("result", RESULT_SUCCESS) not in _PARTIAL_RESULTS + (RESULT_NO_SUCH_OBJECT, RESULT_REFERRAL):
            raise LdapSearchError(f"LDAP search failed: {_describe(result)}")

    def close(self) -> None:
        """Unbind and close the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        ldap3 = _get_ldap3()
        try:
            self._conn.unbind()
        except (ldap3.core.exceptions.LDAPException, OSError) as exc:
            logger.debug("Error while closing connection to %s: %s", self.server, exc)

    def __enter__(self) -> "DirectoryConnection":
        """Enter the runtime context.

        Returns:
            This connection.
        """
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Close the connection on context exit.

        Args:
            exc_type: Exception type, if any.
            exc: Exception, if any.
            tb: Traceback, if any.
        """
        self.close()


class LdapConnectionManager:
    """Opens, upgrades and binds directory connections for one configuration snapshot.

    Examples:
        >>> from ldapgate.config import DirectoryConfiguration
        >>> manager = LdapConnectionManager(DirectoryConfiguration(server="ldap.example.com"))
        >>> manager.config.port
        389
    """

    def __init__(self, config: DirectoryConfiguration):
        """Initialize the manager.

        Args:
            config: Configuration snapshot.
        """
        self.config = config

    def _build_server(self, host: str, port: int, tls_mode: TlsMode) -> Any:
        """Build an ldap3 Server for the target.

        Args:
            host: Server host.
            port: Server port.
            tls_mode: Transport protection.

        Returns:
            ldap3.Server instance.
        """
        ldap3 = _get_ldap3()

        tls = None
        if tls_mode != TlsMode.NONE:
            validate = ssl.CERT_NONE if self.config.certificate_policy == CertificatePolicy.SKIP else ssl.CERT_REQUIRED
            tls = ldap3.Tls(validate=validate, ca_certs_file=self.config.ca_certs_file)

        return ldap3.Server(
            host,
            port=port,
            use_ssl=tls_mode == TlsMode.LDAPS,
            tls=tls,
            connect_timeout=self.config.connect_timeout,
            get_info=ldap3.NONE,
        )

    def open_transport(self, host: Optional[str] = None, port: Optional[int] = None, tls_mode: Optional[TlsMode] = None) -> DirectoryConnection:
        """Open the transport (and implicit TLS) without StartTLS or bind.

        Args:
            host: Server host; defaults to the configured server.
            port: Server port; defaults to the configured port.
            tls_mode: Transport protection; defaults to the configured mode.

        Returns:
            Open, unbound DirectoryConnection.

        Raises:
            LdapConnectionError: If the server cannot be reached.
        """
        ldap3 = _get_ldap3()
        host = host or self.config.server
        port = port or self.config.port
        tls_mode = tls_mode or self.config.tls_mode

        try:
            connection = ldap3.Connection(
                self._build_server(host, port, tls_mode),
                auto_bind=ldap3.AUTO_BIND_NONE,
                read_only=True,
                receive_timeout=max(self.config.connect_timeout, self.config.search_timeout),
                auto_referrals=False,
                raise_exceptions=False,
            )
        except (ldap3.core.exceptions.LDAPException, OSError) as exc:
            logger.error("Invalid connection settings for LDAP server %s:%s: %s", host, port, exc)
            raise LdapConnectionError(f"Cannot connect to LDAP server {host}:{port}: {exc}") from exc

        wrapped = DirectoryConnection(self, connection, host, port)
        try:
            connection.open()
        except (ldap3.core.exceptions.LDAPException, OSError) as exc:
            wrapped.close()
            logger.error("Failed to connect to LDAP server %s:%s: %s", host, port, exc)
            raise LdapConnectionError(f"Cannot connect to LDAP server {host}:{port}: {exc}") from exc
        return wrapped

    def start_tls(self, connection: DirectoryConnection) -> None:
        """Upgrade an open plain connection with StartTLS.

        Args:
            connection: Open connection.

        Raises:
            LdapConnectionError: If the upgrade fails; the connection is closed.
        """
        ldap3 = _get_ldap3()
        try:
            upgraded = connection._conn.start_tls()
        except (ldap3.core.exceptions.LDAPException, OSError) as exc:
            connection.close()
            logger.error("StartTLS failed with %s: %s", connection.server, exc)
            raise LdapConnectionError(f"StartTLS failed with {connection.server}: {exc}") from exc
        if not upgraded:
            connection.close()
            logger.error("StartTLS refused by %s: %s", connection.server, _describe(connection._conn.result))
            raise LdapConnectionError(f"StartTLS refused by {connection.server}: {_describe(connection._conn.result)}")

    def connect(self, host: Optional[str] = None, port: Optional[int] = None, tls_mode: Optional[TlsMode] = None) -> DirectoryConnection:
        """Open a transport and apply the TLS policy, ready for a bind.

        Args:
            host: Server host; defaults to the configured server.
            port: Server port; defaults to the configured port.
            tls_mode: Transport protection; defaults to the configured mode.

        Returns:
            Open, unbound DirectoryConnection.

        Raises:
            LdapConnectionError: If the server cannot be reached or TLS fails.
        """
        tls_mode = tls_mode or self.config.tls_mode
        connection = self.open_transport(host, port, tls_mode)
        if tls_mode == TlsMode.START_TLS:
            self.start_tls(connection)
        return connection

    def bind(self, connection: DirectoryConnection, dn: str, secret: str) -> DirectoryConnection:
        """Bind an open connection; an empty DN binds anonymously.

        Args:
            connection: Open connection.
            dn: Bind DN.
            secret: Bind password.

        Returns:
            The same connection, now bound.

        Raises:
            LdapConnectionError: If the transport fails during the bind.
            LdapBindError: If the server rejects the credentials.
        """
        ldap3 = _get_ldap3()
        conn = connection._conn
        if dn:
            conn.user = dn
            conn.password = secret
            conn.authentication = ldap3.SIMPLE
        else:
            conn.user = None
            conn.password = None
            conn.authentication = ldap3.ANONYMOUS

        logger.debug("Trying bind as %s on %s", dn or "<anonymous>", connection.server)
        try:
            accepted = conn.bind()
        except ldap3.core.exceptions.LDAPCommunicationError as exc:
            connection.close()
            logger.error("Connection lost while binding as %s on %s: %s", dn or "<anonymous>", connection.server, exc)
            raise LdapConnectionError(f"Connection lost while binding to {connection.server}: {exc}") from exc
        except ldap3.core.exceptions.LDAPException as exc:
            connection.close()
            logger.warning("Bind as %s on %s failed: %s", dn or "<anonymous>", connection.server, exc)
            raise LdapBindError(f"Bind failed: {exc}") from exc

        if not accepted:
            description = _describe(conn.result)
            connection.close()
            logger.warning("Bind as %s on %s rejected: %s", dn or "<anonymous>", connection.server, description)
            raise LdapBindError(f"Bind rejected: {description}")

        connection._anonymous = not dn
        return connection

    @contextmanager
    def open(self, dn: str, secret: str, host: Optional[str] = None, port: Optional[int] = None, tls_mode: Optional[TlsMode] = None) -> Iterator[DirectoryConnection]:
        """Connect and bind, yielding the bound connection and closing it afterwards.

        Args:
            dn: Bind DN; empty for anonymous.
            secret: Bind password.
            host: Server host; defaults to the configured server.
            port: Server port; defaults to the configured port.
            tls_mode: Transport protection; defaults to the configured mode.

        Yields:
            Bound DirectoryConnection.
        """
        connection = self.bind(self.connect(host, port, tls_mode), dn, secret)
        try:
            yield connection
        finally:
            connection.close()

    def follow_referrals(
        self,
        urls: Sequence[str],
        search_base: str,
        search_filter: str,
        scope: SearchScope,
        attributes: Optional[Sequence[str]],
        constraints: SearchConstraints,
        size_limit: int,
        depth: int,
    ) -> List[DirectoryEntry]:
        """Re-issue a search on each referred server, binding with the handler's credentials.

        Args:
            urls: Referral or continuation LDAP URLs.
            search_base: Original search base, used when a URL carries no DN.
            search_filter: LDAP filter string.
            scope: BASE or SUBTREE.
            attributes: Attributes to request.
            constraints: Constraints carrying the referral handler.
            size_limit: Maximum number of entries per server.
            depth: Hops taken before this one.

        Returns:
            Entries from all referred servers, in referral order.

        Raises:
            LdapSearchError: If the hop limit is exceeded.
        """
        if depth + 1 > constraints.hop_limit:
            logger.error("Referral hop limit of %d exceeded while searching %s", constraints.hop_limit, search_base)
            raise LdapSearchError(f"Referral hop limit of {constraints.hop_limit} exceeded")

        entries: List[DirectoryEntry] = []
        for url in urls:
            try:
                target = parse_referral_url(url, self.config.tls_mode)
            except ValueError as exc:
                logger.warning("Skipping referral: %s", exc)
                continue

            credential = constraints.referral_handler.credentials_for(url)
            logger.debug("Following referral to %s as %s", url, credential.dn or "<anonymous>")
            with self.open(credential.dn, credential.secret, host=target.host, port=target.port, tls_mode=target.tls_mode) as referred:
                entries.extend(referred._search(target.base_dn or search_base, search_filter, scope, attributes, constraints, size_limit, depth + 1))
        return entries
