# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared fixtures: an in-memory fake of the ldap3 API, a configuration
snapshot for the example directory and an SQLite identity store.
"""

# Standard
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set
from unittest.mock import patch

# Third-Party
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# First-Party
from ldapgate.config import DirectoryConfiguration, get_settings
import ldapgate.db as db_mod
from ldapgate.services.identity_service import IdentityService


class FakeLDAPException(Exception):
    """Stands in for ldap3.core.exceptions.LDAPException."""


class FakeCommunicationError(FakeLDAPException):
    """Stands in for ldap3.core.exceptions.LDAPCommunicationError."""


class FakeSocketOpenError(FakeCommunicationError):
    """Stands in for ldap3.core.exceptions.LDAPSocketOpenError."""


class FakeStartTLSError(FakeLDAPException):
    """Stands in for ldap3.core.exceptions.LDAPStartTLSError."""


SUCCESS = {"result": 0, "description": "success", "message": ""}


def fake_escape_filter_chars(value: str) -> str:
    """RFC 4515 escaping, as ldap3.utils.conv.escape_filter_chars does."""
    escaped = value.replace("\\", "\\5c")
    for char, code in (("*", "\\2a"), ("(", "\\28"), (")", "\\29"), ("\x00", "\\00")):
        escaped = escaped.replace(char, code)
    return escaped


@dataclass
class FakeServerState:
    """Contents and behaviour of one fake directory server."""

    host: str
    entries: List[tuple] = field(default_factory=list)
    passwords: Dict[str, str] = field(default_factory=dict)
    allow_anonymous: bool = True
    reachable: bool = True
    start_tls_ok: bool = True
    bind_drops_connection: bool = False
    referrals: Dict[str, List[str]] = field(default_factory=dict)
    continuation_refs: Dict[str, List[str]] = field(default_factory=dict)
    filter_matches: Dict[str, Set[str]] = field(default_factory=dict)
    failing_filters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    search_error: Optional[Dict[str, Any]] = None
    search_exception: Optional[Exception] = None

    def add_entry(self, dn: str, password: Optional[str] = None, **attributes) -> None:
        self.entries.append((dn, attributes))
        if password is not None:
            self.passwords[dn] = password


class FakeTls:
    def __init__(self, validate=None, ca_certs_file=None, **kwargs):
        self.validate = validate
        self.ca_certs_file = ca_certs_file


class FakeServer:
    def __init__(self, host, port=None, use_ssl=False, tls=None, connect_timeout=None, get_info=None):
        self.host = host
        self.port = port
        self.use_ssl = use_ssl
        self.tls = tls
        self.connect_timeout = connect_timeout
        self.get_info = get_info


def _in_scope(dn: str, base: str, scope: str) -> bool:
    dn, base = dn.lower(), base.lower()
    if scope == "BASE":
        return dn == base
    return not base or dn == base or dn.endswith("," + base)


def _project(attributes: Dict[str, Any], requested) -> Dict[str, Any]:
    if requested == "1.1":
        return {}
    if requested is None:
        return dict(attributes)
    wanted = {name.lower() for name in requested}
    return {name: value for name, value in attributes.items() if name.lower() in wanted}


class FakeConnection:
    """Minimal ldap3.Connection with explicit open, bind and search."""

    def __init__(self, directory: "FakeDirectory", server: FakeServer, auto_bind=None, read_only=False, receive_timeout=None, auto_referrals=True, raise_exceptions=False):
        self.directory = directory
        self.server = server
        self.state = directory.server(server.host)
        self.auto_referrals = auto_referrals
        self.receive_timeout = receive_timeout
        self.user = None
        self.password = None
        self.authentication = None
        self.bound = False
        self.opened = False
        self.closed = False
        self.tls_started = False
        self.result = None
        self.response = None
        self.searches: List[Dict[str, Any]] = []
        self.binds: List[tuple] = []
        self.extend = SimpleNamespace(standard=SimpleNamespace(paged_search=self._paged_search))
        directory.connections.append(self)

    def open(self):
        if not self.state.reachable:
            raise FakeSocketOpenError(f"socket connection error while opening: [Errno 111] Connection refused ({self.server.host})")
        self.opened = True

    def start_tls(self):
        if not self.state.start_tls_ok:
            raise FakeStartTLSError("wrap socket error: certificate verify failed")
        self.tls_started = True
        return True

    def bind(self):
        self.binds.append((self.authentication, self.user, self.password))
        if self.state.bind_drops_connection:
            raise FakeCommunicationError("socket receive error: connection reset")
        if self.authentication == "ANONYMOUS":
            accepted = self.state.allow_anonymous
        else:
            accepted = self.user in self.state.passwords and self.state.passwords[self.user] == self.password
        self.bound = accepted
        self.result = dict(SUCCESS) if accepted else {"result": 49, "description": "invalidCredentials", "message": ""}
        return accepted

    def search(self, search_base, search_filter, search_scope="SUBTREE", attributes=None, size_limit=0, time_limit=0):
        self.searches.append(
            {"base": search_base, "filter": search_filter, "scope": search_scope, "attributes": attributes, "size_limit": size_limit, "time_limit": time_limit, "user": self.user}
        )
        self.response = []
        if self.state.search_exception is not None:
            raise self.state.search_exception
        if search_filter in self.state.failing_filters:
            self.result = dict(self.state.failing_filters[search_filter])
            return False
        if self.state.search_error is not None:
            self.result = dict(self.state.search_error)
            return False

        referred = self.state.referrals.get(search_base.lower())
        if referred:
            self.result = {"result": 10, "description": "referral", "message": "", "referrals": list(referred)}
            return False

        if search_scope == "BASE" and not any(dn.lower() == search_base.lower() for dn, _ in self.state.entries):
            self.result = {"result": 32, "description": "noSuchObject", "message": ""}
            return False

        matches = [(dn, attrs) for dn, attrs in self.state.entries if _in_scope(dn, search_base, search_scope)]
        if search_filter in self.state.filter_matches:
            allowed = {dn.lower() for dn in self.state.filter_matches[search_filter]}
            matches = [(dn, attrs) for dn, attrs in matches if dn.lower() in allowed]
        if size_limit:
            matches = matches[:size_limit]

        self.response = [{"type": "searchResEntry", "dn": dn, "attributes": _project(attrs, attributes)} for dn, attrs in matches]
        self.response.extend({"type": "searchResRef", "uri": [uri]} for uri in self.state.continuation_refs.get(search_base.lower(), []))
        self.result = dict(SUCCESS)
        return bool(matches)

    def _paged_search(self, search_base, search_filter, search_scope="SUBTREE", attributes=None, paged_size=100, generator=True):
        self.search(search_base, search_filter, search_scope, attributes)
        for item in self.response:
            yield item

    def unbind(self):
        self.closed = True
        self.bound = False
        return True


class FakeDirectory:
    """A set of fake servers plus every connection opened against them."""

    def __init__(self):
        self.servers: Dict[str, FakeServerState] = {}
        self.connections: List[FakeConnection] = []
        self.built_servers: List[FakeServer] = []
        exceptions = SimpleNamespace(
            LDAPException=FakeLDAPException,
            LDAPCommunicationError=FakeCommunicationError,
            LDAPSocketOpenError=FakeSocketOpenError,
            LDAPStartTLSError=FakeStartTLSError,
        )
        self.module = SimpleNamespace(
            Server=self._build_server,
            Connection=lambda server, **kwargs: FakeConnection(self, server, **kwargs),
            Tls=FakeTls,
            SIMPLE="SIMPLE",
            ANONYMOUS="ANONYMOUS",
            BASE="BASE",
            SUBTREE="SUBTREE",
            NO_ATTRIBUTES="1.1",
            AUTO_BIND_NONE="NONE",
            NONE="NO_INFO",
            core=SimpleNamespace(exceptions=exceptions),
            utils=SimpleNamespace(conv=SimpleNamespace(escape_filter_chars=fake_escape_filter_chars)),
        )

    def _build_server(self, host, **kwargs) -> FakeServer:
        server = FakeServer(host, **kwargs)
        self.built_servers.append(server)
        return server

    def server(self, host: str) -> FakeServerState:
        if host not in self.servers:
            self.servers[host] = FakeServerState(host)
        return self.servers[host]

    @property
    def open_connections(self) -> List[FakeConnection]:
        return [c for c in self.connections if c.opened and not c.closed]

    def connections_to(self, host: str) -> List[FakeConnection]:
        return [c for c in self.connections if c.server.host == host]


SERVICE_DN = "cn=svc,ou=services,dc=example,dc=com"
ALICE_DN = "uid=alice,ou=people,dc=example,dc=com"
BOB_DN = "uid=bob,ou=people,dc=example,dc=com"
ADMIN_FILTER = "(memberOf=cn=admins,ou=groups,dc=example,dc=com)"


@pytest.fixture
def directory():
    """Fake ldap3 module patched into the connection layer."""
    fake = FakeDirectory()
    with patch("ldapgate.services.ldap_connection._get_ldap3", return_value=fake.module):
        yield fake


@pytest.fixture
def example_server(directory):
    """ldap.example.com with a service account, alice and bob."""
    state = directory.server("ldap.example.com")
    state.passwords[SERVICE_DN] = "svc-secret"
    state.add_entry("dc=example,dc=com", objectClass=["domain"])
    state.add_entry("ou=people,dc=example,dc=com", objectClass=["organizationalUnit"])
    state.add_entry(BOB_DN, password="bob-pw", uid=["bob"], mail=["bob@example.com"], cn=["Bob"])
    state.add_entry(ALICE_DN, password="s3cret", uid=["alice"], mail=["alice@example.com"], cn=["Alice Liddell"])
    return state


@pytest.fixture
def config():
    """Configuration snapshot pointing at ldap.example.com."""
    return DirectoryConfiguration(
        server="ldap.example.com",
        base_dn="dc=example,dc=com",
        bind_dn=SERVICE_DN,
        bind_password="svc-secret",
        search_filter="(uid=*)",
        search_attributes=("uid",),
        username_attribute="uid",
    )


@pytest.fixture
def db_session():
    """Session on a fresh in-memory SQLite database."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    db_mod.Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def identity_store(db_session):
    """SQLAlchemy identity store on the in-memory database."""
    return IdentityService(db_session)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Settings are cached per process; start every test from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
