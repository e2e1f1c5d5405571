# -*- coding: utf-8 -*-
"""Location: ./ldapgate/services/referral_handler.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Referral credential handling.

When a directory server answers a search with a referral, the search has to
be re-issued against another server, and that server needs a bind of its
own. The handler installed in the ``SearchConstraints`` of the search decides
which credentials are used there. ldapgate always hands over the credentials
of the phase in progress (service account while locating, the user while
checking admin status) so that chasing a referral never silently degrades to
an anonymous bind.

Examples:
    >>> handler = CapturedCredentialHandler(ReferralCredential("cn=svc,dc=example,dc=com", "s3cret"))
    >>> handler.credentials_for("ldap://dc2.example.com/dc=example,dc=com").dn
    'cn=svc,dc=example,dc=com'
    >>> parse_referral_url("ldaps://dc2.example.com/ou=people,dc=example,dc=com").port
    636
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import unquote, urlsplit

# First-Party
from ldapgate.config import DirectoryConfiguration
from ldapgate.models import TlsMode


@dataclass(frozen=True)
class ReferralCredential:
    """Bind identity used for the current phase.

    Examples:
        >>> ReferralCredential("uid=alice,dc=example,dc=com", "pw")
        ReferralCredential(dn='uid=alice,dc=example,dc=com')
    """

    dn: str
    secret: str = field(repr=False)


@runtime_checkable
class ReferralHandler(Protocol):
    """Supplies bind credentials for a referred server."""

    def credentials_for(self, referral_url: str) -> ReferralCredential:
        """Return the credentials to bind with at ``referral_url``."""


class CapturedCredentialHandler:
    """Referral handler that re-uses the credentials captured for the phase."""

    def __init__(self, credential: ReferralCredential):
        """Capture the phase credentials.

        Args:
            credential: DN and secret bound at the start of the phase.
        """
        self._credential = credential

    def credentials_for(self, referral_url: str) -> ReferralCredential:
        """Return the captured credentials, whatever the target.

        Args:
            referral_url: LDAP URL the server referred to.

        Returns:
            The captured credential.
        """
        return self._credential


@dataclass(frozen=True)
class SearchConstraints:
    """Per-search options: referral chasing and limits.

    Referrals are only chased when ``follow_referrals`` is set and a handler
    is installed.
    """

    follow_referrals: bool = False
    referral_handler: Optional[ReferralHandler] = None
    hop_limit: int = 5
    time_limit: int = 30

    @property
    def chases_referrals(self) -> bool:
        """Whether referrals returned by the server should be followed.

        Returns:
            True when following is enabled and a handler is installed.

        Examples:
            >>> SearchConstraints(follow_referrals=True).chases_referrals
            False
        """
        return self.follow_referrals and self.referral_handler is not None


def referral_constraints(config: DirectoryConfiguration, dn: str, secret: str) -> SearchConstraints:
    """Build constraints that follow referrals with the given phase credentials.

    Args:
        config: Configuration snapshot (hop limit, search time limit).
        dn: Bind DN of the phase.
        secret: Secret of the phase.

    Returns:
        Constraints with referral following enabled.

    Examples:
        >>> cfg = DirectoryConfiguration(server="ldap.example.com", referral_hop_limit=3)
        >>> c = referral_constraints(cfg, "cn=svc", "pw")
        >>> c.chases_referrals, c.hop_limit
        (True, 3)
    """
    return SearchConstraints(
        follow_referrals=True,
        referral_handler=CapturedCredentialHandler(ReferralCredential(dn, secret)),
        hop_limit=config.referral_hop_limit,
        time_limit=config.search_timeout,
    )


@dataclass(frozen=True)
class ReferralTarget:
    """Where a referral points to."""

    host: str
    port: int
    tls_mode: TlsMode
    base_dn: str = ""


def parse_referral_url(url: str, configured_mode: TlsMode = TlsMode.NONE) -> ReferralTarget:
    """Parse an LDAP URL from a referral or continuation reference.

    ``ldaps://`` targets use implicit TLS. ``ldap://`` targets use StartTLS
    unless the configured mode is plain, so a protected session is never
    continued in clear text.

    Args:
        url: LDAP URL, e.g. ``ldap://host:389/ou=people,dc=example,dc=com??sub``.
        configured_mode: TLS mode of the original connection.

    Returns:
        The parsed target.

    Raises:
        ValueError: If the URL is not an LDAP URL or has no host.

    Examples:
        >>> t = parse_referral_url("ldap://dc2.example.com:3268/ou=a%20b,dc=example,dc=com??sub", TlsMode.LDAPS)
        >>> (t.host, t.port, t.tls_mode.value, t.base_dn)
        ('dc2.example.com', 3268, 'starttls', 'ou=a b,dc=example,dc=com')
        >>> parse_referral_url("ldap://dc3.example.com").base_dn
        ''
        >>> parse_referral_url("http://example.com")
        Traceback (most recent call last):
        ...
        ValueError: Unsupported referral URL: http://example.com
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in ("ldap", "ldaps") or not parts.hostname:
        raise ValueError(f"Unsupported referral URL: {url}")

    if scheme == "ldaps":
        tls_mode = TlsMode.LDAPS
        default_port = 636
    else:
        tls_mode = TlsMode.NONE if configured_mode == TlsMode.NONE else TlsMode.START_TLS
        default_port = 389

    return ReferralTarget(
        host=parts.hostname,
        port=parts.port or default_port,
        tls_mode=tls_mode,
        base_dn=unquote(parts.path.lstrip("/")),
    )
