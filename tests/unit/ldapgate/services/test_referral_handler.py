# -*- coding: utf-8 -*-
"""Unit tests for referral credentials, search constraints and referral URL parsing."""

# Third-Party
import pytest

# First-Party
from ldapgate.config import DirectoryConfiguration
from ldapgate.models import TlsMode
from ldapgate.services.referral_handler import (
    CapturedCredentialHandler,
    parse_referral_url,
    referral_constraints,
    ReferralCredential,
    ReferralHandler,
    SearchConstraints,
)


class TestCapturedCredentialHandler:
    """Tests for the captured-credential handler."""

    def test_returns_captured_credentials_for_any_target(self):
        handler = CapturedCredentialHandler(ReferralCredential("uid=alice,dc=example,dc=com", "s3cret"))

        for url in ("ldap://dc2.example.com/", "ldaps://gc.example.com:3269/dc=example,dc=com"):
            credential = handler.credentials_for(url)
            assert credential.dn == "uid=alice,dc=example,dc=com"
            assert credential.secret == "s3cret"

    def test_satisfies_protocol(self):
        assert isinstance(CapturedCredentialHandler(ReferralCredential("", "")), ReferralHandler)

    def test_secret_not_in_repr(self):
        assert "s3cret" not in repr(ReferralCredential("cn=svc", "s3cret"))


class TestSearchConstraints:
    """Tests for SearchConstraints."""

    def test_defaults_do_not_chase(self):
        constraints = SearchConstraints()
        assert not constraints.chases_referrals
        assert constraints.hop_limit == 5

    def test_handler_without_following_does_not_chase(self):
        handler = CapturedCredentialHandler(ReferralCredential("cn=svc", "pw"))
        assert not SearchConstraints(follow_referrals=False, referral_handler=handler).chases_referrals

    def test_referral_constraints_use_config_limits(self):
        config = DirectoryConfiguration(server="ldap.example.com", referral_hop_limit=3, search_timeout=7)

        constraints = referral_constraints(config, "cn=svc,dc=example,dc=com", "pw")

        assert constraints.chases_referrals
        assert (constraints.hop_limit, constraints.time_limit) == (3, 7)
        assert constraints.referral_handler.credentials_for("ldap://x/").dn == "cn=svc,dc=example,dc=com"


class TestParseReferralUrl:
    """Tests for parse_referral_url."""

    def test_ldaps_defaults_to_636(self):
        target = parse_referral_url("ldaps://dc2.example.com/dc=example,dc=com")
        assert (target.host, target.port, target.tls_mode) == ("dc2.example.com", 636, TlsMode.LDAPS)
        assert target.base_dn == "dc=example,dc=com"

    def test_plain_url_keeps_plain_mode(self):
        target = parse_referral_url("ldap://dc2.example.com/ou=people,dc=example,dc=com??sub", TlsMode.NONE)
        assert (target.port, target.tls_mode, target.base_dn) == (389, TlsMode.NONE, "ou=people,dc=example,dc=com")

    @pytest.mark.parametrize("configured", [TlsMode.START_TLS, TlsMode.LDAPS])
    def test_plain_url_upgraded_when_session_is_protected(self, configured):
        assert parse_referral_url("ldap://dc2.example.com:3268/", configured).tls_mode == TlsMode.START_TLS

    def test_explicit_port_and_escaped_dn(self):
        target = parse_referral_url("LDAP://dc2.example.com:10389/ou=Sales%20Team,dc=example,dc=com")
        assert target.port == 10389
        assert target.base_dn == "ou=Sales Team,dc=example,dc=com"

    @pytest.mark.parametrize("url", ["http://dc2.example.com/", "ldap:///dc=example,dc=com", "not a url"])
    def test_rejects_non_ldap_urls(self, url):
        with pytest.raises(ValueError, match="Unsupported referral URL"):
            parse_referral_url(url)
