# -*- coding: utf-8 -*-
"""Unit tests for the user locator - filter building and username matching."""

# Standard
from dataclasses import replace

# Third-Party
import pytest

# First-Party
from ldapgate.models import UsernameMatch
from ldapgate.services.ldap_connection import DirectoryEntry, LdapConnectionManager
from ldapgate.services.user_locator import build_search_filter, match_username, UserLocator

SERVICE_DN = "cn=svc,ou=services,dc=example,dc=com"
ALICE_DN = "uid=alice,ou=people,dc=example,dc=com"


def entry(dn, **attributes):
    return DirectoryEntry(dn, {name: tuple(values) for name, values in attributes.items()})


class TestMatchUsername:
    """Tests for match_username."""

    def test_second_entry_matches(self):
        entries = [entry("uid=bob,dc=x", uid=["bob"]), entry("uid=alice,dc=x", uid=["alice"])]
        assert match_username(entries, "alice", ["uid"]).dn == "uid=alice,dc=x"

    def test_first_matching_entry_wins(self):
        entries = [entry("cn=a,dc=x", uid=["alice"]), entry("cn=b,dc=x", uid=["alice"])]
        assert match_username(entries, "alice", ["uid"]).dn == "cn=a,dc=x"

    def test_any_value_of_multi_valued_attribute(self):
        entries = [entry("uid=alice,dc=x", mail=["alice@old.example.com", "alice@example.com"])]
        assert match_username(entries, "alice@example.com", ["mail"]) is entries[0]

    def test_attribute_priority(self):
        entries = [entry("uid=a,dc=x", uid=["a"], mail=["alice"]), entry("uid=b,dc=x", uid=["alice"])]
        assert match_username(entries, "alice", ["uid", "mail"]).dn == "uid=a,dc=x"

    def test_missing_attributes_skipped(self):
        entries = [entry("cn=nomail,dc=x", cn=["No Mail"]), entry("uid=alice,dc=x", mail=["alice@x"])]
        assert match_username(entries, "alice@x", ["mail"]).dn == "uid=alice,dc=x"

    def test_no_match(self):
        assert match_username([entry("uid=bob,dc=x", uid=["bob"])], "alice", ["uid"]) is None
        assert match_username([], "alice", ["uid"]) is None

    def test_exact_mode_is_case_sensitive(self):
        assert match_username([entry("uid=alice,dc=x", uid=["alice"])], "Alice", ["uid"]) is None

    def test_case_insensitive_mode(self):
        entries = [entry("uid=alice,dc=x", uid=["alice"])]
        assert match_username(entries, "ALICE", ["uid"], UsernameMatch.CASE_INSENSITIVE) is entries[0]


class TestBuildSearchFilter:
    """Tests for build_search_filter."""

    def test_template_without_placeholder_is_unchanged(self, directory):
        assert build_search_filter("(objectClass=person)", "alice") == "(objectClass=person)"

    def test_placeholder_is_escaped(self, directory):
        assert build_search_filter("(&(objectClass=person)(uid={username}))", "a*)(uid=*") == "(&(objectClass=person)(uid=a\\2a\\29\\28uid=\\2a))"


class TestUserLocator:
    """Tests for UserLocator.locate against the fake directory."""

    def test_locates_user_with_projection(self, config, directory, example_server):
        config = replace(config, search_attributes=("mail",), username_attribute="uid")
        manager = LdapConnectionManager(config)

        with manager.open(SERVICE_DN, "svc-secret") as connection:
            found = UserLocator(config).locate(connection, "alice@example.com")

        assert found.dn == ALICE_DN
        assert found.first_value("uid") == "alice"
        search = directory.connections[0].searches[0]
        assert search["base"] == "dc=example,dc=com"
        assert search["filter"] == "(uid=*)"
        assert search["attributes"] == ["mail", "uid"]

    def test_not_found(self, config, example_server):
        with LdapConnectionManager(config).open(SERVICE_DN, "svc-secret") as connection:
            assert UserLocator(config).locate(connection, "carol") is None

    @pytest.mark.parametrize("mode,expected", [(UsernameMatch.EXACT, None), (UsernameMatch.CASE_INSENSITIVE, ALICE_DN)])
    def test_username_match_mode(self, config, example_server, mode, expected):
        config = replace(config, username_match=mode)

        with LdapConnectionManager(config).open(SERVICE_DN, "svc-secret") as connection:
            found = UserLocator(config).locate(connection, "Alice")

        assert (found.dn if found else None) == expected
