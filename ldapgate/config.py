# -*- coding: utf-8 -*-
"""Location: ./ldapgate/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Configuration for ldapgate.

Process-wide settings are read from environment variables (or a ``.env``
file) with pydantic-settings. The authentication core never reads them
directly: each operation works from an immutable ``DirectoryConfiguration``
snapshot taken once per call.

Examples:
    >>> cfg = get_settings(ldap_base_dn="dc=example,dc=com")
    >>> cfg.ldap_base_dn
    'dc=example,dc=com'
    >>> get_settings.cache_clear()
"""

# Standard
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

# Third-Party
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# First-Party
from ldapgate.models import CertificatePolicy, LogLevel, TlsMode, UsernameMatch

ADMIN_FILTER_DISABLED = "_disabled_"


def split_csv(value: str) -> Tuple[str, ...]:
    """Split a comma-separated setting, ignoring whitespace and empty items.

    Args:
        value: Raw comma-separated string.

    Returns:
        Tuple of the non-empty items in their original order.

    Examples:
        >>> split_csv("uid, cn ,mail,, displayName")
        ('uid', 'cn', 'mail', 'displayName')
        >>> split_csv("")
        ()
    """
    return tuple(item.replace(" ", "") for item in (value or "").split(",") if item.strip())


def admin_filter_enabled(admin_filter: str) -> bool:
    """Whether an admin filter is set and not the disabling sentinel.

    Args:
        admin_filter: Configured filter.

    Returns:
        True if admin determination should run.

    Examples:
        >>> admin_filter_enabled("(memberOf=cn=admins,dc=example,dc=com)")
        True
        >>> admin_filter_enabled("_disabled_"), admin_filter_enabled("  ")
        (False, False)
    """
    admin_filter = (admin_filter or "").strip()
    return bool(admin_filter) and admin_filter != ADMIN_FILTER_DISABLED


class Settings(BaseSettings):
    """ldapgate settings.

    Every field maps to an upper-case environment variable of the same name
    (``LDAP_SERVER``, ``LDAP_BIND_PASSWORD``...).
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    app_name: str = "ldapgate"

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: str = Field(default="text", description="text or json")
    log_to_file: bool = False
    log_file: Optional[str] = None
    log_folder: Optional[str] = None

    # Local identity store
    database_url: str = "sqlite:///./ldapgate.db"

    # Directory server
    ldap_server: str = "localhost"
    ldap_port: int = 389
    ldap_tls_mode: TlsMode = TlsMode.NONE
    ldap_tls_validate: bool = True
    ldap_ca_certs_file: Optional[str] = None
    ldap_connect_timeout: int = 10
    ldap_search_timeout: int = 30
    ldap_referral_hop_limit: int = 5
    ldap_page_size: int = 500

    # Service account
    ldap_base_dn: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: SecretStr = SecretStr("")

    # User lookup
    ldap_search_filter: str = "(objectClass=person)"
    ldap_search_attributes: str = "uid, cn, mail, displayName"
    ldap_username_attribute: str = "uid"
    ldap_case_insensitive_username: bool = False
    ldap_admin_filter: str = ADMIN_FILTER_DISABLED

    # Provisioning
    ldap_create_users: bool = True
    ldap_enable_all_folders: bool = True
    ldap_enabled_folders: str = ""

    @field_validator("ldap_port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        """Reject ports outside the TCP range.

        Args:
            value: Configured port.

        Returns:
            The port.

        Raises:
            ValueError: If the port is not between 1 and 65535.
        """
        if not 0 < value < 65536:
            raise ValueError(f"ldap_port must be between 1 and 65535, got {value}")
        return value

    @field_validator("ldap_connect_timeout", "ldap_search_timeout", "ldap_referral_hop_limit", "ldap_page_size")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        """Timeouts and limits must be positive.

        Args:
            value: Configured limit.

        Returns:
            The limit.

        Raises:
            ValueError: If the value is zero or negative.
        """
        if value <= 0:
            raise ValueError("value must be a positive integer")
        return value

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        """Only ``text`` and ``json`` are supported.

        Args:
            value: Configured format.

        Returns:
            Lower-cased format name.

        Raises:
            ValueError: On unknown formats.
        """
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value


@lru_cache()
def get_settings(**kwargs) -> Settings:
    """Return cached settings, optionally overriding fields.

    Args:
        **kwargs: Field overrides, mainly for tests.

    Returns:
        Settings instance.
    """
    return Settings(**kwargs)


@dataclass(frozen=True)
class DirectoryConfiguration:
    """Immutable snapshot of everything one authentication attempt needs.

    Examples:
        >>> cfg = DirectoryConfiguration(server="ldap.example.com", base_dn="dc=example,dc=com")
        >>> cfg.admin_check_enabled
        False
        >>> cfg.search_attributes
        ('uid',)
    """

    server: str
    port: int = 389
    tls_mode: TlsMode = TlsMode.NONE
    certificate_policy: CertificatePolicy = CertificatePolicy.VERIFY
    ca_certs_file: Optional[str] = None
    base_dn: str = ""
    bind_dn: str = ""
    bind_password: str = field(default="", repr=False)
    search_filter: str = "(objectClass=person)"
    search_attributes: Tuple[str, ...] = ("uid",)
    username_attribute: str = "uid"
    admin_filter: str = ADMIN_FILTER_DISABLED
    username_match: UsernameMatch = UsernameMatch.EXACT
    create_users: bool = True
    enable_all_folders: bool = True
    enabled_folders: Tuple[str, ...] = ()
    connect_timeout: int = 10
    search_timeout: int = 30
    referral_hop_limit: int = 5
    page_size: int = 500

    @property
    def admin_check_enabled(self) -> bool:
        """Whether the administrator filter is configured and not disabled.

        Returns:
            True when an admin search should run.

        Examples:
            >>> DirectoryConfiguration(server="h", admin_filter="(memberOf=cn=admins)").admin_check_enabled
            True
            >>> DirectoryConfiguration(server="h", admin_filter="  ").admin_check_enabled
            False
        """
        return admin_filter_enabled(self.admin_filter)

    @property
    def projection(self) -> Tuple[str, ...]:
        """Attributes requested when locating a user.

        Returns:
            The search attributes followed by the username attribute if it is not already listed.

        Examples:
            >>> DirectoryConfiguration(server="h", search_attributes=("mail",), username_attribute="uid").projection
            ('mail', 'uid')
        """
        lowered = {a.lower() for a in self.search_attributes}
        if self.username_attribute and self.username_attribute.lower() not in lowered:
            return self.search_attributes + (self.username_attribute,)
        return self.search_attributes

    @classmethod
    def from_settings(cls, settings: Settings) -> "DirectoryConfiguration":
        """Snapshot the LDAP part of the process settings.

        Args:
            settings: Loaded settings.

        Returns:
            A new configuration snapshot.

        Examples:
            >>> s = Settings(ldap_server="ldap.example.com", ldap_search_attributes="uid, mail", ldap_case_insensitive_username=True)
            >>> cfg = DirectoryConfiguration.from_settings(s)
            >>> cfg.search_attributes, cfg.username_match.value
            (('uid', 'mail'), 'case_insensitive')
        """
        return cls(
            server=settings.ldap_server,
            port=settings.ldap_port,
            tls_mode=settings.ldap_tls_mode,
            certificate_policy=CertificatePolicy.VERIFY if settings.ldap_tls_validate else CertificatePolicy.SKIP,
            ca_certs_file=settings.ldap_ca_certs_file or None,
            base_dn=settings.ldap_base_dn,
            bind_dn=settings.ldap_bind_dn,
            bind_password=settings.ldap_bind_password.get_secret_value(),
            search_filter=settings.ldap_search_filter,
            search_attributes=split_csv(settings.ldap_search_attributes),
            username_attribute=settings.ldap_username_attribute.strip(),
            admin_filter=settings.ldap_admin_filter,
            username_match=UsernameMatch.CASE_INSENSITIVE if settings.ldap_case_insensitive_username else UsernameMatch.EXACT,
            create_users=settings.ldap_create_users,
            enable_all_folders=settings.ldap_enable_all_folders,
            enabled_folders=split_csv(settings.ldap_enabled_folders),
            connect_timeout=settings.ldap_connect_timeout,
            search_timeout=settings.ldap_search_timeout,
            referral_hop_limit=settings.ldap_referral_hop_limit,
            page_size=settings.ldap_page_size,
        )
