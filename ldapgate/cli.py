# -*- coding: utf-8 -*-
"""Location: ./ldapgate/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

CLI commands for checking an LDAP configuration.

Examples:
    >>> python -m ldapgate.cli test-connection
    >>> python -m ldapgate.cli search-users "(objectClass=person)"
    >>> python -m ldapgate.cli authenticate alice
"""

# Standard
import json

# Third-Party
import typer

# First-Party
from ldapgate.db import init_db, SessionLocal
from ldapgate.services.identity_service import IdentityService
from ldapgate.services.ldap_service import DirectoryUnavailableError, LdapAuthenticationError, LdapAuthenticationProvider
from ldapgate.services.logging_service import LoggingService

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# Initialize CLI app
app = typer.Typer(name="ldapgate", help="LDAP authentication provider commands")


@app.command()
def test_connection():
    """Connect, bind and search with the configured service account."""
    with SessionLocal() as db:
        report = LdapAuthenticationProvider(IdentityService(db)).test_connection()
    typer.echo(report)
    if "Error:" in report:
        raise typer.Exit(1)


@app.command()
def search_users(
    search_filter: str = typer.Argument(..., help="LDAP filter to search the base DN with"),
    json_output: bool = typer.Option(False, help="Output in JSON format"),
):
    """List the DNs of entries below the base DN that match a filter."""
    with SessionLocal() as db:
        try:
            dns = LdapAuthenticationProvider(IdentityService(db)).get_filtered_users(search_filter)
        except DirectoryUnavailableError as e:
            logger.error("User search failed: %s", e.__cause__)
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps({"count": len(dns), "dns": dns}, indent=2))
    else:
        for dn in dns:
            typer.echo(dn)
        typer.echo(f"{len(dns)} entries")


@app.command()
def authenticate(
    username: str = typer.Argument(..., help="Login name to authenticate"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Password, prompted when omitted"),
):
    """Authenticate a user and reconcile the local identity."""
    init_db()
    with SessionLocal() as db:
        try:
            outcome = LdapAuthenticationProvider(IdentityService(db)).authenticate(username, password)
        except LdapAuthenticationError as e:
            typer.echo(f"Error: {e.message} [{e.reason}]", err=True)
            raise typer.Exit(1)

    typer.echo(f"Authenticated as {outcome.username}")
    typer.echo(f"Administrator: {outcome.is_admin}")
    typer.echo(f"All folders: {outcome.enable_all_folders}")
    if not outcome.enable_all_folders:
        typer.echo(f"Folders: {', '.join(outcome.enabled_folders)}")


if __name__ == "__main__":
    app()
