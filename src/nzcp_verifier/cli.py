"""
Command-line interface for NZCP Verifier.

Usage:
    nzcp-verify "NZCP:/1/2KCEVIQEIVVWK6..."
    nzcp-verify pass.txt
    zbarimg -q --raw qr.png | nzcp-verify -
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from nzcp_verifier import __version__, config
from nzcp_verifier.did_resolver import DIDResolutionError, DIDResolver, StaticKeySource
from nzcp_verifier.keys import KeySource
from nzcp_verifier.verifier import NZCPVerifier, Outcome, VerificationResult


console = Console()
err_console = Console(stderr=True)

_GUIDANCE = {
    Outcome.VALID: ("[bold green]VALID[/]", "green", "Pass is genuine and within its validity period."),
    Outcome.INVALID: ("[bold red]INVALID[/]", "red", "Pass is damaged, altered or not a genuine NZ COVID Pass."),
    Outcome.EXPIRED: ("[bold yellow]EXPIRED[/]", "yellow", "Pass is genuine but has expired."),
    Outcome.NOT_YET_VALID: ("[bold yellow]NOT YET VALID[/]", "yellow", "Pass is genuine but not valid yet."),
    Outcome.UNTRUSTED: ("[bold red]UNTRUSTED[/]", "red", "Pass was not issued by a trusted issuer."),
    Outcome.UNAVAILABLE: ("[bold yellow]UNAVAILABLE[/]", "yellow", "Issuer keys could not be fetched. Try again."),
}


def _format_time(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def format_result(result: VerificationResult) -> None:
    """Format and print verification result."""
    status_icon, panel_style, guidance = _GUIDANCE[result.outcome]

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)
    table.add_row("", guidance)

    if result.issuer:
        table.add_row("Issuer", result.issuer)

    if result.error:
        table.add_row("Reason", f"[red]{result.error.value}[/]")
        table.add_row("Detail", result.message or "")
        if result.failed_stage:
            table.add_row("Failed While", result.failed_stage.value)

    claims = result.claims
    if claims:
        table.add_row("Valid From", _format_time(claims.not_before))
        table.add_row("Expires", _format_time(claims.expiry))
        if claims.jti:
            table.add_row("Pass ID", claims.jti)
        if claims.pass_type:
            table.add_row("Pass Type", claims.pass_type)
        for field, value in claims.credential_subject.to_python().items():
            table.add_row(str(field), str(value))

    console.print(Panel(table, title="NZ COVID Pass", border_style=panel_style))


def result_to_dict(result: VerificationResult) -> dict[str, Any]:
    """Render a result as JSON-friendly data."""
    claims = result.claims
    return {
        "valid": result.is_valid,
        "outcome": result.outcome.value,
        "error": result.error.value if result.error else None,
        "message": result.message,
        "failed_stage": result.failed_stage.value if result.failed_stage else None,
        "retryable": result.retryable,
        "issuer": result.issuer,
        "claims": {
            "issuer": claims.issuer,
            "not_before": claims.not_before,
            "expiry": claims.expiry,
            "jti": claims.jti,
            "type": list(claims.types),
            "version": claims.version,
            "credential_subject": claims.credential_subject.to_python(),
        } if claims else None,
    }


def load_token(source: str) -> str:
    """Load the scanned text from the argument, a file, or stdin.

    Args:
        source: The token itself, a file path, or "-" for stdin.

    Returns:
        The token with surrounding whitespace removed.
    """
    if source == "-":
        return sys.stdin.read().strip()

    path = Path(source)
    if ":/" not in source and path.is_file():
        return path.read_text(encoding="utf-8").strip()

    return source.strip()


def build_key_source(keys_file: Path | None, timeout: float, verify_ssl: bool) -> KeySource:
    """Bundled DID Documents when a keys file is given, else live did:web."""
    if keys_file is not None:
        return StaticKeySource.from_file(keys_file)
    return DIDResolver(timeout=timeout, verify_ssl=verify_ssl)


@click.command()
@click.argument("source", required=True)
@click.option(
    "--trusted-issuer",
    "trusted_issuers",
    multiple=True,
    help="Trusted issuer DID (repeatable). Defaults to NZCP_TRUSTED_ISSUERS or the live NZ issuer.",
)
@click.option(
    "--test-issuer",
    is_flag=True,
    help=f"Also trust the Ministry of Health test issuer ({config.TEST_ISSUER})",
)
@click.option(
    "--keys-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=config.KEYS_FILE,
    help="JSON file of DID Documents to use instead of fetching them",
)
@click.option(
    "--at",
    "at",
    type=int,
    default=None,
    help="Unix time to check validity against (default: now)",
)
@click.option(
    "--timeout",
    type=float,
    default=config.RESOLVER_TIMEOUT,
    help="HTTP request timeout in seconds",
)
@click.option(
    "--no-ssl-verify",
    is_flag=True,
    help="Disable SSL certificate verification",
)
@click.option(
    "--json-output",
    is_flag=True,
    help="Output result as JSON",
)
@click.option("-v", "--verbose", is_flag=True, help="Log pipeline progress to stderr")
@click.version_option(version=__version__)
def main(
    source: str,
    trusted_issuers: tuple[str, ...],
    test_issuer: bool,
    keys_file: Path | None,
    at: int | None,
    timeout: float,
    no_ssl_verify: bool,
    json_output: bool,
    verbose: bool,
) -> None:
    """Verify an NZ COVID Pass.

    SOURCE can be:
    - The scanned QR text (e.g., NZCP:/1/2KCEVIQ...)
    - A file containing it
    - "-" to read from stdin

    Examples:

        nzcp-verify "NZCP:/1/2KCEVIQEIVVWK6..."

        nzcp-verify --test-issuer pass.txt

        nzcp-verify --keys-file did.json --at 1700000000 pass.txt
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )

    try:
        token = load_token(source)
        key_source = build_key_source(keys_file, timeout, verify_ssl=not no_ssl_verify)

        trusted = set(trusted_issuers) or set(config.TRUSTED_ISSUERS)
        if test_issuer:
            trusted.add(config.TEST_ISSUER)

        verifier = NZCPVerifier(key_source=key_source, trusted_issuers=trusted)
        current_time = at if at is not None else int(time.time())

        result = asyncio.run(verifier.verify(token, current_time))

    except (OSError, UnicodeDecodeError, DIDResolutionError) as e:
        if json_output:
            console.print_json(data={"error": str(e)})
        else:
            console.print(f"[red]Error:[/] {e}")
        sys.exit(2)

    if json_output:
        console.print_json(data=result_to_dict(result), default=repr)
    else:
        format_result(result)

    sys.exit(0 if result.is_valid else 1)


if __name__ == "__main__":
    main()
