"""ncsa-hmac CLI - Compute and check NCSA.HMAC request signatures."""

import asyncio
import functools
import json
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

import click
from rich.console import Console
from rich.table import Table

from ncsa_hmac.client import HmacClient, HmacClientError, http_date
from ncsa_hmac.common.auth import StaticKeyResolver
from ncsa_hmac.common.errors import HmacError
from ncsa_hmac.common.hmac import (
    CanonicalFormat,
    KeyPair,
    SignableRequest,
    authenticate,
    canonicalize,
    content_digest,
    signed_headers,
)
from ncsa_hmac.common.logging import setup_logging
from ncsa_hmac.common.settings import Settings

console = Console()

P = ParamSpec("P")
R = TypeVar("R")

HASH_CHOICES = click.Choice(["sha256", "sha384", "sha512"], case_sensitive=False)


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    @functools.wraps(f)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _read_body(body: str | None, body_file: str | None) -> bytes | None:
    if body is not None and body_file is not None:
        raise click.UsageError("Use either --body or --body-file, not both")
    if body_file is not None:
        path = Path(body_file)
        if not path.exists():
            console.print(f"[red]Body file not found: {body_file}[/red]")
            sys.exit(1)
        return path.read_bytes()
    if body is not None:
        return body.encode("utf-8")
    return None


def request_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options describing the request being signed or verified."""
    f = click.option("--legacy-digest", is_flag=True, help="Digest empty bodies as MD5('')")(f)
    f = click.option("--body-file", type=click.Path(dir_okay=False), help="Read body from file")(f)
    f = click.option("--body", help="Request body")(f)
    f = click.option("--date", "date_", help="HTTP-date (default: now)")(f)
    f = click.option("--content-type", default="", help="Content-Type header")(f)
    f = click.option("--path", "-p", required=True, help="Request path, including query")(f)
    f = click.option("--method", "-m", default="GET", show_default=True, help="HTTP method")(f)
    return f


def _build_request(
    method: str,
    path: str,
    content_type: str,
    date_: str | None,
    body: str | None,
    body_file: str | None,
) -> SignableRequest:
    try:
        return SignableRequest(
            method=method,
            path=path,
            content_type=content_type,
            date=date_ if date_ is not None else http_date(),
            body=_read_body(body, body_file),
        )
    except HmacError as e:
        console.print(f"[red]Invalid request: {e}[/red]")
        sys.exit(1)


def _key_pair(settings: Settings, public_id: str | None, private_key: str | None) -> KeyPair:
    public_id = public_id or settings.client_public_id
    private_key = private_key or settings.client_private_key
    if not public_id or not private_key:
        console.print("[red]Public id and private key are required (flags or NCSA_HMAC_CLIENT_*)[/red]")
        sys.exit(1)
    return KeyPair(public_id, private_key)


@click.group()
@click.option("--log-level", default=None, help="Log level (default: NCSA_HMAC_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """ncsa-hmac CLI - Sign and verify NCSA.HMAC requests."""
    settings = Settings()
    setup_logging(log_level or settings.log_level, settings.log_json)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command("digest")
@click.option("--body", help="Request body")
@click.option("--body-file", type=click.Path(dir_okay=False), help="Read body from file")
def digest_cmd(body: str | None, body_file: str | None) -> None:
    """Print the Content-Digest (hex MD5) of a body."""
    click.echo(content_digest(_read_body(body, body_file)))


@cli.command("canonical")
@request_options
def canonical_cmd(
    method: str,
    path: str,
    content_type: str,
    date_: str | None,
    body: str | None,
    body_file: str | None,
    legacy_digest: bool,
) -> None:
    """Print the canonical string to sign."""
    request = _build_request(method, path, content_type, date_, body, body_file)
    fmt = CanonicalFormat(digest_empty_body=legacy_digest)
    click.echo(canonicalize(request, fmt).decode("utf-8"))


@cli.command("sign")
@request_options
@click.option("--public-id", "-i", help="Public id (default: NCSA_HMAC_CLIENT_PUBLIC_ID)")
@click.option("--private-key", "-k", help="Shared secret (default: NCSA_HMAC_CLIENT_PRIVATE_KEY)")
@click.option("--hash", "hash_name", type=HASH_CHOICES, help="Signing hash (default: NCSA_HMAC_SIGN_WITH)")
@click.option("--json", "as_json", is_flag=True, help="Print headers as JSON")
@click.pass_context
def sign_cmd(
    ctx: click.Context,
    method: str,
    path: str,
    content_type: str,
    date_: str | None,
    body: str | None,
    body_file: str | None,
    legacy_digest: bool,
    public_id: str | None,
    private_key: str | None,
    hash_name: str | None,
    as_json: bool,
) -> None:
    """Sign a request and print the headers to send."""
    settings: Settings = ctx.obj["settings"]
    request = _build_request(method, path, content_type, date_, body, body_file)
    key_pair = _key_pair(settings, public_id, private_key)
    fmt = CanonicalFormat(digest_empty_body=legacy_digest)

    try:
        headers = signed_headers(request, key_pair, hash_name or settings.sign_with, fmt)
    except HmacError as e:
        console.print(f"[red]Signing failed: {e}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(headers, indent=2))
        return

    table = Table(title=f"{request.method} {request.path}")
    table.add_column("Header", style="cyan")
    table.add_column("Value", overflow="fold")
    for name, value in headers.items():
        table.add_row(name, value)
    console.print(table)


@cli.command("verify")
@request_options
@click.option("--authorization", "-a", required=True, help="Authorization header value")
@click.option("--public-id", "-i", help="Public id the key belongs to")
@click.option("--private-key", "-k", help="Shared secret (default: NCSA_HMAC_HMAC_KEYS)")
@click.option(
    "--accept",
    "accept",
    type=HASH_CHOICES,
    multiple=True,
    help="Accepted hash (repeatable, default: NCSA_HMAC_ACCEPT_DIGESTS)",
)
@click.pass_context
def verify_cmd(
    ctx: click.Context,
    method: str,
    path: str,
    content_type: str,
    date_: str | None,
    body: str | None,
    body_file: str | None,
    legacy_digest: bool,
    authorization: str,
    public_id: str | None,
    private_key: str | None,
    accept: tuple[str, ...],
) -> None:
    """Check an Authorization header against a request."""
    settings: Settings = ctx.obj["settings"]
    if date_ is None:
        raise click.UsageError("--date is required to verify a signature")
    request = _build_request(method, path, content_type, date_, body, body_file)

    keys = dict(settings.hmac_keys)
    if private_key:
        if not public_id:
            raise click.UsageError("--private-key needs --public-id")
        keys[public_id] = private_key

    try:
        result = authenticate(
            request,
            authorization,
            StaticKeyResolver(keys),
            accept_digests=accept or settings.accept_digests,
            fmt=CanonicalFormat(digest_empty_body=legacy_digest),
        )
    except HmacError as e:
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        sys.exit(1)

    if result.authenticated:
        console.print(
            f"[green]✓ Signature is valid for {result.public_id} "
            f"({result.signing_hash.value if result.signing_hash else '-'})[/green]"
        )
    else:
        console.print(f"[red]✗ Signature is invalid ({result.outcome.value})[/red]")
        sys.exit(1)


@cli.command("request")
@request_options
@click.option("--base-url", help="Server base URL (default: NCSA_HMAC_CLIENT_BASE_URL)")
@click.option("--public-id", "-i", help="Public id (default: NCSA_HMAC_CLIENT_PUBLIC_ID)")
@click.option("--private-key", "-k", help="Shared secret (default: NCSA_HMAC_CLIENT_PRIVATE_KEY)")
@click.pass_context
@async_command
async def request_cmd(
    ctx: click.Context,
    method: str,
    path: str,
    content_type: str,
    date_: str | None,
    body: str | None,
    body_file: str | None,
    legacy_digest: bool,
    base_url: str | None,
    public_id: str | None,
    private_key: str | None,
) -> None:
    """Send a signed request and print the response."""
    settings: Settings = ctx.obj["settings"]
    if legacy_digest or date_ is not None:
        console.print("[yellow]--legacy-digest and --date are ignored for live requests[/yellow]")

    key_pair = _key_pair(settings, public_id, private_key)
    payload = _read_body(body, body_file)

    async with HmacClient(settings, key_pair=key_pair, base_url=base_url) as client:
        try:
            result = await client.request(method, path, body=payload, content_type=content_type)
        except HmacClientError as e:
            console.print(f"[red]✗ Request failed ({e.status_code or 'no response'}): {e}[/red]")
            sys.exit(1)

    if result is None:
        console.print("[green]✓ Empty response[/green]")
    elif isinstance(result, (dict, list)):
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo(result)


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
