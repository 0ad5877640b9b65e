"""Typer CLI for the Clean control plane."""

from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="clean", help="Clean Cloud: license issuance and tunnel provisioning")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Clean Cloud API server."""
    import uvicorn
    from clean_cloud.app import create_app

    console.print(f"[bold green]Starting Clean Cloud on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def keygen():
    """Generate a P-256 signing key for CLEAN_LICENSE_PRIVATE_KEY."""
    from clean_cloud.licensing.codec import generate_signing_key

    pem = generate_signing_key()
    console.print(pem, end="")
    console.print("[dim]Single-line form for .env files:[/dim]")
    console.print(pem.strip().replace("\n", "\\n"), soft_wrap=True)


@app.command()
def issue(
    customer: str = typer.Argument(..., help="Org slug the license is bound to"),
    tier: str = typer.Option("pro", help="free, pro or enterprise"),
    months: int = typer.Option(12, min=0, help="Validity in 30-day months"),
):
    """Sign a license offline with the configured key (no DB required)."""
    from clean_cloud.common.config import get_settings
    from clean_cloud.common.exceptions import CleanError
    from clean_cloud.licensing.codec import LicenseCodec

    try:
        token = LicenseCodec.from_settings(get_settings()).issue(customer, tier, months)
    except CleanError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(token, soft_wrap=True)


@app.command()
def inspect(
    token: str = typer.Argument(..., help="License token"),
    verify: bool = typer.Option(True, help="Check signature and expiry"),
):
    """Show a license's claims, verifying it against the configured key."""
    from clean_cloud.common.config import get_settings
    from clean_cloud.common.exceptions import CleanError
    from clean_cloud.licensing.codec import LicenseCodec

    try:
        codec = LicenseCodec.from_settings(get_settings())
        claims = codec.verify(token).to_dict() if verify else codec.peek(token)
    except CleanError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)

    table = Table(title="VALID" if verify else "Claims (unverified)")
    table.add_column("Claim")
    table.add_column("Value")
    for name, value in claims.items():
        if name in ("iat", "exp") and isinstance(value, int):
            value = f"{value} ({datetime.fromtimestamp(value, tz=timezone.utc).isoformat()})"
        table.add_row(name, str(value))
    console.print(table)


@app.command()
def provision(
    license_key: str = typer.Option(..., "--license", help="License token"),
    url: str = typer.Option("https://app.tryclean.ai", help="Control plane URL"),
    prefix: str = typer.Option("", envvar="CLEAN_API_PREFIX", help="API route prefix of the control plane"),
):
    """Run the installer handshake and print the tunnel credentials."""
    import httpx

    try:
        resp = httpx.post(
            f"{url.rstrip('/')}{prefix}/cli/provision",
            headers={"Authorization": f"Bearer {license_key}"},
            timeout=30,
        )
    except httpx.HTTPError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    try:
        data = resp.json()
    except ValueError:
        data = None
    if resp.status_code != 200 or not isinstance(data, dict):
        detail = data.get("error", resp.text) if isinstance(data, dict) else resp.text
        console.print(f"[bold red]{resp.status_code}[/bold red] {detail}")
        raise typer.Exit(1)

    console.print(f"[bold green]Provisioned[/bold green] {data['orgSlug']} ({data['tier']})")
    console.print(f"  URL:   {data['tunnelUrl']}")
    console.print(f"  Repos: {data['maxRepos']}  Users: {data['maxUsers']}")
    console.print(f"  CLOUDFLARE_TUNNEL_TOKEN={data['tunnelToken']}", soft_wrap=True)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Clean Cloud server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
