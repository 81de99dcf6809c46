# authgate/cli/main_cli.py
import json
import secrets
from typing import Optional

import typer

from ..oauth.credentials import DEFAULT_BCRYPT_ROUNDS, BcryptCredentialVerifier
from ..oauth.errors import TokenCodecError
from ..oauth.token_codec import TokenCodec

# Main CLI application with help enabled when no arguments are provided
app = typer.Typer(
    name="authgate",
    help="authgate Command Line Interface.",
    no_args_is_help=True
)


@app.callback()
def main_callback():
    """
    authgate main CLI application.
    Helpers for preparing client secrets, passwords and signing keys.
    """
    pass


@app.command("hash-secret")
def hash_secret(
    secret: str = typer.Option(
        ..., prompt=True, hide_input=True, confirmation_prompt=True,
        help="Client secret or user password to hash."
    ),
    rounds: int = typer.Option(DEFAULT_BCRYPT_ROUNDS, min=4, max=31, help="bcrypt cost factor."),
):
    """Print a bcrypt hash to paste into OAUTH_CLIENTS / OAUTH_USERS."""
    typer.echo(BcryptCredentialVerifier(rounds=rounds).hash(secret))


@app.command("generate-signing-secret")
def generate_signing_secret(
    num_bytes: int = typer.Option(48, "--bytes", min=32, help="Random bytes before encoding."),
):
    """Print a random secret suitable for JWT_SECRET."""
    typer.echo(secrets.token_urlsafe(num_bytes))


@app.command("decode-token")
def decode_token(
    token: str = typer.Argument(..., help="Bearer token issued by this server."),
    jwt_secret: Optional[str] = typer.Option(None, envvar="JWT_SECRET", help="Signing secret (defaults to $JWT_SECRET)."),
    algorithm: str = typer.Option("HS256", envvar="JWT_ALGORITHM"),
):
    """Verify a token's signature and expiry and print its claims."""
    if not jwt_secret:
        typer.secho("Error: JWT_SECRET is not set and --jwt-secret was not given.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        claims = TokenCodec(jwt_secret, algorithm).verify(token)
    except TokenCodecError as e:
        typer.secho(f"Token rejected ({type(e).__name__}): {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(claims, indent=2, sort_keys=True))


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()
