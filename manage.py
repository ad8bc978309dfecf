#!/usr/bin/env python3
import asyncio
import os
import subprocess
import sys
from typing import List

import typer
from dotenv import load_dotenv

app = typer.Typer(
    help="Ballot Vault CLI: vote sealing and tallying toolkit",
    add_completion=False,
    rich_markup_mode="rich",
)


def run_cmd(command: List[str], env: dict | None = None):
    """Executes a shell command with consistent environment handling."""
    if env is None:
        load_dotenv()
        env = os.environ.copy()

    try:
        subprocess.run(command, check=True, env=env)
    except subprocess.CalledProcessError as e:
        sys.exit(e.returncode)
    except KeyboardInterrupt:
        sys.exit(0)


def load_env(env_name: str | None = None) -> None:
    """
    Loads .env and then overrides with .env.{env_name} if it exists.
    Must run before ballot_vault.config is first imported.
    """
    load_dotenv(".env")
    env_name = env_name or os.getenv("VAULT_ENV", "development")
    env_file = f".env.{env_name}"
    if os.path.exists(env_file):
        load_dotenv(env_file, override=True)
    os.environ["VAULT_ENV"] = env_name


# --- Key Material ---


@app.command("generate-keys")
def generate_keys(
    public_path: str = typer.Option("keys/public.pem", help="Public key output"),
    private_path: str = typer.Option("keys/private.pem", help="Private key output"),
    bits: int = typer.Option(2048, help="RSA modulus size"),
    passphrase: str | None = typer.Option(
        None, envvar="RSA_KEY_PASSPHRASE", help="Encrypt the private key"
    ),
):
    """[bold cyan]CREATE[/bold cyan] the tallying authority RSA key pair."""
    from rich import print as rprint

    from ballot_vault.models.exceptions import KeyMaterialError
    from ballot_vault.services.key_provider import FileKeyPairProvider

    if os.path.exists(public_path) or os.path.exists(private_path):
        rprint("[red]Error:[/red] Key files already exist; refusing to overwrite.")
        raise typer.Exit(code=1)

    provider = FileKeyPairProvider(
        public_path,
        private_path,
        allow_generate=True,
        passphrase=passphrase.encode() if passphrase else None,
        bit_length=bits,
    )
    try:
        provider.load()
    except KeyMaterialError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    rprint(f"[bold green]SUCCESS:[/bold green] Wrote {public_path} and {private_path}")


@app.command("generate-keyset")
def generate_keyset():
    """[bold cyan]PRINT[/bold cyan] a new Tink keyset for FIELD_KEYSET_JSON."""
    from ballot_vault.services.crypto_service import CryptoService

    print(CryptoService.generate_field_keyset_json())


# --- Receipts ---


@app.command("vote-hash")
def vote_hash(
    election_ref: str,
    voter_ref: str,
    candidate_choice: int,
    timestamp: int = typer.Argument(..., help="Epoch milliseconds"),
):
    """[bold white]COMPUTE[/bold white] the receipt hash of a vote."""
    from ballot_vault.services.vote_envelope import compute_vote_hash

    print(compute_vote_hash(election_ref, voter_ref.lower(), candidate_choice, timestamp))


@app.command("verify-hash")
def verify_hash(value: str, stored_hash: str):
    """[bold white]CHECK[/bold white] a value against a stored salted hash."""
    from rich import print as rprint

    from ballot_vault.services.hashing import verify_salted_hash

    if verify_salted_hash(value, stored_hash):
        rprint("[bold green]MATCH[/bold green]")
    else:
        rprint("[bold red]NO MATCH[/bold red]")
        raise typer.Exit(code=1)


# --- Database & Results ---


@app.command("init-db")
def init_db(
    env: str = typer.Option(
        "development", "--env", "-e", help="The environment configuration to use"
    ),
):
    """[bold blue]CREATE[/bold blue] database tables."""
    load_env(env)
    from ballot_vault.database import create_tables

    asyncio.run(create_tables())


async def _run_tally(election_ref: str):
    from ballot_vault.dependencies import get_tally_service, session_scope

    async with session_scope() as session:
        service = await get_tally_service(session=session)
        return await service.generate_results(election_ref)


async def _run_finalize(election_ref: str, block_height: int, transaction_ref: str):
    from ballot_vault.dependencies import get_tally_service, session_scope

    async with session_scope() as session:
        service = await get_tally_service(session=session)
        return await service.finalize_results(election_ref, block_height, transaction_ref)


@app.command()
def tally(
    election_ref: str,
    env: str = typer.Option("development", "--env", "-e"),
):
    """[bold magenta]TALLY[/bold magenta] an ended election and publish its results."""
    load_env(env)
    from rich import print as rprint

    from ballot_vault.logging_conf import configure_logging
    from ballot_vault.models.exceptions import VaultError

    configure_logging()
    try:
        result = asyncio.run(_run_tally(election_ref))
    except VaultError as e:
        rprint(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1)

    print(result.model_dump_json(indent=2))


@app.command()
def finalize(
    election_ref: str,
    block_height: int,
    transaction_ref: str,
    env: str = typer.Option("development", "--env", "-e"),
):
    """[bold magenta]ANCHOR[/bold magenta] published results to a ledger transaction."""
    load_env(env)
    from rich import print as rprint

    from ballot_vault.logging_conf import configure_logging
    from ballot_vault.models.exceptions import VaultError

    configure_logging()
    try:
        result = asyncio.run(_run_finalize(election_ref, block_height, transaction_ref))
    except VaultError as e:
        rprint(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1)

    print(result.model_dump_json(indent=2))


# --- Quality Assurance ---


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True}
)
def test(ctx: typer.Context):
    """[bold green]RUN[/bold green] the test suite."""
    env = os.environ.copy()
    env["VAULT_ENV"] = "testing"
    run_cmd([sys.executable, "-m", "pytest"] + ctx.args, env=env)


@app.command()
def lint(fix: bool = True):
    """[bold white]LINT[/bold white] & format Python sources."""
    flags = ["--fix"] if fix else []
    targets = ["ballot_vault", "tests", "manage.py"]
    run_cmd([sys.executable, "-m", "ruff", "check"] + targets + flags)
    run_cmd([sys.executable, "-m", "ruff", "format"] + targets)


if __name__ == "__main__":
    app()
