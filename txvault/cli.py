"""CLI for txvault envelope encryption."""
import json
from typing import Any, List, Optional

import click

from txvault.domain.envelope import engine
from txvault.domain.envelope.models import SecureRecord
from txvault.domain.envelope.registry import MasterKeyRegistry, build_registry
from txvault.domain.envelope.rotation import RotationService
from txvault.errors import EnvelopeError
from txvault.logging_hardening import configure_logging
from txvault.settings import get_settings, load_key_config


def _fail(message: str) -> None:
    click.echo(message, err=True)
    click.get_current_context().exit(1)


def _fail_envelope(e: EnvelopeError) -> None:
    _fail(f"Error [{e.code}]: {e.message}")


def _load_json(source: Any) -> Any:
    try:
        return json.load(source)
    except json.JSONDecodeError as e:
        _fail(f"Error: Invalid JSON in {source.name}: {e}")


def _registry(ctx: click.Context) -> MasterKeyRegistry:
    try:
        return build_registry(load_key_config(env_file=ctx.obj["env_file"]))
    except EnvelopeError as e:
        _fail_envelope(e)


def _load_record(data: Any) -> SecureRecord:
    if not isinstance(data, dict):
        _fail("Error: Record must be a JSON object.")
    try:
        return SecureRecord.from_dict(data)
    except EnvelopeError as e:
        _fail_envelope(e)


def _write(text: str, output: Optional[str]) -> None:
    if output:
        with open(output, "w") as f:
            f.write(text + "\n")
        click.echo(f"✓ Written to {output}")
    else:
        click.echo(text)


@click.group()
@click.option("--env-file", default=".env", show_default=True, help="Dotenv file with MASTER_KEY_V* entries")
@click.pass_context
def cli(ctx: click.Context, env_file: str):
    """txvault envelope encryption CLI.

    Master keys are read from MASTER_KEY_V1, MASTER_KEY_V2, ... (or the
    legacy MASTER_KEY) in the environment or the dotenv file.
    """
    ctx.obj = {"env_file": env_file}


@cli.command("keys")
@click.pass_context
def list_keys(ctx: click.Context):
    """List loaded master key versions (never the key material)."""
    registry = _registry(ctx)

    click.echo(f"\n{'Version':<10} {'Status':<15}")
    click.echo("-" * 25)
    for version in registry.versions:
        status = "✓ Current" if version == registry.latest_version else "Decrypt only"
        click.echo(f"{version:<10} {status:<15}")


@cli.command("encrypt")
@click.option("--party-id", required=True, help="Owning party; bound to the record as AAD")
@click.option("--id", "record_id", default=None, help="Record ID (UUIDv7 generated if omitted)")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.argument("payload_file", type=click.File("r"))
@click.pass_context
def encrypt_payload(ctx: click.Context, party_id: str, record_id: Optional[str], output: Optional[str], payload_file):
    """Encrypt a JSON payload file ('-' for stdin) into a secure record."""
    party_id = party_id.strip()
    if not party_id:
        _fail("Error: --party-id must be a non-empty string.")
    if record_id is not None and not record_id.strip():
        _fail("Error: --id must be a non-empty string.")

    payload = _load_json(payload_file)
    registry = _registry(ctx)

    record = engine.encrypt(registry, record_id, party_id, payload)
    _write(record.to_json(indent=2), output)


@cli.command("decrypt")
@click.argument("record_file", type=click.File("r"))
@click.pass_context
def decrypt_record(ctx: click.Context, record_file):
    """Decrypt a secure record file and print {id, partyId, payload}."""
    record = _load_record(_load_json(record_file))
    registry = _registry(ctx)

    try:
        result = engine.decrypt(registry, record)
    except EnvelopeError as e:
        _fail_envelope(e)
        return

    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command("rewrap")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.argument("record_file", type=click.File("r"))
@click.pass_context
def rewrap_record(ctx: click.Context, output: Optional[str], record_file):
    """Re-wrap a record's DEK under the latest master key version."""
    record = _load_record(_load_json(record_file))
    registry = _registry(ctx)

    try:
        rotated = engine.rewrap(registry, record)
    except EnvelopeError as e:
        _fail_envelope(e)
        return

    _write(rotated.to_json(indent=2), output)


@cli.command("rotate")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.argument("records_file", type=click.File("r"))
@click.pass_context
def rotate_records(ctx: click.Context, output: Optional[str], records_file):
    """Re-wrap a JSON array of records onto the latest master key version."""
    data = _load_json(records_file)
    if not isinstance(data, list):
        _fail("Error: File must be a JSON array of records.")

    records: List[SecureRecord] = [_load_record(item) for item in data]
    service = RotationService(_registry(ctx))

    click.echo(f"Before: {json.dumps(service.stale_counts(records))}", err=True)
    result = service.rotate_batch(records)
    click.echo(
        f"✓ Rotated {result.rotated}, skipped {result.skipped}, failed {result.failed} "
        f"(target v{service.current_version})",
        err=True
    )

    _write(json.dumps([r.to_dict() for r in result.records], indent=2), output)
    if result.failed:
        click.get_current_context().exit(1)


def main():
    configure_logging(get_settings())
    cli()


if __name__ == "__main__":
    main()
