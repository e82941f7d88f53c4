"""Click CLI for operating the Evolution API integration."""

from __future__ import annotations

import json
import os
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import click

from evolution_api.client.resources import instance_summary
from evolution_api.config import DEFAULT_CONFIG_PATH, EvolutionConfig
from evolution_api.db import EvolutionDB
from evolution_api.exceptions import EvolutionApiError
from evolution_api.jobs.send_message import SendMessageJob
from evolution_api.log import configure_logging
from evolution_api.models import ApiResponse, InstanceRecord
from evolution_api.runtime import Runtime

_PRUNE_TABLES = {
    "messages": ("messages", "failed_messages"),
    "webhooks": ("webhook_logs",),
}


@click.group()
@click.option(
    "--config", "config_path", default=None,
    help=f"Path to the JSON config file (default: {DEFAULT_CONFIG_PATH}).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Evolution API WhatsApp integration CLI."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_path", config_path)


def _config(ctx: click.Context) -> EvolutionConfig:
    if "config" not in ctx.obj:
        environ = dict(os.environ)
        if ctx.obj.get("config_path"):
            environ["EVOLUTION_CONFIG_PATH"] = ctx.obj["config_path"]
        ctx.obj["config"] = EvolutionConfig.from_env(environ)
    return ctx.obj["config"]


def _runtime(ctx: click.Context) -> Runtime:
    if "runtime" not in ctx.obj:
        config = _config(ctx)
        configure_logging(config.logging)
        runtime = Runtime(config)
        ctx.obj["runtime"] = runtime
        ctx.call_on_close(runtime.close)
    return ctx.obj["runtime"]


def _fail(ctx: click.Context, message: str) -> None:
    click.echo(message, err=True)
    ctx.exit(1)


def _table(headers: list[str], rows: list[list[Any]]) -> None:
    cells = [[str(c) if c is not None else "-" for c in row] for row in rows]
    widths = [
        max(len(h), *(len(r[i]) for r in cells)) if cells else len(h)
        for i, h in enumerate(headers)
    ]
    click.echo("  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    click.echo("  ".join("-" * w for w in widths))
    for row in cells:
        click.echo("  ".join(c.ljust(w) for c, w in zip(row, widths)))


def _instance_items(response: ApiResponse) -> list[dict[str, Any]]:
    data = response.data
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []


# --- install ---


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
@click.pass_context
def install(ctx: click.Context, force: bool) -> None:
    """Write the config file and create the database tables."""
    path = Path(ctx.obj.get("config_path") or DEFAULT_CONFIG_PATH)
    if path.exists() and not force:
        _fail(ctx, f"Config file {path} already exists. Use --force to overwrite.")

    server_url = click.prompt("Evolution API server URL", default="http://localhost:8080")
    api_key = click.prompt(
        "Evolution API key (leave blank to skip)",
        default="", hide_input=True, show_default=False,
    )
    default_instance = click.prompt("Default instance name", default="default")

    config = EvolutionConfig(
        server_url=server_url,
        api_key=api_key or None,
        default_instance=default_instance,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(mode="json", by_alias=True), indent=2) + "\n")
    click.echo(f"Config written to {path}")

    if click.confirm("Create the database tables now?", default=True):
        EvolutionDB(config.database.path).close()
        click.echo(f"Database ready at {config.database.path}")

    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Review {path}")
    click.echo("  2. Point the Evolution API webhook at:")
    click.echo(f"     {config.webhook.path}")
    click.echo("  3. Test the connection with: evolution-api health")


# --- health ---


@cli.command()
@click.option("--connection", default=None, help="Named connection to check.")
@click.pass_context
def health(ctx: click.Context, connection: str | None) -> None:
    """Check server connectivity and list instances."""
    click.echo("Checking Evolution API health...")
    try:
        runtime = _runtime(ctx)
        client = runtime.client(connection)
        if connection:
            click.echo(f"Using connection: {connection}")
        click.echo(f"  Server URL: {client.base_url}")

        start = time.monotonic()
        response = runtime.instances(connection).fetch_all()
        elapsed = round((time.monotonic() - start) * 1000)
        if response.failed:
            raise EvolutionApiError(response.error or "Unknown error", response.status_code)
    except EvolutionApiError as exc:
        _fail(ctx, f"Health check failed: {exc}")
        return

    click.echo("  Status: Connected")
    click.echo(f"  Response time: {elapsed}ms")

    items = _instance_items(response)
    if not items:
        click.echo("  No instances found.")
    else:
        summaries = [instance_summary(item) for item in items]
        _table(
            ["Instance", "Status", "Owner"],
            [[s["name"], s["status"], s["owner"]] for s in summaries],
        )
    click.echo("Health check completed successfully!")


# --- instances ---


@cli.command()
@click.argument(
    "action", default="list",
    type=click.Choice(["list", "sync", "connect", "disconnect"]),
)
@click.argument("instance", required=False)
@click.option("--connection", default=None, help="Named connection to use.")
@click.option("--yes", is_flag=True, help="Skip the disconnect confirmation.")
@click.pass_context
def instances(
    ctx: click.Context,
    action: str,
    instance: str | None,
    connection: str | None,
    yes: bool,
) -> None:
    """List, sync, connect or disconnect instances."""
    if action in ("connect", "disconnect") and not instance:
        _fail(ctx, f"Instance name is required for {action} action.")

    try:
        runtime = _runtime(ctx)
        if action == "list":
            _instances_list(ctx, runtime, connection)
        elif action == "sync":
            _instances_sync(ctx, runtime, connection)
        elif action == "connect":
            _instances_connect(ctx, runtime, connection, instance)
        else:
            _instances_disconnect(ctx, runtime, connection, instance, yes)
    except EvolutionApiError as exc:
        _fail(ctx, f"Error: {exc}")


def _fetch_instances(ctx: click.Context, runtime: Runtime, connection: str | None) -> list[dict]:
    response = runtime.instances(connection).fetch_all()
    if response.failed:
        _fail(ctx, f"Failed to fetch instances: {response.error or 'Unknown error'}")
    return _instance_items(response)


def _instances_list(ctx: click.Context, runtime: Runtime, connection: str | None) -> None:
    items = _fetch_instances(ctx, runtime, connection)
    if not items:
        click.echo("No instances found.")
        return
    summaries = [instance_summary(item) for item in items]
    _table(
        ["Instance", "Status", "Owner", "Profile"],
        [[s["name"], s["status"], s["owner"], s["profile_name"]] for s in summaries],
    )


def _instances_sync(ctx: click.Context, runtime: Runtime, connection: str | None) -> None:
    items = _fetch_instances(ctx, runtime, connection)
    synced = 0
    for item in items:
        summary = instance_summary(item)
        if not summary["name"]:
            continue
        runtime.db.upsert_instance(InstanceRecord(
            name=summary["name"],
            connection_name=connection or "default",
            phone_number=summary["owner"],
            status=str(summary["status"]).lower(),
            profile_name=summary["profile_name"],
            profile_picture_url=summary["profile_picture_url"],
            last_seen_at=datetime.now(UTC).isoformat(),
        ))
        synced += 1
        click.echo(f"  Synced: {summary['name']} ({summary['status']})")
    click.echo(f"Synced {synced} instance(s) to database.")


def _instances_connect(
    ctx: click.Context, runtime: Runtime, connection: str | None, instance: str,
) -> None:
    click.echo(f"Connecting instance: {instance}...")
    response = runtime.instances(connection).connect(instance)
    if response.failed:
        _fail(ctx, f"Failed to connect: {response.error or 'Unknown error'}")

    qr_code = response.get("qrcode.base64") or response.get("base64")
    if qr_code:
        click.echo("QR Code generated. Scan to connect:")
        click.echo(qr_code)
        pairing_code = response.get("pairingCode")
        if pairing_code:
            click.echo(f"Pairing Code: {pairing_code}")
    else:
        click.echo("Instance connected successfully!")


def _instances_disconnect(
    ctx: click.Context,
    runtime: Runtime,
    connection: str | None,
    instance: str,
    yes: bool,
) -> None:
    if not yes and not click.confirm(
        f"Are you sure you want to disconnect instance '{instance}'?",
    ):
        click.echo("Operation cancelled.")
        return

    click.echo(f"Disconnecting instance: {instance}...")
    response = runtime.instances(connection).logout(instance)
    if response.failed:
        _fail(ctx, f"Failed to disconnect: {response.error or 'Unknown error'}")
    click.echo("Instance disconnected successfully!")


# --- prune ---


@cli.command()
@click.option("--days", type=int, default=None, help="Keep data newer than this (default 30).")
@click.option("--messages", is_flag=True, help="Prune the message log and failed messages.")
@click.option("--webhooks", is_flag=True, help="Prune the webhook log.")
@click.option("--all", "prune_all", is_flag=True, help="Prune every data type.")
@click.option("--dry-run", is_flag=True, help="Only report what would be deleted.")
@click.pass_context
def prune(
    ctx: click.Context,
    days: int | None,
    messages: bool,
    webhooks: bool,
    prune_all: bool,
    dry_run: bool,
) -> None:
    """Delete stored rows older than --days."""
    runtime = _runtime(ctx)
    if days is None:
        days = runtime.config.database.prune_after_days

    selected = [
        kind for kind, chosen in (("messages", messages), ("webhooks", webhooks))
        if chosen or prune_all
    ] or list(_PRUNE_TABLES)

    cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()
    click.echo(f"Pruning data older than {days} days...")
    if dry_run:
        click.echo("Dry run mode - no data will be deleted.")

    total = 0
    for kind in selected:
        for table in _PRUNE_TABLES[kind]:
            if dry_run:
                count = runtime.db.count_older_than(table, cutoff)
                click.echo(f"  Would delete {count} row(s) from {table}.")
            else:
                count = runtime.db.delete_older_than(table, cutoff)
                click.echo(f"  Deleted {count} row(s) from {table}.")
            total += count

    verb = "Would delete" if dry_run else "Deleted"
    click.echo(f"{verb} {total} total records.")


# --- retry ---


@cli.command()
@click.option("--instance", default=None, help="Only retry messages for this instance.")
@click.option("--max-retries", type=int, default=3, show_default=True)
@click.option("--limit", type=int, default=100, show_default=True)
@click.option("--dry-run", is_flag=True, help="Only list what would be retried.")
@click.pass_context
def retry(
    ctx: click.Context,
    instance: str | None,
    max_retries: int,
    limit: int,
    dry_run: bool,
) -> None:
    """Re-send failed messages, oldest first."""
    runtime = _runtime(ctx)
    records = runtime.db.list_retryable(max_retries, limit, instance)
    if not records:
        click.echo("No failed messages found to retry.")
        return

    click.echo(f"Found {len(records)} message(s) to retry.")
    if dry_run:
        click.echo("Dry run mode - no messages will be sent.")

    succeeded = failed = 0
    for record in records:
        click.echo(
            f"Retrying message #{record.id} instance={record.instance_name} "
            f"recipient={record.recipient} type={record.message_type.value} "
            f"retries={record.retry_count}",
        )
        if dry_run:
            succeeded += 1
            continue

        try:
            job = SendMessageJob.from_failed_record(record)
            job.attempt(
                runtime.messages(job.instance_name, job.connection_name),
                runtime.events,
                runtime.db,
                store_message=runtime.config.database.store_messages,
            )
        except EvolutionApiError as exc:
            runtime.db.record_retry_failure(record.id, str(exc))
            click.echo(f"  Failed: {exc}")
            failed += 1
            continue

        runtime.db.delete_failed_message(record.id)
        click.echo("  Success!")
        succeeded += 1

    click.echo(f"Completed: {succeeded} succeeded, {failed} failed.")
    if failed:
        ctx.exit(1)
