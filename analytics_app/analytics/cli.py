"""
CLI commands for analytics governance, backfills and the worker.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from .backfill import run_backfill
from .celery_app import EXTENSION_KEY, get_celery_app
from .config import DEFAULT_QUEUE_NAME
from .errors import ConfigurationError, UnknownEntityError
from .fields import write_field_list
from .state import get_analytics_config, get_field_registry

BLOCKLIST_HEADER = "Generated by `flask analytics generate-blocklist`; do not edit by hand."


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


@click.group(name="analytics", invoke_without_command=True)
@click.pass_context
def analytics_cli(ctx):
    """
    Analytics export commands.

    Lists exported entities when invoked without a subcommand.
    """
    app = _load_app(ctx)
    state = app.extensions.get(EXTENSION_KEY, {})
    if not state.get("enabled"):
        raise click.ClickException("Analytics is disabled via ANALYTICS_ENABLED=false.")
    if ctx.invoked_subcommand is None:
        entities = state["registry"].exported_entities()
        if not entities:
            click.echo("No entities configured for export.")
        else:
            click.echo("Exported entities:")
            for entity in entities:
                click.echo(f"  - {entity}")


def get_disabled_analytics_group() -> click.Group:
    """
    Return a minimal command group that informs the operator analytics is disabled.
    """

    @click.group(name="analytics", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Analytics commands are unavailable because ANALYTICS_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Analytics Celery app is unavailable. Ensure ANALYTICS_ENABLED=true before running worker commands."
        )
    return celery_app


@analytics_cli.command("check")
@click.pass_context
def analytics_check(ctx):
    """Re-run the field governance check against the live schema."""
    app = _load_app(ctx)
    with app.app_context():
        registry = get_field_registry(app)
        try:
            registry.check()
        except ConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo("Field governance check passed.")


@analytics_cli.command("generate-blocklist")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Write to this path instead of ANALYTICS_BLOCKLIST_PATH.",
)
@click.option("--stdout", "to_stdout", is_flag=True, help="Print the blocklist instead of writing it.")
@click.pass_context
def analytics_generate_blocklist(ctx, output_path: Optional[Path], to_stdout: bool):
    """Regenerate the blocklist from the live schema and the allowlist."""
    app = _load_app(ctx)
    with app.app_context():
        blocklist = get_field_registry(app).generate_blocklist()
        target = output_path or get_analytics_config(app).blocklist_path

    if to_stdout:
        click.echo(json.dumps(blocklist, indent=2, sort_keys=True))
        return
    if not target:
        raise click.ClickException("No output path given and ANALYTICS_BLOCKLIST_PATH is not configured.")
    written = write_field_list(target, blocklist, header=BLOCKLIST_HEADER)
    click.echo(f"Wrote blocklist for {len(blocklist)} entities to {written}")


@analytics_cli.command("backfill")
@click.option("--entity", "entity_name", required=True, help="Entity (table) name to export.")
@click.option("--batch-size", type=click.IntRange(min=1), help="Records per batch (defaults to ANALYTICS_BATCH_SIZE).")
@click.pass_context
def analytics_backfill(ctx, entity_name: str, batch_size: Optional[int]):
    """Schedule a full, batched export of an entity."""
    app = _load_app(ctx)
    with app.app_context():
        try:
            summary = run_backfill(entity_name, batch_size=batch_size)
        except (UnknownEntityError, ConfigurationError) as exc:
            raise click.ClickException(str(exc)) from exc
        except Exception as exc:  # pragma: no cover - surfacing broker errors
            raise click.ClickException(f"Failed to schedule backfill for {entity_name}: {exc}") from exc

    click.echo(
        json.dumps(
            {
                "entity": summary.entity_name,
                "total_records": summary.total_records,
                "batch_size": summary.batch_size,
                "batches_scheduled": summary.batches_scheduled,
                "task_ids": summary.task_ids,
            }
        )
    )


@analytics_cli.group(name="worker")
def worker_group():
    """Manage the analytics background worker."""


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option(
    "--pool",
    type=str,
    help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').",
)
@click.option(
    "--queues",
    default=DEFAULT_QUEUE_NAME,
    show_default=True,
    help="Comma-separated queue list to consume.",
)
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)

    argv = [
        "worker",
        "--loglevel",
        loglevel,
        "-Q",
        queues,
    ]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting analytics worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("analytics.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'analytics.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))
