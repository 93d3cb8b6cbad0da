"""CLI interface for BOS large-object uploads."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from ..core.client import BosClient
from ..core.exceptions import BosStorageError, UploadIncompleteError
from ..core.models import DEFAULT_CHUNK_SIZE, DEFAULT_PART_CONCURRENCY, MAX_RETRY_COUNT
from ..core.session import UploadSession

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


@click.group()
@click.option("--access-key", envvar="BOS_ACCESS_KEY_ID", help="Access key (or set BOS_ACCESS_KEY_ID)")
@click.option("--secret-key", envvar="BOS_SECRET_ACCESS_KEY", help="Secret key (or set BOS_SECRET_ACCESS_KEY)")
@click.option("--endpoint", envvar="BOS_ENDPOINT", help="Service endpoint (or set BOS_ENDPOINT)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, access_key, secret_key, endpoint, verbose):
    """BOS Storage CLI - Upload large objects and manage multipart uploads."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj["credentials"] = (access_key, secret_key, endpoint)


def get_client(ctx) -> BosClient:
    if "client" not in ctx.obj:
        ctx.obj["client"] = BosClient(*ctx.obj["credentials"])
    return ctx.obj["client"]


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("bucket")
@click.option("--object-name", help="Object key (default: same as local filename)")
@click.option("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, show_default=True, help="Part size in bytes")
@click.option("--concurrency", type=int, default=DEFAULT_PART_CONCURRENCY, show_default=True, help="Parts uploaded at once")
@click.option("--max-retries", type=int, default=MAX_RETRY_COUNT, show_default=True, help="Retries per part")
@click.option("--upload-id", help="Resume an existing multipart upload")
@click.pass_context
def upload(ctx, local_path, bucket, object_name, chunk_size, concurrency, max_retries, upload_id):
    """Upload a file with a resumable multipart upload."""
    object_name = object_name or Path(local_path).name
    session = None
    try:
        session = UploadSession(
            get_client(ctx),
            bucket,
            object_name,
            local_path,
            upload_id=upload_id,
            chunk_size=chunk_size,
            part_concurrency=concurrency,
            max_retry_count=max_retries,
        )
        console.print(
            f"Uploading [cyan]{local_path}[/cyan] to [green]{bucket}/{object_name}[/green] "
            f"in {len(session.parts)} parts"
        )

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Uploading...", total=session.total_size)
            session.reporter.subscribe(
                on_progress=lambda event: progress.update(task, completed=event.uploaded_bytes)
            )
            result = asyncio.run(session.start())

        console.print("[green]✓[/green] Upload completed successfully!")
        if result.etag:
            console.print(f"ETag: {result.etag}")

    except KeyboardInterrupt:
        if session is not None and session.upload_id:
            console.print(
                f"\n[yellow]Interrupted. Resume with --upload-id {session.upload_id}[/yellow]"
            )
        sys.exit(1)
    except UploadIncompleteError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[yellow]Retry the failed parts with --upload-id {e.upload_id}[/yellow]")
        sys.exit(1)
    except BosStorageError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.argument("object_name")
@click.argument("upload_id")
@click.pass_context
def list_parts(ctx, bucket, object_name, upload_id):
    """List the parts already stored for a multipart upload."""
    try:
        parts = get_client(ctx).list_all_parts(bucket, object_name, upload_id)
        if not parts:
            console.print("[yellow]No parts uploaded yet.[/yellow]")
            return

        table = Table(title=f"Parts of {upload_id}")
        table.add_column("Part", justify="right", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("ETag", style="green")
        table.add_column("Last Modified", style="blue")

        for part in parts:
            table.add_row(
                str(part.part_number),
                format_size(part.size),
                part.etag,
                str(part.last_modified or "N/A"),
            )

        console.print(table)

    except BosStorageError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.option("--prefix", default="", help="Only list keys with this prefix")
@click.pass_context
def list_uploads(ctx, bucket, prefix):
    """List in-progress multipart uploads of a bucket."""
    try:
        result = get_client(ctx).list_multipart_uploads(bucket, prefix=prefix or None)
        if not result.uploads:
            console.print("[yellow]No multipart uploads in progress.[/yellow]")
            return

        table = Table(title=f"Multipart Uploads in {bucket}")
        table.add_column("Key", style="cyan")
        table.add_column("Upload ID", style="green")
        table.add_column("Initiated", style="blue")
        table.add_column("Storage Class")

        for item in result.uploads:
            table.add_row(
                item.key,
                item.upload_id,
                str(item.initiated or "N/A"),
                item.storage_class or "N/A",
            )

        console.print(table)

    except BosStorageError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.argument("object_name")
@click.argument("upload_id")
@click.pass_context
def abort(ctx, bucket, object_name, upload_id):
    """Abort a multipart upload and release its parts."""
    try:
        get_client(ctx).abort_multipart_upload(bucket, object_name, upload_id)
        console.print(f"[green]✓[/green] Aborted upload {upload_id}")
    except BosStorageError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.option("--max-age-hours", type=int, default=24, show_default=True, help="Abort uploads older than this")
@click.pass_context
def cleanup(ctx, bucket, max_age_hours):
    """Abort multipart uploads abandoned for longer than --max-age-hours."""
    try:
        count = get_client(ctx).cleanup_abandoned_uploads(bucket, max_age_hours)
        console.print(f"[green]✓[/green] Cleaned up {count} abandoned upload(s)")
    except BosStorageError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def main():
    """Main entry point."""
    cli()
