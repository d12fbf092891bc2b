"""CLI interface for bucketsync."""

import logging
import time
from pathlib import Path
from typing import Any, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .api import ObjectStoreClient
from .config import config
from .exceptions import BucketSyncError
from .models import NOT_FOUND, FileSystemNode, OperationResult
from .output import OutputFormatter
from .sync import SyncAction, SyncEngine
from .sync.snapshot import Snapshot
from .utils import format_iso_ms, format_size

logger = logging.getLogger(__name__)

_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "watchdog")


def _build_client(ctx: Any) -> ObjectStoreClient:
    return ObjectStoreClient(
        bucket=ctx.obj["bucket"], endpoint_url=ctx.obj["endpoint"]
    )


def _build_engine(ctx: Any) -> SyncEngine:
    root: Optional[str] = ctx.obj["root"]
    return SyncEngine(
        client=_build_client(ctx),
        root_dir=Path(root) if root else None,
    )


def _finish(ctx: Any, engine: SyncEngine, result: OperationResult, message: str) -> None:
    """Wait for scheduled sync work, then report an operation result."""
    out: OutputFormatter = ctx.obj["out"]
    engine.watcher.wait_idle()
    engine.stop()
    if out.json_output:
        out.output_json(result.to_dict())
    elif result.success:
        out.success(message)
    else:
        out.error(result.error or "Operation failed")
    if not result.success:
        ctx.exit(1)


def _add_tree_nodes(branch: Tree, nodes: tuple[FileSystemNode, ...]) -> None:
    for node in nodes:
        if node.type == "folder":
            child = branch.add(f"[bold blue]{node.name}/[/bold blue]")
            _add_tree_nodes(child, node.children or ())
        else:
            branch.add(f"{node.name} [dim]({format_size(node.size or 0)})[/dim]")


def _print_stats(out: OutputFormatter, stats: dict) -> None:
    out.print(
        f"Uploaded: {stats.get('uploads', 0)}  "
        f"Downloaded: {stats.get('downloads', 0)}  "
        f"Skipped: {stats.get('skips', 0)}  "
        f"Errors: {stats.get('errors', 0)}"
    )


@click.group()
@click.option(
    "--root",
    "-r",
    envvar="BUCKETSYNC_ROOT",
    type=click.Path(file_okay=False),
    help="Local directory to synchronize",
)
@click.option("--endpoint", envvar="BUCKETSYNC_ENDPOINT", help="S3 endpoint URL")
@click.option("--bucket", "-b", envvar="BUCKETSYNC_BUCKET", help="Bucket name")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any,
    root: Optional[str],
    endpoint: Optional[str],
    bucket: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """bucketsync - keep a local directory in step with an S3 bucket."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root
    ctx.obj["endpoint"] = endpoint
    ctx.obj["bucket"] = bucket
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("bucketsync").setLevel(logging.DEBUG)
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--save", is_flag=True, help="Store endpoint, bucket and root in the config file"
)
@click.pass_context
def init(ctx: Any, save: bool) -> None:
    """Make sure the bucket exists (creating it if needed)."""
    out: OutputFormatter = ctx.obj["out"]
    client = _build_client(ctx)

    if save:
        values = {
            name: ctx.obj[option]
            for name, option in (
                ("endpoint_url", "endpoint"),
                ("bucket", "bucket"),
                ("root_dir", "root"),
            )
            if ctx.obj[option]
        }
        path = config.save(**values)
        out.info(f"Configuration saved to {path}")

    if client.init():
        out.success(f"Bucket ready: {client.bucket}")
    else:
        out.error(f"Could not reach bucket {client.bucket} at {client.endpoint_url}")
        ctx.exit(1)


@main.command()
@click.pass_context
def watch(ctx: Any) -> None:
    """Watch the local directory and sync changes until interrupted."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _build_engine(ctx)

    def on_snapshot(snapshot: Snapshot) -> None:
        if out.json_output:
            out.output_json({"version": snapshot.version, "tree": snapshot.to_list()})
        else:
            out.info(f"Tree updated (version {snapshot.version})")

    engine.subscribe(on_snapshot)
    engine.start()
    if not engine.remote_available:
        out.warning("Object store unreachable - local changes will sync later")
    out.info(f"Watching {engine.root_dir} (Ctrl+C to stop)")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        out.info("Stopping...")
    finally:
        engine.stop()


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Run one full pass: push newer local files, then pull newer remote ones."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _build_engine(ctx)
    engine.root_dir.mkdir(parents=True, exist_ok=True)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        disable=out.quiet or out.json_output,
    ) as progress:
        progress.add_task(f"Syncing {engine.root_dir}...", total=None)
        engine.client.init()
        result = engine.sync_all()

    engine.stop()
    if out.json_output:
        out.output_json(result.to_dict())
    elif result.success:
        _print_stats(out, result.extra.get("stats", {}))
    else:
        out.error(result.error or "Sync failed")
    if not result.success:
        ctx.exit(1)


@main.command()
@click.pass_context
def pull(ctx: Any) -> None:
    """Download remote files that are missing or newer locally."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _build_engine(ctx)
    result = engine.force_sync()
    engine.stop()
    if out.json_output:
        out.output_json(result.to_dict())
    elif result.success:
        _print_stats(out, result.extra.get("stats", {}))
    else:
        out.error(result.error or "Pull failed")
    if not result.success:
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show what a full sync pass would do."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _build_engine(ctx)
    try:
        decisions = engine.reconciler.plan()
    except BucketSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    finally:
        engine.stop()

    if out.json_output:
        out.output_json(
            [
                {
                    "key": d.key,
                    "action": d.action.value,
                    "reason": d.reason,
                    "localMtime": d.local_mtime_ms,
                    "remoteMtime": d.remote_mtime_ms,
                }
                for d in decisions
            ]
        )
        return

    pending = [d for d in decisions if d.action != SyncAction.SKIP]
    if not pending:
        out.success("Everything is in sync")
        return

    table = Table(title="Pending changes")
    table.add_column("Action")
    table.add_column("Path")
    table.add_column("Reason", style="dim")
    for decision in pending:
        color = "green" if decision.action == SyncAction.UPLOAD else "cyan"
        table.add_row(
            f"[{color}]{decision.action.value}[/{color}]",
            "/" + decision.key,
            decision.reason,
        )
    out.print(table)


@main.command()
@click.pass_context
def tree(ctx: Any) -> None:
    """Print the local tree snapshot."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _build_engine(ctx)
    snapshot = engine.refresh()
    engine.stop()

    if out.json_output:
        out.output_json(snapshot.to_list())
        return
    root = Tree(f"[bold]{engine.root_dir}[/bold]")
    _add_tree_nodes(root, snapshot.nodes)
    out.print(root)


@main.command(name="ls")
@click.option("--metadata", "-m", is_flag=True, help="Fetch origin mtime of each object")
@click.pass_context
def list_remote(ctx: Any, metadata: bool) -> None:
    """List the objects stored in the bucket."""
    out: OutputFormatter = ctx.obj["out"]
    client = _build_client(ctx)
    try:
        objects = client.list_all()
        rows = []
        for obj in objects:
            origin = None
            if metadata:
                meta = client.head_metadata(obj.key)
                if meta is not NOT_FOUND and meta.origin_mtime_ms is not None:
                    origin = format_iso_ms(meta.origin_mtime_ms)
            rows.append((obj, origin))
    except BucketSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    finally:
        client.close()

    if out.json_output:
        out.output_json(
            [
                {
                    "key": obj.key,
                    "size": obj.size,
                    "lastModified": obj.last_modified,
                    "originMtime": origin,
                }
                for obj, origin in rows
            ]
        )
        return

    table = Table()
    table.add_column("Key")
    table.add_column("Size", justify="right")
    table.add_column("Stored")
    if metadata:
        table.add_column("Origin mtime")
    for obj, origin in rows:
        cells = [
            obj.key,
            format_size(obj.size),
            obj.last_modified.isoformat() if obj.last_modified else "-",
        ]
        if metadata:
            cells.append(origin or "-")
        table.add_row(*cells)
    out.print(table)


@main.command()
@click.argument("parent")
@click.argument("name")
@click.option("--content", "-c", default=None, help="Initial file content")
@click.pass_context
def touch(ctx: Any, parent: str, name: str, content: Optional[str]) -> None:
    """Create file NAME inside PARENT (a running watcher uploads it)."""
    engine = _build_engine(ctx)
    result = engine.create_file(parent, name, content)
    _finish(ctx, engine, result, f"Created {parent.rstrip('/')}/{name}")


@main.command()
@click.argument("parent")
@click.argument("name")
@click.pass_context
def mkdir(ctx: Any, parent: str, name: str) -> None:
    """Create folder NAME inside PARENT."""
    engine = _build_engine(ctx)
    result = engine.create_folder(parent, name)
    _finish(ctx, engine, result, f"Created {parent.rstrip('/')}/{name}/")


@main.command()
@click.argument("path")
@click.pass_context
def rm(ctx: Any, path: str) -> None:
    """Delete PATH locally and from the bucket."""
    engine = _build_engine(ctx)
    result = engine.delete_item(path)
    _finish(ctx, engine, result, f"Deleted {path}")


@main.command()
@click.argument("source")
@click.argument("target_dir")
@click.pass_context
def mv(ctx: Any, source: str, target_dir: str) -> None:
    """Move SOURCE into TARGET_DIR (re-uploading under the new key)."""
    engine = _build_engine(ctx)
    result = engine.move_item(source, target_dir)
    _finish(ctx, engine, result, f"Moved {source} -> {target_dir}")


@main.command(name="import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.argument("target_dir", default="/")
@click.pass_context
def import_file(ctx: Any, source: str, target_dir: str) -> None:
    """Copy local file SOURCE into TARGET_DIR of the synced tree and upload it."""
    engine = _build_engine(ctx)
    result = engine.import_file(source, target_dir)
    _finish(ctx, engine, result, f"Imported {source} -> {target_dir}")


@main.command()
@click.argument("path")
@click.option("--remote", is_flag=True, help="Read the object from the bucket")
@click.pass_context
def cat(ctx: Any, path: str, remote: bool) -> None:
    """Print the content of a file."""
    out: OutputFormatter = ctx.obj["out"]
    if remote:
        client = _build_client(ctx)
        try:
            click.echo(client.read(path).decode("utf-8", errors="replace"), nl=False)
        except BucketSyncError as e:
            out.error(str(e))
            ctx.exit(1)
        finally:
            client.close()
        return

    engine = _build_engine(ctx)
    result = engine.read_file(path)
    engine.stop()
    if not result.success:
        out.error(result.error or "Read failed")
        ctx.exit(1)
        return
    click.echo(result.content or "", nl=False)


if __name__ == "__main__":
    main()
