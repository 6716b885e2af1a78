"""Thin CLI wrapper for sitepipe.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from sitepipe import __version__
from sitepipe.config import (
    ConfigurationError,
    get_settings,
    load_site_config,
    print_settings_json,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from sitepipe.config import Settings, SiteConfig
    from sitepipe.pipeline.service import Pipeline

app = typer.Typer(
    name="sitepipe",
    help="Static site deployment pipeline - build, publish and serve",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "building": "blue",
    "publishing": "blue",
    "pending": "yellow",
}


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(console=err_console, rich_tracebacks=True, show_path=False)
    )
    root.setLevel(level)


def print_json(data: Any) -> None:
    """Print JSON without markup processing or wrapping."""
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"sitepipe version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Static site deployment pipeline - build, publish and serve."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def _load_site(settings: "Settings", site_file: Path | None = None) -> "SiteConfig":
    try:
        return load_site_config(settings, site_file=site_file)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error ({e.code}):[/red] {e}")
        raise typer.Exit(code=1) from None


def _session_factory(settings: "Settings") -> "sessionmaker[Session]":
    from sitepipe.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


def _open_pipeline(
    site_file: Path | None = None, source_dir: Path | None = None
) -> "Pipeline":
    """Validate configuration and wire a pipeline, exiting on errors."""
    from sitepipe.pipeline.service import create_pipeline, remember_deployed
    from sitepipe.source.checkout import LocalTreeSource

    settings = get_settings()
    site = _load_site(settings, site_file)
    factory = _session_factory(settings)
    source = LocalTreeSource(source_dir) if source_dir is not None else None
    try:
        pipeline = create_pipeline(settings, factory, source=source, site=site)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error ({e.code}):[/red] {e}")
        raise typer.Exit(code=1) from None

    with factory() as session:
        remember_deployed(pipeline, session, settings.dedup_window)
    return pipeline


def _print_runs(runs: list[Any], json_output: bool) -> None:
    from sitepipe.pipeline.service import run_to_dict

    if json_output:
        print_json([run_to_dict(r) for r in runs])
        return
    for r in runs:
        color = STATUS_COLORS.get(r.status, "white")
        console.print(f"  [{color}]Run #{r.id}[/{color}] {r.revision_id}")
        console.print(f"    Branch: {r.branch}")
        console.print(f"    Status: {r.status}")
        if r.artifact_id:
            console.print(f"    Artifact: {r.artifact_id[:23]}...")
        if r.retry_of:
            console.print(f"    Retry of: #{r.retry_of}")
        if r.error_message:
            console.print(f"    Error ({r.error_code}): {r.error_message}")
        console.print()


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Site:[/bold]")
    console.print(f"  Domain:              {settings.domain_name or '(unset)'}")
    console.print(f"  Tracked branch:      {settings.tracked_branch}")
    console.print(f"  Region:              {settings.region}")
    console.print(
        f"  TTL (min/default/max): {settings.min_ttl}/{settings.default_ttl}/"
        f"{settings.max_ttl}"
    )
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Workspace directory: {settings.workspace_dir}")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Publish directory:   {settings.publish_dir}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Compute type:        {settings.compute_type}")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Cancel stale builds: {settings.cancel_stale_builds}")
    console.print()
    console.print("[bold]Publish:[/bold]")
    console.print(f"  Op timeout:          {settings.publish_op_timeout}")
    console.print(f"  Max attempts:        {settings.publish_max_attempts}")
    console.print(f"  Workers:             {settings.publish_max_workers}")


@app.command()
def check(
    site_file: Annotated[
        Path | None,
        typer.Option("--site-file", "-f", help="YAML site file"),
    ] = None,
    canonical_endpoint: Annotated[
        str,
        typer.Option("--canonical-endpoint", help="Edge endpoint of the www host"),
    ] = "<canonical-edge-endpoint>",
    alias_endpoint: Annotated[
        str,
        typer.Option("--alias-endpoint", help="Edge endpoint of the apex host"),
    ] = "<alias-edge-endpoint>",
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Validate the site configuration and show derived edge and DNS setup."""
    from dataclasses import asdict

    from sitepipe.edge.bindings import DomainBinding, dns_records, edge_configs

    site = _load_site(get_settings(), site_file)
    binding = DomainBinding.from_site(site)
    configs = edge_configs(site)
    records = dns_records(binding, canonical_endpoint, alias_endpoint)

    if json_output:
        print_json(
            {
                "site": site.model_dump(mode="json"),
                "binding": asdict(binding),
                "edge": [asdict(c) for c in configs],
                "dns": [asdict(r) for r in records],
            }
        )
        return

    console.print("[green]Site configuration is valid[/green]")
    console.print()
    console.print(f"  Canonical host: {binding.canonical_host}")
    console.print(f"  Alias host:     {binding.alias_host} (301 -> https)")
    console.print(f"  Certificate:    {binding.certificate_arn}")
    console.print()
    for c in configs:
        console.print(f"  [bold]Edge {', '.join(c.aliases)}[/bold]")
        console.print(f"    Origin: {c.origin_id}")
        console.print(f"    Viewer protocol: {c.viewer_protocol_policy.value}")
        console.print(f"    TTL: {c.min_ttl}/{c.default_ttl}/{c.max_ttl}")
        console.print(f"    Logs: {c.log_prefix}")
    console.print()
    for r in records:
        console.print(f"  {r.type} {r.name} -> {r.dns_name} ({r.hosted_zone_id})")


@app.command()
def trigger(
    revision: Annotated[str, typer.Argument(help="Revision (commit) id to deploy")],
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch of the revision"),
    ] = None,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", help="Build from a local tree instead of git"),
    ] = None,
    site_file: Annotated[
        Path | None,
        typer.Option("--site-file", "-f", help="YAML site file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Deploy a revision and wait for the run to finish.

    A revision that was already deployed successfully is not rebuilt.
    """
    from datetime import datetime, timezone

    from sitepipe.source.events import is_qualifying_event
    from sitepipe.types import EventKind

    pipeline = _open_pipeline(site_file, source_dir)
    event = {
        "revisionId": revision,
        "branch": branch or pipeline.site.tracked_branch,
        "eventKind": EventKind.UPDATED.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not is_qualifying_event(event, pipeline.site.tracked_branch):
        err_console.print(
            f"[red]Invalid trigger:[/red] revision {revision!r} on "
            f"{event['branch']!r} does not qualify "
            f"(tracked branch: {pipeline.site.tracked_branch})"
        )
        raise typer.Exit(code=1)
    if pipeline.watcher.has_seen(revision):
        if json_output:
            print_json([])
        else:
            console.print(f"[yellow]Revision {revision} is already deployed[/yellow]")
        return
    pipeline.watcher.receive(event)

    runs = pipeline.orchestrator.run_until_idle()
    _print_runs(runs, json_output)
    if any(r.status == "failed" for r in runs):
        raise typer.Exit(code=1)


runs_app = typer.Typer(help="Inspect and retry pipeline runs")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    revision: Annotated[
        str | None,
        typer.Option("--revision", "-r", help="Filter by revision id"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status",
            "-s",
            help="Filter by status (pending/building/publishing/succeeded/failed)",
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List pipeline runs, newest first."""
    from sitepipe.pipeline.service import list_runs
    from sitepipe.types import RunStatus

    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            err_console.print(f"[red]Invalid status: {status}[/red]")
            err_console.print(
                "Valid values: " + ", ".join(s.value for s in RunStatus)
            )
            raise typer.Exit(code=1) from None

    factory = _session_factory(get_settings())
    with factory() as session:
        runs = list_runs(
            session, revision_id=revision, status=status_filter, limit=limit
        )

        if not runs:
            if json_output:
                print_json([])
            else:
                console.print("[yellow]No pipeline runs found[/yellow]")
            return

        if not json_output:
            console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
            console.print()
        _print_runs(runs, json_output)


@runs_app.command("show")
def runs_show(
    run_id: Annotated[int, typer.Argument(help="Run ID to show")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show details of a pipeline run."""
    from sitepipe.pipeline.service import RunNotFoundError, get_run, run_to_dict

    factory = _session_factory(get_settings())
    with factory() as session:
        try:
            run = get_run(session, run_id)
        except RunNotFoundError as e:
            err_console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            print_json(run_to_dict(run))
            return

        data = run_to_dict(run)
        color = STATUS_COLORS.get(run.status, "white")
        console.print(f"[bold]Run #{run.id}[/bold] [{color}]{run.status}[/{color}]")
        console.print()
        for key in (
            "revision_id",
            "branch",
            "stage",
            "requested_at",
            "started_at",
            "finished_at",
            "artifact_id",
            "log_path",
            "retry_of",
            "error_type",
            "error_code",
            "error_message",
        ):
            if data[key] is not None:
                console.print(f"  {key.replace('_', ' ').capitalize():<14} {data[key]}")
        if run.manifest:
            console.print(f"  Manifest ({len(run.manifest)} files):")
            for path in run.manifest:
                console.print(f"    {path}")


@runs_app.command("retry")
def runs_retry(
    run_id: Annotated[int, typer.Argument(help="Finished run to retry")],
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", help="Build from a local tree instead of git"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Run the revision of a finished run again as a new run."""
    from sitepipe.pipeline.orchestrator import RunNotRetryableError
    from sitepipe.pipeline.service import RunNotFoundError

    pipeline = _open_pipeline(source_dir=source_dir)
    try:
        pipeline.orchestrator.retry(run_id)
    except (RunNotFoundError, RunNotRetryableError) as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    runs = pipeline.orchestrator.run_until_idle()
    _print_runs(runs, json_output)
    if any(r.status == "failed" for r in runs):
        raise typer.Exit(code=1)


@app.command()
def published(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the currently published set."""
    from dataclasses import asdict

    from sitepipe.publish.target import LocalDirectoryTarget

    settings = get_settings()
    state = LocalDirectoryTarget(settings.publish_dir).read_state()
    if json_output:
        print_json(asdict(state))
        return
    if state.artifact_id is None:
        console.print("[yellow]Nothing has been published yet[/yellow]")
        return
    console.print(f"[bold]Published set v{state.version}[/bold]")
    console.print(f"  Artifact:  {state.artifact_id}")
    console.print(f"  Published: {state.published_at}")
    console.print(f"  Files ({len(state.manifest)}):")
    for path in state.manifest:
        console.print(f"    {path}")


@app.command()
def poll(
    once: Annotated[
        bool,
        typer.Option("--once", help="Poll a single time and run what changed"),
    ] = False,
    interval: Annotated[
        int | None,
        typer.Option("--interval", "-i", help="Seconds between polls"),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", envvar="SITEPIPE_API_TOKEN", help="API token"),
    ] = None,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", help="Build from a local tree instead of git"),
    ] = None,
) -> None:
    """Watch the tracked branch head and deploy new revisions."""
    import threading

    import httpx

    from sitepipe.source.poller import BranchPoller, PollError

    settings = get_settings()
    if not settings.branch_api_url:
        err_console.print("[red]Configuration error:[/red] branch_api_url is required")
        raise typer.Exit(code=1)

    pipeline = _open_pipeline(source_dir=source_dir)
    headers = {"Authorization": f"Bearer {token}"} if token else None

    with httpx.Client(follow_redirects=True) as client:
        poller = BranchPoller(
            client,
            settings.branch_api_url,
            pipeline.site.tracked_branch,
            on_event=pipeline.watcher.receive,
            headers=headers,
        )
        if once:
            try:
                poller.poll_once()
            except PollError as e:
                err_console.print(f"[red]Poll failed ({e.code}):[/red] {e}")
                raise typer.Exit(code=1) from None
            _print_runs(pipeline.orchestrator.run_until_idle(), json_output=False)
            return

        stop = threading.Event()
        pipeline.orchestrator.start()
        console.print(
            f"Polling {settings.branch_api_url} every "
            f"{interval or settings.poll_interval}s (Ctrl-C to stop)"
        )
        try:
            poller.run(interval or settings.poll_interval, stop)
        except KeyboardInterrupt:
            stop.set()
        finally:
            pipeline.orchestrator.stop()


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to")] = 8000,
) -> None:
    """Run the control HTTP API (webhooks, runs, published set)."""
    import uvicorn

    console.print(f"[bold blue]sitepipe API[/bold blue] on http://{host}:{port}")
    uvicorn.run("web.app:app", host=host, port=port, log_config=None)


@app.command("serve-edge")
def serve_edge(
    host: Annotated[str, typer.Option("--host", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to")] = 8080,
    site_file: Annotated[
        Path | None,
        typer.Option("--site-file", "-f", help="YAML site file"),
    ] = None,
) -> None:
    """Serve the published site through a caching edge node."""
    import uvicorn

    from sitepipe.edge.origin import PublishedSetOrigin
    from sitepipe.edge.server import create_edge_app
    from sitepipe.publish.target import LocalDirectoryTarget

    settings = get_settings()
    site = _load_site(settings, site_file)
    origin = PublishedSetOrigin(
        LocalDirectoryTarget(settings.publish_dir),
        index_document=site.index_document,
        error_document=site.error_document,
    )
    edge_app = create_edge_app(
        site,
        origin,
        logs_dir=settings.logs_dir,
        max_entries=settings.edge_max_entries,
    )
    console.print(
        f"[bold blue]sitepipe edge[/bold blue] for {site.canonical_host} "
        f"on http://{host}:{port}"
    )
    uvicorn.run(edge_app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
