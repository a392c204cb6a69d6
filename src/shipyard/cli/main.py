"""shipyard command-line interface.

Implements the ``shipyard`` command group: deploy a repository, poll or
list deployments, preview the plan or bootstrap script, and run the
deployment API server.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click

from shipyard import __version__
from shipyard.config.loader import load_credentials, load_settings
from shipyard.deploy.bootstrap import generate_bootstrap_script
from shipyard.deploy.compute import create_compute_client
from shipyard.deploy.coordinator import DeploymentCoordinator, check_app_port
from shipyard.deploy.planner import BedrockPlanGenerator, PlanGenerator, PlanResolver
from shipyard.deploy.profiler import profile_repository
from shipyard.deploy.provisioner import Provisioner
from shipyard.deploy.repository import (
    GitHubRepositorySource,
    parse_repository_reference,
)
from shipyard.deploy.store import JsonFileRecordStore
from shipyard.deploy.tracker import InstanceProbe, StatusTracker
from shipyard.lib.errors import (
    CloudSDKNotInstalledError,
    ConfigError,
    DeploymentError,
    ShipyardError,
)
from shipyard.lib.logging_config import get_logger, setup_logging
from shipyard.models.config import ShipyardSettings
from shipyard.models.profile import ProjectProfile
from shipyard.models.record import DeploymentRecord, LifecycleState, StatusSnapshot
from shipyard.models.request import CloudCredentials, DeploymentRequest

logger = get_logger(__name__)

# States after which the instance carries on without this process
_DETACH_STATES = frozenset(
    {LifecycleState.BOOTSTRAPPING, LifecycleState.READY, LifecycleState.FAILED}
)


@contextmanager
def handle_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in commands.

    Exit codes:
        2: Configuration error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except ShipyardError as e:
        logger.error(f"shipyard error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


@dataclass
class Runtime:
    """Wired components sharing one record store."""

    settings: ShipyardSettings
    store: JsonFileRecordStore
    coordinator: DeploymentCoordinator
    tracker: StatusTracker


def _plan_generator(settings: ShipyardSettings) -> PlanGenerator | None:
    if not settings.planner.enabled:
        return None
    try:
        return BedrockPlanGenerator(settings.planner)
    except CloudSDKNotInstalledError as exc:
        logger.warning(f"AI planning disabled: {exc}")
        return None


def build_runtime(settings: ShipyardSettings) -> Runtime:
    """Wire the store, coordinator and tracker from settings."""
    store = JsonFileRecordStore(settings.state_path)
    probe = InstanceProbe(timeout=settings.tracker.probe_timeout)

    def provisioner_factory(credentials: CloudCredentials) -> Provisioner:
        client = create_compute_client(credentials, settings.provisioning)
        return Provisioner(client, settings.provisioning)

    coordinator = DeploymentCoordinator(
        store=store,
        repository_source=GitHubRepositorySource(settings.repository),
        resolver=PlanResolver(_plan_generator(settings), settings.planner),
        provisioner_factory=provisioner_factory,
        probe=probe,
        readiness=settings.readiness,
    )
    tracker = StatusTracker(store, probe=probe, settings=settings.tracker)
    return Runtime(settings, store, coordinator, tracker)


async def fetch_profile(
    settings: ShipyardSettings,
    repository_url: str,
    branch: str,
    app_port: int | None = None,
) -> ProjectProfile:
    """Fetch a repository snapshot and profile it."""
    owner, name = parse_repository_reference(repository_url)
    snapshot = await GitHubRepositorySource(settings.repository).fetch(
        owner, name, branch
    )
    return profile_repository(snapshot, app_port=app_port)


def _settings(ctx: click.Context) -> ShipyardSettings:
    settings: ShipyardSettings | None = ctx.obj.get("settings")
    if settings is None:
        settings = load_settings(ctx.obj.get("config_path"))
        ctx.obj["settings"] = settings
    return settings


def _echo_record(record: DeploymentRecord) -> None:
    color = {LifecycleState.READY: "green", LifecycleState.FAILED: "red"}.get(
        record.state
    )
    click.echo()
    click.secho(f"Deployment {record.state.value}", fg=color, bold=True)
    click.echo(f"  Id:        {record.deployment_id}")
    click.echo(f"  Progress:  {record.progress}%")
    resources = record.resources
    if resources.instance_id:
        click.echo(f"  Instance:  {resources.instance_id} ({resources.instance_size})")
    if resources.public_address:
        click.echo(f"  URL:       http://{resources.public_address}")
    if record.error is not None:
        click.echo(f"  Error:     {record.error.message}")
        for hint in record.error.remediation:
            click.echo(f"    - {hint}")
    click.echo()


def _echo_snapshot(snapshot: StatusSnapshot) -> None:
    if not snapshot.found:
        click.secho(snapshot.message, fg="yellow")
        return
    phase = snapshot.phase.value if snapshot.phase else "unknown"
    click.secho(f"Deployment {snapshot.deployment_id}", bold=True)
    click.echo(f"  Phase:     {phase}")
    click.echo(f"  Progress:  {snapshot.progress}% ({snapshot.progress_mode.value})")
    click.echo(f"  Message:   {snapshot.message}")
    click.echo(f"  Ready:     {'yes' if snapshot.application_ready else 'no'}")
    for url in snapshot.urls:
        click.echo(f"  URL:       {url}")
    if snapshot.error is not None:
        click.echo(f"  Error:     {snapshot.error.message}")
        for hint in snapshot.error.remediation:
            click.echo(f"    - {hint}")


async def _run_deploy(
    runtime: Runtime,
    request: DeploymentRequest,
    wait: bool,
    poll_interval: float = 1.0,
) -> DeploymentRecord:
    """Start a deployment and wait for it to finish or to start bootstrapping."""
    deployment_id = await runtime.coordinator.start(request)
    if wait:
        return await runtime.coordinator.wait(deployment_id)

    while True:
        record = runtime.store.get(deployment_id)
        if record is not None and record.state in _DETACH_STATES:
            return record
        await asyncio.sleep(poll_interval)


@click.group(name="shipyard")
@click.version_option(__version__, prog_name="shipyard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: ./shipyard.yaml when present)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool, quiet: bool) -> None:
    """Deploy GitHub repositories to cloud instances."""
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("repository_url")
@click.option("--branch", "-b", default="main", show_default=True)
@click.option("--intent", "-i", default="", help="What the deployment is for")
@click.option("--region", "-r", default=None, help="Overrides AWS_REGION")
@click.option("--port", "app_port", type=int, default=None, help="Application port")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Wait for the application to become ready",
)
@click.pass_context
def deploy(
    ctx: click.Context,
    repository_url: str,
    branch: str,
    intent: str,
    region: str | None,
    app_port: int | None,
    wait: bool,
) -> None:
    """Deploy REPOSITORY_URL to a new cloud instance.

    With --no-wait the command returns once the instance is running and
    bootstrapping; follow it with 'shipyard status'.
    """
    with handle_errors():
        runtime = build_runtime(_settings(ctx))
        request = DeploymentRequest(
            repository_url=repository_url,
            branch=branch,
            intent=intent,
            app_port=app_port,
            credentials=load_credentials(region=region),
        )
        click.echo(f"Starting deployment {request.request_id}")
        record = asyncio.run(_run_deploy(runtime, request, wait))
        _echo_record(record)
        if record.state == LifecycleState.FAILED:
            sys.exit(3)


@cli.command()
@click.argument("deployment_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot")
@click.pass_context
def status(ctx: click.Context, deployment_id: str, as_json: bool) -> None:
    """Show the status of DEPLOYMENT_ID."""
    with handle_errors():
        runtime = build_runtime(_settings(ctx))
        snapshot = asyncio.run(runtime.tracker.get_status(deployment_id))
        if as_json:
            click.echo(snapshot.model_dump_json(indent=2))
        else:
            _echo_snapshot(snapshot)
        if not snapshot.found:
            sys.exit(1)


@cli.command(name="list")
@click.option("--json", "as_json", is_flag=True, help="Print the raw summaries")
@click.pass_context
def list_deployments(ctx: click.Context, as_json: bool) -> None:
    """List recorded deployments, newest first."""
    with handle_errors():
        runtime = build_runtime(_settings(ctx))
        summaries = runtime.tracker.list_deployments()
        if as_json:
            click.echo(
                json.dumps([s.model_dump(mode="json") for s in summaries], indent=2)
            )
            return
        if not summaries:
            click.echo("No deployments recorded")
            return
        for summary in summaries:
            address = summary.public_address or "-"
            click.echo(
                f"{summary.deployment_id}  {summary.phase.value:<16} "
                f"{summary.progress:>3}%  {address:<15}  "
                f"{summary.repository_url}@{summary.branch}"
            )


@cli.command()
@click.argument("repository_url")
@click.option("--branch", "-b", default="main", show_default=True)
@click.option("--intent", "-i", default="", help="What the deployment is for")
@click.option("--region", "-r", default=None, help="Overrides AWS_REGION")
@click.pass_context
def plan(
    ctx: click.Context,
    repository_url: str,
    branch: str,
    intent: str,
    region: str | None,
) -> None:
    """Print the detected profile and resolved plan as JSON."""
    with handle_errors():
        settings = _settings(ctx)
        request = DeploymentRequest(
            repository_url=repository_url,
            branch=branch,
            intent=intent,
            credentials=load_credentials(region=region),
        )
        resolver = PlanResolver(_plan_generator(settings), settings.planner)

        async def resolve() -> dict[str, object]:
            profile = await fetch_profile(settings, repository_url, branch)
            resolved = await resolver.resolve(request, profile)
            return {
                "profile": profile.model_dump(mode="json"),
                "plan": resolved.model_dump(mode="json"),
            }

        click.echo(json.dumps(asyncio.run(resolve()), indent=2))


@cli.command()
@click.argument("repository_url")
@click.option("--branch", "-b", default="main", show_default=True)
@click.option("--port", "app_port", type=int, default=None, help="Application port")
@click.pass_context
def bootstrap(
    ctx: click.Context, repository_url: str, branch: str, app_port: int | None
) -> None:
    """Print the bootstrap script generated for REPOSITORY_URL."""
    with handle_errors():
        settings = _settings(ctx)
        check_app_port(app_port)
        profile = asyncio.run(
            fetch_profile(settings, repository_url, branch, app_port)
        )
        click.echo(generate_bootstrap_script(repository_url, branch, profile))


@cli.command()
@click.option("--host", "-h", default="127.0.0.1", show_default=True)
@click.option("--port", "-p", type=int, default=8000, show_default=True)
@click.option("--cors-origins", default="*", help="Comma-separated CORS origins")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, cors_origins: str) -> None:
    """Run the deployment API server."""
    with handle_errors():
        import uvicorn

        from shipyard.serve.server import create_app

        runtime = build_runtime(_settings(ctx))
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
        app = create_app(runtime.coordinator, runtime.tracker, origins)

        if host == "0.0.0.0":  # noqa: S104
            logger.warning(
                "Server binding to 0.0.0.0 exposes it to all network interfaces. "
                "Use 127.0.0.1 for local-only access."
            )
        click.echo(f"Deployment API listening on http://{host}:{port}")
        uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
