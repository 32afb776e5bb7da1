"""Main entry point for the gisops command line.

Sets up the Typer CLI application, performs dependency injection (Composition
Root) and defines the job and edit commands.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import typer
from typing_extensions import Annotated

from gisops import __version__
from gisops.core.services.batch_edit import BatchEditCoordinator
from gisops.core.services.job_client import JobClient
from gisops.core.services.job_service import JobService
from gisops.core.services.poller import Poller
from gisops.domain.errors import GisOpsError, NotReadyError, PollTimeoutError, RemoteJobFailure, ValidationError
from gisops.domain.events.api_events import EventDispatcher
from gisops.domain.interfaces.job_backend import JobBackend
from gisops.domain.interfaces.transport import Transport
from gisops.domain.models.common import BackoffPolicy, JobId
from gisops.domain.models.edits import AddItem, BatchEditRequest, DeleteItem, UpdateItem
from gisops.domain.models.jobs import JobHandle, JobStatus
from gisops.infrastructure.backends import (
    ElevationBackend,
    GenericJobBackend,
    GeoprocessingBackend,
    PortalPublishBackend,
)
from gisops.infrastructure.cli.display import ConsoleDisplay
from gisops.infrastructure.config.settings import (
    get_api_key,
    get_config,
    get_log_level,
    get_poll_policy,
    get_rate_limit,
    get_request_timeout,
    get_service_url,
    load_configuration,
)
from gisops.infrastructure.http.auth import static_token
from gisops.infrastructure.http.httpx_transport import HttpxTransport
from gisops.infrastructure.monitoring.logger_setup import setup_logging
from gisops.infrastructure.resilience.api_retry import ApiRetryService
from gisops.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

BACKENDS = ("jobs", "geoprocessing", "elevation", "portal")


# --- Dependency Injection Container (Manual) ---

def build_transport() -> Transport:
    """Creates the HTTP transport. Tests replace this to avoid the network."""
    return HttpxTransport(token_supplier=static_token(get_api_key()), timeout=get_request_timeout())


def build_backend(name: str, url: Optional[str], task: Optional[str] = None, username: Optional[str] = None) -> JobBackend:
    url = url or get_service_url(name)
    if name == "elevation":
        try:
            return ElevationBackend(task or "Profile", service_url=url)
        except ValidationError as e:
            raise typer.BadParameter(str(e))
    if not url:
        raise typer.BadParameter(f"No URL given for backend '{name}' (use --url or services.{name} in config).")
    if name == "geoprocessing":
        return GeoprocessingBackend(url)
    if name == "portal":
        username = username or get_config("auth.username")
        if not username:
            raise typer.BadParameter("The portal backend needs --user (or auth.username in config).")
        return PortalPublishBackend(url, str(username))
    return GenericJobBackend(url)


def create_dependencies(
    backend_name: str = "jobs",
    url: Optional[str] = None,
    task: Optional[str] = None,
    username: Optional[str] = None,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command invocation.

    This acts as the Composition Root.
    """
    load_configuration()
    setup_logging(log_level=get_log_level(), log_file=get_config("logging.file"))

    dependencies: Dict[str, Any] = {}
    if backend_name in BACKENDS:
        dependencies["backend"] = build_backend(backend_name, url, task, username)
    dependencies["ui"] = ConsoleDisplay()
    dependencies["dispatcher"] = EventDispatcher()
    dependencies["policy"] = get_poll_policy()
    limits = get_rate_limit()
    dependencies["rate_limiter"] = RateLimiter(capacity=int(limits["capacity"]), interval=limits["interval"])
    dependencies["transport"] = build_transport()
    dependencies["retry_service"] = ApiRetryService(
        transport=dependencies["transport"],
        rate_limiter=dependencies["rate_limiter"],
        policy=dependencies["policy"],
        dispatcher=dependencies["dispatcher"],
        service_name=backend_name,
    )
    if "backend" in dependencies:
        dependencies["job_client"] = JobClient(dependencies["backend"], dependencies["retry_service"])
        dependencies["poller"] = Poller(dependencies["job_client"], dispatcher=dependencies["dispatcher"])
        dependencies["job_service"] = JobService(
            dependencies["job_client"],
            dependencies["poller"],
            default_policy=dependencies["policy"],
            cancel_on_timeout=bool(get_config("poll.cancel_on_timeout", False)),
        )
    logger.info(f"Dependencies initialized for backend '{backend_name}'")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="gisops",
    help=f"gisops v{__version__}: run long-running GIS jobs and atomic feature edits.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---

def run_async(deps: Dict[str, Any], command: Callable[[], Awaitable[Any]]) -> Any:
    """Runs an async command, renders taxonomy errors and closes the transport."""

    async def runner() -> Any:
        try:
            return await command()
        finally:
            await deps["transport"].aclose()

    ui: ConsoleDisplay = deps["ui"]
    try:
        return asyncio.run(runner())
    except RemoteJobFailure as e:
        ui.display_error(str(e))
        ui.display_messages(e.handle, e.messages)
        raise typer.Exit(code=1)
    except PollTimeoutError as e:
        ui.display_warning(str(e))
        raise typer.Exit(code=2)
    except GisOpsError as e:
        logger.debug(f"Command failed with {type(e).__name__}", exc_info=True)
        ui.display_error(f"{type(e).__name__}: {e}")
        raise typer.Exit(code=1)


def load_json_argument(value: str) -> Any:
    """Parses inline JSON or, with a leading '@', the JSON file it names."""
    try:
        if value.startswith("@"):
            return json.loads(Path(value[1:]).read_text(encoding="utf-8"))
        return json.loads(value)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(f"Invalid JSON input: {e}")


def _deps(ctx: typer.Context) -> Dict[str, Any]:
    options = ctx.obj or {}
    return create_dependencies(
        options.get("backend", "jobs"), options.get("url"), options.get("task"), options.get("user"),
    )


def _policy(deps: Dict[str, Any], deadline: Optional[float], base_interval: Optional[float]) -> BackoffPolicy:
    policy: BackoffPolicy = deps["policy"]
    return BackoffPolicy(
        base_interval=base_interval or policy.base_interval,
        max_interval=max(policy.max_interval, base_interval or 0),
        deadline=deadline if deadline is not None else policy.deadline,
        jitter=policy.jitter,
        max_retries=policy.max_retries,
    )


# --- CLI Commands ---

DeadlineOption = Annotated[Optional[float], typer.Option("--deadline", help="Give up waiting after this many seconds.")]
IntervalOption = Annotated[Optional[float], typer.Option("--interval", help="Initial seconds between status polls.")]


@app.callback()
def main_callback(
    ctx: typer.Context,
    backend: Annotated[str, typer.Option("--backend", "-b", help=f"Job service kind: {', '.join(BACKENDS)}.")] = "jobs",
    url: Annotated[Optional[str], typer.Option("--url", "-u", help="Service or task URL.")] = None,
    task: Annotated[Optional[str], typer.Option("--task", help="Elevation task (Profile, Viewshed, SummarizeElevation).")] = None,
    user: Annotated[Optional[str], typer.Option("--user", help="Portal user owning published items.")] = None,
):
    """Selects the job service the commands talk to."""
    if backend not in BACKENDS:
        raise typer.BadParameter(f"Unknown backend '{backend}'. Choose one of: {', '.join(BACKENDS)}.")
    ctx.obj = {"backend": backend, "url": url, "task": task, "user": user}


@app.command()
def submit(
    ctx: typer.Context,
    params: Annotated[str, typer.Argument(help="Job parameters as JSON, or @file.json.")],
    wait: Annotated[bool, typer.Option("--wait", "-w", help="Poll until the job finishes and show its result.")] = False,
    deadline: DeadlineOption = None,
    interval: IntervalOption = None,
):
    """Submit a job and print its id."""
    job_params = load_json_argument(params)
    if not isinstance(job_params, dict):
        raise typer.BadParameter("Job parameters must be a JSON object.")
    deps = _deps(ctx)

    async def command() -> None:
        handle = await deps["job_client"].submit(job_params)
        deps["ui"].console.print(str(handle.id))
        if wait:
            payload = await deps["job_service"].wait_for_result(
                handle, _policy(deps, deadline, interval), on_status=deps["ui"].display_job_status,
            )
            deps["ui"].display_result(payload)

    run_async(deps, command)


@app.command()
def status(ctx: typer.Context, job_id: Annotated[str, typer.Argument(help="Job id.")]):
    """Show the current status of a job."""
    deps = _deps(ctx)
    handle = JobHandle(id=JobId(job_id))

    async def command() -> None:
        report = await deps["job_client"].get_status(handle)
        deps["ui"].display_job_status(handle, report)

    run_async(deps, command)


@app.command()
def wait(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    deadline: DeadlineOption = None,
    interval: IntervalOption = None,
):
    """Poll a job until it finishes."""
    deps = _deps(ctx)
    handle = JobHandle(id=JobId(job_id))

    async def command() -> JobStatus:
        return await deps["poller"].poll_until_complete(
            handle, _policy(deps, deadline, interval), on_status=deps["ui"].display_job_status,
        )

    final = run_async(deps, command)
    if final is not JobStatus.SUCCEEDED:
        raise typer.Exit(code=1)


@app.command()
def messages(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    since: Annotated[Optional[int], typer.Option("--since", help="Only messages after this sequence number.")] = None,
):
    """List the messages a job has produced."""
    deps = _deps(ctx)
    handle = JobHandle(id=JobId(job_id))

    async def command() -> None:
        deps["ui"].display_messages(handle, await deps["job_client"].get_messages(handle, since=since))

    run_async(deps, command)


@app.command()
def result(ctx: typer.Context, job_id: Annotated[str, typer.Argument(help="Job id.")]):
    """Show the outputs of a succeeded job."""
    deps = _deps(ctx)
    handle = JobHandle(id=JobId(job_id))

    async def command() -> None:
        try:
            payload = await deps["job_client"].get_result(handle)
        except NotReadyError as e:
            deps["ui"].display_warning(str(e))
            raise typer.Exit(code=3)
        deps["ui"].display_result(payload)

    run_async(deps, command)


@app.command()
def cancel(ctx: typer.Context, job_id: Annotated[str, typer.Argument(help="Job id.")]):
    """Request cancellation of a job (best effort)."""
    deps = _deps(ctx)
    handle = JobHandle(id=JobId(job_id))

    async def command() -> None:
        final = await deps["job_client"].cancel(handle)
        deps["ui"].display_info(f"Job {handle.id}: {final.value}")

    run_async(deps, command)


def parse_edit_request(data: Any, rollback: bool, use_global_ids: bool) -> BatchEditRequest:
    """Builds a BatchEditRequest from `{adds, updates, deletes}` JSON."""
    if not isinstance(data, dict):
        raise typer.BadParameter("Edits must be a JSON object with adds/updates/deletes.")
    try:
        adds = [
            AddItem(
                attributes=item.get("attributes", {}),
                geometry=item.get("geometry"),
                client_temp_id=item.get("clientTempId") or f"add-{index}",
            )
            for index, item in enumerate(data.get("adds", []))
        ]
        updates = [
            UpdateItem(id=item["id"], attributes=item.get("attributes", {}), geometry=item.get("geometry"))
            for item in data.get("updates", [])
        ]
        deletes = [DeleteItem(id=item["id"] if isinstance(item, dict) else item) for item in data.get("deletes", [])]
    except (AttributeError, KeyError, TypeError) as e:
        raise typer.BadParameter(f"Malformed edit item: {e}")
    return BatchEditRequest(
        adds=adds,
        updates=updates,
        deletes=deletes,
        use_global_ids=use_global_ids,
        rollback_on_failure=rollback,
        gdb_version=data.get("gdbVersion"),
        session_id=data.get("sessionId"),
    )


@app.command(name="apply-edits")
def apply_edits_command(
    ctx: typer.Context,
    layer: Annotated[int, typer.Argument(help="Layer index inside the feature service.")],
    edits: Annotated[str, typer.Argument(help="Edits as JSON, or @file.json.")],
    rollback: Annotated[bool, typer.Option("--rollback/--no-rollback", help="All-or-nothing semantics.")] = True,
    use_global_ids: Annotated[bool, typer.Option("--use-global-ids", help="Identify features by global id.")] = False,
):
    """Apply adds, updates and deletes to a layer in one atomic call."""
    options = ctx.obj or {}
    service_url = options.get("url") or get_service_url("feature")
    if not service_url:
        raise typer.BadParameter("No feature service URL given (use --url or services.feature in config).")
    request = parse_edit_request(load_json_argument(edits), rollback, use_global_ids)
    deps = create_dependencies("feature")
    coordinator = BatchEditCoordinator(service_url, deps["retry_service"], dispatcher=deps["dispatcher"])

    async def command() -> None:
        edit_result = await coordinator.apply_edits(layer, request)
        rolled_back = request.rollback_on_failure and not edit_result.all_succeeded()
        deps["ui"].display_edit_result(edit_result, rolled_back=rolled_back)
        if not edit_result.all_succeeded():
            raise typer.Exit(code=1)

    run_async(deps, command)


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
