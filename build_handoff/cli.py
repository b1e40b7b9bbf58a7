"""Thin CLI wrapper for build_handoff.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules; commands only wire
settings to the store, log sink, fleet and identity bindings.
"""

import logging
from pathlib import Path
from typing import Annotated

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from build_handoff import __version__
from build_handoff.config import Settings, get_settings, print_settings_json
from build_handoff.profile.io import ProfileError, resolve_profile
from build_handoff.profile.schema import PipelineProfile
from build_handoff.store.base import ObjectStore
from build_handoff.telemetry import ProgressReporter, open_log_sink
from build_handoff.types import StreamId

app = typer.Typer(
    name="handoff",
    help="Build artifact handoff - builder upload/halt and consumer bootstrap",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"build-handoff version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


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
    """Build artifact handoff - builder upload/halt and consumer bootstrap."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


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
        console.print_json(print_settings_json(settings))
        return

    def display(value: object, default: str = "(not set)") -> str:
        return default if value is None else str(value)

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Object store:[/bold]")
    console.print(f"  Bucket:              {settings.bucket}")
    console.print(f"  Backend:             {settings.store_backend}")
    console.print(f"  Root:                {settings.store_root}")
    console.print(f"  Endpoint:            {display(settings.store_endpoint)}")
    console.print()
    console.print("[bold]Log sink:[/bold]")
    console.print(f"  Group:               {settings.log_group}")
    console.print(f"  Build stream:        {settings.build_stream}")
    console.print(f"  Target stream:       {settings.target_stream}")
    console.print(f"  Backend:             {settings.log_backend}")
    console.print(f"  Directory:           {settings.log_dir}")
    console.print(f"  Endpoint:            {display(settings.log_endpoint)}")
    console.print()
    console.print("[bold]Fleet:[/bold]")
    console.print(f"  Fleet endpoint:      {display(settings.fleet_endpoint)}")
    console.print(f"  Metadata endpoint:   {settings.metadata_endpoint}")
    console.print()
    console.print("[bold]Pipeline:[/bold]")
    console.print(
        f"  Profile:             {display(settings.profile_path, '(built-in)')}"
    )
    console.print(f"  Boot log:            {settings.boot_log_path}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timing (seconds):[/bold]")
    console.print(f"  Poll interval:       {settings.poll_interval}")
    console.print(f"  Wait timeout:        {display(settings.wait_timeout, 'unbounded')}")
    console.print(
        f"  Wait max attempts:   {display(settings.wait_max_attempts, 'unbounded')}"
    )
    console.print(f"  Build timeout:       {display(settings.build_timeout, 'none')}")
    console.print(f"  Request timeout:     {settings.request_timeout}")
    console.print(f"  Halt grace delay:    {settings.halt_grace_delay}")
    console.print(f"  Reboot delay:        {settings.reboot_delay}")


def _load_profile(path: Path | None, settings: Settings) -> PipelineProfile:
    try:
        return resolve_profile(path or settings.profile_path)
    except ProfileError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


def _stream_name(settings: Settings, stream: StreamId) -> str:
    if stream == StreamId.BUILD:
        return settings.build_stream
    return settings.target_stream


def _reporter(
    settings: Settings, stream: StreamId, client: httpx.Client
) -> ProgressReporter:
    try:
        sink = open_log_sink(settings, client)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    return ProgressReporter(sink, stream, _stream_name(settings, stream))


def _open_store(settings: Settings, client: httpx.Client) -> ObjectStore:
    from build_handoff.store import open_store

    try:
        return open_store(settings, client)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None


# Profile commands

profile_app = typer.Typer(help="Inspect pipeline profiles")
app.add_typer(profile_app, name="profile")


ProfileOption = Annotated[
    Path | None,
    typer.Option(
        "--profile",
        "-p",
        help="Pipeline profile (YAML/JSON); defaults to HANDOFF_PROFILE_PATH or built-in",
    ),
]


@profile_app.command("show")
def profile_show(
    profile_path: ProfileOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the effective pipeline profile."""
    from build_handoff.profile.io import profile_to_yaml_string

    profile = _load_profile(profile_path, get_settings())
    if json_output:
        console.print_json(profile.model_dump_json(exclude_none=True))
    else:
        console.print(
            profile_to_yaml_string(profile), end="", markup=False, soft_wrap=True
        )


@profile_app.command("validate")
def profile_validate(
    path: Annotated[str, typer.Argument(help="Path to profile file to validate")],
) -> None:
    """Validate a profile file."""
    from build_handoff.profile.io import load_profile

    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    try:
        profile = load_profile(file_path)
    except ProfileError as e:
        console.print("[red]Validation failed:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Valid profile: {profile.name}[/green]")
    console.print(f"  Artifacts: {', '.join(a.key for a in profile.artifacts)}")
    console.print(f"  Primary:   {profile.primary_artifact().key}")
    console.print(f"  Service:   {profile.consumer.service.name}")


# Builder and consumer


@app.command()
def build(
    profile_path: ProfileOption = None,
    no_halt: Annotated[
        bool,
        typer.Option("--no-halt", help="Do not halt the instance when done"),
    ] = False,
    instance_id: Annotated[
        str | None,
        typer.Option("--instance-id", help="Instance id (skips metadata lookup)"),
    ] = None,
) -> None:
    """Run the build, publish artifacts, scale the group to zero and halt."""
    from build_handoff.builder import BuilderController
    from build_handoff.fleet import (
        HttpCapacityController,
        InstanceMetadataClient,
        StaticIdentity,
    )
    from build_handoff.power import DisabledPowerControl, SystemPowerControl

    settings = get_settings()
    profile = _load_profile(profile_path, settings)

    with httpx.Client() as client:
        store = _open_store(settings, client)
        reporter = _reporter(settings, StreamId.BUILD, client)
        identity = (
            StaticIdentity(instance=instance_id)
            if instance_id
            else InstanceMetadataClient(client, settings.metadata_endpoint)
        )
        capacity = (
            HttpCapacityController(
                client, settings.fleet_endpoint, timeout=settings.request_timeout
            )
            if settings.fleet_endpoint
            else None
        )
        controller = BuilderController(
            profile,
            store,
            reporter,
            identity,
            power=DisabledPowerControl() if no_halt else SystemPowerControl(),
            capacity=capacity,
            boot_log_path=settings.boot_log_path,
            build_timeout=settings.build_timeout,
            halt_grace_delay=0 if no_halt else settings.halt_grace_delay,
        )
        outcome = controller.run()

    if outcome.failed_uploads:
        console.print(
            f"[yellow]Failed uploads: {', '.join(outcome.failed_uploads)}[/yellow]"
        )
    if outcome.exit_code != 0:
        console.print(f"[red]Build failed with exit code {outcome.exit_code}[/red]")
        raise typer.Exit(code=outcome.exit_code)
    console.print(
        f"[green]✓ Build published ({len(outcome.uploaded_keys)} object(s))[/green]"
    )


@app.command()
def bootstrap(
    profile_path: ProfileOption = None,
    force_unit: Annotated[
        bool,
        typer.Option("--force-unit", help="Replace an existing service unit file"),
    ] = False,
    no_reboot: Annotated[
        bool,
        typer.Option("--no-reboot", help="Do not reboot the instance when done"),
    ] = False,
    public_ip: Annotated[
        str | None,
        typer.Option("--public-ip", help="Public IPv4 (skips metadata lookup)"),
    ] = None,
) -> None:
    """Wait for the build artifacts and bring the service up."""
    from build_handoff.consumer import (
        BootstrapAborted,
        ConsumerBootstrap,
        SystemdServiceManager,
    )
    from build_handoff.fleet import InstanceMetadataClient, StaticIdentity
    from build_handoff.power import DisabledPowerControl, SystemPowerControl

    settings = get_settings()
    profile = _load_profile(profile_path, settings)

    with httpx.Client() as client:
        store = _open_store(settings, client)
        reporter = _reporter(settings, StreamId.TARGET, client)
        identity = (
            StaticIdentity(ipv4=public_ip)
            if public_ip
            else InstanceMetadataClient(client, settings.metadata_endpoint)
        )
        controller = ConsumerBootstrap(
            profile,
            store,
            reporter,
            identity,
            SystemdServiceManager(),
            power=DisabledPowerControl() if no_reboot else SystemPowerControl(),
            boot_log_path=settings.boot_log_path,
            poll_interval=settings.poll_interval,
            wait_timeout=settings.wait_timeout,
            wait_max_attempts=settings.wait_max_attempts,
            reboot_delay=0 if no_reboot else settings.reboot_delay,
            force_unit=force_unit,
        )
        try:
            result = controller.run()
        except BootstrapAborted as e:
            console.print(f"[red]Bootstrap failed in {e.phase.value}: {e}[/red]")
            raise typer.Exit(code=e.exit_code) from None

    console.print(f"[green]✓ Service reachable at {result.endpoint}[/green]")


# Store commands

store_app = typer.Typer(help="Inspect and populate the object store")
app.add_typer(store_app, name="store")


@store_app.command("put")
def store_put(
    key: Annotated[str, typer.Argument(help="Object key")],
    path: Annotated[Path, typer.Argument(help="Local file to upload")],
) -> None:
    """Upload a local file under a key."""
    from build_handoff.store import StoreError

    if not path.is_file():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    with httpx.Client() as client:
        store = _open_store(settings, client)
        try:
            store.put_file(key, path)
        except (StoreError, ValueError) as e:
            console.print(f"[red]Upload failed: {e}[/red]")
            raise typer.Exit(code=1) from None
    console.print(f"[green]✓ Stored {key}[/green]")


@store_app.command("get")
def store_get(
    key: Annotated[str, typer.Argument(help="Object key")],
    dest: Annotated[Path, typer.Argument(help="Local destination file")],
) -> None:
    """Download a key into a local file."""
    from build_handoff.store import ObjectNotFoundError, StoreError

    settings = get_settings()
    with httpx.Client() as client:
        store = _open_store(settings, client)
        try:
            store.get_file(key, dest)
        except ObjectNotFoundError:
            console.print(f"[red]Object not found: {key}[/red]")
            raise typer.Exit(code=1) from None
        except (StoreError, ValueError) as e:
            console.print(f"[red]Download failed: {e}[/red]")
            raise typer.Exit(code=1) from None
    console.print(f"[green]✓ Downloaded {key} to {dest}[/green]")


@store_app.command("exists")
def store_exists(
    key: Annotated[str, typer.Argument(help="Object key")],
) -> None:
    """Exit 0 if the key exists, 1 otherwise."""
    from build_handoff.store import StoreError

    settings = get_settings()
    with httpx.Client() as client:
        store = _open_store(settings, client)
        try:
            present = store.exists(key)
        except (StoreError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=2) from None

    if not present:
        console.print(f"{key}: missing")
        raise typer.Exit(code=1)
    console.print(f"{key}: present")


@store_app.command("wait")
def store_wait(
    keys: Annotated[list[str], typer.Argument(help="Keys that must all exist")],
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Seconds between polls"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Give up after this many seconds"),
    ] = None,
    max_attempts: Annotated[
        int | None,
        typer.Option("--max-attempts", help="Give up after this many polls"),
    ] = None,
) -> None:
    """Block until every key exists."""
    from build_handoff.store import ArtifactWaitTimeout, wait_for_keys

    def report_poll(attempt: int, missing: list[str]) -> None:
        console.print(
            f"[dim]Poll {attempt}: waiting for {escape(', '.join(missing))}[/dim]",
            highlight=False,
        )

    settings = get_settings()
    with httpx.Client() as client:
        store = _open_store(settings, client)
        try:
            result = wait_for_keys(
                store,
                keys,
                interval=interval or settings.poll_interval,
                timeout=timeout if timeout is not None else settings.wait_timeout,
                max_attempts=(
                    max_attempts
                    if max_attempts is not None
                    else settings.wait_max_attempts
                ),
                on_poll=report_poll,
            )
        except ArtifactWaitTimeout as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=124) from None
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1) from None
    console.print(
        f"[green]✓ {len(result.keys)} key(s) present after "
        f"{result.attempts} poll(s)[/green]"
    )


@app.command()
def emit(
    stream: Annotated[StreamId, typer.Argument(help="Progress stream")],
    message: Annotated[str, typer.Argument(help="Message text")],
) -> None:
    """Emit one progress event (best effort)."""
    settings = get_settings()
    with httpx.Client() as client:
        reporter = _reporter(settings, stream, client)
        reporter.emit(message)


if __name__ == "__main__":
    app()
