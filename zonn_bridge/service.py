"""zonn_bridge service - playback polling daemon and command-line controls."""

import asyncio
import json
import logging
import signal
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Awaitable, Callable, Optional

import click

from .bridge import AutomationBridge
from .config import Config
from .fakes import FakePermissionCoordinator, FakePlaybackService
from .orchestrator import OrchestratorSnapshot, PlaybackOrchestrator
from .permissions import PermissionCoordinator


def setup_logging(log_dir: Path, log_level: str) -> logging.Logger:
    """
    Set up logging with file rotation.

    Args:
        log_dir: Directory for log files
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "zonn_bridge.log"

    logger = logging.getLogger("zonn_bridge")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # File handler with daily rotation, keep 7 days
    file_handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        interval=1,
        backupCount=7,
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    )
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    )
    logger.addHandler(console_handler)

    return logger


def create_orchestrator(config: Config) -> PlaybackOrchestrator:
    """
    Build the orchestrator and its collaborators from configuration.

    Args:
        config: Configuration instance

    Returns:
        Orchestrator wired to the real bridge, or to fakes when use_fake is set
    """
    if config.use_fake:
        service = FakePlaybackService.playing()
        permissions = FakePermissionCoordinator()
    else:
        service = AutomationBridge(
            bundle_id=config.bundle_id,
            target_name=config.target_name,
            timeout_seconds=config.script_timeout,
        )
        permissions = PermissionCoordinator(
            bundle_id=config.bundle_id,
            timeout_seconds=config.script_timeout,
            prompt_timeout_seconds=config.prompt_timeout,
            launch_settle_seconds=config.launch_settle,
        )

    return PlaybackOrchestrator(
        service=service,
        permissions=permissions,
        poll_interval=config.poll_interval,
        track_settle_seconds=config.track_settle,
        target_name=config.target_name,
    )


async def serve(
    config: Config,
    orchestrator: PlaybackOrchestrator,
    logger: logging.Logger,
    with_gateway: bool = False,
) -> None:
    """
    Poll the target until SIGINT/SIGTERM, optionally serving the gateway.

    The gateway runs on the same event loop so the orchestrator keeps a
    single owner.

    Args:
        config: Configuration instance
        orchestrator: Orchestrator to run
        logger: Logger instance
        with_gateway: Serve the web gateway as well
    """
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown.set)

    def log_change(snapshot: OrchestratorSnapshot) -> None:
        if snapshot.is_blocked_by_permission and snapshot.last_error:
            logger.warning(snapshot.last_error.description)
            return
        state = snapshot.current_state
        logger.debug(
            f"[{snapshot.phase.value}] connected={state.is_connected} "
            f"playing={state.is_playing} track={state.track_name!r}"
        )

    orchestrator.subscribe(log_change)

    server = None
    server_task = None
    if with_gateway or config.gateway_enabled:
        import uvicorn

        from .gateway import create_app
        from .gateway.routes.system import set_start_time

        app = create_app(orchestrator, config)
        set_start_time()
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=config.gateway_host,
            port=config.gateway_port,
            log_level="warning",
            access_log=False,
        ))
        server_task = loop.create_task(server.serve())
        logger.info(
            f"Gateway server started at http://{config.gateway_host}:{config.gateway_port}"
        )

    orchestrator.start_polling()
    logger.info(
        f"Polling {config.target_name} every {config.poll_interval}s. Press Ctrl+C to stop."
    )

    shutdown_task = loop.create_task(shutdown.wait())
    # uvicorn may capture the signal itself and exit on its own
    waiters = {shutdown_task} | ({server_task} if server_task else set())

    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        logger.info("Shutting down...")
        shutdown_task.cancel()
        orchestrator.close()
        if server is not None:
            server.should_exit = True
            await server_task
        logger.info("zonn_bridge service stopped")


def run_service(config: Config, verbose: bool = False, with_gateway: bool = False) -> None:
    """
    Main service entry point.

    Args:
        config: Configuration instance
        verbose: Enable verbose logging
        with_gateway: Start the web gateway server
    """
    log_level = "DEBUG" if verbose else config.log_level
    logger = setup_logging(config.get_log_dir(), log_level)
    logger.info("zonn_bridge service starting")

    orchestrator = create_orchestrator(config)
    asyncio.run(serve(config, orchestrator, logger, with_gateway=with_gateway))


def check_config(config: Config, orchestrator: PlaybackOrchestrator) -> bool:
    """
    Print effective configuration and target availability.

    Args:
        config: Configuration instance
        orchestrator: Orchestrator built from config

    Returns:
        True if the target application is installed
    """
    click.echo(f"Target: {config.target_name} ({config.bundle_id})")
    click.echo(f"Fake services: {config.use_fake}")
    click.echo(f"Poll interval: {config.poll_interval}s")
    click.echo(f"Script timeout: {config.script_timeout}s")
    click.echo(f"Prompt timeout: {config.prompt_timeout}s")
    click.echo(f"Log directory: {Path(config.log_dir).resolve()}")
    click.echo(f"Log level: {config.log_level}")
    click.echo(f"Gateway enabled: {config.gateway_enabled}")
    click.echo(f"Gateway: {config.gateway_host}:{config.gateway_port}")

    installed = orchestrator.permissions.is_target_installed()
    click.echo(f"Target installed: {'yes' if installed else 'no'}")
    if installed:
        running = orchestrator.service.is_target_running()
        click.echo(f"Target running: {'yes' if running else 'no'}")
    return installed


def print_snapshot(snapshot: OrchestratorSnapshot, as_json: bool = False) -> None:
    """Print an orchestrator snapshot for humans or as JSON."""
    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    state = snapshot.current_state
    if not state.is_connected:
        click.echo("Not connected")
    else:
        status = "Playing" if state.is_playing else "Paused"
        click.echo(f"{status}: {state.track_name}")
        if state.artist_name:
            click.echo(f"  {state.artist_name} - {state.album_name}")
        click.echo(f"  {state.formatted_position} / {state.formatted_duration}")

    if snapshot.last_error is not None:
        click.echo(f"ERROR: {snapshot.last_error.description}", err=True)
        if snapshot.has_permission_error:
            click.echo(
                "Grant automation access with 'zonn-bridge permission --open-settings'",
                err=True,
            )


def _run_once(
    ctx: click.Context,
    action: Callable[[PlaybackOrchestrator], Awaitable[None]],
    as_json: bool = False,
) -> None:
    """Run one orchestrator coroutine and print the resulting state."""
    config = Config.load(ctx.obj.get("config_file"))
    orchestrator = create_orchestrator(config)
    try:
        asyncio.run(action(orchestrator))
    finally:
        orchestrator.close()

    snapshot = orchestrator.snapshot()
    print_snapshot(snapshot, as_json=as_json)
    if snapshot.last_error is not None:
        ctx.exit(1)


@click.group()
@click.version_option(version="0.1.0", prog_name="zonn-bridge")
@click.option("--config", "-c", "config_file", envvar="ZONN_BRIDGE_CONFIG",
              help="Path to config file")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str]) -> None:
    """zonn-bridge - media player automation for the Zonn focus timer."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@cli.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--with-gateway", "-g",
    is_flag=True,
    help="Start web gateway server (dashboard and REST API)"
)
@click.pass_context
def run(ctx: click.Context, verbose: bool, with_gateway: bool) -> None:
    """Poll the player in the foreground."""
    config = Config.load(ctx.obj.get("config_file"))
    run_service(config, verbose=verbose, with_gateway=with_gateway)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check configuration and target availability."""
    config = Config.load(ctx.obj.get("config_file"))
    if not check_config(config, create_orchestrator(config)):
        ctx.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print state as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Fetch and print the current playback state."""
    _run_once(ctx, lambda orchestrator: orchestrator.refresh(), as_json=as_json)


def _command(name: str, method: str, help_text: str) -> None:
    @cli.command(name=name, help=help_text)
    @click.pass_context
    def command(ctx: click.Context) -> None:
        async def action(orchestrator: PlaybackOrchestrator) -> None:
            # A fresh orchestrator knows nothing yet; toggle flips the fetched state
            await orchestrator.refresh()
            await getattr(orchestrator, method)()

        _run_once(ctx, action)


_command("play", "play", "Start playback.")
_command("pause", "pause", "Pause playback.")
_command("toggle", "toggle_play_pause", "Toggle between play and pause.")
_command("next", "next_track", "Skip to the next track.")
_command("previous", "previous_track", "Go back to the previous track.")


@cli.command()
@click.option("--request", "do_request", is_flag=True,
              help="Trigger the OS permission prompt")
@click.option("--open-settings", is_flag=True,
              help="Open the automation privacy settings")
@click.pass_context
def permission(ctx: click.Context, do_request: bool, open_settings: bool) -> None:
    """Show or request the automation permission."""
    config = Config.load(ctx.obj.get("config_file"))
    orchestrator = create_orchestrator(config)

    if open_settings:
        orchestrator.open_system_settings()
        orchestrator.close()
        click.echo("Opened automation settings")
        return

    async def probe() -> None:
        if do_request:
            granted = await orchestrator.request_permission()
            click.echo(f"Granted: {'yes' if granted else 'no'}")
        else:
            await orchestrator.check_permission()

    try:
        asyncio.run(probe())
    finally:
        orchestrator.close()
    click.echo(f"Permission: {orchestrator.permission_status.value}")


def main():
    """Entry point for zonn-bridge."""
    cli()


if __name__ == "__main__":
    main()
