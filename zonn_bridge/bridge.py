"""AppleScript bridge to the target media player."""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Callable, Optional

from .blocking import run_blocking
from .contracts import PlaybackService, StateCallback
from .executor import ScriptResult, application_running, run_osascript
from .models import (
    DEFAULT_TARGET_NAME,
    ConnectionFailedError,
    InvalidResponseError,
    NotRunningError,
    PlaybackCommand,
    PlaybackState,
    ScriptExecutionError,
)
from .polling import PollingScheduler

logger = logging.getLogger("zonn_bridge.bridge")

DEFAULT_BUNDLE_ID = "com.spotify.client"
FIELD_DELIMITER = "|||"
STOPPED_SENTINEL = "stopped"
FIELD_COUNT = 7

# Extra seconds granted to the awaiting side beyond the subprocess timeout
_WAIT_GRACE_SECONDS = 2.0

ScriptRunner = Callable[[str, float], ScriptResult]
ProcessProbe = Callable[[str], bool]


def fetch_script(bundle_id: str) -> str:
    """AppleScript returning the stopped sentinel or seven delimited fields."""
    d = FIELD_DELIMITER
    return f"""
tell application id "{bundle_id}"
    if player state is stopped then
        return "{STOPPED_SENTINEL}"
    end if

    set trackName to name of current track
    set artistName to artist of current track
    set albumName to album of current track
    set artworkURL to artwork url of current track
    set trackDuration to duration of current track
    set trackPosition to player position
    set playState to player state as string

    return trackName & "{d}" & artistName & "{d}" & albumName & "{d}" & artworkURL & "{d}" & trackDuration & "{d}" & trackPosition & "{d}" & playState
end tell
"""


def command_script(bundle_id: str, command: PlaybackCommand) -> str:
    """AppleScript issuing a single playback directive."""
    return f"""
tell application id "{bundle_id}"
    {command.directive}
end tell
"""


def _parse_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _parse_seconds(value: str) -> int:
    # AppleScript may format reals with the locale's decimal comma
    try:
        return int(float(value.strip().replace(",", ".")))
    except ValueError:
        return 0


def parse_playback_response(
    reply: str,
    target_name: str = DEFAULT_TARGET_NAME,
) -> PlaybackState:
    """
    Parse the fetch script's reply.

    Args:
        reply: Raw script output
        target_name: Target name used in error descriptions

    Returns:
        Parsed PlaybackState

    Raises:
        InvalidResponseError: If the reply does not have exactly seven fields
    """
    if reply == STOPPED_SENTINEL:
        return PlaybackState.idle()

    fields = reply.split(FIELD_DELIMITER)
    if len(fields) != FIELD_COUNT:
        logger.error(f"Unexpected reply with {len(fields)} fields")
        raise InvalidResponseError(target_name)

    track, artist, album, artwork, duration_ms, position, play_state = fields

    return PlaybackState(
        is_playing=play_state.strip().lower() == "playing",
        track_name=track,
        artist_name=artist,
        album_name=album,
        artwork_url=artwork.strip() or None,
        duration_seconds=max(0, _parse_int(duration_ms) // 1000),
        position_seconds=max(0, _parse_seconds(position)),
        is_connected=True,
    )


class AutomationBridge(PlaybackService):
    """PlaybackService backed by osascript round-trips."""

    def __init__(
        self,
        bundle_id: str = DEFAULT_BUNDLE_ID,
        target_name: str = DEFAULT_TARGET_NAME,
        timeout_seconds: float = 10.0,
        runner: Optional[ScriptRunner] = None,
        process_probe: Optional[ProcessProbe] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            bundle_id: Bundle identifier of the target application
            target_name: Display name of the target, used in errors
            timeout_seconds: Bound on each automation round-trip
            runner: Blocking script runner (osascript by default)
            process_probe: Running check by bundle id (lsappinfo by default)
            executor: Executor for blocking round-trips (loop default if None)
        """
        self.bundle_id = bundle_id
        self.target_name = target_name
        self.timeout_seconds = timeout_seconds
        self.runner = runner or run_osascript
        self.process_probe = process_probe or application_running
        self.executor = executor
        self.scheduler = PollingScheduler(self.fetch_playback_state)

    def is_target_running(self) -> bool:
        running = self.process_probe(self.bundle_id)
        logger.debug(f"{self.target_name} running: {running}")
        return running

    async def fetch_playback_state(self) -> PlaybackState:
        return await self._round_trip(self.fetch_playback_state_sync)

    async def execute(self, command: PlaybackCommand) -> None:
        await self._round_trip(self.execute_sync, command)

    def start_polling(self, interval: float, on_update: StateCallback) -> None:
        self.scheduler.start(interval, on_update)

    def stop_polling(self) -> None:
        self.scheduler.stop()

    # ------------------------------------------------------------------
    # Blocking side, runs on worker threads. The running check shells out
    # too, so it stays off the event loop with the script itself.
    # ------------------------------------------------------------------

    def fetch_playback_state_sync(self) -> PlaybackState:
        if not self.is_target_running():
            logger.debug(f"{self.target_name} not running, reporting disconnected")
            return PlaybackState.disconnected()
        reply = self._run_script(fetch_script(self.bundle_id))
        return parse_playback_response(reply, self.target_name)

    def execute_sync(self, command: PlaybackCommand) -> None:
        if not self.is_target_running():
            raise NotRunningError(self.target_name)
        logger.info(f"Sending '{command.directive}' to {self.target_name}")
        self._run_script(command_script(self.bundle_id, command))

    def _run_script(self, source: str) -> str:
        result = self.runner(source, self.timeout_seconds)
        if result.timed_out:
            raise ConnectionFailedError(self.target_name)
        if result.launch_failed:
            logger.error(f"Could not run osascript: {result.error_message}")
            raise ConnectionFailedError(self.target_name)
        if result.error_message is not None:
            message = result.error_message
            if result.error_number is not None:
                message = f"{message} ({result.error_number})"
            logger.error(f"AppleScript error: {message}")
            raise ScriptExecutionError(message, self.target_name)
        return result.output

    async def _round_trip(self, func, *args):
        try:
            return await run_blocking(
                func,
                *args,
                executor=self.executor,
                timeout=self.timeout_seconds + _WAIT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(f"Round-trip to {self.target_name} timed out")
            raise ConnectionFailedError(self.target_name) from None
