"""Public-facing coordinator for playback state, commands and permission."""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .contracts import PermissionProvider, PlaybackService
from .models import (
    DEFAULT_TARGET_NAME,
    ConnectionFailedError,
    PermissionStatus,
    PlaybackCommand,
    PlaybackState,
    ScriptExecutionError,
    ServiceError,
)

logger = logging.getLogger("zonn_bridge.orchestrator")

# AppleScript codes meaning the automation permission is missing:
# not authorized, user cancelled the prompt, access not allowed
PERMISSION_ERROR_CODES = (-1743, -1744, -10004)

_PERMISSION_CODE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for code in PERMISSION_ERROR_CODES
    for pattern in (
        rf"(?<![\d-]){code}(?!\d)",
        rf"error\s*{code}(?!\d)",
        rf"\({code}\)",
    )
)

PERMISSION_PHRASES = (
    "not authorized",
    "not granted",
    "permission denied",
    "automation permission",
    "not allowed to send apple events",
)


def is_permission_message(message: str) -> bool:
    """Whether an automation error message looks like a missing permission."""
    if any(pattern.search(message) for pattern in _PERMISSION_CODE_PATTERNS):
        return True
    lowered = message.lower()
    return any(phrase in lowered for phrase in PERMISSION_PHRASES)


class Phase(Enum):
    """Observable orchestrator phase."""
    IDLE = "idle"
    PERMISSION_GATE = "permission_gate"
    POLLING = "polling"
    BLOCKED_BY_PERMISSION = "blocked_by_permission"


@dataclass(frozen=True)
class OrchestratorSnapshot:
    """Immutable view of the orchestrator handed to listeners."""
    current_state: PlaybackState
    is_polling: bool
    is_blocked_by_permission: bool
    last_error: Optional[ServiceError]
    permission_status: PermissionStatus
    phase: Phase
    has_permission_error: bool

    def to_dict(self) -> dict:
        return {
            "current_state": self.current_state.to_dict(),
            "is_polling": self.is_polling,
            "is_blocked_by_permission": self.is_blocked_by_permission,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "permission_status": self.permission_status.value,
            "phase": self.phase.value,
            "has_permission_error": self.has_permission_error,
        }


Listener = Callable[[OrchestratorSnapshot], None]


class PlaybackOrchestrator:
    """Owns playback state and gates polling on automation permission.

    All state lives on one asyncio event loop and is only mutated from it.
    Blocking work happens in the service and permission provider. Commands are
    serialized; poll results and one-shot refreshes are applied in arrival
    order, last write wins.
    """

    def __init__(
        self,
        service: PlaybackService,
        permissions: PermissionProvider,
        poll_interval: float = 1.0,
        track_settle_seconds: float = 0.2,
        target_name: str = DEFAULT_TARGET_NAME,
    ):
        """
        Args:
            service: Playback capability (real bridge or fake)
            permissions: Permission capability (real coordinator or fake)
            poll_interval: Seconds between polls
            track_settle_seconds: Wait after next/previous before refreshing
            target_name: Display name used in error messages
        """
        self.service = service
        self.permissions = permissions
        self.poll_interval = poll_interval
        self.track_settle_seconds = track_settle_seconds
        self.target_name = target_name

        self._current_state = PlaybackState.disconnected()
        self._is_polling = False
        self._is_blocked_by_permission = False
        self._last_error: Optional[ServiceError] = None
        self._permission_status = PermissionStatus.NOT_DETERMINED

        self._gate_task: Optional[asyncio.Task] = None
        self._command_lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def current_state(self) -> PlaybackState:
        return self._current_state

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    @property
    def is_blocked_by_permission(self) -> bool:
        return self._is_blocked_by_permission

    @property
    def last_error(self) -> Optional[ServiceError]:
        return self._last_error

    @property
    def permission_status(self) -> PermissionStatus:
        return self._permission_status

    @property
    def phase(self) -> Phase:
        if self._is_blocked_by_permission:
            return Phase.BLOCKED_BY_PERMISSION
        if self._is_polling:
            if self._gate_task is not None and not self._gate_task.done():
                return Phase.PERMISSION_GATE
            return Phase.POLLING
        return Phase.IDLE

    @property
    def has_permission_error(self) -> bool:
        """Whether a missing permission, rather than connectivity, is the problem."""
        if self._permission_status is PermissionStatus.DENIED:
            return True
        if not isinstance(self._last_error, ScriptExecutionError):
            return False
        return is_permission_message(self._last_error.message)

    @property
    def is_connected(self) -> bool:
        return self._current_state.is_connected

    @property
    def is_playing(self) -> bool:
        return self._current_state.is_playing

    @property
    def track_progress(self) -> float:
        return self._current_state.track_progress

    @property
    def formatted_position(self) -> str:
        return self._current_state.formatted_position

    @property
    def formatted_duration(self) -> str:
        return self._current_state.formatted_duration

    def snapshot(self) -> OrchestratorSnapshot:
        return OrchestratorSnapshot(
            current_state=self._current_state,
            is_polling=self._is_polling,
            is_blocked_by_permission=self._is_blocked_by_permission,
            last_error=self._last_error,
            permission_status=self._permission_status,
            phase=self.phase,
            has_permission_error=self.has_permission_error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Args:
            listener: Called with a snapshot after every change

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Error in orchestrator listener")

    def _set_state(self, state: PlaybackState) -> None:
        self._current_state = state
        self._publish()

    def _record_error(self, error: BaseException) -> None:
        if isinstance(error, ServiceError):
            self._last_error = error
        else:
            logger.error(f"Unexpected error talking to {self.target_name}: {error!r}")
            self._last_error = ConnectionFailedError(self.target_name)

    def _clear_error(self) -> None:
        self._last_error = None

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start_polling(self) -> Optional[asyncio.Task]:
        """
        Start polling once permission is confirmed. Must be called on the loop.

        Returns:
            The permission-gate task, or None if already polling
        """
        if self._is_polling:
            return None

        self._is_polling = True
        self._is_blocked_by_permission = False
        self._clear_error()
        self._gate_task = asyncio.get_running_loop().create_task(
            self._gate_and_poll(), name="permission-gate"
        )
        self._publish()
        return self._gate_task

    async def _gate_and_poll(self) -> None:
        try:
            granted = await self.ensure_permission_granted()
        except asyncio.CancelledError:
            logger.debug("Permission gate cancelled")
            raise
        except Exception as e:
            logger.exception("Permission gate failed")
            self._gate_task = None
            self._is_polling = False
            self._record_error(e)
            self._publish()
            return

        if not self._is_polling:
            # stop_polling() ran while the gate was pending
            return

        self._gate_task = None
        if not granted:
            self._block(self._blocked_error())
            return

        logger.debug(f"Permission granted, polling {self.target_name}")
        self.service.start_polling(self.poll_interval, self._on_poll)
        self._publish()

    def _on_poll(self, state: PlaybackState) -> None:
        self._set_state(state)

    def _block(self, error: ScriptExecutionError) -> None:
        # Blocked and polling are mutually exclusive
        if self._is_polling:
            self.service.stop_polling()
            self._is_polling = False
        self._is_blocked_by_permission = True
        self._last_error = error
        logger.warning(f"Polling blocked: permission {self._permission_status.value}")
        self._publish()

    def _blocked_error(self, retried: bool = False) -> ScriptExecutionError:
        status = self._permission_status
        if status is PermissionStatus.DENIED:
            still = "still " if retried else ""
            message = (
                f"Automation permission is {still}denied. Please enable {self.target_name} "
                "automation in System Settings > Privacy & Security > Automation."
            )
        elif status is PermissionStatus.RESTRICTED:
            message = "Automation permission is restricted by system policy."
        else:
            message = (
                f"Automation permission not granted. Please allow {self.target_name} "
                "automation when prompted, or enable it in System Settings."
            )
        return ScriptExecutionError(message, self.target_name)

    def stop_polling(self) -> None:
        """Stop polling. Also abandons a permission gate still in progress."""
        if not self._is_polling:
            return

        if self._gate_task is not None and not self._gate_task.done():
            self._gate_task.cancel()
        self._gate_task = None
        self.service.stop_polling()
        self._is_polling = False
        logger.info("Playback polling stopped")
        self._publish()

    # ------------------------------------------------------------------
    # Permission
    # ------------------------------------------------------------------

    async def check_permission(self) -> PermissionStatus:
        """Re-probe the permission status."""
        self._permission_status = await self.permissions.permission_status()
        self._publish()
        return self._permission_status

    async def request_permission(self) -> bool:
        """Ask the OS for permission, then re-probe the status."""
        granted = await self.permissions.request_permission()
        await self.check_permission()
        logger.debug(
            f"Permission request: granted={granted}, status={self._permission_status.value}"
        )
        return granted

    def open_system_settings(self) -> None:
        self.permissions.open_system_settings_for_automation()

    def close(self) -> None:
        """Stop polling and release the permission provider's resources."""
        self.stop_polling()
        self.permissions.close()

    async def ensure_permission_granted(self) -> bool:
        """
        Make sure automation is authorized before talking to the target.

        Only an undetermined status triggers the OS prompt; denied or
        restricted fail straight away since the OS will not prompt again.

        Returns:
            True if automation is authorized
        """
        status = await self.check_permission()

        if status is PermissionStatus.AUTHORIZED:
            return True
        if status is PermissionStatus.NOT_DETERMINED:
            logger.debug("Permission not determined, requesting")
            return await self.request_permission()
        logger.debug(f"Permission {status.value}, not prompting")
        return False

    async def retry_after_permission_granted(self) -> None:
        """Re-check permission after the user acted, and resume polling if allowed."""
        self._clear_error()
        status = await self.check_permission()

        if status is PermissionStatus.NOT_DETERMINED:
            if await self.request_permission():
                status = PermissionStatus.AUTHORIZED
            else:
                self._block(ScriptExecutionError(
                    f"Automation permission not granted. Please enable {self.target_name} "
                    "automation in System Settings.",
                    self.target_name,
                ))
                return

        if status is PermissionStatus.AUTHORIZED:
            logger.info("Permission available, resuming polling")
            self._is_blocked_by_permission = False
            task = self.start_polling()
            if task is not None:
                await task
            else:
                self._publish()
            return

        logger.debug(f"Permission still {status.value}")
        self._block(self._blocked_error(retried=True))

    # ------------------------------------------------------------------
    # Refresh and commands
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Fetch playback state once, outside the polling cadence."""
        self._clear_error()
        try:
            state = await self.service.fetch_playback_state()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Refresh failed: {e}")
            self._record_error(e)
            self._set_state(PlaybackState.disconnected())
            return
        self._set_state(state)

    async def toggle_play_pause(self) -> None:
        """Flip play/pause immediately, rolling back if the command fails."""
        async with self._command_lock:
            previous = self._current_state
            self._clear_error()
            # A disconnected state stays canonical, so there is nothing to flip
            optimistic = previous.is_connected
            if optimistic:
                self._set_state(previous.with_playing(not previous.is_playing))

            try:
                await self.service.execute(PlaybackCommand.TOGGLE_PLAY_PAUSE)
            except asyncio.CancelledError:
                if optimistic:
                    self._set_state(previous)
                raise
            except Exception as e:
                logger.error(f"Toggle failed, rolling back: {e}")
                self._record_error(e)
                if optimistic:
                    self._set_state(previous)
                else:
                    self._publish()

    async def play(self) -> None:
        await self._command_then_refresh(PlaybackCommand.PLAY)

    async def pause(self) -> None:
        await self._command_then_refresh(PlaybackCommand.PAUSE)

    async def next_track(self) -> None:
        await self._command_then_refresh(PlaybackCommand.NEXT_TRACK, self.track_settle_seconds)

    async def previous_track(self) -> None:
        await self._command_then_refresh(
            PlaybackCommand.PREVIOUS_TRACK, self.track_settle_seconds
        )

    async def _command_then_refresh(
        self, command: PlaybackCommand, settle_seconds: float = 0.0
    ) -> None:
        async with self._command_lock:
            self._clear_error()
            try:
                await self.service.execute(command)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Command {command.value} failed: {e}")
                self._record_error(e)
                self._publish()
                return

            if settle_seconds > 0:
                # Give the target time to report the new track
                await asyncio.sleep(settle_seconds)
            await self.refresh()
