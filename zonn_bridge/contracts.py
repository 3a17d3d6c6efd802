"""Capability interfaces the orchestrator depends on.

Real implementations talk to the target through OS automation; the fakes in
`zonn_bridge.fakes` are deterministic stand-ins selected at construction time.
"""

from abc import ABC, abstractmethod
from typing import Callable

from .models import PermissionStatus, PlaybackCommand, PlaybackState

StateCallback = Callable[[PlaybackState], None]


class PlaybackService(ABC):
    """Fetches playback state from, and sends commands to, the target player."""

    @abstractmethod
    def is_target_running(self) -> bool:
        """Whether the target process is currently running."""

    @abstractmethod
    async def fetch_playback_state(self) -> PlaybackState:
        """
        Fetch the current playback state.

        Returns the disconnected state when the target is not running.

        Raises:
            ServiceError: If the round-trip fails
        """

    @abstractmethod
    async def execute(self, command: PlaybackCommand) -> None:
        """
        Send one playback command.

        Raises:
            ServiceError: If the target is absent or rejects the command
        """

    @abstractmethod
    def start_polling(self, interval: float, on_update: StateCallback) -> None:
        """Start delivering playback state to on_update every interval seconds."""

    @abstractmethod
    def stop_polling(self) -> None:
        """Stop delivering playback state."""


class PermissionProvider(ABC):
    """Checks and requests the OS automation permission for the target."""

    @abstractmethod
    async def permission_status(self) -> PermissionStatus:
        """Probe the current permission status."""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Trigger the OS permission prompt. Returns True if granted."""

    @abstractmethod
    def open_system_settings_for_automation(self) -> None:
        """Open the OS automation privacy settings."""

    @abstractmethod
    def is_target_installed(self) -> bool:
        """Whether the target application is installed."""

    def close(self) -> None:
        """Release threads or other resources held by the provider."""
