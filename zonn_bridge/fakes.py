"""Deterministic stand-ins for the playback service and permission provider.

Used by tests and by `zonn-bridge run` when `use_fake` is configured, so the
rest of the stack can be exercised without a real target application.
"""

import logging
from dataclasses import replace
from typing import List, Optional

from .contracts import PermissionProvider, PlaybackService, StateCallback
from .models import (
    NotRunningError,
    PermissionStatus,
    PlaybackCommand,
    PlaybackState,
    ServiceError,
)
from .polling import PollingScheduler

logger = logging.getLogger("zonn_bridge.fakes")

SAMPLE_PLAYING = PlaybackState(
    is_playing=True,
    track_name="Bohemian Rhapsody",
    artist_name="Queen",
    album_name="A Night at the Opera",
    artwork_url="https://i.scdn.co/image/ab67616d0000b273e8b066f70c206551210d902b",
    duration_seconds=354,
    position_seconds=127,
    is_connected=True,
)

SAMPLE_PAUSED = SAMPLE_PLAYING.with_playing(False)

NEXT_TRACK = PlaybackState(
    is_playing=True,
    track_name="Don't Stop Me Now",
    artist_name="Queen",
    album_name="Jazz",
    artwork_url="https://i.scdn.co/image/ab67616d0000b273e319baafd16e84f0408af2a0",
    duration_seconds=209,
    position_seconds=0,
    is_connected=True,
)

PREVIOUS_TRACK = PlaybackState(
    is_playing=True,
    track_name="We Will Rock You",
    artist_name="Queen",
    album_name="News of the World",
    artwork_url="https://i.scdn.co/image/ab67616d0000b273e319baafd16e84f0408af2a0",
    duration_seconds=122,
    position_seconds=0,
    is_connected=True,
)


class FakePlaybackService(PlaybackService):
    """In-memory playback service with controllable state."""

    def __init__(self, state: PlaybackState, is_running: bool = True):
        self.state = state
        self.running = is_running
        self.executed: List[PlaybackCommand] = []
        self.fetch_count = 0
        self._pending_error: Optional[ServiceError] = None
        self._interval = 1.0
        self._on_update: Optional[StateCallback] = None
        self.scheduler = PollingScheduler(self._poll_fetch)

    @classmethod
    def playing(cls) -> "FakePlaybackService":
        return cls(SAMPLE_PLAYING)

    @classmethod
    def paused(cls) -> "FakePlaybackService":
        return cls(SAMPLE_PAUSED)

    @classmethod
    def disconnected(cls) -> "FakePlaybackService":
        return cls(PlaybackState.disconnected(), is_running=False)

    def fail_next(self, error: ServiceError) -> None:
        """Make the next fetch or command raise error."""
        self._pending_error = error

    def _raise_pending(self) -> None:
        error, self._pending_error = self._pending_error, None
        if error is not None:
            raise error

    def is_target_running(self) -> bool:
        return self.running

    async def fetch_playback_state(self) -> PlaybackState:
        self.fetch_count += 1
        self._raise_pending()
        if not self.running:
            return PlaybackState.disconnected()
        return self.state

    async def execute(self, command: PlaybackCommand) -> None:
        if not self.running:
            raise NotRunningError()
        self._raise_pending()
        self.executed.append(command)

        if command is PlaybackCommand.PLAY:
            self.state = self.state.with_playing(True)
        elif command is PlaybackCommand.PAUSE:
            self.state = self.state.with_playing(False)
        elif command is PlaybackCommand.TOGGLE_PLAY_PAUSE:
            self.state = self.state.with_playing(not self.state.is_playing)
        elif command is PlaybackCommand.NEXT_TRACK:
            self.state = NEXT_TRACK.with_playing(self.state.is_playing)
        elif command is PlaybackCommand.PREVIOUS_TRACK:
            self.state = PREVIOUS_TRACK.with_playing(self.state.is_playing)

        self._notify(self.state)

    def start_polling(self, interval: float, on_update: StateCallback) -> None:
        self._interval = interval
        self._on_update = on_update
        self.scheduler.start(interval, on_update)

    def stop_polling(self) -> None:
        self.scheduler.stop()
        self._on_update = None

    async def _poll_fetch(self) -> PlaybackState:
        self.fetch_count += 1
        self._raise_pending()
        if not self.running:
            return PlaybackState.disconnected()
        if self.state.is_playing:
            position = min(
                self.state.position_seconds + int(self._interval),
                self.state.duration_seconds,
            )
            self.state = replace(self.state, position_seconds=position)
        return self.state

    def set_state(self, state: PlaybackState) -> None:
        """Replace the state and notify the polling callback."""
        self.state = state
        self._notify(state)

    def set_running(self, is_running: bool) -> None:
        """Simulate the target starting or quitting."""
        self.running = is_running
        if not is_running:
            self._notify(PlaybackState.disconnected())

    def _notify(self, state: PlaybackState) -> None:
        if self._on_update is not None:
            self._on_update(state)


class FakePermissionCoordinator(PermissionProvider):
    """Permission provider with a configurable answer."""

    def __init__(
        self,
        status: PermissionStatus = PermissionStatus.AUTHORIZED,
        installed: bool = True,
        request_result: bool = True,
        status_after_request: Optional[PermissionStatus] = None,
    ):
        self.status = status
        self.installed = installed
        self.request_result = request_result
        self.status_after_request = status_after_request
        self.status_checks = 0
        self.request_calls = 0
        self.open_settings_calls = 0
        self.close_calls = 0

    async def permission_status(self) -> PermissionStatus:
        self.status_checks += 1
        return self.status

    async def request_permission(self) -> bool:
        self.request_calls += 1
        if self.status_after_request is not None:
            self.status = self.status_after_request
        return self.request_result

    def open_system_settings_for_automation(self) -> None:
        self.open_settings_calls += 1

    def close(self) -> None:
        self.close_calls += 1

    def is_target_installed(self) -> bool:
        return self.installed
