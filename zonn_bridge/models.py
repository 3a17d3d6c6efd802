"""Playback data types shared by the automation bridge and its consumers."""

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Optional

DEFAULT_TARGET_NAME = "Spotify"
NOT_PLAYING_PLACEHOLDER = "Not Playing"


@dataclass(frozen=True)
class PlaybackState:
    """Immutable snapshot of the target player's playback state."""
    is_playing: bool
    track_name: str
    artist_name: str
    album_name: str
    artwork_url: Optional[str]
    duration_seconds: int
    position_seconds: int
    is_connected: bool

    @classmethod
    def disconnected(cls) -> "PlaybackState":
        """Canonical state for a target that is absent or unreachable."""
        return cls(
            is_playing=False,
            track_name="",
            artist_name="",
            album_name="",
            artwork_url=None,
            duration_seconds=0,
            position_seconds=0,
            is_connected=False,
        )

    @classmethod
    def idle(cls) -> "PlaybackState":
        """Canonical state for a running target with nothing playing."""
        return cls(
            is_playing=False,
            track_name=NOT_PLAYING_PLACEHOLDER,
            artist_name="",
            album_name="",
            artwork_url=None,
            duration_seconds=0,
            position_seconds=0,
            is_connected=True,
        )

    def with_playing(self, is_playing: bool) -> "PlaybackState":
        """Return a copy with only the play flag changed."""
        return replace(self, is_playing=is_playing)

    @property
    def track_progress(self) -> float:
        """Track progress from 0.0 to 1.0."""
        if self.duration_seconds <= 0:
            return 0.0
        progress = self.position_seconds / self.duration_seconds
        return min(max(progress, 0.0), 1.0)

    @property
    def formatted_position(self) -> str:
        return format_time(self.position_seconds)

    @property
    def formatted_duration(self) -> str:
        return format_time(self.duration_seconds)

    def to_dict(self) -> dict:
        """JSON-ready representation."""
        return asdict(self)


def format_time(seconds: int) -> str:
    """
    Format a number of seconds as M:SS.

    Args:
        seconds: Total seconds

    Returns:
        String like "1:23", or "0:00" for negative input
    """
    if seconds < 0:
        return "0:00"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes}:{remaining:02d}"


class PlaybackCommand(Enum):
    """Commands that can be sent to the target player."""
    PLAY = "play"
    PAUSE = "pause"
    TOGGLE_PLAY_PAUSE = "toggle_play_pause"
    NEXT_TRACK = "next_track"
    PREVIOUS_TRACK = "previous_track"

    @property
    def directive(self) -> str:
        """The scripting verb understood by the target."""
        return _DIRECTIVES[self]


_DIRECTIVES = {
    PlaybackCommand.PLAY: "play",
    PlaybackCommand.PAUSE: "pause",
    PlaybackCommand.TOGGLE_PLAY_PAUSE: "playpause",
    PlaybackCommand.NEXT_TRACK: "next track",
    PlaybackCommand.PREVIOUS_TRACK: "previous track",
}


class PermissionStatus(Enum):
    """Automation permission status as reported by the OS."""
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


# ============================================================================
# Errors
# ============================================================================

class ServiceError(Exception):
    """Base class for failures talking to the target player."""

    kind = "service_error"

    def __init__(self, target_name: str = DEFAULT_TARGET_NAME):
        self.target_name = target_name
        super().__init__(self.description)

    @property
    def description(self) -> str:
        return f"Failed to communicate with {self.target_name}"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "description": self.description}


class NotRunningError(ServiceError):
    """The target process is not running."""

    kind = "not_running"

    @property
    def description(self) -> str:
        return f"{self.target_name} is not running"


class ScriptExecutionError(ServiceError):
    """The automation call was rejected; the message may carry a permission code."""

    kind = "script_execution_failed"

    def __init__(self, message: str, target_name: str = DEFAULT_TARGET_NAME):
        self.message = message
        super().__init__(target_name)

    @property
    def description(self) -> str:
        return f"Script execution failed: {self.message}"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["message"] = self.message
        return data


class InvalidResponseError(ServiceError):
    """The target replied with something that could not be parsed."""

    kind = "invalid_response"

    @property
    def description(self) -> str:
        return f"Invalid response from {self.target_name}"


class ConnectionFailedError(ServiceError):
    """Generic transport failure, including timeouts."""

    kind = "connection_failed"

    @property
    def description(self) -> str:
        return f"Failed to connect to {self.target_name}"
