"""Tests for playback data types."""

from dataclasses import FrozenInstanceError, fields

import pytest

from zonn_bridge.models import (
    ConnectionFailedError,
    InvalidResponseError,
    NotRunningError,
    PermissionStatus,
    PlaybackCommand,
    PlaybackState,
    ScriptExecutionError,
    ServiceError,
    format_time,
)


@pytest.fixture
def playing_state() -> PlaybackState:
    return PlaybackState(
        is_playing=True,
        track_name="Song",
        artist_name="Artist",
        album_name="Album",
        artwork_url="http://x",
        duration_seconds=200,
        position_seconds=50,
        is_connected=True,
    )


class TestPlaybackState:
    """Tests for the playback state snapshot."""

    def test_disconnected_resets_every_field(self):
        """Disconnected state should carry only empty/zero values."""
        state = PlaybackState.disconnected()
        assert state.is_connected is False
        assert state.is_playing is False
        assert state.track_name == ""
        assert state.artist_name == ""
        assert state.album_name == ""
        assert state.artwork_url is None
        assert state.duration_seconds == 0
        assert state.position_seconds == 0

    def test_disconnected_is_canonical(self):
        """Every disconnected value should compare equal."""
        assert PlaybackState.disconnected() == PlaybackState.disconnected()

    def test_idle_is_connected_but_stopped(self):
        """Idle state should be connected, not playing, with a placeholder track."""
        state = PlaybackState.idle()
        assert state.is_connected is True
        assert state.is_playing is False
        assert state.track_name == "Not Playing"
        assert state.artist_name == ""
        assert state.album_name == ""
        assert state != PlaybackState.disconnected()

    def test_is_immutable(self, playing_state: PlaybackState):
        """Snapshots should not be mutable in place."""
        with pytest.raises(FrozenInstanceError):
            playing_state.is_playing = False

    def test_with_playing_keeps_metadata(self, playing_state: PlaybackState):
        """Only the play flag should change."""
        paused = playing_state.with_playing(False)
        assert paused.is_playing is False
        for field in fields(PlaybackState):
            if field.name != "is_playing":
                assert getattr(paused, field.name) == getattr(playing_state, field.name)
        assert playing_state.is_playing is True

    def test_track_progress(self, playing_state: PlaybackState):
        assert playing_state.track_progress == pytest.approx(0.25)

    def test_track_progress_without_duration(self):
        assert PlaybackState.idle().track_progress == 0.0

    def test_track_progress_is_clamped(self, playing_state: PlaybackState):
        from dataclasses import replace
        overshoot = replace(playing_state, position_seconds=500)
        assert overshoot.track_progress == 1.0

    def test_formatted_times(self, playing_state: PlaybackState):
        assert playing_state.formatted_position == "0:50"
        assert playing_state.formatted_duration == "3:20"

    def test_to_dict(self, playing_state: PlaybackState):
        data = playing_state.to_dict()
        assert data["track_name"] == "Song"
        assert data["duration_seconds"] == 200
        assert data["is_connected"] is True


class TestFormatTime:
    """Tests for M:SS formatting."""

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0:00"),
        (5, "0:05"),
        (83, "1:23"),
        (354, "5:54"),
        (3600, "60:00"),
        (-4, "0:00"),
    ])
    def test_format(self, seconds, expected):
        assert format_time(seconds) == expected


class TestPlaybackCommand:
    """Tests for command directives."""

    @pytest.mark.parametrize("command,directive", [
        (PlaybackCommand.PLAY, "play"),
        (PlaybackCommand.PAUSE, "pause"),
        (PlaybackCommand.TOGGLE_PLAY_PAUSE, "playpause"),
        (PlaybackCommand.NEXT_TRACK, "next track"),
        (PlaybackCommand.PREVIOUS_TRACK, "previous track"),
    ])
    def test_directive(self, command, directive):
        assert command.directive == directive

    def test_every_command_has_a_directive(self):
        assert all(command.directive for command in PlaybackCommand)


class TestErrors:
    """Tests for the service error taxonomy."""

    def test_all_errors_are_service_errors(self):
        for error in (
            NotRunningError(),
            ScriptExecutionError("boom"),
            InvalidResponseError(),
            ConnectionFailedError(),
        ):
            assert isinstance(error, ServiceError)

    def test_descriptions(self):
        assert NotRunningError().description == "Spotify is not running"
        assert ScriptExecutionError("boom").description == "Script execution failed: boom"
        assert InvalidResponseError().description == "Invalid response from Spotify"
        assert ConnectionFailedError().description == "Failed to connect to Spotify"

    def test_custom_target_name(self):
        assert NotRunningError("Music").description == "Music is not running"

    def test_script_error_keeps_message(self):
        error = ScriptExecutionError("Not authorized (-1743)")
        assert error.message == "Not authorized (-1743)"
        assert error.to_dict() == {
            "kind": "script_execution_failed",
            "description": "Script execution failed: Not authorized (-1743)",
            "message": "Not authorized (-1743)",
        }

    def test_str_is_description(self):
        assert str(InvalidResponseError()) == "Invalid response from Spotify"


class TestPermissionStatus:
    def test_values(self):
        assert {status.value for status in PermissionStatus} == {
            "not_determined", "authorized", "denied", "restricted",
        }
