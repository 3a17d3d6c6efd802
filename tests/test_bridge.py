"""Tests for the AppleScript bridge."""

import asyncio
import time

import pytest

from zonn_bridge.bridge import (
    AutomationBridge,
    command_script,
    fetch_script,
    parse_playback_response,
)
from zonn_bridge.executor import ScriptResult
from zonn_bridge.models import (
    ConnectionFailedError,
    InvalidResponseError,
    NotRunningError,
    PlaybackCommand,
    PlaybackState,
    ScriptExecutionError,
)

PLAYING_REPLY = "Song|||Artist|||Album|||http://x|||200000|||50.0|||playing"


class FakeRunner:
    """Records scripts and answers with a fixed ScriptResult."""

    def __init__(self, result: ScriptResult):
        self.result = result
        self.calls = []

    def __call__(self, source: str, timeout: float) -> ScriptResult:
        self.calls.append((source, timeout))
        return self.result


def make_bridge(result: ScriptResult, running: bool = True):
    runner = FakeRunner(result)
    bridge = AutomationBridge(
        timeout_seconds=3.0,
        runner=runner,
        process_probe=lambda bundle_id: running,
    )
    return bridge, runner


async def max_loop_lag(coro) -> float:
    """Await coro while a ticker measures how late the event loop wakes it."""
    loop = asyncio.get_running_loop()
    lags = []

    async def ticker():
        while True:
            before = loop.time()
            await asyncio.sleep(0.01)
            lags.append(loop.time() - before - 0.01)

    ticker_task = asyncio.create_task(ticker())
    try:
        await coro
    finally:
        ticker_task.cancel()
    assert lags
    return max(lags)


class TestParsePlaybackResponse:
    """Tests for parsing the fetch script reply."""

    def test_playing_reply(self):
        state = parse_playback_response(PLAYING_REPLY)

        assert state == PlaybackState(
            is_playing=True,
            track_name="Song",
            artist_name="Artist",
            album_name="Album",
            artwork_url="http://x",
            duration_seconds=200,
            position_seconds=50,
            is_connected=True,
        )

    def test_duration_is_milliseconds_and_position_truncates(self):
        reply = "Bohemian Rhapsody|||Queen|||A Night at the Opera|||http://a|||354000|||127.8|||playing"
        state = parse_playback_response(reply)

        assert state.duration_seconds == 354
        assert state.position_seconds == 127

    def test_paused_reply(self):
        state = parse_playback_response(PLAYING_REPLY.replace("playing", "paused"))
        assert state.is_playing is False
        assert state.is_connected is True

    def test_play_state_is_case_insensitive(self):
        state = parse_playback_response(PLAYING_REPLY.replace("playing", "Playing"))
        assert state.is_playing is True

    def test_stopped_is_idle(self):
        state = parse_playback_response("stopped")

        assert state == PlaybackState.idle()
        assert state.is_connected is True
        assert state.track_name == "Not Playing"
        assert state.artist_name == ""

    def test_empty_artwork_is_none(self):
        state = parse_playback_response("Song|||Artist|||Album||||||200000|||50.0|||playing")
        assert state.artwork_url is None

    def test_locale_decimal_comma(self):
        state = parse_playback_response(PLAYING_REPLY.replace("50.0", "50,9"))
        assert state.position_seconds == 50

    def test_unparseable_numbers_fall_back_to_zero(self):
        reply = "Song|||Artist|||Album|||http://x|||missing value|||missing value|||playing"
        state = parse_playback_response(reply)

        assert state.duration_seconds == 0
        assert state.position_seconds == 0

    @pytest.mark.parametrize("reply", [
        "",
        "Song|||Artist",
        "Song|||Artist|||Album|||http://x|||200000|||50.0",
        PLAYING_REPLY + "|||extra",
    ])
    def test_wrong_field_count(self, reply):
        with pytest.raises(InvalidResponseError):
            parse_playback_response(reply)

    def test_error_uses_target_name(self):
        with pytest.raises(InvalidResponseError) as exc_info:
            parse_playback_response("nope", target_name="Music")
        assert exc_info.value.description == "Invalid response from Music"


class TestScripts:
    """Tests for generated AppleScript sources."""

    def test_fetch_script_addresses_bundle(self):
        source = fetch_script("com.spotify.client")
        assert 'tell application id "com.spotify.client"' in source
        assert '"stopped"' in source
        assert source.count('"|||"') == 6

    @pytest.mark.parametrize("command,directive", [
        (PlaybackCommand.PLAY, "play"),
        (PlaybackCommand.PAUSE, "pause"),
        (PlaybackCommand.TOGGLE_PLAY_PAUSE, "playpause"),
        (PlaybackCommand.NEXT_TRACK, "next track"),
        (PlaybackCommand.PREVIOUS_TRACK, "previous track"),
    ])
    def test_command_script(self, command, directive):
        source = command_script("com.spotify.client", command)
        assert 'tell application id "com.spotify.client"' in source
        assert f"    {directive}\n" in source


class TestFetchPlaybackState:
    """Tests for fetching state through the bridge."""

    @pytest.mark.asyncio
    async def test_not_running_is_disconnected_without_script(self):
        bridge, runner = make_bridge(ScriptResult(output=PLAYING_REPLY), running=False)

        state = await bridge.fetch_playback_state()

        assert state == PlaybackState.disconnected()
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_running_parses_reply(self):
        bridge, runner = make_bridge(ScriptResult(output=PLAYING_REPLY))

        state = await bridge.fetch_playback_state()

        assert state.track_name == "Song"
        assert state.duration_seconds == 200
        assert len(runner.calls) == 1
        assert runner.calls[0][1] == 3.0

    @pytest.mark.asyncio
    async def test_stopped(self):
        bridge, _ = make_bridge(ScriptResult(output="stopped"))

        assert await bridge.fetch_playback_state() == PlaybackState.idle()

    @pytest.mark.asyncio
    async def test_script_error_keeps_code(self):
        bridge, _ = make_bridge(ScriptResult(
            output="",
            error_number=-1743,
            error_message="Not authorized to send Apple events to Spotify.",
        ))

        with pytest.raises(ScriptExecutionError) as exc_info:
            await bridge.fetch_playback_state()

        assert "(-1743)" in exc_info.value.message
        assert "Not authorized" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_script_timeout_is_connection_failure(self):
        bridge, _ = make_bridge(ScriptResult(
            output="", error_message="Script timed out", timed_out=True,
        ))

        with pytest.raises(ConnectionFailedError):
            await bridge.fetch_playback_state()

    @pytest.mark.asyncio
    async def test_malformed_reply(self):
        bridge, _ = make_bridge(ScriptResult(output="a|||b|||c"))

        with pytest.raises(InvalidResponseError):
            await bridge.fetch_playback_state()

    @pytest.mark.asyncio
    async def test_cancel_before_start_delivers_nothing(self):
        bridge, runner = make_bridge(ScriptResult(output=PLAYING_REPLY))

        task = asyncio.ensure_future(bridge.fetch_playback_state())
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert runner.calls == []


class TestExecute:
    """Tests for sending commands through the bridge."""

    @pytest.mark.asyncio
    async def test_not_running_raises(self):
        bridge, runner = make_bridge(ScriptResult(output=""), running=False)

        with pytest.raises(NotRunningError):
            await bridge.execute(PlaybackCommand.PLAY)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_sends_directive(self):
        bridge, runner = make_bridge(ScriptResult(output=""))

        await bridge.execute(PlaybackCommand.NEXT_TRACK)

        source, _ = runner.calls[0]
        assert "next track" in source

    @pytest.mark.asyncio
    async def test_rejected_command(self):
        bridge, _ = make_bridge(ScriptResult(
            output="", error_number=-1708, error_message="Spotify got an error.",
        ))

        with pytest.raises(ScriptExecutionError) as exc_info:
            await bridge.execute(PlaybackCommand.PLAY)
        assert exc_info.value.message == "Spotify got an error. (-1708)"


class TestBridgePolling:
    """Tests for polling through the bridge."""

    @pytest.mark.asyncio
    async def test_polls_parsed_state(self):
        bridge, _ = make_bridge(ScriptResult(output=PLAYING_REPLY))
        states = []

        bridge.start_polling(0.01, states.append)
        await asyncio.sleep(0.1)
        bridge.stop_polling()

        assert states
        assert states[0].track_name == "Song"
        assert bridge.scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_failed_poll_reports_disconnected(self):
        bridge, _ = make_bridge(ScriptResult(output="garbage"))
        states = []

        bridge.start_polling(10.0, states.append)
        await asyncio.sleep(0.1)
        bridge.stop_polling()

        assert states == [PlaybackState.disconnected()]


class TestLoopResponsiveness:
    """Tests that OS lookups never run on the event loop."""

    @staticmethod
    def slow_running_check(bundle_id: str) -> bool:
        time.sleep(0.3)
        return True

    @pytest.mark.asyncio
    async def test_fetch_running_check_runs_off_loop(self):
        bridge = AutomationBridge(
            runner=FakeRunner(ScriptResult(output=PLAYING_REPLY)),
            process_probe=self.slow_running_check,
        )

        lag = await max_loop_lag(bridge.fetch_playback_state())

        assert lag < 0.2

    @pytest.mark.asyncio
    async def test_execute_running_check_runs_off_loop(self):
        bridge = AutomationBridge(
            runner=FakeRunner(ScriptResult(output="")),
            process_probe=self.slow_running_check,
        )

        lag = await max_loop_lag(bridge.execute(PlaybackCommand.PLAY))

        assert lag < 0.2


class TestOsascriptUnavailable:
    """Tests for an osascript binary that cannot be started."""

    @pytest.mark.asyncio
    async def test_fetch_is_connection_failure(self):
        bridge, _ = make_bridge(ScriptResult(
            output="",
            error_message="Command not found: [Errno 2] No such file or directory: 'osascript'",
            launch_failed=True,
        ))

        with pytest.raises(ConnectionFailedError):
            await bridge.fetch_playback_state()

    @pytest.mark.asyncio
    async def test_execute_is_connection_failure(self):
        bridge, _ = make_bridge(ScriptResult(
            output="", error_message="Permission denied", launch_failed=True,
        ))

        with pytest.raises(ConnectionFailedError):
            await bridge.execute(PlaybackCommand.PAUSE)
