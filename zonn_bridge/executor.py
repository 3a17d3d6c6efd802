"""OS facilities: subprocess execution, osascript and application lookup."""

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger("zonn_bridge.executor")

# osascript reports failures on stderr as "0:42: execution error: <message> (<number>)"
_SCRIPT_ERROR_RE = re.compile(
    r"execution error:\s*(?P<message>.*?)\s*\((?P<number>-?\d+)\)\s*$",
    re.DOTALL,
)

AUTOMATION_SETTINGS_URL = (
    "x-apple.systempreferences:com.apple.preference.security?Privacy_Automation"
)


@dataclass
class CommandResult:
    """Result of a subprocess execution."""
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool
    # Set when the process could not be started at all
    spawn_error: Optional[str] = None


@dataclass
class ScriptResult:
    """Result of one osascript round-trip."""
    output: str
    error_number: Optional[int] = None
    error_message: Optional[str] = None
    timed_out: bool = False
    launch_failed: bool = False

    @property
    def failed(self) -> bool:
        return self.timed_out or self.launch_failed or self.error_message is not None


def run_command(args: Sequence[str], timeout_seconds: float = 10.0) -> CommandResult:
    """
    Execute a command in a subprocess.

    Args:
        args: Program and arguments
        timeout_seconds: Maximum runtime before killing the process

    Returns:
        CommandResult with execution details
    """
    started = time.monotonic()
    timed_out = False
    exit_code = None
    stdout = ""
    stderr = ""
    spawn_error = None

    try:
        process = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )

        try:
            stdout, stderr = process.communicate(timeout=timeout_seconds)
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_process(process)
            try:
                stdout, stderr = process.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                stdout = ""
                stderr = "Process killed due to timeout"
            exit_code = None

    except FileNotFoundError as e:
        stderr = f"Command not found: {e}"
        spawn_error = stderr
        exit_code = 127
    except PermissionError as e:
        stderr = f"Permission denied: {e}"
        spawn_error = stderr
        exit_code = 126
    except OSError as e:
        stderr = f"OS error: {e}"
        spawn_error = stderr
        exit_code = 1

    return CommandResult(
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=time.monotonic() - started,
        timed_out=timed_out,
        spawn_error=spawn_error,
    )


def _kill_process(process: subprocess.Popen) -> None:
    """Kill a process, trying graceful termination first."""
    process.terminate()
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        process.kill()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass  # Process is stuck, nothing more we can do


def parse_script_error(stderr: str) -> tuple[Optional[int], str]:
    """
    Extract the error number and message from osascript stderr.

    Args:
        stderr: Raw stderr text

    Returns:
        (error_number, message); error_number is None when no code is present
    """
    text = stderr.strip()
    match = _SCRIPT_ERROR_RE.search(text)
    if match:
        return int(match.group("number")), match.group("message")
    return None, text or "Unknown error"


def run_osascript(source: str, timeout_seconds: float = 10.0) -> ScriptResult:
    """
    Run an AppleScript source through osascript. Blocks the calling thread.

    Args:
        source: AppleScript source text
        timeout_seconds: Maximum runtime before killing osascript

    Returns:
        ScriptResult; never raises for script or process failures
    """
    result = run_command(["osascript", "-e", source], timeout_seconds=timeout_seconds)

    if result.spawn_error is not None:
        logger.error(f"osascript could not be started: {result.spawn_error}")
        return ScriptResult(output="", error_message=result.spawn_error, launch_failed=True)

    if result.timed_out:
        logger.warning(f"osascript timed out after {result.duration_seconds:.1f}s")
        return ScriptResult(output="", error_message="Script timed out", timed_out=True)

    if result.exit_code != 0:
        error_number, message = parse_script_error(result.stderr)
        logger.debug(f"osascript error {error_number}: {message}")
        return ScriptResult(output="", error_number=error_number, error_message=message)

    return ScriptResult(output=result.stdout.rstrip("\n"))


def application_running(bundle_id: str) -> bool:
    """Whether an application with the given bundle identifier is running."""
    result = run_command(["lsappinfo", "find", f"bundleid={bundle_id}"], timeout_seconds=2)
    return result.exit_code == 0 and bool(result.stdout.strip())


def application_installed(bundle_id: str) -> bool:
    """Whether an application with the given bundle identifier is installed."""
    query = f"kMDItemCFBundleIdentifier == '{bundle_id}'"
    result = run_command(["mdfind", query], timeout_seconds=5)
    return result.exit_code == 0 and bool(result.stdout.strip())


def launch_application(bundle_id: str, timeout_seconds: float = 10.0) -> bool:
    """
    Launch an application without bringing it to the foreground.

    Args:
        bundle_id: Bundle identifier of the application
        timeout_seconds: Maximum time to wait for `open` to return

    Returns:
        True if the launch request succeeded
    """
    result = run_command(["open", "-g", "-b", bundle_id], timeout_seconds=timeout_seconds)
    if result.exit_code != 0:
        logger.error(f"Failed to launch {bundle_id}: {result.stderr.strip()}")
        return False
    return True


def open_url(url: str) -> None:
    """Open a URL with the system handler without waiting for it."""
    try:
        subprocess.Popen(
            ["open", url],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        logger.error(f"Failed to open {url}: {e}")
