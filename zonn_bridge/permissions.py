"""Automation permission checks for the target application."""

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional

from .blocking import run_blocking
from .bridge import DEFAULT_BUNDLE_ID, ProcessProbe, ScriptRunner
from .contracts import PermissionProvider
from .executor import (
    AUTOMATION_SETTINGS_URL,
    application_installed,
    application_running,
    launch_application,
    open_url,
    run_osascript,
)
from .models import PermissionStatus

logger = logging.getLogger("zonn_bridge.permissions")

# AppleScript error numbers
NOT_AUTHORIZED = -1743
APPLICATION_NOT_RUNNING = -600


def check_script(bundle_id: str) -> str:
    """Benign probe that does not launch the target."""
    return f'tell application id "{bundle_id}" to return running'


def request_script(bundle_id: str) -> str:
    """Benign call that makes the OS show the automation prompt."""
    return f'tell application id "{bundle_id}" to return name'


class PermissionCoordinator(PermissionProvider):
    """Checks, requests and links to the OS automation permission."""

    def __init__(
        self,
        bundle_id: str = DEFAULT_BUNDLE_ID,
        timeout_seconds: float = 10.0,
        prompt_timeout_seconds: float = 120.0,
        launch_settle_seconds: float = 2.0,
        runner: Optional[ScriptRunner] = None,
        process_probe: Optional[ProcessProbe] = None,
        installed_probe: Optional[Callable[[str], bool]] = None,
        launcher: Optional[Callable[[str], bool]] = None,
        url_opener: Optional[Callable[[str], None]] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            bundle_id: Bundle identifier of the target application
            timeout_seconds: Bound on the status probe
            prompt_timeout_seconds: Bound on the prompt-triggering call,
                which waits for the user to answer
            launch_settle_seconds: Wait after launching the target
            runner: Blocking script runner (osascript by default)
            process_probe: Running check by bundle id
            installed_probe: Installed check by bundle id
            launcher: Non-activating launcher by bundle id
            url_opener: Fire-and-forget URL opener
            executor: Executor for status probes (loop default if None)
        """
        self.bundle_id = bundle_id
        self.timeout_seconds = timeout_seconds
        self.prompt_timeout_seconds = prompt_timeout_seconds
        self.launch_settle_seconds = launch_settle_seconds
        self.runner = runner or run_osascript
        self.process_probe = process_probe or application_running
        self.installed_probe = installed_probe or application_installed
        self.launcher = launcher or launch_application
        self.url_opener = url_opener or open_url
        self.executor = executor
        # Prompts are serialized on one dedicated thread
        self._prompt_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="permission_prompt"
        )

    def is_target_installed(self) -> bool:
        return self.installed_probe(self.bundle_id)

    async def permission_status(self) -> PermissionStatus:
        try:
            return await run_blocking(
                self._probe_status,
                executor=self.executor,
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Permission probe timed out, status not determined")
            return PermissionStatus.NOT_DETERMINED

    def _probe_status(self) -> PermissionStatus:
        result = self.runner(check_script(self.bundle_id), self.timeout_seconds)

        if result.error_message is None and not result.timed_out:
            logger.info("Permission status: authorized")
            return PermissionStatus.AUTHORIZED

        logger.debug(f"Permission probe error {result.error_number}: {result.error_message}")
        if result.error_number == NOT_AUTHORIZED:
            logger.info("Permission status: denied")
            return PermissionStatus.DENIED
        if result.error_number == APPLICATION_NOT_RUNNING:
            logger.info("Permission status: not determined (target not running)")
            return PermissionStatus.NOT_DETERMINED

        logger.warning(
            f"Permission status: not determined (unexpected error {result.error_number})"
        )
        return PermissionStatus.NOT_DETERMINED

    async def request_permission(self) -> bool:
        # The OS only prompts while a live target is being addressed
        running = await run_blocking(
            self.process_probe, self.bundle_id, executor=self.executor
        )
        if not running:
            logger.info("Target not running, launching before requesting permission")
            launched = await run_blocking(
                self.launcher, self.bundle_id, executor=self.executor
            )
            if not launched:
                logger.error("Failed to launch target")
                return False
            await asyncio.sleep(self.launch_settle_seconds)

        try:
            return await run_blocking(
                self._trigger_prompt,
                executor=self._prompt_executor,
                timeout=self.prompt_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Permission prompt was not answered in time")
            return True

    def _trigger_prompt(self) -> bool:
        result = self.runner(request_script(self.bundle_id), self.prompt_timeout_seconds)
        if result.launch_failed:
            logger.error("Could not run osascript to trigger the permission prompt")
            return False
        if result.error_number == NOT_AUTHORIZED:
            logger.info("Permission request denied")
            return False
        if result.error_message is not None:
            logger.debug(f"Permission request returned error {result.error_number}")
        else:
            logger.info("Permission granted")
        return True

    def open_system_settings_for_automation(self) -> None:
        logger.info("Opening automation privacy settings")
        self.url_opener(AUTOMATION_SETTINGS_URL)

    def close(self) -> None:
        """Shut down the prompt thread. Safe to call repeatedly."""
        self._prompt_executor.shutdown(wait=False, cancel_futures=True)
