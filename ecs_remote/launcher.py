import contextlib
import logging
import shutil
import signal
import subprocess
import sys
from typing import Any, Dict, Iterator, List, Optional, TextIO

import packaging.version

from .exceptions import TransportLaunchFailed, TransportPluginMissing
from .session import SessionDescriptor

logger = logging.getLogger("ecs-remote.launcher")

SESSION_MANAGER_PLUGIN = "session-manager-plugin"
PLUGIN_VERSION_REQUIRED = "1.1.23"
PLUGIN_INSTALL_URL = "https://docs.aws.amazon.com/systems-manager/latest/userguide/session-manager-working-with-install-plugin.html"

# Not all of these exist on Windows
FORWARDED_SIGNALS = [getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)]
IGNORED_SIGNALS = [getattr(signal, name) for name in ("SIGTSTP",) if hasattr(signal, name)]

# How long to wait for the plugin after asking it to terminate
TERMINATE_TIMEOUT = 5


def verify_plugin_version(plugin: str = SESSION_MANAGER_PLUGIN, version_required: str = PLUGIN_VERSION_REQUIRED) -> str:
    """
    Verify that session-manager-plugin is installed and is of
    a required version or newer. Returns the path to the plugin.
    """
    plugin_path = shutil.which(plugin)
    if not plugin_path:
        raise TransportPluginMissing(f"{plugin} not installed. Check out {PLUGIN_INSTALL_URL} for instructions")

    result = subprocess.run([plugin_path, "--version"], stdout=subprocess.PIPE, check=False)
    plugin_version = result.stdout.decode("ascii", errors="replace").strip()
    logger.debug("%s version %s", plugin, plugin_version)

    try:
        installed = packaging.version.parse(plugin_version)
    except packaging.version.InvalidVersion:
        logger.warning("Unable to parse %s version '%s', trying anyway", plugin, plugin_version)
        return plugin_path

    if installed < packaging.version.parse(version_required):
        raise TransportPluginMissing(
            f"{plugin} version {plugin_version} is installed, {version_required} is required. "
            f"Check out {PLUGIN_INSTALL_URL} for instructions"
        )

    return plugin_path


@contextlib.contextmanager
def terminal_restored(stream: TextIO) -> Iterator[None]:
    """
    Put back the terminal attributes the plugin may leave in raw mode.
    """
    saved = None
    if not sys.platform.startswith("win") and stream.isatty():
        import termios

        saved = termios.tcgetattr(stream.fileno())
    try:
        yield
    finally:
        if saved is not None:
            import termios

            termios.tcsetattr(stream.fileno(), termios.TCSADRAIN, saved)


@contextlib.contextmanager
def attached_child(command: List[str], stdin: Optional[TextIO] = None) -> Iterator["subprocess.Popen[bytes]"]:
    """
    Run `command` attached to our terminal.

    Signals received while the child runs are passed on to it. On exit
    the child is reaped, and signal handlers and the terminal restored.
    """
    with terminal_restored(stdin or sys.stdin):
        try:
            child = subprocess.Popen(command)
        except OSError as e:
            raise TransportLaunchFailed(f"Unable to start {command[0]}: {e}") from e

        def _forward(signum: int, frame: Any) -> None:
            if child.poll() is None:
                logger.debug("Forwarding signal %d to PID %d", signum, child.pid)
                child.send_signal(signum)

        previous: Dict[int, Any] = {}
        try:
            for signum in FORWARDED_SIGNALS:
                previous[signum] = signal.signal(signum, _forward)
            for signum in IGNORED_SIGNALS:
                previous[signum] = signal.signal(signum, signal.SIG_IGN)

            yield child

        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

            if child.poll() is None:
                logger.debug("Terminating PID %d", child.pid)
                child.terminate()
                try:
                    child.wait(timeout=TERMINATE_TIMEOUT)
                except subprocess.TimeoutExpired:
                    child.kill()
                    child.wait()


class SessionLauncher:
    def __init__(self, plugin: str = SESSION_MANAGER_PLUGIN, version_required: str = PLUGIN_VERSION_REQUIRED) -> None:
        self.plugin = plugin
        self.version_required = version_required
        self.plugin_path: Optional[str] = None

    def verify(self) -> str:
        if not self.plugin_path:
            self.plugin_path = verify_plugin_version(self.plugin, self.version_required)
        return self.plugin_path

    def launch(self, descriptor: SessionDescriptor) -> int:
        """
        Hand the session over to session-manager-plugin and wait until it exits.
        Returns its exit status, 128+N if it was killed by signal N.
        """
        plugin_path = self.verify()

        # The session token is in the args - don't log them all
        logger.debug("Running: %s <session %s> %s", plugin_path, descriptor.session_id, descriptor.ssm_target)
        with attached_child([plugin_path] + descriptor.plugin_args()) as child:
            returncode = child.wait()

        if returncode < 0:
            returncode = 128 - returncode
        logger.debug("%s exited with %d", self.plugin, returncode)
        return returncode
