"""Child process ownership: spawn, exit observation and graceful termination."""
from __future__ import annotations

import logging
import os
import signal
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, Mapping, Optional, Sequence

import psutil  # type: ignore[import-untyped]

from secenv.credentials import Credential
from secenv.errors import StartError

logger = logging.getLogger(__name__)

GRACE_PERIOD_SECONDS = 5.0
EXIT_SENTINEL = 128
# Upper bound on waiting for the exit watcher after SIGKILL.
_KILL_CONFIRM_SECONDS = 5.0


def build_environment(credential: Credential, base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Return the child environment; credential variables win on collision."""
    env = dict(os.environ if base_env is None else base_env)
    env.update(credential.environment())
    return env


def _normalize_returncode(returncode: int) -> int:
    # negative means killed by a signal, which is not an exit status
    if returncode < 0:
        return EXIT_SENTINEL
    return returncode


class ProcessHandle:
    """Owns exactly one child process started with one credential."""

    def __init__(self, popen: psutil.Popen, credential: Credential) -> None:
        self._popen = popen
        self._credential = credential
        self._exit: Future[int] = Future()
        self._watcher = threading.Thread(
            target=self._watch_exit,
            name=f"secenv-exit-{popen.pid}",
            daemon=True,
        )
        self._watcher.start()

    @classmethod
    def start(
        cls,
        command: Sequence[str],
        credential: Credential,
        *,
        base_env: Optional[Mapping[str, str]] = None,
    ) -> "ProcessHandle":
        """Spawn ``command`` with ``credential`` injected into its environment.

        Standard output and error are inherited from the supervisor.
        """
        if not command:
            raise StartError("no command to start")
        env = build_environment(credential, base_env)
        try:
            popen = psutil.Popen(list(command), env=env)
        except (OSError, ValueError) as exc:
            raise StartError(f"cannot start process {command[0]!r}: {exc}") from exc
        logger.debug("started %s (pid %d)", command[0], popen.pid)
        return cls(popen, credential)

    # --- exit observation -----------------------------------------------

    def _watch_exit(self) -> None:
        try:
            code = _normalize_returncode(int(self._popen.wait()))
        except Exception as exc:
            logger.error("error waiting for pid %d: %s", self._popen.pid, exc)
            code = EXIT_SENTINEL
        self._exit.set_result(code)

    @property
    def exit_signal(self) -> Future[int]:
        """Future resolved once, with the exit code, when the child terminates."""
        return self._exit

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def exit_code(self) -> Optional[int]:
        if not self._exit.done():
            return None
        return self._exit.result()

    def is_running(self) -> bool:
        return not self._exit.done()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block up to ``timeout`` seconds for the exit code; ``None`` if still running."""
        try:
            return self._exit.result(timeout=timeout)
        except FutureTimeoutError:
            return None

    # --- termination ------------------------------------------------------

    def _send(self, sig: int) -> None:
        try:
            self._popen.send_signal(sig)
        except (psutil.NoSuchProcess, ProcessLookupError):
            logger.debug("pid %d already gone before signal %d", self.pid, sig)

    def request_graceful_stop(self, grace_period: float = GRACE_PERIOD_SECONDS) -> bool:
        """Ask the child to exit, killing it if it outlives ``grace_period``.

        Returns ``True`` when the child exited within the grace period and
        ``False`` when it had to be killed. Does not return before the child
        is confirmed gone or a kill has been issued.
        """
        if not self.is_running():
            return True
        logger.debug("sending SIGTERM to pid %d", self.pid)
        self._send(signal.SIGTERM)
        if self.wait(max(0.0, grace_period)) is not None:
            return True
        logger.warning("pid %d did not exit within %.1fs; killing", self.pid, grace_period)
        self._send(signal.SIGKILL)
        if self.wait(_KILL_CONFIRM_SECONDS) is None:
            logger.error("pid %d still not reaped after SIGKILL", self.pid)
        return False

    def __repr__(self) -> str:
        state = "running" if self.is_running() else f"exited({self.exit_code})"
        return f"<ProcessHandle pid={self.pid} {state}>"


__all__ = ["EXIT_SENTINEL", "GRACE_PERIOD_SECONDS", "ProcessHandle", "build_environment"]
