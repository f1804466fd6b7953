"""Poll loop restarting a child process whenever its credential rotates."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from secenv.config import SupervisorSettings
from secenv.credentials import Credential
from secenv.document import load_document
from secenv.errors import DocumentError, ResolutionError, StartError
from secenv.process import GRACE_PERIOD_SECONDS, ProcessHandle
from secenv.resolver import resolve

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[Sequence[str], Credential], ProcessHandle]
DocumentLoader = Callable[[Any], Dict[str, Any]]


@dataclass
class SupervisorHooks:
    on_child_start: Callable[[int, Credential], None] | None = None
    on_child_exit: Callable[[Optional[int], bool], None] | None = None
    on_rotation: Callable[[Credential, Credential], None] | None = None


class RotationSupervisor:
    """Keep one child running with the current credential for ``name``.

    Every tick re-reads the document and resolves ``name``. The child is left
    alone while the credential is unchanged; on rotation it is stopped
    (SIGTERM, then SIGKILL after the grace period) before a replacement is
    started with the new credential. At most one child is alive at a time.
    """

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        settings: SupervisorSettings,
        *,
        clock: Callable[[], float] = time.time,
        hooks: SupervisorHooks | None = None,
        process_factory: ProcessFactory | None = None,
        document_loader: DocumentLoader = load_document,
        grace_period: float = GRACE_PERIOD_SECONDS,
    ) -> None:
        if not name:
            raise ValueError("RotationSupervisor requires a credential name")
        if not command:
            raise ValueError("RotationSupervisor requires a command to execute")
        self._name = name
        self._command = list(command)
        self._settings = settings
        self._clock = clock
        self._hooks = hooks or SupervisorHooks()
        self._process_factory: ProcessFactory = process_factory or ProcessHandle.start
        self._document_loader = document_loader
        self._grace_period = grace_period

        self._stop_event = threading.Event()
        self._active: Credential | None = None
        self._handle: ProcessHandle | None = None

    # --- public API -----------------------------------------------------

    @property
    def active_credential(self) -> Credential | None:
        return self._active

    @property
    def process(self) -> ProcessHandle | None:
        return self._handle

    def run(self) -> None:
        """Poll forever; returns only after :meth:`stop` or an integrity fault."""
        logger.info("supervising %s for key %s every %.1fs", self._command[0], self._name, self._settings.interval_seconds)
        try:
            while not self._stop_event.is_set():
                self.tick()
                if self._stop_event.wait(self._settings.interval_seconds):
                    break
        finally:
            self._stop_child()

    def stop(self) -> None:
        """Interrupt the poll loop; the child is stopped when :meth:`run` unwinds."""
        self._stop_event.set()

    def tick(self) -> None:
        """Run one poll: resolve, compare, and restart the child if needed."""
        try:
            credential = self._resolve()
        except (DocumentError, ResolutionError) as exc:
            logger.error("key %s: [%s] %s", self._name, exc.kind, exc)
            return

        previous = self._active
        if previous is not None and self._handle is not None:
            # TypeMismatchError propagates: the key's type changed underneath us
            if previous.equals(credential):
                if self._handle.is_running():
                    logger.debug("key %s: unchanged", self._name)
                    return
                logger.warning(
                    "key %s: child exited with code %s; restarting",
                    self._name,
                    self._handle.exit_code,
                )
            else:
                logger.info("key %s: credential rotated; restarting child", self._name)
                if self._hooks.on_rotation:
                    self._hooks.on_rotation(previous, credential)

        self._stop_child()
        self._start_child(credential)

    # --- internal helpers -----------------------------------------------

    def _resolve(self) -> Credential:
        document = self._document_loader(self._settings.document_path)
        return resolve(
            self._name,
            document,
            self._settings.variant,
            now=self._clock(),
            min_validity=self._settings.interval_seconds,
        )

    def _stop_child(self) -> None:
        handle = self._handle
        self._handle = None
        self._active = None
        if handle is None:
            return
        graceful = handle.request_graceful_stop(self._grace_period)
        if not graceful:
            logger.warning("key %s: child pid %d was killed after %.1fs", self._name, handle.pid, self._grace_period)
        if self._hooks.on_child_exit:
            self._hooks.on_child_exit(handle.exit_code, graceful)

    def _start_child(self, credential: Credential) -> None:
        try:
            handle = self._process_factory(self._command, credential)
        except StartError as exc:
            logger.error("key %s: [%s] %s", self._name, exc.kind, exc)
            return
        self._handle = handle
        self._active = credential
        logger.info("key %s: started child pid %d", self._name, handle.pid)
        if self._hooks.on_child_start:
            self._hooks.on_child_start(handle.pid, credential)


__all__ = ["RotationSupervisor", "SupervisorHooks"]
