from __future__ import annotations

import copy
import json
import os
import sys
import textwrap
import threading
import time
from pathlib import Path
from typing import Any, Sequence

import pytest

from secenv import supervisor as supervisor_module
from secenv.config import SupervisorSettings
from secenv.credentials import Credential, SymmetricCredential
from secenv.errors import DocumentError, StartError, TypeMismatchError
from secenv.process import EXIT_SENTINEL
from secenv.supervisor import RotationSupervisor, SupervisorHooks

NOW = 1_700_000_000.0


class FakeHandle:
    _pid_counter = 3100

    def __init__(self, credential: Credential, events: list[tuple[str, Any]]) -> None:
        self.pid = FakeHandle._pid_counter
        FakeHandle._pid_counter += 1
        self.credential = credential
        self.running = True
        self.exit_code: int | None = None
        self.graceful = True
        self.stop_calls = 0
        self._events = events

    def is_running(self) -> bool:
        return self.running

    def request_graceful_stop(self, grace_period: float) -> bool:
        self.stop_calls += 1
        self._events.append(("stop", self.pid))
        if self.running:
            self.running = False
            self.exit_code = 0 if self.graceful else EXIT_SENTINEL
        return self.graceful


class Harness:
    """Fake process factory and in-memory document for loop tests."""

    def __init__(self, document: dict[str, Any]) -> None:
        self.document = document
        self.events: list[tuple[str, Any]] = []
        self.handles: list[FakeHandle] = []
        self.start_failures = 0

    def load(self, path: Any) -> dict[str, Any]:  # noqa: ARG002 - loader signature
        if self.document is None:
            raise DocumentError("cannot read document")
        return copy.deepcopy(self.document)

    def factory(self, command: Sequence[str], credential: Credential) -> FakeHandle:
        if self.start_failures:
            self.start_failures -= 1
            raise StartError(f"cannot start process {command[0]!r}")
        handle = FakeHandle(credential, self.events)
        self.handles.append(handle)
        self.events.append(("start", credential.environment()))
        return handle

    @property
    def starts(self) -> list[dict[str, str]]:
        return [payload for event, payload in self.events if event == "start"]

    def set_secret(self, secret: str, **extra: Any) -> None:
        self.document["g"]["k"] = {"key": "A", "secret": secret, **extra}


@pytest.fixture()
def harness() -> Harness:
    return Harness({"svc": [{"group": "g", "name": "k"}], "g": {"k": {"key": "A", "secret": "B"}}})


def _supervisor(harness: Harness, *, clock=lambda: NOW, hooks: SupervisorHooks | None = None, interval: float = 15.0) -> RotationSupervisor:
    return RotationSupervisor(
        "svc",
        ["child", "--flag"],
        SupervisorSettings(interval_seconds=interval),
        clock=clock,
        hooks=hooks,
        process_factory=harness.factory,  # type: ignore[arg-type]
        document_loader=harness.load,
        grace_period=0.1,
    )


def test_requires_name_and_command() -> None:
    with pytest.raises(ValueError):
        RotationSupervisor("", ["child"], SupervisorSettings())
    with pytest.raises(ValueError):
        RotationSupervisor("svc", [], SupervisorSettings())


def test_unchanged_credential_starts_child_once(harness: Harness) -> None:
    supervisor = _supervisor(harness)
    for _ in range(5):
        supervisor.tick()

    assert harness.starts == [{"KEY": "A", "SECRET": "B"}]
    assert harness.handles[0].stop_calls == 0
    assert supervisor.process is harness.handles[0]
    assert isinstance(supervisor.active_credential, SymmetricCredential)


def test_rotation_stops_old_child_before_starting_new(harness: Harness) -> None:
    rotations: list[tuple[Credential, Credential]] = []
    hooks = SupervisorHooks(on_rotation=lambda old, new: rotations.append((old, new)))
    supervisor = _supervisor(harness, hooks=hooks)
    supervisor.tick()
    first = harness.handles[0]

    harness.set_secret("C")
    supervisor.tick()

    assert harness.events == [
        ("start", {"KEY": "A", "SECRET": "B"}),
        ("stop", first.pid),
        ("start", {"KEY": "A", "SECRET": "C"}),
    ]
    assert first.stop_calls == 1
    assert supervisor.process is harness.handles[1]
    assert len(rotations) == 1
    assert rotations[0][0].environment()["SECRET"] == "B"
    assert rotations[0][1].environment()["SECRET"] == "C"


def test_renewed_expiry_is_not_a_rotation(harness: Harness) -> None:
    supervisor = _supervisor(harness)
    harness.set_secret("B", expiration=NOW + 60)
    supervisor.tick()
    harness.set_secret("B", expiration=NOW + 3600)
    supervisor.tick()

    assert len(harness.starts) == 1


def test_resolution_failures_leave_child_running(harness: Harness) -> None:
    supervisor = _supervisor(harness)
    supervisor.tick()
    handle = harness.handles[0]

    harness.document = None  # type: ignore[assignment]
    supervisor.tick()
    harness.document = {"other": []}
    supervisor.tick()
    harness.document = {"svc": [{"group": "g", "name": "k"}], "g": {"k": {"key": "A"}}}
    supervisor.tick()

    assert handle.stop_calls == 0
    assert supervisor.process is handle
    assert len(harness.starts) == 1


def test_expiring_credential_is_rejected_without_touching_child(harness: Harness) -> None:
    now = [NOW]
    supervisor = _supervisor(harness, clock=lambda: now[0])
    harness.set_secret("B", expiration=NOW + 30)
    supervisor.tick()
    assert len(harness.starts) == 1

    now[0] = NOW + 20
    supervisor.tick()

    assert harness.handles[0].stop_calls == 0
    assert len(harness.starts) == 1


def test_start_failure_is_retried_with_fresh_resolution(harness: Harness) -> None:
    harness.start_failures = 1
    supervisor = _supervisor(harness)
    supervisor.tick()
    assert supervisor.process is None
    assert supervisor.active_credential is None

    harness.set_secret("C")
    supervisor.tick()

    assert harness.starts == [{"KEY": "A", "SECRET": "C"}]
    assert supervisor.process is harness.handles[0]


def test_exited_child_is_restarted(harness: Harness) -> None:
    exits: list[tuple[int | None, bool]] = []
    supervisor = _supervisor(harness, hooks=SupervisorHooks(on_child_exit=lambda code, graceful: exits.append((code, graceful))))
    supervisor.tick()
    first = harness.handles[0]
    first.running = False
    first.exit_code = 1

    supervisor.tick()

    assert len(harness.starts) == 2
    assert supervisor.process is harness.handles[1]
    assert exits == [(1, True)]


def test_forced_stop_is_reported(harness: Harness) -> None:
    exits: list[tuple[int | None, bool]] = []
    supervisor = _supervisor(harness, hooks=SupervisorHooks(on_child_exit=lambda code, graceful: exits.append((code, graceful))))
    supervisor.tick()
    harness.handles[0].graceful = False

    harness.set_secret("C")
    supervisor.tick()

    assert exits == [(EXIT_SENTINEL, False)]
    assert len(harness.starts) == 2


def test_start_hook_receives_pid_and_credential(harness: Harness) -> None:
    started: list[tuple[int, Credential]] = []
    supervisor = _supervisor(harness, hooks=SupervisorHooks(on_child_start=lambda pid, cred: started.append((pid, cred))))
    supervisor.tick()

    assert started == [(harness.handles[0].pid, supervisor.active_credential)]


class _OtherCredential(Credential):
    variant = "other"

    @classmethod
    def build(cls, attributes, *, now, min_validity):  # type: ignore[override]
        return cls()

    def environment(self) -> dict[str, str]:
        return {}

    def equals(self, other: Credential) -> bool:
        self._check_variant(other)
        return True


def test_variant_change_is_fatal_and_stops_child(harness: Harness, monkeypatch: pytest.MonkeyPatch) -> None:
    supervisor = _supervisor(harness, interval=0.01)
    supervisor.tick()
    handle = harness.handles[0]

    monkeypatch.setattr(supervisor_module, "resolve", lambda *args, **kwargs: _OtherCredential())
    with pytest.raises(TypeMismatchError):
        supervisor.tick()
    assert len(harness.starts) == 1

    with pytest.raises(TypeMismatchError):
        supervisor.run()
    assert handle.stop_calls == 1
    assert supervisor.process is None


def test_run_polls_until_stopped(harness: Harness) -> None:
    supervisor = _supervisor(harness, interval=0.02)
    thread = threading.Thread(target=supervisor.run, daemon=True)
    thread.start()

    deadline = time.time() + 5.0
    while time.time() < deadline and not harness.handles:
        time.sleep(0.01)
    harness.set_secret("C")
    while time.time() < deadline and len(harness.handles) < 2:
        time.sleep(0.01)

    supervisor.stop()
    thread.join(timeout=5.0)

    assert not thread.is_alive()
    assert harness.starts == [{"KEY": "A", "SECRET": "B"}, {"KEY": "A", "SECRET": "C"}]
    assert all(not handle.running for handle in harness.handles)
    assert supervisor.process is None


@pytest.mark.skipif(os.name == "nt", reason="POSIX signal semantics")
def test_end_to_end_rotation_with_real_children(tmp_path: Path) -> None:
    document_path = tmp_path / "sec-config.json"
    document = {"svc": [{"group": "g", "name": "k"}], "g": {"k": {"key": "A", "secret": "B"}}}
    document_path.write_text(json.dumps(document), encoding="utf-8")
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    script = textwrap.dedent(
        f"""
        import json, os, pathlib, time
        target = pathlib.Path(r"{out_dir}") / str(os.getpid())
        target.write_text(json.dumps({{"KEY": os.environ["KEY"], "SECRET": os.environ["SECRET"]}}))
        time.sleep(30)
        """
    )
    supervisor = RotationSupervisor(
        "svc",
        [sys.executable, "-c", script],
        SupervisorSettings(document_path=document_path, interval_seconds=15),
    )

    def _env_of(pid: int) -> dict[str, str]:
        target = out_dir / str(pid)
        deadline = time.time() + 10.0
        while time.time() < deadline and not target.exists():
            time.sleep(0.02)
        deadline = time.time() + 5.0
        while time.time() < deadline:
            try:
                return json.loads(target.read_text())
            except (OSError, ValueError):
                time.sleep(0.02)
        raise AssertionError(f"child {pid} never reported its environment")

    try:
        supervisor.tick()
        first = supervisor.process
        assert first is not None
        assert _env_of(first.pid) == {"KEY": "A", "SECRET": "B"}

        supervisor.tick()
        assert supervisor.process is first

        document["g"]["k"]["secret"] = "C"
        document_path.write_text(json.dumps(document), encoding="utf-8")
        supervisor.tick()

        second = supervisor.process
        assert second is not None and second is not first
        assert not first.is_running()
        assert first.exit_code == EXIT_SENTINEL
        assert _env_of(second.pid) == {"KEY": "A", "SECRET": "C"}
    finally:
        supervisor.stop()
        handle = supervisor.process
        if handle is not None:
            handle.request_graceful_stop(1.0)


def test_nul_secret_is_logged_and_retried(harness: Harness) -> None:
    supervisor = _supervisor(harness)
    harness.set_secret("B\u0000C")
    supervisor.tick()
    assert supervisor.process is None
    assert harness.starts == []

    harness.set_secret("C")
    supervisor.tick()
    assert harness.starts == [{"KEY": "A", "SECRET": "C"}]


@pytest.mark.skipif(os.name == "nt", reason="POSIX signal semantics")
def test_unspawnable_command_does_not_crash_the_loop(tmp_path: Path) -> None:
    document_path = tmp_path / "sec-config.json"
    document_path.write_text(
        json.dumps({"svc": [{"group": "g", "name": "k"}], "g": {"k": {"key": "A", "secret": "B"}}}),
        encoding="utf-8",
    )
    supervisor = RotationSupervisor(
        "svc",
        [sys.executable, "-c", "pass\x00"],
        SupervisorSettings(document_path=document_path, interval_seconds=15),
    )

    supervisor.tick()
    supervisor.tick()

    assert supervisor.process is None
    assert supervisor.active_credential is None
