"""Shared fixtures: fake task executors and a quiet console."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from releaseci.tasks.command import CommandOutput
from releaseci.ui.console import Console, set_console


class FakeExecutor:
    """
    Stands in for subprocess execution.

    `fail` is a predicate (cmd, env) -> bool; matching commands exit 1.
    `hooks` maps a command substring to a callable run before returning.
    """

    def __init__(self, fail=None, hooks=None, output: str = ""):
        self.fail = fail or (lambda cmd, env: False)
        self.hooks = hooks or {}
        self.output = output
        self.calls: list[tuple[str, dict]] = []
        self.events: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, cmd, cwd, env, timeout=None, cancel=None) -> CommandOutput:
        with self._lock:
            self.calls.append((cmd, dict(env)))
            self.events.append(f"start:{cmd}")
        for needle, hook in self.hooks.items():
            if needle in cmd:
                hook(cmd, env, cancel)
        failed = self.fail(cmd, env)
        with self._lock:
            self.events.append(f"end:{cmd}")
        if failed:
            return CommandOutput(returncode=1, stdout=self.output, stderr=f"error running {cmd}")
        return CommandOutput(returncode=0, stdout=self.output)

    def commands(self) -> list[str]:
        with self._lock:
            return [c for c, _ in self.calls]

    def envs_for(self, needle: str) -> list[dict]:
        with self._lock:
            return [e for c, e in self.calls if needle in c]


class RecordingPublisher:
    """Publisher double: records the mode of every publish and never touches a registry."""

    def __init__(self):
        self.modes = []
        self.side_effect = False
        self._lock = threading.Lock()

    def __call__(self, mode, ctx, task) -> CommandOutput:
        with self._lock:
            self.modes.append(mode)
            if mode.side_effect:
                self.side_effect = True
        return CommandOutput(returncode=0)


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def base_env() -> dict:
    return {"PATH": os.environ.get("PATH", "")}


@pytest.fixture
def secret_env(base_env) -> dict:
    return {**base_env, "PUBLISH_SECRET": "s3cr3t"}


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    (tmp_path / "cobertura.xml").write_text("<coverage/>", encoding="utf-8")
    return tmp_path


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def publisher():
    return RecordingPublisher()
