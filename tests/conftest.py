import os
import subprocess
from collections.abc import Callable

import pytest

from crossgcc import common, versions
from crossgcc.gcc_environment import environment


class command_recorder:
    """Stands in for common.run_command and records every command instead of running it"""

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.outputs: dict[str, str] = {}
        self.fail_on: str | None = None
        self.interrupt_on: str | None = None
        self.hook: Callable[[str], None] | None = None

    def __call__(
        self,
        command: str,
        ignore_error: bool = False,
        capture: bool = False,
        echo: bool = True,
        error_type: type[common.command_error] = common.command_error,
        dry_run: bool | None = None,
    ) -> subprocess.CompletedProcess[str] | None:
        self.commands.append(command)
        if self.interrupt_on and self.interrupt_on in command:
            raise KeyboardInterrupt
        if self.fail_on and self.fail_on in command:
            if ignore_error:
                return None
            raise error_type(command, 1)
        if self.hook:
            self.hook(command)
        stdout = next((output for key, output in self.outputs.items() if key in command), "")
        return subprocess.CompletedProcess(command, 0, stdout, "")

    def index(self, fragment: str) -> int:
        """Position of the first command containing fragment"""
        for i, command in enumerate(self.commands):
            if fragment in command:
                return i
        raise AssertionError(f"No command contains {fragment!r}: {self.commands}")

    def find(self, fragment: str) -> list[str]:
        return [command for command in self.commands if fragment in command]


@pytest.fixture(autouse=True)
def reset_global_state(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PATH", os.environ.get("PATH", ""))
    yield
    common.command_dry_run.set(False)
    common.command_echo.set(True)


@pytest.fixture
def commands(monkeypatch: pytest.MonkeyPatch) -> command_recorder:
    recorder = command_recorder()
    monkeypatch.setattr(common, "run_command", recorder)
    return recorder


@pytest.fixture
def home(tmp_path_factory: pytest.TempPathFactory) -> str:
    # Not under tmp_path: its name embeds the test name, which leaks into recorded commands
    path = tmp_path_factory.mktemp("home") / "root"
    path.mkdir()
    return str(path)


def make_env(home: str, arch: str = "arm64", source: str = "gnu", version: str = "8", mode: str = "git", **kwargs) -> environment:
    record = versions.resolve(source, version, mode, arch)
    kwargs.setdefault("tmpfs", False)
    return environment(record, versions.arch(arch), home, 4, build="x86_64-linux-gnu", **kwargs)


@pytest.fixture
def env(home) -> environment:
    return make_env(home)
