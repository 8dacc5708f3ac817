"""Shared test fixtures."""

from __future__ import annotations

import io
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from health_check import HealthCheckConfig, SystemProbe
from sysutils import RunLog


class FakeProbe(SystemProbe):
    """Deterministic probe: canned host data, recorded commands."""

    def __init__(
        self,
        disk_rows: Optional[List[Tuple[str, str, str]]] = None,
        memory: Tuple[int, int] = (1000, 400),
        load: str = "0.50",
        services: Optional[Dict[str, bool]] = None,
        tools: Iterable[str] = (),
        commands: Optional[Dict[Tuple[str, ...], Tuple[int, str, str]]] = None,
    ) -> None:
        self._disk_rows = disk_rows if disk_rows is not None else [("/dev/sda1", "40", "/")]
        self._memory = memory
        self._load = load
        self._services = services if services is not None else {"sshd": True, "cron": True}
        self.tools = set(tools)
        self.commands = commands or {}
        self.calls: List[List[str]] = []

    def disk_rows(self):
        return list(self._disk_rows)

    def memory(self):
        return self._memory

    def load_average(self):
        return self._load

    def service_active(self, name):
        return self._services.get(name, False)

    def tool_available(self, name):
        return name in self.tools

    def run(self, cmd, timeout):
        self.calls.append(list(cmd))
        return self.commands.get(tuple(cmd), (0, "", ""))


@pytest.fixture
def os_release(tmp_path):
    """Write an os-release file; returns a factory taking its contents."""
    path = tmp_path / "os-release"

    def _write(text: str) -> str:
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def config(tmp_path) -> HealthCheckConfig:
    return HealthCheckConfig(
        log_path=str(tmp_path / "logs" / "health.log"),
        os_release_path=str(tmp_path / "missing-os-release"),
    )


@pytest.fixture
def run_log(config) -> RunLog:
    return RunLog(config.log_path, stream=io.StringIO())


def messages(text: str) -> List[str]:
    """Strip the timestamp prefix from each log line."""
    return [line.split(" - ", 1)[1] for line in text.splitlines() if " - " in line]
