"""Shared fixtures: config builder, fake gateway processes, fake lifecycle manager."""

import asyncio
import itertools
import json
import socket
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from clawgate.config import WrapperConfig
from clawgate.gateway import GatewayManager

STUB_OPENCLAW = Path(__file__).parent / "fixtures" / "stub_openclaw.py"

_pids = itertools.count(4000)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def make_config(tmp_path: Path, **overrides) -> WrapperConfig:
    state_dir = tmp_path / "state"
    config = WrapperConfig(
        port=8080,
        state_dir=state_dir,
        workspace_dir=state_dir / "workspace",
        config_path=state_dir / "openclaw.json",
        setup_password="secret",
        gateway_token="test-token",
        token_from_env=True,
        internal_host="127.0.0.1",
        internal_port=18789,
        openclaw_entry=str(STUB_OPENCLAW),
        openclaw_node=sys.executable,
        data_root=tmp_path,
    )
    return replace(config, **overrides)


def mark_configured(config: WrapperConfig):
    config.config_path.parent.mkdir(parents=True, exist_ok=True)
    config.config_path.write_text("{}")


def cli_calls(config: WrapperConfig) -> list[list[str]]:
    path = config.state_dir / "cli-calls.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


class FakeProcess:
    """Enough of asyncio.subprocess.Process for the lifecycle manager."""

    def __init__(self, honours_sigterm: bool = True):
        self.pid = next(_pids)
        self.returncode = None
        self.terminated = False
        self.honours_sigterm = honours_sigterm
        self._exit = asyncio.get_running_loop().create_future()

    def terminate(self):
        self.terminated = True
        if self.honours_sigterm:
            self.exit(-15)

    def exit(self, code: int):
        if not self._exit.done():
            self.returncode = code
            self._exit.set_result(code)

    async def wait(self):
        return await asyncio.shield(self._exit)


class FakeGatewayManager(GatewayManager):
    """Lifecycle manager with process spawning and probing replaced by fakes."""

    def __init__(self, config, ready=True, honours_sigterm=True, spawn_error=None, **kwargs):
        kwargs.setdefault("ready_timeout", 0.2)
        kwargs.setdefault("ready_interval", 0.01)
        kwargs.setdefault("stop_grace", 0.01)
        super().__init__(config, **kwargs)
        self.ready = ready
        self.honours_sigterm = honours_sigterm
        self.spawn_error = spawn_error
        self.spawned: list[FakeProcess] = []
        self.terminated_at_spawn: list[list[bool]] = []
        self.stopping_at_spawn: list[bool] = []
        self.probes: list[str] = []

    async def _spawn(self):
        # Real spawns suspend too.
        await asyncio.sleep(0)
        if self.spawn_error is not None:
            raise self.spawn_error
        self.terminated_at_spawn.append([p.terminated for p in self.spawned])
        self.stopping_at_spawn.append(self._stopping is not None)
        proc = FakeProcess(honours_sigterm=self.honours_sigterm)
        self.spawned.append(proc)
        return proc

    async def _probe(self, path, timeout):
        self.probes.append(path)
        await asyncio.sleep(0)
        return self.ready(self) if callable(self.ready) else self.ready


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def configured(config):
    mark_configured(config)
    return config
