"""
Gateway lifecycle manager.

Owns at most one OpenClaw gateway child process and at most one in-flight
startup attempt. Both are plain fields on a single manager instance: the
wrapper runs on one event loop, and every check-then-assign below happens
without an ``await`` in between, so no lock is needed.

States:
    absent    no process
    starting  a startup attempt (spawn + readiness poll) is in flight
    running   process handle is live
    stopping  SIGTERM sent, waiting out the grace period

Retry policy: there is none. A failed start is reported to whoever asked;
the next request through the proxy gate simply triggers start logic again.
"""

import asyncio
import os
from typing import Optional

import httpx

from clawgate.config import WrapperConfig
from clawgate.errors import GatewayNotReady, NotConfigured, SpawnError

# Control UI base path first, then the legacy one, then root.
PROBE_PATHS = ("/openclaw", "/clawdbot", "/")

READY_TIMEOUT = 20.0
READY_INTERVAL = 0.25
STOP_GRACE = 0.75
PROBE_TIMEOUT = 5.0


class GatewayManager:
    def __init__(
        self,
        config: WrapperConfig,
        client: Optional[httpx.AsyncClient] = None,
        ready_timeout: float = READY_TIMEOUT,
        ready_interval: float = READY_INTERVAL,
        stop_grace: float = STOP_GRACE,
    ):
        self.config = config
        self.ready_timeout = ready_timeout
        self.ready_interval = ready_interval
        self.stop_grace = stop_grace
        self._client = client
        self._owns_client = client is None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._starting: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Future] = None
        self._watchers: set[asyncio.Task] = set()

    # ------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._proc is not None

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def state(self) -> str:
        if self._stopping is not None:
            return "stopping"
        if self._starting is not None and not self._starting.done():
            return "starting"
        if self._proc is not None:
            return "running"
        return "absent"

    def status(self) -> dict:
        return {
            "state": self.state,
            "pid": self.pid,
            "target": self.config.gateway_target,
            "configured": self.config.is_configured(),
        }

    def gateway_args(self) -> list[str]:
        """CLI arguments that run the gateway bound to loopback on the internal port."""
        return [
            "gateway",
            "run",
            "--bind",
            "loopback",
            "--port",
            str(self.config.internal_port),
            "--auth",
            "token",
            "--token",
            self.config.gateway_token,
        ]

    # ------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------

    async def _spawn(self) -> asyncio.subprocess.Process:
        # Gateway output goes straight to the wrapper's stdout/stderr.
        return await asyncio.create_subprocess_exec(
            self.config.openclaw_node,
            *self.config.claw_args(self.gateway_args()),
            stdin=asyncio.subprocess.DEVNULL,
            env={**os.environ, **self.config.child_env()},
        )

    async def _watch(self, proc: asyncio.subprocess.Process):
        """Clear the handle once this process exits, unless it was already replaced."""
        code = await proc.wait()
        signal = -code if code is not None and code < 0 else None
        print(f"[gateway] exited code={code} signal={signal}", flush=True)
        if self._proc is proc:
            self._proc = None

    async def start(self):
        """
        Spawn the gateway if no handle exists.

        Raises NotConfigured without a config file and SpawnError when the OS
        refuses to launch it. Concurrent callers should go through
        ensure_running(), which deduplicates starts.
        """
        if not self.config.is_configured():
            raise NotConfigured()
        if self._proc is not None:
            return

        self.config.state_dir.mkdir(parents=True, exist_ok=True)
        self.config.workspace_dir.mkdir(parents=True, exist_ok=True)

        try:
            proc = await self._spawn()
        except OSError as e:
            print(f"[gateway] spawn error: {e}", flush=True)
            raise SpawnError(f"Gateway spawn failed: {e}") from e

        self._proc = proc
        watcher = asyncio.create_task(self._watch(proc))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        print(f"[gateway] started pid={proc.pid} target={self.config.gateway_target}", flush=True)

    # ------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def _probe(self, path: str, timeout: float) -> bool:
        try:
            await self._http().get(f"{self.config.gateway_target}{path}", timeout=timeout)
        except httpx.HTTPError:
            return False
        # Any HTTP response, whatever the status, means the port is open.
        return True

    async def wait_until_ready(
        self,
        timeout: Optional[float] = None,
        proc: Optional[asyncio.subprocess.Process] = None,
    ) -> bool:
        """
        Poll the probe paths until one answers or the deadline passes.

        With ``proc`` given, polling also gives up as soon as that process is
        no longer the managed one (it exited, or was stopped or replaced).
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.ready_timeout if timeout is None else timeout)
        while loop.time() < deadline:
            for path in PROBE_PATHS:
                if proc is not None and self._proc is not proc:
                    return False
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                if await self._probe(path, min(PROBE_TIMEOUT, remaining)):
                    return True
            await asyncio.sleep(self.ready_interval)
        return False

    async def _start_and_wait(self):
        await self.start()
        proc = self._proc
        if not await self.wait_until_ready(proc=proc):
            if self._proc is not proc:
                print("[gateway] gone before it became ready", flush=True)
                raise GatewayNotReady("Gateway exited or was stopped before it became ready")
            # The process is left running: it may still come up, and a later
            # ensure_running() will find its handle.
            print(f"[gateway] not ready after {self.ready_timeout}s", flush=True)
            raise GatewayNotReady()
        print("[gateway] ready", flush=True)

    def _clear_attempt(self, task: asyncio.Task):
        if self._starting is task:
            self._starting = None
        # Every waiter may have gone away; mark the outcome as retrieved.
        if not task.cancelled():
            task.exception()

    async def ensure_running(self):
        """
        Make sure a gateway is running, starting one if needed.

        All callers that arrive while a startup attempt is in flight await
        that same attempt and share its outcome.
        """
        if not self.config.is_configured():
            raise NotConfigured()

        # A stop in progress must finish before anything is started or proxied.
        if self._stopping is not None:
            await asyncio.shield(self._stopping)

        if self._starting is None:
            if self._proc is not None:
                return
            self._starting = asyncio.create_task(self._start_and_wait())
            self._starting.add_done_callback(self._clear_attempt)

        await asyncio.shield(self._starting)

    # ------------------------------------------------------------
    # Stop / restart
    # ------------------------------------------------------------

    async def _terminate(self):
        if self._stopping is not None:
            await asyncio.shield(self._stopping)
            return
        proc = self._proc
        if proc is None:
            return

        self._stopping = asyncio.get_running_loop().create_future()
        # An attempt still polling this process is abandoned; the next
        # ensure_running() starts a fresh one.
        self._starting = None
        try:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            # Give it a moment to exit and release the port.
            await asyncio.sleep(self.stop_grace)
            # Cleared whether or not the exit was observed.
            if self._proc is proc:
                self._proc = None
        finally:
            self._stopping.set_result(None)
            self._stopping = None

    async def stop(self):
        """Stop the gateway if one is running. No-op otherwise."""
        if self._proc is None and self._stopping is None:
            return
        await self._terminate()
        print("[gateway] stopped", flush=True)

    async def restart(self):
        """Stop any running gateway, then start a fresh one and wait for readiness."""
        await self._terminate()
        await self.ensure_running()

    async def shutdown(self):
        """Best-effort stop on wrapper exit."""
        starting = self._starting
        if starting is not None:
            starting.cancel()
            await asyncio.gather(starting, return_exceptions=True)
            self._starting = None
        proc = self._proc
        if proc is not None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                pass
            self._proc = None
        for watcher in list(self._watchers):
            watcher.cancel()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
