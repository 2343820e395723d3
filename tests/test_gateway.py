"""
Gateway lifecycle manager tests.

Process spawning and readiness probing are faked (see conftest.py) so the
start/stop/restart state machine can be driven deterministically.
"""

import asyncio

import httpx
import pytest

from clawgate.errors import GatewayNotReady, NotConfigured, SpawnError
from clawgate.gateway import PROBE_PATHS, GatewayManager
from conftest import FakeGatewayManager, settle


class TestEnsureRunning:
    """Start deduplication and failure sharing."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_spawn(self, configured):
        gw = FakeGatewayManager(configured)
        await asyncio.gather(*(gw.ensure_running() for _ in range(10)))
        assert len(gw.spawned) == 1
        assert gw.running
        assert gw.state == "running"
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_failed_attempt_is_shared_by_all_waiters(self, configured):
        gw = FakeGatewayManager(configured, ready=False, ready_timeout=0.05)
        results = await asyncio.gather(*(gw.ensure_running() for _ in range(5)), return_exceptions=True)
        assert len(gw.spawned) == 1
        assert all(isinstance(r, GatewayNotReady) for r in results)
        # The spawned process is left running after a readiness timeout.
        assert gw.running
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_not_configured_never_spawns(self, config):
        gw = FakeGatewayManager(config)
        with pytest.raises(NotConfigured):
            await gw.ensure_running()
        assert gw.spawned == []
        assert gw.state == "absent"

    @pytest.mark.asyncio
    async def test_running_gateway_is_not_probed_again(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.ensure_running()
        probes = len(gw.probes)
        await gw.ensure_running()
        assert len(gw.probes) == probes
        assert len(gw.spawned) == 1
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_spawn_failure_is_reported_and_retried_next_time(self, configured):
        gw = FakeGatewayManager(configured, spawn_error=FileNotFoundError("node"))
        with pytest.raises(SpawnError):
            await gw.ensure_running()
        assert not gw.running

        gw.spawn_error = None
        await gw.ensure_running()
        assert gw.running
        assert len(gw.spawned) == 1
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_waits_for_stop_in_progress_before_spawning(self, configured):
        gw = FakeGatewayManager(configured, stop_grace=0.05)
        await gw.ensure_running()

        stop_task = asyncio.create_task(gw.stop())
        await settle()
        # Exit observed, grace period still running.
        assert gw.state == "stopping"
        assert not gw.running

        await gw.ensure_running()
        await stop_task
        assert len(gw.spawned) == 2
        assert gw.stopping_at_spawn == [False, False]
        await gw.shutdown()


class TestStopRestart:
    """Stop, restart and exit bookkeeping."""

    @pytest.mark.asyncio
    async def test_stop_without_gateway_is_noop(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.stop()
        assert gw.state == "absent"
        assert gw.spawned == []

    @pytest.mark.asyncio
    async def test_stop_then_ensure_spawns_fresh_process(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.ensure_running()
        await gw.stop()
        assert not gw.running
        assert gw.spawned[0].terminated

        await gw.ensure_running()
        assert len(gw.spawned) == 2
        assert gw.pid == gw.spawned[1].pid
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_restart_terminates_before_spawning(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.ensure_running()
        await gw.restart()
        assert len(gw.spawned) == 2
        assert gw.terminated_at_spawn == [[], [True]]
        assert gw.pid == gw.spawned[1].pid
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_restart_when_sigterm_is_ignored(self, configured):
        gw = FakeGatewayManager(configured, honours_sigterm=False)
        await gw.ensure_running()
        await gw.restart()
        old, new = gw.spawned
        assert old.terminated
        assert old.returncode is None
        assert gw.pid == new.pid
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_exit_clears_handle(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.ensure_running()
        gw.spawned[0].exit(1)
        await settle()
        assert not gw.running
        assert gw.state == "absent"

    @pytest.mark.asyncio
    async def test_late_exit_of_old_process_keeps_new_handle(self, configured):
        gw = FakeGatewayManager(configured, honours_sigterm=False)
        await gw.ensure_running()
        await gw.restart()
        old, new = gw.spawned

        old.exit(0)
        await settle()
        assert gw.running
        assert gw.pid == new.pid
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_stop_during_startup_allows_fresh_start(self, configured):
        gw = FakeGatewayManager(configured, ready=False, ready_timeout=5.0)
        first = asyncio.create_task(gw.ensure_running())
        await settle()
        assert gw.state == "starting"
        assert len(gw.spawned) == 1

        await gw.stop()
        gw.ready = True
        await asyncio.wait_for(gw.ensure_running(), timeout=1.0)
        assert len(gw.spawned) == 2
        assert gw.pid == gw.spawned[1].pid

        # The abandoned attempt fails fast instead of polling to its deadline.
        with pytest.raises(GatewayNotReady):
            await asyncio.wait_for(first, timeout=1.0)
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_restart_during_startup_spawns_replacement(self, configured):
        # Only the replacement ever answers probes.
        gw = FakeGatewayManager(configured, ready=lambda m: len(m.spawned) > 1, ready_timeout=5.0)
        first = asyncio.create_task(gw.ensure_running())
        await settle()
        assert gw.state == "starting"

        await asyncio.wait_for(gw.restart(), timeout=1.0)
        assert len(gw.spawned) == 2
        assert gw.terminated_at_spawn == [[], [True]]
        assert gw.state == "running"

        with pytest.raises(GatewayNotReady):
            await asyncio.wait_for(first, timeout=1.0)
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_exit_during_startup_fails_fast(self, configured):
        gw = FakeGatewayManager(configured, ready=False, ready_timeout=5.0)
        attempt = asyncio.create_task(gw.ensure_running())
        await settle()

        gw.spawned[0].exit(1)
        with pytest.raises(GatewayNotReady):
            await asyncio.wait_for(attempt, timeout=1.0)
        assert not gw.running

    @pytest.mark.asyncio
    async def test_request_during_restart_waits_for_replacement(self, configured):
        gw = FakeGatewayManager(configured, stop_grace=0.05)
        await gw.ensure_running()

        restart = asyncio.create_task(gw.restart())
        await asyncio.sleep(0)
        # SIGTERM sent, grace period running.
        assert gw.state == "stopping"

        await gw.ensure_running()
        assert len(gw.spawned) == 2
        assert gw.terminated_at_spawn == [[], [True]]
        assert gw.stopping_at_spawn == [False, False]
        assert gw.pid == gw.spawned[1].pid

        await restart
        assert len(gw.spawned) == 2
        await gw.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_startup_attempt(self, configured):
        gw = FakeGatewayManager(configured, ready=False, ready_timeout=5.0)
        attempt = asyncio.create_task(gw.ensure_running())
        await settle()

        await gw.shutdown()
        with pytest.raises(asyncio.CancelledError):
            await attempt
        assert gw.spawned[0].terminated
        assert not gw.running

        probes = len(gw.probes)
        await settle()
        assert len(gw.probes) == probes
        assert len(gw.spawned) == 1

    @pytest.mark.asyncio
    async def test_shutdown_terminates_gateway(self, configured):
        gw = FakeGatewayManager(configured)
        await gw.ensure_running()
        await gw.shutdown()
        assert gw.spawned[0].terminated
        assert not gw.running


class TestReadiness:
    """Readiness probing against a mocked gateway."""

    @staticmethod
    def manager(config, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GatewayManager(config, client=client, ready_interval=0.01)

    @pytest.mark.asyncio
    async def test_any_status_counts_as_ready(self, configured):
        gw = self.manager(configured, lambda request: httpx.Response(500))
        assert await gw._probe("/openclaw", 1.0)

    @pytest.mark.asyncio
    async def test_connection_error_is_not_ready(self, configured):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        gw = self.manager(configured, refuse)
        assert not await gw._probe("/openclaw", 1.0)
        assert not await gw.wait_until_ready(timeout=0.05)

    @pytest.mark.asyncio
    async def test_probe_order_stops_at_first_response(self, configured):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path != "/":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(404)

        gw = self.manager(configured, handler)
        assert await gw.wait_until_ready(timeout=1.0)
        assert seen == list(PROBE_PATHS)

    @pytest.mark.asyncio
    async def test_first_path_answering_ends_poll(self, configured):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(401)

        gw = self.manager(configured, handler)
        assert await gw.wait_until_ready(timeout=1.0)
        assert seen == ["/openclaw"]

    def test_probes_target_internal_address(self, configured):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        gw = self.manager(configured, handler)
        asyncio.run(gw._probe("/openclaw", 1.0))
        assert seen == ["http://127.0.0.1:18789/openclaw"]


class TestIntrospection:
    """Status and CLI arguments."""

    def test_status_when_absent(self, configured):
        gw = GatewayManager(configured)
        assert gw.status() == {
            "state": "absent",
            "pid": None,
            "target": "http://127.0.0.1:18789",
            "configured": True,
        }

    def test_gateway_args_bind_loopback_with_token(self, config):
        args = GatewayManager(config).gateway_args()
        assert args[:4] == ["gateway", "run", "--bind", "loopback"]
        assert args[args.index("--port") + 1] == "18789"
        assert args[args.index("--token") + 1] == "test-token"
