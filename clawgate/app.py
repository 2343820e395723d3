"""
ClawGate wrapper application.

Responsibilities:
- Password-protected setup wizard and admin API under /setup
- On-demand start of the OpenClaw gateway on its internal loopback port
- Reverse proxy (HTTP + WebSocket) for everything else

Usage:
    python3 -m uvicorn clawgate.app:create_app --factory --host 0.0.0.0 --port 8080
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from clawgate import __version__, proxy, setup_api
from clawgate.config import WrapperConfig
from clawgate.gateway import GatewayManager


def log_startup(config: WrapperConfig):
    print(f"[wrapper] listening on :{config.port}", flush=True)
    print(f"[wrapper] state dir: {config.state_dir}", flush=True)
    print(f"[wrapper] workspace dir: {config.workspace_dir}", flush=True)
    print(f"[wrapper] gateway token: {'(set)' if config.gateway_token else '(missing)'}", flush=True)
    print(f"[wrapper] gateway target: {config.gateway_target}", flush=True)
    if not config.setup_password:
        print("[wrapper] WARNING: SETUP_PASSWORD is not set; /setup will error.", flush=True)


def create_app(
    config: Optional[WrapperConfig] = None,
    gateway: Optional[GatewayManager] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    config = config or WrapperConfig.from_env()
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=30.0))
    gateway = gateway or GatewayManager(config, client=client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # The gateway is not started here; the first proxied request starts it.
        log_startup(config)
        yield
        await gateway.shutdown()
        await client.aclose()

    app = FastAPI(
        title="ClawGate",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.gateway = gateway
    app.state.http = client

    # Setup routes first: the proxy router is a catch-all.
    app.include_router(setup_api.router)
    app.include_router(proxy.router)
    return app
