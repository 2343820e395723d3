"""
Reverse proxy gate.

Everything outside the setup routes lands here. Unconfigured deployments
are sent to /setup; configured ones get the gateway started on demand and the
request (or WebSocket) forwarded to its internal loopback address.

A failed start is not retried here: the next request runs the same start
logic again.
"""

import asyncio

import httpx
import websockets
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, StreamingResponse

from clawgate.errors import GatewayError, ProxyError

SETUP_PREFIX = "/setup"

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Handshake headers the websocket client library writes itself.
WS_SKIP_HEADERS = HOP_BY_HOP | {
    "host",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
}

# Either side going away mid-relay is a normal end of the tunnel.
CLOSED_ERRORS = (WebSocketDisconnect, RuntimeError, websockets.exceptions.ConnectionClosed)

router = APIRouter()


def is_setup_path(path: str) -> bool:
    return path == SETUP_PREFIX or path.startswith(SETUP_PREFIX + "/")


def forwarded_headers(headers, client_host: str | None, scheme: str, skip: set[str]) -> list[tuple[str, str]]:
    """Copy inbound headers minus hop-by-hop ones, then add X-Forwarded-*."""
    out = [(k, v) for k, v in headers.items() if k.lower() not in skip and not k.lower().startswith("x-forwarded-")]

    prior_for = headers.get("x-forwarded-for")
    if client_host:
        out.append(("x-forwarded-for", f"{prior_for}, {client_host}" if prior_for else client_host))
    elif prior_for:
        out.append(("x-forwarded-for", prior_for))
    out.append(("x-forwarded-proto", headers.get("x-forwarded-proto") or scheme))
    host = headers.get("x-forwarded-host") or headers.get("host")
    if host:
        out.append(("x-forwarded-host", host))
    return out


async def forward_http(request: Request, client: httpx.AsyncClient, target: str) -> StreamingResponse:
    """Forward a request to the gateway and stream its response back verbatim."""
    url = f"{target}{request.url.path}"
    if request.url.query:
        url += f"?{request.url.query}"

    client_host = request.client.host if request.client else None
    headers = forwarded_headers(request.headers, client_host, request.url.scheme, HOP_BY_HOP)

    has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
    upstream_request = client.build_request(
        request.method,
        url,
        headers=headers,
        content=request.stream() if has_body else None,
    )

    try:
        resp = await client.send(upstream_request, stream=True)
    except httpx.TimeoutException as e:
        raise ProxyError(f"Timeout reaching gateway at {target}: {e}", status_code=504) from e
    except httpx.HTTPError as e:
        raise ProxyError(f"Cannot connect to gateway at {target}: {e}") from e

    async def stream_body():
        try:
            async for chunk in resp.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            # Status and headers are already sent; the client sees a truncated body.
            print(f"[proxy] {request.method} {request.url.path}: upstream body failed: {e}", flush=True)
        finally:
            await resp.aclose()

    response = StreamingResponse(stream_body(), status_code=resp.status_code)
    # Raw header list keeps repeated headers such as Set-Cookie intact.
    response.raw_headers = [
        (name, value) for name, value in resp.headers.raw if name.decode("latin-1").lower() not in HOP_BY_HOP
    ]
    return response


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_http(path: str, request: Request):
    config = request.app.state.config
    gateway = request.app.state.gateway

    if not config.is_configured():
        if not is_setup_path(request.url.path):
            return RedirectResponse(SETUP_PREFIX, status_code=302)
        return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)

    try:
        await gateway.ensure_running()
    except GatewayError as e:
        return PlainTextResponse(f"Gateway not ready: {e}", status_code=503)

    try:
        return await forward_http(request, request.app.state.http, config.gateway_target)
    except ProxyError as e:
        print(f"[proxy] {request.method} {request.url.path}: {e}", flush=True)
        return JSONResponse({"error": str(e)}, status_code=e.status_code)


async def _pump_client_to_upstream(ws: WebSocket, upstream):
    while True:
        message = await ws.receive()
        if message["type"] == "websocket.disconnect":
            return
        if message.get("text") is not None:
            await upstream.send(message["text"])
        elif message.get("bytes") is not None:
            await upstream.send(message["bytes"])


async def _pump_upstream_to_client(ws: WebSocket, upstream):
    try:
        async for message in upstream:
            if isinstance(message, bytes):
                await ws.send_bytes(message)
            else:
                await ws.send_text(message)
    except websockets.exceptions.ConnectionClosed:
        pass


async def relay_websocket(ws: WebSocket, ws_target: str):
    """Open the upstream socket, accept the client, and pump frames both ways."""
    url = f"{ws_target}{ws.url.path}"
    query = ws.scope.get("query_string", b"").decode("latin-1")
    if query:
        url += f"?{query}"

    subprotocols = [p.strip() for p in ws.headers.get("sec-websocket-protocol", "").split(",") if p.strip()]
    client_host = ws.client.host if ws.client else None
    scheme = "https" if ws.url.scheme == "wss" else "http"
    headers = forwarded_headers(ws.headers, client_host, scheme, WS_SKIP_HEADERS)

    try:
        upstream = await websockets.connect(
            url,
            additional_headers=headers,
            subprotocols=subprotocols or None,
            max_size=None,
        )
    except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
        print(f"[proxy] ws {ws.url.path}: {e}", flush=True)
        await ws.close(code=1011)
        return

    await ws.accept(subprotocol=upstream.subprotocol)
    tasks = [
        asyncio.create_task(_pump_client_to_upstream(ws, upstream)),
        asyncio.create_task(_pump_upstream_to_client(ws, upstream)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, CLOSED_ERRORS):
                print(f"[proxy] ws relay {ws.url.path}: {error}", flush=True)
    finally:
        await upstream.close()
        try:
            await ws.close()
        except RuntimeError:
            # Client side already closed.
            pass


@router.websocket("/{path:path}")
async def proxy_websocket(ws: WebSocket, path: str):
    config = ws.app.state.config
    gateway = ws.app.state.gateway

    # No redirect is possible on an upgrade; just drop the connection.
    if not config.is_configured():
        await ws.close(code=1008)
        return
    try:
        await gateway.ensure_running()
    except GatewayError as e:
        print(f"[proxy] ws {ws.url.path}: gateway not ready: {e}", flush=True)
        await ws.close(code=1011)
        return

    await relay_websocket(ws, config.gateway_ws_target)
