"""
Setup namespace: wizard page and admin API.

Every route except /setup/healthz sits behind the setup password. Handlers
report failures as JSON (or plain text for export/import) and never let a
gateway error escape as an unhandled exception.
"""

import json
import os
import platform
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from clawgate import backup, onboard
from clawgate.audit import audit_log, read_audit_log
from clawgate.auth import require_setup_auth
from clawgate.config import WrapperConfig
from clawgate.errors import GatewayError
from clawgate.redact import redact_secrets
from clawgate.runner import CommandResult, run_cmd

STATIC_DIR = Path(__file__).parent / "static"

MAX_CONFIG_CHARS = 500_000

ALLOWED_CONSOLE_COMMANDS = {
    # Wrapper-managed lifecycle
    "gateway.restart",
    "gateway.stop",
    "gateway.start",
    # OpenClaw CLI helpers
    "openclaw.version",
    "openclaw.status",
    "openclaw.health",
    "openclaw.doctor",
    "openclaw.logs.tail",
    "openclaw.config.get",
}

# Console commands that map straight onto a fixed CLI invocation.
SIMPLE_CLI_COMMANDS = {
    "openclaw.version": ["--version"],
    "openclaw.status": ["status"],
    "openclaw.health": ["health"],
    "openclaw.doctor": ["doctor"],
}

router = APIRouter(prefix="/setup")
protected = [Depends(require_setup_auth)]


class ConsoleRequest(BaseModel):
    cmd: str = ""
    arg: str = ""


class ConfigWriteRequest(BaseModel):
    content: str = ""


class PairingApproveRequest(BaseModel):
    channel: Optional[str] = None
    code: Optional[str] = None


async def claw(config: WrapperConfig, args: list[str]) -> CommandResult:
    """Run the OpenClaw CLI with the wrapper's state/workspace environment."""
    return await run_cmd(config.openclaw_node, config.claw_args(args), env=config.child_env())


def _audit(request: Request, event: str, details: dict):
    audit_log(request.app.state.config.audit_log_path, event, details)


def _cli_response(result: CommandResult) -> JSONResponse:
    return JSONResponse(
        {"ok": result.ok, "output": redact_secrets(result.output)},
        status_code=200 if result.ok else 500,
    )


def logs_tail_lines(arg: str) -> int:
    """Clamp the requested tail length to 50..1000, defaulting to 200."""
    try:
        lines = int(arg or "200")
    except ValueError:
        lines = 200
    if lines == 0:
        lines = 200
    return max(50, min(1000, lines))


# ============================================================
# Health & wizard page
# ============================================================

@router.get("/healthz")
async def healthz():
    """Unauthenticated health check for the hosting platform."""
    return {"ok": True}


@router.get("", response_class=HTMLResponse, dependencies=protected)
async def setup_page():
    return HTMLResponse((STATIC_DIR / "setup.html").read_text())


@router.get("/app.js", dependencies=protected)
async def setup_app_js():
    return Response((STATIC_DIR / "setup-app.js").read_text(), media_type="application/javascript")


# ============================================================
# Status & onboarding
# ============================================================

@router.get("/api/status", dependencies=protected)
async def setup_status(request: Request):
    config = request.app.state.config
    version = await claw(config, ["--version"])
    channels_help = await claw(config, ["channels", "add", "--help"])

    return {
        "configured": config.is_configured(),
        "gatewayTarget": config.gateway_target,
        "gateway": request.app.state.gateway.status(),
        "openclawVersion": version.output.strip(),
        "channelsAddHelp": channels_help.output,
        "authGroups": onboard.AUTH_GROUPS,
    }


async def _configure_channels(config: WrapperConfig, payload: onboard.OnboardRequest) -> str:
    channels = onboard.channel_configs(payload)
    if not channels:
        return ""

    help_result = await claw(config, ["channels", "add", "--help"])
    help_text = help_result.output or ""

    extra = ""
    for name, block in channels.items():
        if name not in help_text:
            extra += f"\n[{name}] skipped (this openclaw build does not list {name} in `channels add --help`)\n"
            continue
        # `channels add` has been flaky across builds; write the config block directly.
        set_result = await claw(config, ["config", "set", "--json", f"channels.{name}", json.dumps(block)])
        get_result = await claw(config, ["config", "get", f"channels.{name}"])
        extra += (
            f"\n[{name} config] exit={set_result.code} (output {len(set_result.output)} chars)\n"
            f"{set_result.output or '(no output)'}"
        )
        extra += (
            f"\n[{name} verify] exit={get_result.code} (output {len(get_result.output)} chars)\n"
            f"{get_result.output or '(no output)'}"
        )
    return extra


@router.post("/api/run", dependencies=protected)
async def setup_run(request: Request, payload: Optional[onboard.OnboardRequest] = None):
    """Run non-interactive onboarding, then configure channels and start the gateway."""
    config = request.app.state.config
    gateway = request.app.state.gateway
    payload = payload or onboard.OnboardRequest()

    try:
        if config.is_configured():
            await gateway.ensure_running()
            return {"ok": True, "output": "Already configured.\nUse Reset setup if you want to rerun onboarding.\n"}

        config.state_dir.mkdir(parents=True, exist_ok=True)
        config.workspace_dir.mkdir(parents=True, exist_ok=True)

        result = await claw(config, onboard.build_onboard_args(config, payload))
        ok = result.ok and config.is_configured()
        _audit(request, "onboard_run", {"exit": result.code, "ok": ok, "authChoice": payload.authChoice})

        extra = ""
        if ok:
            # Pin token auth so the browser UI can authenticate through the proxy.
            for args in onboard.gateway_config_commands(config):
                await claw(config, args)
            extra = await _configure_channels(config, payload)
            await gateway.restart()

        return JSONResponse(
            {"ok": ok, "output": f"{result.output}{extra}"},
            status_code=200 if ok else 500,
        )
    except Exception as e:
        print(f"[setup] /setup/api/run error: {e}", flush=True)
        return JSONResponse({"ok": False, "output": f"Internal error: {e}"}, status_code=500)


@router.get("/api/debug", dependencies=protected)
async def setup_debug(request: Request):
    config = request.app.state.config
    version = await claw(config, ["--version"])
    channels_help = await claw(config, ["channels", "add", "--help"])
    return {
        "wrapper": {
            "python": platform.python_version(),
            "port": config.port,
            "stateDir": str(config.state_dir),
            "workspaceDir": str(config.workspace_dir),
            "configPath": str(config.config_path),
            "gatewayTokenFromEnv": config.token_from_env,
            "gatewayTokenPersisted": config.token_path.exists(),
            "railwayCommit": os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
            "gateway": request.app.state.gateway.status(),
        },
        "openclaw": {
            "entry": config.openclaw_entry,
            "node": config.openclaw_node,
            "version": version.output.strip(),
            "channelsAddHelpIncludesTelegram": "telegram" in channels_help.output,
        },
    }


@router.get("/api/audit", dependencies=protected)
async def setup_audit(request: Request, limit: int = Query(50, ge=1, le=1000)):
    entries = read_audit_log(request.app.state.config.audit_log_path, limit=limit)
    return {"entries": entries, "count": len(entries)}


# ============================================================
# Debug console
# ============================================================

@router.post("/api/console/run", dependencies=protected)
async def console_run(request: Request, body: Optional[ConsoleRequest] = None):
    config = request.app.state.config
    gateway = request.app.state.gateway
    body = body or ConsoleRequest()
    cmd = body.cmd.strip()
    arg = body.arg.strip()

    if cmd not in ALLOWED_CONSOLE_COMMANDS:
        return JSONResponse({"ok": False, "error": "Command not allowed"}, status_code=400)

    try:
        if cmd == "gateway.restart":
            _audit(request, "gateway_restart_requested", {"source": "console"})
            await gateway.restart()
            return {"ok": True, "output": "Gateway restarted (wrapper-managed).\n"}
        if cmd == "gateway.stop":
            _audit(request, "gateway_stop_requested", {"source": "console"})
            await gateway.stop()
            return {"ok": True, "output": "Gateway stopped (wrapper-managed).\n"}
        if cmd == "gateway.start":
            try:
                await gateway.ensure_running()
            except GatewayError as e:
                return {"ok": False, "output": f"Gateway not started: {e}\n"}
            return {"ok": True, "output": "Gateway started.\n"}

        if cmd in SIMPLE_CLI_COMMANDS:
            return _cli_response(await claw(config, SIMPLE_CLI_COMMANDS[cmd]))
        if cmd == "openclaw.logs.tail":
            lines = logs_tail_lines(arg)
            return _cli_response(await claw(config, ["logs", "--tail", str(lines)]))
        if cmd == "openclaw.config.get":
            if not arg:
                return JSONResponse({"ok": False, "error": "Missing config path"}, status_code=400)
            return _cli_response(await claw(config, ["config", "get", arg]))

        return JSONResponse({"ok": False, "error": "Unhandled command"}, status_code=400)
    except Exception as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)


# ============================================================
# Raw config editor
# ============================================================

@router.get("/api/config/raw", dependencies=protected)
async def config_raw_get(request: Request):
    path = request.app.state.config.config_path
    try:
        exists = path.exists()
        content = path.read_text() if exists else ""
        return {"ok": True, "path": str(path), "exists": exists, "content": content}
    except OSError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)


@router.post("/api/config/raw", dependencies=protected)
async def config_raw_save(request: Request, body: Optional[ConfigWriteRequest] = None):
    """Write the config file verbatim, keeping a timestamped backup, then apply it."""
    config = request.app.state.config
    content = (body or ConfigWriteRequest()).content
    if len(content) > MAX_CONFIG_CHARS:
        return JSONResponse({"ok": False, "error": "Config too large"}, status_code=413)

    path = config.config_path
    try:
        config.state_dir.mkdir(parents=True, exist_ok=True)
        backup_path = None
        if path.exists():
            backup_path = path.with_name(f"{path.name}.bak-{backup.timestamp_slug()}")
            shutil.copy(path, backup_path)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        path.chmod(0o600)
        _audit(request, "config_raw_written", {"chars": len(content), "backup": str(backup_path) if backup_path else None})

        if config.is_configured():
            await request.app.state.gateway.restart()

        return {"ok": True, "path": str(path)}
    except (OSError, GatewayError) as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)


# ============================================================
# Pairing & reset
# ============================================================

@router.post("/api/pairing/approve", dependencies=protected)
async def pairing_approve(request: Request, body: Optional[PairingApproveRequest] = None):
    body = body or PairingApproveRequest()
    if not body.channel or not body.code:
        return JSONResponse({"ok": False, "error": "Missing channel or code"}, status_code=400)

    result = await claw(request.app.state.config, ["pairing", "approve", body.channel, body.code])
    _audit(request, "pairing_approve", {"channel": body.channel, "success": result.ok})
    return JSONResponse({"ok": result.ok, "output": result.output}, status_code=200 if result.ok else 500)


@router.post("/api/reset", dependencies=protected)
async def setup_reset(request: Request):
    """Delete the config file so onboarding can run again. Credentials, sessions and workspace stay."""
    try:
        request.app.state.config.config_path.unlink(missing_ok=True)
    except OSError as e:
        return PlainTextResponse(str(e), status_code=500)
    _audit(request, "setup_reset", {})
    return PlainTextResponse("OK - deleted config file. You can rerun setup now.")


# ============================================================
# Backup export / import
# ============================================================

@router.get("/export", dependencies=protected)
async def setup_export(request: Request):
    config = request.app.state.config
    try:
        archive = await run_in_threadpool(backup.create_backup, config)
    except OSError as e:
        print(f"[setup] export failed: {e}", flush=True)
        return PlainTextResponse(str(e), status_code=500)

    _audit(request, "backup_exported", {"size": archive.stat().st_size})
    return FileResponse(
        str(archive),
        media_type="application/gzip",
        filename=backup.backup_filename(),
        background=BackgroundTask(lambda: archive.unlink(missing_ok=True)),
    )


async def read_body_limited(request: Request, max_bytes: int) -> Optional[bytes]:
    """Read the request body, or return None once it exceeds max_bytes."""
    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > max_bytes:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/import", dependencies=protected)
async def setup_import(request: Request):
    """Restore a backup produced by /setup/export into the data root."""
    config = request.app.state.config
    gateway = request.app.state.gateway
    root = config.data_root

    if not backup.is_under_dir(config.state_dir, root) or not backup.is_under_dir(config.workspace_dir, root):
        return PlainTextResponse(
            f"Import is only supported when OPENCLAW_STATE_DIR and OPENCLAW_WORKSPACE_DIR are under {root}.\n",
            status_code=400,
        )

    archive = None
    try:
        # Stop first so live files are not overwritten underneath the gateway.
        await gateway.stop()

        data = await read_body_limited(request, backup.MAX_IMPORT_BYTES)
        if data is None:
            return PlainTextResponse("Payload too large\n", status_code=413)
        if not data:
            return PlainTextResponse("Empty body\n", status_code=400)

        archive = Path(await run_in_threadpool(_write_temp_archive, data))
        result = await run_in_threadpool(backup.restore_backup, archive, root)
        _audit(request, "backup_imported", {"bytes": len(data), **result})

        if config.is_configured():
            await gateway.restart()

        return PlainTextResponse(f"OK - imported backup into {root} and restarted gateway.\n")
    except Exception as e:
        print(f"[setup] import failed: {e}", flush=True)
        return PlainTextResponse(str(e), status_code=500)
    finally:
        if archive is not None:
            archive.unlink(missing_ok=True)


def _write_temp_archive(data: bytes) -> str:
    with tempfile.NamedTemporaryFile(prefix="openclaw-import-", suffix=".tar.gz", delete=False) as tmp:
        tmp.write(data)
        return tmp.name
