"""
Wrapper configuration, read once from the environment.

Every OPENCLAW_* variable keeps its CLAWDBOT_* alias for older templates.
"""

import os
import secrets
from dataclasses import dataclass
from pathlib import Path


def _env(*names: str) -> str:
    """Return the first non-empty (stripped) value among the given env vars."""
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return ""


def resolve_gateway_token(state_dir: Path) -> str:
    """
    Resolve the gateway admin token.

    The token must be stable across restarts. Order:
    - OPENCLAW_GATEWAY_TOKEN / CLAWDBOT_GATEWAY_TOKEN
    - <state dir>/gateway.token
    - freshly generated, persisted to <state dir>/gateway.token (best-effort)
    """
    env_token = _env("OPENCLAW_GATEWAY_TOKEN", "CLAWDBOT_GATEWAY_TOKEN")
    if env_token:
        return env_token

    token_path = state_dir / "gateway.token"
    try:
        existing = token_path.read_text().strip()
        if existing:
            return existing
    except OSError:
        pass

    generated = secrets.token_hex(32)
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        token_path.write_text(generated)
        token_path.chmod(0o600)
    except OSError as e:
        print(f"[wrapper] could not persist gateway token: {e}", flush=True)
    return generated


@dataclass(frozen=True)
class WrapperConfig:
    port: int
    state_dir: Path
    workspace_dir: Path
    config_path: Path
    setup_password: str
    gateway_token: str
    token_from_env: bool
    internal_host: str
    internal_port: int
    openclaw_entry: str
    openclaw_node: str
    data_root: Path

    @property
    def gateway_target(self) -> str:
        return f"http://{self.internal_host}:{self.internal_port}"

    @property
    def gateway_ws_target(self) -> str:
        return f"ws://{self.internal_host}:{self.internal_port}"

    @property
    def token_path(self) -> Path:
        return self.state_dir / "gateway.token"

    @property
    def audit_log_path(self) -> Path:
        return self.state_dir / "audit.jsonl"

    def is_configured(self) -> bool:
        """The config file's existence is the only "onboarding done" signal."""
        try:
            return self.config_path.exists()
        except OSError:
            return False

    def claw_args(self, args: list[str]) -> list[str]:
        """Arguments for running the OpenClaw CLI entry under node."""
        return [self.openclaw_entry, *args]

    def child_env(self) -> dict[str, str]:
        """Environment overlay for every OpenClaw child process."""
        return {
            "OPENCLAW_STATE_DIR": str(self.state_dir),
            "OPENCLAW_WORKSPACE_DIR": str(self.workspace_dir),
            "CLAWDBOT_STATE_DIR": os.environ.get("CLAWDBOT_STATE_DIR") or str(self.state_dir),
            "CLAWDBOT_WORKSPACE_DIR": os.environ.get("CLAWDBOT_WORKSPACE_DIR") or str(self.workspace_dir),
        }

    @classmethod
    def from_env(cls) -> "WrapperConfig":
        # Hosting platforms sometimes inject PORT=3000; the public port vars win.
        port = int(_env("OPENCLAW_PUBLIC_PORT", "CLAWDBOT_PUBLIC_PORT", "PORT") or "8080")

        state_dir = Path(
            _env("OPENCLAW_STATE_DIR", "CLAWDBOT_STATE_DIR") or Path.home() / ".openclaw"
        )
        workspace_dir = Path(
            _env("OPENCLAW_WORKSPACE_DIR", "CLAWDBOT_WORKSPACE_DIR") or state_dir / "workspace"
        )
        config_path = Path(
            _env("OPENCLAW_CONFIG_PATH", "CLAWDBOT_CONFIG_PATH") or state_dir / "openclaw.json"
        )

        token_from_env = bool(_env("OPENCLAW_GATEWAY_TOKEN", "CLAWDBOT_GATEWAY_TOKEN"))
        token = resolve_gateway_token(state_dir)
        # Child processes and older flows read the token from the environment.
        os.environ["OPENCLAW_GATEWAY_TOKEN"] = token
        os.environ.setdefault("CLAWDBOT_GATEWAY_TOKEN", token)

        return cls(
            port=port,
            state_dir=state_dir,
            workspace_dir=workspace_dir,
            config_path=config_path,
            setup_password=_env("SETUP_PASSWORD"),
            gateway_token=token,
            token_from_env=token_from_env,
            internal_host=os.environ.get("INTERNAL_GATEWAY_HOST", "127.0.0.1"),
            internal_port=int(os.environ.get("INTERNAL_GATEWAY_PORT", "18789")),
            openclaw_entry=_env("OPENCLAW_ENTRY") or "/openclaw/openclaw.mjs",
            openclaw_node=_env("OPENCLAW_NODE") or "node",
            data_root=Path(os.environ.get("BACKUP_DATA_ROOT", "/data")),
        )
