"""
Onboarding: CLI argument construction and chat channel config blocks.

The auth-choice table mirrors the grouping the OpenClaw CLI uses in its own
interactive onboarding; keep it in sync when new providers land upstream.
"""

from typing import Optional

from pydantic import BaseModel

from clawgate.config import WrapperConfig

AUTH_GROUPS = [
    {"value": "openai", "label": "OpenAI", "hint": "Codex OAuth + API key", "options": [
        {"value": "codex-cli", "label": "OpenAI Codex OAuth (Codex CLI)"},
        {"value": "openai-codex", "label": "OpenAI Codex (ChatGPT OAuth)"},
        {"value": "openai-api-key", "label": "OpenAI API key"},
    ]},
    {"value": "anthropic", "label": "Anthropic", "hint": "Claude Code CLI + API key", "options": [
        {"value": "claude-cli", "label": "Anthropic token (Claude Code CLI)"},
        {"value": "token", "label": "Anthropic token (paste setup-token)"},
        {"value": "apiKey", "label": "Anthropic API key"},
    ]},
    {"value": "google", "label": "Google", "hint": "Gemini API key + OAuth", "options": [
        {"value": "gemini-api-key", "label": "Google Gemini API key"},
        {"value": "google-antigravity", "label": "Google Antigravity OAuth"},
        {"value": "google-gemini-cli", "label": "Google Gemini CLI OAuth"},
    ]},
    {"value": "openrouter", "label": "OpenRouter", "hint": "API key", "options": [
        {"value": "openrouter-api-key", "label": "OpenRouter API key"},
    ]},
    {"value": "ai-gateway", "label": "Vercel AI Gateway", "hint": "API key", "options": [
        {"value": "ai-gateway-api-key", "label": "Vercel AI Gateway API key"},
    ]},
    {"value": "moonshot", "label": "Moonshot AI", "hint": "Kimi K2 + Kimi Code", "options": [
        {"value": "moonshot-api-key", "label": "Moonshot AI API key"},
        {"value": "kimi-code-api-key", "label": "Kimi Code API key"},
    ]},
    {"value": "zai", "label": "Z.AI (GLM 4.7)", "hint": "API key", "options": [
        {"value": "zai-api-key", "label": "Z.AI (GLM 4.7) API key"},
    ]},
    {"value": "minimax", "label": "MiniMax", "hint": "M2.1 (recommended)", "options": [
        {"value": "minimax-api", "label": "MiniMax M2.1"},
        {"value": "minimax-api-lightning", "label": "MiniMax M2.1 Lightning"},
    ]},
    {"value": "qwen", "label": "Qwen", "hint": "OAuth", "options": [
        {"value": "qwen-portal", "label": "Qwen OAuth"},
    ]},
    {"value": "copilot", "label": "Copilot", "hint": "GitHub + local proxy", "options": [
        {"value": "github-copilot", "label": "GitHub Copilot (GitHub device login)"},
        {"value": "copilot-proxy", "label": "Copilot Proxy (local)"},
    ]},
    {"value": "synthetic", "label": "Synthetic", "hint": "Anthropic-compatible (multi-model)", "options": [
        {"value": "synthetic-api-key", "label": "Synthetic API key"},
    ]},
    {"value": "opencode-zen", "label": "OpenCode Zen", "hint": "API key", "options": [
        {"value": "opencode-zen", "label": "OpenCode Zen (multi-model proxy)"},
    ]},
]

# auth choice -> CLI flag carrying the pasted secret
SECRET_FLAGS = {
    "openai-api-key": "--openai-api-key",
    "apiKey": "--anthropic-api-key",
    "openrouter-api-key": "--openrouter-api-key",
    "ai-gateway-api-key": "--ai-gateway-api-key",
    "moonshot-api-key": "--moonshot-api-key",
    "kimi-code-api-key": "--kimi-code-api-key",
    "gemini-api-key": "--gemini-api-key",
    "zai-api-key": "--zai-api-key",
    "minimax-api": "--minimax-api-key",
    "minimax-api-lightning": "--minimax-api-key",
    "synthetic-api-key": "--synthetic-api-key",
    "opencode-zen": "--opencode-zen-api-key",
}


class OnboardRequest(BaseModel):
    flow: Optional[str] = None
    authChoice: Optional[str] = None
    authSecret: Optional[str] = None
    telegramToken: Optional[str] = None
    discordToken: Optional[str] = None
    slackBotToken: Optional[str] = None
    slackAppToken: Optional[str] = None


def build_onboard_args(config: WrapperConfig, payload: OnboardRequest) -> list[str]:
    """Arguments for a non-interactive `openclaw onboard` run."""
    args = [
        "onboard",
        "--non-interactive",
        "--accept-risk",
        "--json",
        "--no-install-daemon",
        "--skip-health",
        "--workspace",
        str(config.workspace_dir),
        # The wrapper owns public networking; the gateway stays internal.
        "--gateway-bind",
        "loopback",
        "--gateway-port",
        str(config.internal_port),
        "--gateway-auth",
        "token",
        "--gateway-token",
        config.gateway_token,
        "--flow",
        payload.flow or "quickstart",
    ]

    if payload.authChoice:
        args += ["--auth-choice", payload.authChoice]

        secret = (payload.authSecret or "").strip()
        flag = SECRET_FLAGS.get(payload.authChoice)
        if flag and secret:
            args += [flag, secret]

        if payload.authChoice == "token" and secret:
            # Anthropic setup-token flow
            args += ["--token-provider", "anthropic", "--token", secret]

    return args


def gateway_config_commands(config: WrapperConfig) -> list[list[str]]:
    """`config set` calls that pin token auth and the loopback bind after onboarding."""
    return [
        ["config", "set", "gateway.auth.mode", "token"],
        ["config", "set", "gateway.auth.token", config.gateway_token],
        ["config", "set", "gateway.bind", "loopback"],
        ["config", "set", "gateway.port", str(config.internal_port)],
    ]


def channel_configs(payload: OnboardRequest) -> dict[str, dict]:
    """Channel config blocks to write with `config set --json channels.<name>`."""
    channels = {}

    telegram = (payload.telegramToken or "").strip()
    if telegram:
        channels["telegram"] = {
            "enabled": True,
            "dmPolicy": "pairing",
            "botToken": telegram,
            "groupPolicy": "allowlist",
            "streamMode": "partial",
        }

    discord = (payload.discordToken or "").strip()
    if discord:
        channels["discord"] = {
            "enabled": True,
            "token": discord,
            "groupPolicy": "allowlist",
            "dm": {"policy": "pairing"},
        }

    slack_bot = (payload.slackBotToken or "").strip()
    slack_app = (payload.slackAppToken or "").strip()
    if slack_bot or slack_app:
        slack = {"enabled": True}
        if slack_bot:
            slack["botToken"] = slack_bot
        if slack_app:
            slack["appToken"] = slack_app
        channels["slack"] = slack

    return channels
