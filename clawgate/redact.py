"""
Regex redaction for CLI output and audit entries.

Best-effort only: config paths and values printed by the CLI may still
carry secrets that none of these rules recognise.
"""

import re
from typing import Any

REDACTED = "[REDACTED]"

BUILTIN_RULES = [
    {
        "id": "api-key-sk",
        "name": "API Keys (sk-...)",
        "pattern": r"sk-[A-Za-z0-9_-]{10,}",
    },
    {
        "id": "github-oauth",
        "name": "GitHub OAuth Tokens (gho_...)",
        "pattern": r"gho_[A-Za-z0-9_]{10,}",
    },
    {
        "id": "slack-token",
        "name": "Slack Tokens (xoxb-, xoxp-, ...)",
        "pattern": r"xox[baprs]-[A-Za-z0-9-]{10,}",
    },
    {
        "id": "telegram-bot-token",
        "name": "Telegram Bot Tokens",
        "pattern": r"AA[A-Za-z0-9_-]{10,}:\S{10,}",
    },
    {
        "id": "bearer-token",
        "name": "Bearer Tokens",
        "pattern": r"(?i)(?<=Bearer\s)[A-Za-z0-9_\-.]{20,}",
    },
]

_COMPILED = [re.compile(rule["pattern"]) for rule in BUILTIN_RULES]


def redact_secrets(text: str | None) -> str | None:
    """Apply every built-in rule to a string."""
    if not text:
        return text
    text = str(text)
    for pattern in _COMPILED:
        text = pattern.sub(REDACTED, text)
    return text


def redact_dict(d: Any) -> Any:
    """Recursively redact all string values in a dict/list."""
    if isinstance(d, str):
        return redact_secrets(d)
    if isinstance(d, dict):
        return {k: redact_dict(v) for k, v in d.items()}
    if isinstance(d, list):
        return [redact_dict(item) for item in d]
    return d
