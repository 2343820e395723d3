"""Append-only JSONL audit log for admin actions."""

import json
from datetime import datetime, timezone
from pathlib import Path

from clawgate.redact import redact_dict


def audit_log(path: Path, event: str, details: dict):
    """Append an event to the audit log and echo it to stdout."""
    details = redact_dict(details)
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        **details,
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        print(f"[audit] write failed: {e}", flush=True)
    print(f"[audit] {event}: {details}", flush=True)


def read_audit_log(path: Path, limit: int = 50) -> list[dict]:
    """Read audit entries, newest first."""
    if not path.exists():
        return []

    entries = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue

    entries.reverse()
    return entries[:limit]
