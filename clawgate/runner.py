"""
Process runner for one-shot OpenClaw CLI calls.

stdout and stderr are merged into one stream in arrival order. A non-zero
exit is a normal result; only a launch failure is special-cased, reported as
exit code 127 with the error appended to the output. No timeout is imposed
here; callers that need one wrap the call themselves.
"""

import asyncio
import os
from dataclasses import dataclass

SPAWN_FAILURE_CODE = 127


@dataclass
class CommandResult:
    code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.code == 0


async def run_cmd(cmd: str, args: list[str], env: dict[str, str] | None = None) -> CommandResult:
    """Run a command to completion and return its exit code and combined output."""
    child_env = {**os.environ, **(env or {})}
    output = ""
    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=child_env,
        )
    except OSError as e:
        output += f"\n[spawn error] {e}\n"
        return CommandResult(code=SPAWN_FAILURE_CODE, output=output)

    chunks = []
    while True:
        chunk = await proc.stdout.read(4096)
        if not chunk:
            break
        chunks.append(chunk)
    code = await proc.wait()
    output += b"".join(chunks).decode("utf-8", errors="replace")
    return CommandResult(code=code if code is not None else 0, output=output)
