"""Shell execution tool.

Risk: EXECUTE. Denied command substrings are enforced by the
SafetyGuardian before the command gets here.
"""

from __future__ import annotations

import asyncio

from steward.core.models import RiskLevel, ToolDefinition, ToolOutput
from steward.tools.registry import RegisteredTool

SHELL_TIMEOUT = 60.0
MAX_OUTPUT_CHARS = 65_536


def _clip(text: str) -> str:
    if len(text) > MAX_OUTPUT_CHARS:
        return text[:MAX_OUTPUT_CHARS] + f"\n[TRUNCATED at {MAX_OUTPUT_CHARS} chars]"
    return text


async def _shell_exec(command: str, cwd: str | None = None) -> ToolOutput:
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    output = _clip(stdout.decode("utf-8", errors="replace"))
    if proc.returncode != 0:
        error = _clip(stderr.decode("utf-8", errors="replace"))
        return ToolOutput.error(f"[exit {proc.returncode}]\n{output}{error}")
    return ToolOutput.text(output)


SHELL_EXEC_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="shell_exec",
        description=(
            "Run a shell command and return its standard output. "
            "A non-zero exit status is reported as an error with stderr."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Command line to execute"},
                "cwd": {"type": "string", "description": "Working directory (default: current)"},
            },
            "required": ["command"],
        },
    ),
    risk_level=RiskLevel.EXECUTE,
    handler=_shell_exec,
    timeout=SHELL_TIMEOUT,
)
