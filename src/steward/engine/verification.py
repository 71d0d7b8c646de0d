"""
Steward Verification Hook

After a successful file mutation the agent can run configured checks
(lint, type check, tests) and feed any failure back to the LLM as an
extra tool result, so it can fix what it just broke.

Each command runs in a shell with a timeout; a timed-out command counts
as a failure.
"""

from __future__ import annotations

import asyncio

from pydantic import BaseModel, Field

from steward.config import VerificationConfig
from steward.logging import get_logger

logger = get_logger("steward.verification")

FILE_MUTATION_TOOLS = frozenset({"file_write", "file_patch", "smart_edit"})


class CommandOutcome(BaseModel):
    command: str
    return_code: int | None = None
    output: str = ""
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return not self.timed_out and self.return_code == 0


class VerificationResult(BaseModel):
    outcomes: list[CommandOutcome] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(o.passed for o in self.outcomes)

    @property
    def failures(self) -> list[CommandOutcome]:
        return [o for o in self.outcomes if not o.passed]


def should_verify(config: VerificationConfig, tool_name: str) -> bool:
    return config.run_on_file_write and bool(config.commands) and tool_name in FILE_MUTATION_TOOLS


async def _run_command(command: str, config: VerificationConfig) -> CommandOutcome:
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        cwd=config.workdir,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=config.timeout_seconds)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return CommandOutcome(command=command, timed_out=True)
    return CommandOutcome(
        command=command,
        return_code=proc.returncode,
        output=stdout.decode("utf-8", errors="replace"),
    )


async def run_verification(config: VerificationConfig) -> VerificationResult:
    """Run every configured command in order."""
    result = VerificationResult()
    for command in config.commands:
        outcome = await _run_command(command, config)
        result.outcomes.append(outcome)
        logger.info(
            f"Verification '{command}' {'passed' if outcome.passed else 'failed'}",
            extra={"event_type": "verification", "action": command},
        )
    return result


def format_feedback(result: VerificationResult, max_chars: int = 2000) -> str:
    if result.passed:
        return "Verification passed: all configured checks are green."
    lines = ["## Verification Failed", ""]
    for outcome in result.failures:
        if outcome.timed_out:
            lines.append(f"### `{outcome.command}` timed out")
        else:
            lines.append(f"### `{outcome.command}` exited with {outcome.return_code}")
        lines.append(outcome.output.strip())
        lines.append("")
    lines.append("Fix the issues above before continuing.")
    feedback = "\n".join(lines)
    if len(feedback) > max_chars:
        feedback = feedback[:max_chars] + "\n[feedback truncated]"
    return feedback
