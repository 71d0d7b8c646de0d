"""
Steward CLI

Command-line interface for the Steward agent.

Commands:
    steward run "task"               Run a task with interactive approval
    steward run --plan "task"        Review a plan before anything executes
    steward decisions                Show the persisted decision log
    steward consent list             Show consent records
    steward consent grant SCOPE      Grant consent (provider:NAME or tool:NAME)
    steward consent revoke SCOPE     Revoke consent
    steward status                   Show configuration and environment

Usage:
    pip install steward[cli]
    steward run "Summarize the TODOs in this repository"
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from steward.agent import Agent
from steward.callbacks import AgentCallback
from steward.config import AgentConfig, ApprovalMode
from steward.core.models import AgentStatus, BudgetSeverity, ContextHealthEvent, ProgressUpdate, ToolOutput
from steward.engine.plan import ExecutionPlan, PlanDecision, PlanStep
from steward.exceptions import StewardError
from steward.explain.explanation import DecisionExplanation
from steward.observability.tracing import init_tracing, shutdown as shutdown_tracing
from steward.safety.action_details import ActionRequest, ApprovalDecision
from steward.safety.consent import ConsentManager, is_valid_scope
from steward.storage.store import StateStore

console = Console()

DEFAULT_DB = "steward.db"
RESULT_PREVIEW_CHARS = 300


class ConsoleCallback(AgentCallback):
    """Renders agent events with rich and prompts for approvals."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._streaming = False

    def _end_stream(self) -> None:
        if self._streaming:
            console.print()
            self._streaming = False

    async def on_token(self, token: str) -> None:
        self._streaming = True
        console.print(token, end="", markup=False, highlight=False)

    async def on_assistant_message(self, message: str) -> None:
        if self._streaming:
            self._end_stream()
            return
        console.print(message, markup=False)

    async def on_status_change(self, status: AgentStatus) -> None:
        if self.verbose:
            console.print(f"[dim]status: {status.value}[/dim]")

    async def on_tool_start(self, tool_name: str, arguments: dict[str, Any]) -> None:
        self._end_stream()
        console.print(f"[cyan]→ {tool_name}[/cyan] [dim]{json.dumps(arguments, default=str)[:120]}[/dim]")

    async def on_tool_result(self, tool_name: str, output: ToolOutput, duration_ms: int) -> None:
        style = "red" if output.is_error else "green"
        preview = output.content[:RESULT_PREVIEW_CHARS]
        console.print(f"[{style}]← {tool_name}[/{style}] [dim]({duration_ms}ms)[/dim]")
        if self.verbose and preview:
            console.print(preview, markup=False, style="dim")

    async def on_approval_requested(self, action: ActionRequest) -> ApprovalDecision:
        self._end_stream()
        body = f"{action.description}\n\nRisk: {action.risk_level}"
        if action.approval_context.reasoning:
            body += f"\nWhy: {action.approval_context.reasoning}"
        for consequence in action.approval_context.consequences:
            body += f"\n  • {consequence}"
        console.print(Panel(body, title=f"Approve {action.tool_name}?", border_style="yellow"))
        answer = Prompt.ask("[y]es / [a]ll similar / [n]o", choices=["y", "a", "n"], default="n")
        return {
            "y": ApprovalDecision.APPROVE,
            "a": ApprovalDecision.APPROVE_ALL_SIMILAR,
        }.get(answer, ApprovalDecision.DENY)

    async def on_clarification_request(self, question: str) -> str:
        self._end_stream()
        return Prompt.ask(f"[bold]{question}[/bold]")

    async def on_decision_explanation(self, explanation: DecisionExplanation) -> None:
        if self.verbose:
            console.print(f"[dim]{explanation.summary()} ({explanation.confidence:.0%})[/dim]")

    async def on_budget_warning(self, message: str, severity: BudgetSeverity) -> None:
        style = "red" if severity == BudgetSeverity.EXCEEDED else "yellow"
        console.print(f"[{style}]Budget: {message}[/{style}]")

    async def on_context_health(self, event: ContextHealthEvent) -> None:
        console.print(f"[yellow]Context {event.usage_percent}% full. {event.hint}[/yellow]")

    async def on_progress(self, progress: ProgressUpdate) -> None:
        console.print(f"[dim]{progress.stage}: {progress.message}[/dim]")

    async def on_plan_review(self, plan: ExecutionPlan) -> PlanDecision:
        console.print(Panel(plan.render(), title="Proposed plan", border_style="blue"))
        answer = Prompt.ask("[a]pprove / [r]eject / [q]uestion", choices=["a", "r", "q"], default="a")
        if answer == "a":
            return PlanDecision.approve()
        if answer == "q":
            return PlanDecision.ask_question(Prompt.ask("Question"))
        return PlanDecision.reject()

    async def on_plan_step_start(self, index: int, step: PlanStep) -> None:
        console.print(f"[blue]Step {index + 1}:[/blue] {step.description}")


# ─── Commands ──────────────────────────────────────────────

def _load_config(config_path: str | None, db: str | None) -> AgentConfig:
    base = AgentConfig.from_file(config_path) if config_path else None
    config = AgentConfig.from_env(base)
    if db:
        config.storage.db_path = db
    return config


@click.group()
@click.version_option(package_name="steward", prog_name="steward")
def main() -> None:
    """Steward: a safety-gated autonomous LLM agent."""


@main.command()
@click.argument("task")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="JSON config file")
@click.option("--provider", help="LLM provider (claude, openai, ollama, mock)")
@click.option("--model", help="Model name override")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ApprovalMode]),
    help="Approval mode",
)
@click.option("--plan", "plan_mode", is_flag=True, help="Review a plan before executing")
@click.option("--builtins/--no-builtins", default=True, help="Register built-in tools")
@click.option("--db", help="sqlite database for memory, decisions and consent")
@click.option("--json-output", is_flag=True, help="Print the result as JSON")
@click.option("-v", "--verbose", is_flag=True, help="Show explanations and tool output")
def run(
    task: str,
    config_path: str | None,
    provider: str | None,
    model: str | None,
    mode: str | None,
    plan_mode: bool,
    builtins: bool,
    db: str | None,
    json_output: bool,
    verbose: bool,
) -> None:
    """Run TASK to completion."""
    config = _load_config(config_path, db)
    if provider:
        config.llm.provider = provider
    if model:
        config.llm.model = model
    if mode:
        config.safety.approval_mode = ApprovalMode(mode)
    if plan_mode:
        config.plan.enabled = True

    init_tracing()
    agent = Agent.from_config(config, ConsoleCallback(verbose=verbose))
    if builtins:
        agent.register_builtin_tools()

    try:
        result = asyncio.run(agent.process_task(task))
    except StewardError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        agent.cancel()
        console.print("\n[yellow]Task interrupted.[/yellow]")
        sys.exit(130)
    finally:
        shutdown_tracing()

    if json_output:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return
    console.print(
        f"\n[bold]{'Done' if result.success else 'Stopped'}[/bold] in {result.iterations} iterations, "
        f"{result.total_usage.total} tokens, ${result.total_cost.total:.4f}"
    )


@main.command()
@click.option("--db", default=DEFAULT_DB, show_default=True, help="sqlite database")
@click.option("-n", "--limit", default=20, show_default=True, help="Number of records")
def decisions(db: str, limit: int) -> None:
    """Show the most recent persisted decisions."""
    store = StateStore(db)
    try:
        records = store.load_decisions(limit)
    finally:
        store.close()
    if not records:
        console.print("No decisions recorded yet.")
        return

    table = Table(title="Decisions")
    table.add_column("#", justify="right")
    table.add_column("Iter", justify="right")
    table.add_column("Action")
    table.add_column("Risk")
    table.add_column("Outcome")
    table.add_column("Confidence", justify="right")
    for record in records:
        confidence = f"{record.confidence:.0%}" if record.confidence is not None else "-"
        table.add_row(
            str(record.id), str(record.iteration), record.action,
            record.risk_level, str(record.outcome), confidence,
        )
    console.print(table)


@main.group()
def consent() -> None:
    """Manage data-sharing consent."""


def _consent_manager(db: str) -> tuple[ConsentManager, StateStore]:
    store = StateStore(db)
    manager = ConsentManager(AgentConfig().consent, store)
    manager.load()
    return manager, store


@consent.command("list")
@click.option("--db", default=DEFAULT_DB, show_default=True)
def consent_list(db: str) -> None:
    """List consent records."""
    manager, store = _consent_manager(db)
    try:
        records = manager.records()
    finally:
        store.close()
    if not records:
        console.print("No consent records.")
        return
    table = Table(title="Consent")
    table.add_column("Scope")
    table.add_column("Granted")
    table.add_column("Expires")
    table.add_column("Auto")
    for record in records:
        expires = f"{record.expires_at:%Y-%m-%d %H:%M}" if record.expires_at else "never"
        table.add_row(
            record.scope, f"{record.granted_at:%Y-%m-%d %H:%M}", expires,
            "yes" if record.auto_granted else "no",
        )
    console.print(table)


@consent.command("grant")
@click.argument("scope")
@click.option("--ttl-hours", type=float, help="Expire after this many hours")
@click.option("--db", default=DEFAULT_DB, show_default=True)
def consent_grant(scope: str, ttl_hours: float | None, db: str) -> None:
    """Grant consent for SCOPE (provider:NAME or tool:NAME)."""
    if not is_valid_scope(scope):
        raise click.BadParameter("expected provider:NAME or tool:NAME", param_hint="SCOPE")
    manager, store = _consent_manager(db)
    try:
        manager.grant(scope, ttl_hours=ttl_hours)
    finally:
        store.close()
    console.print(f"Granted [green]{scope}[/green]")


@consent.command("revoke")
@click.argument("scope")
@click.option("--db", default=DEFAULT_DB, show_default=True)
def consent_revoke(scope: str, db: str) -> None:
    """Revoke consent for SCOPE."""
    manager, store = _consent_manager(db)
    try:
        revoked = manager.revoke(scope)
    finally:
        store.close()
    if revoked:
        console.print(f"Revoked [red]{scope}[/red]")
    else:
        console.print(f"No consent recorded for {scope}")


@main.command()
def status() -> None:
    """Show configuration and environment."""
    from steward import __version__

    config = AgentConfig.from_env()
    table = Table(title=f"Steward {__version__}", show_header=False)
    table.add_row("Python", sys.version.split()[0])
    table.add_row("Provider", config.llm.provider)
    table.add_row("Model", config.llm.model or "(provider default)")
    table.add_row("Approval mode", config.safety.approval_mode.value)
    table.add_row("Max iterations", str(config.safety.max_iterations))
    for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OTEL_EXPORTER_OTLP_ENDPOINT"):
        value = os.environ.get(var)
        if value:
            masked = value[:4] + "..." + value[-4:] if len(value) > 10 else "***"
        else:
            masked = "NOT SET"
        table.add_row(var, masked)
    console.print(table)


if __name__ == "__main__":
    main()
