"""
Steward Token Budget Manager

Per-task and per-session cost accounting. Before every provider call the
orchestrator asks for a budget check using the estimated input size and
an assumed completion length; the result is OK, a soft warning, or an
exceeded hard limit. A limit of zero is unlimited.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from steward.config import BudgetConfig
from steward.core.models import CostEstimate, TokenUsage


class BudgetCheckStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    EXCEEDED = "exceeded"


class BudgetCheckResult(BaseModel):
    """Outcome of a pre-call budget check."""
    status: BudgetCheckStatus = BudgetCheckStatus.OK
    message: str = ""
    usage_pct: float = 0.0
    predicted_cost: float = 0.0

    @property
    def is_ok(self) -> bool:
        return self.status == BudgetCheckStatus.OK


class TokenBudgetManager:
    """Tracks spend against session and task limits."""

    def __init__(self, config: BudgetConfig | None = None):
        self._config = config or BudgetConfig()
        self.session_cost = 0.0
        self.task_cost = 0.0
        self.session_tokens = 0

    @property
    def config(self) -> BudgetConfig:
        return self._config

    @property
    def should_halt_on_exceed(self) -> bool:
        return self._config.halt_on_exceed

    def reset_task(self) -> None:
        """Reset task-level tracking at the start of each task."""
        self.task_cost = 0.0

    def record_usage(self, usage: TokenUsage, cost: CostEstimate) -> None:
        self.session_cost += cost.total
        self.task_cost += cost.total
        self.session_tokens += usage.total

    def predict_cost(self, estimated_input_tokens: int, rates: tuple[float, float]) -> float:
        """Dollar estimate of the next call: input tokens plus the assumed completion."""
        input_rate, output_rate = rates
        return (
            estimated_input_tokens * input_rate
            + self._config.assumed_completion_tokens * output_rate
        )

    def check_budget(
        self, estimated_input_tokens: int, rates: tuple[float, float]
    ) -> BudgetCheckResult:
        """Project the next call against every configured limit.

        Hard limits are checked first (session cost, task cost, session
        tokens); then the soft limit of each at ``warn_ratio``.
        """
        cfg = self._config
        predicted = self.predict_cost(estimated_input_tokens, rates)
        session_cost = self.session_cost + predicted
        task_cost = self.task_cost + predicted
        session_tokens = self.session_tokens + estimated_input_tokens + cfg.assumed_completion_tokens

        if cfg.session_limit_usd > 0 and session_cost > cfg.session_limit_usd:
            return BudgetCheckResult(
                status=BudgetCheckStatus.EXCEEDED,
                message=f"Session cost ${session_cost:.4f} would exceed limit ${cfg.session_limit_usd:.4f}",
                usage_pct=session_cost / cfg.session_limit_usd,
                predicted_cost=predicted,
            )
        if cfg.task_limit_usd > 0 and task_cost > cfg.task_limit_usd:
            return BudgetCheckResult(
                status=BudgetCheckStatus.EXCEEDED,
                message=f"Task cost ${task_cost:.4f} would exceed limit ${cfg.task_limit_usd:.4f}",
                usage_pct=task_cost / cfg.task_limit_usd,
                predicted_cost=predicted,
            )
        if cfg.session_token_limit > 0 and session_tokens > cfg.session_token_limit:
            return BudgetCheckResult(
                status=BudgetCheckStatus.EXCEEDED,
                message=f"Session tokens {session_tokens} would exceed limit {cfg.session_token_limit}",
                usage_pct=session_tokens / cfg.session_token_limit,
                predicted_cost=predicted,
            )

        checks = [
            (cfg.session_limit_usd, session_cost, "Session cost", "$"),
            (cfg.task_limit_usd, task_cost, "Task cost", "$"),
            (float(cfg.session_token_limit), float(session_tokens), "Session tokens", ""),
        ]
        for limit, projected, label, unit in checks:
            if limit <= 0:
                continue
            pct = projected / limit
            if pct > cfg.warn_ratio:
                shown = f"${limit:.4f}" if unit else f"{int(limit)}"
                return BudgetCheckResult(
                    status=BudgetCheckStatus.WARNING,
                    message=f"{label} at {pct * 100:.0f}% of {shown} limit",
                    usage_pct=pct,
                    predicted_cost=predicted,
                )

        return BudgetCheckResult(predicted_cost=predicted)


class ToolTokenMeter:
    """Approximate tokens each tool's output contributed to the context."""

    def __init__(self) -> None:
        self._usage: dict[str, int] = {}

    def charge(self, tool_name: str, tokens: int) -> None:
        self._usage[tool_name] = self._usage.get(tool_name, 0) + tokens

    def reset(self) -> None:
        self._usage.clear()

    @property
    def usage(self) -> dict[str, int]:
        return dict(self._usage)

    def top_consumers(self, n: int = 3) -> list[tuple[str, float]]:
        """Largest consumers with their share of the total, in percent."""
        total = sum(self._usage.values())
        if total == 0:
            return []
        ranked = sorted(self._usage.items(), key=lambda kv: kv[1], reverse=True)[:n]
        return [(name, tokens * 100.0 / total) for name, tokens in ranked]

    def describe_top(self, n: int = 3) -> str:
        """``". Top consumers: a (60%), b (40%)"`` or empty when nothing was charged."""
        top = self.top_consumers(n)
        if not top:
            return ""
        return ". Top consumers: " + ", ".join(f"{name} ({pct:.0f}%)" for name, pct in top)
