"""
Steward: Safety-Gated Autonomous LLM Agent

Usage:
    from steward import Agent, AgentConfig
    from steward.providers import create_provider

    agent = Agent(create_provider("claude"), AgentConfig())
    agent.register_builtin_tools()
    result = await agent.process_task("List the Python files in src/")

    # Review a plan before anything runs:
    agent.set_plan_mode(True)
"""

from steward.agent import Agent
from steward.callbacks import AgentCallback, RecordingCallback
from steward.config import AgentConfig, ApprovalMode
from steward.core.models import (
    AgentStatus,
    Message,
    RiskLevel,
    TaskResult,
    ToolDefinition,
    ToolOutput,
)
from steward.engine.plan import ExecutionPlan, PlanDecision
from steward.exceptions import StewardError
from steward.safety.action_details import ActionRequest, ApprovalDecision
from steward.safety.contracts import Invariant, Predicate, SafetyContract
from steward.tools.registry import RegisteredTool, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    # Main API
    "Agent",
    "AgentCallback",
    "AgentConfig",
    "RecordingCallback",
    "__version__",
    # Models
    "AgentStatus",
    "ApprovalMode",
    "Message",
    "RiskLevel",
    "TaskResult",
    "ToolDefinition",
    "ToolOutput",
    # Safety
    "ActionRequest",
    "ApprovalDecision",
    "Invariant",
    "Predicate",
    "SafetyContract",
    # Plan mode
    "ExecutionPlan",
    "PlanDecision",
    # Tools
    "RegisteredTool",
    "ToolRegistry",
    # Errors
    "StewardError",
]
