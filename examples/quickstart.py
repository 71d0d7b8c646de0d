"""Steward quickstart: run one safety-gated task with the built-in tools."""

import asyncio

from steward import Agent, AgentConfig, ApprovalMode
from steward.providers import create_provider

config = AgentConfig()
config.safety.approval_mode = ApprovalMode.CAUTIOUS

agent = Agent(create_provider("claude"), config)
agent.register_builtin_tools()

result = asyncio.run(agent.process_task("List the Python files in src/ and summarize what each one does"))

print(f"Success: {result.success}")
print(f"Iterations: {result.iterations}, tokens: {result.total_usage.total}, cost: ${result.total_cost.total:.4f}")
print(f"\n{result.response}")
