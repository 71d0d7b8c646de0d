"""Shared test fixtures for the Steward test suite."""

import pytest

from steward.agent import Agent
from steward.callbacks import RecordingCallback
from steward.config import AgentConfig, ApprovalMode
from steward.core.models import RiskLevel, ToolDefinition
from steward.providers.mock import MockLlmProvider
from steward.tools.registry import RegisteredTool


def make_tool(
    name: str,
    risk: RiskLevel = RiskLevel.READ_ONLY,
    handler=None,
    parameters: dict | None = None,
) -> RegisteredTool:
    """Helper to create test tools. The default handler echoes its ``text`` argument."""
    return RegisteredTool(
        definition=ToolDefinition(
            name=name,
            description=f"Test tool: {name}",
            parameters=parameters or {"type": "object", "properties": {"text": {"type": "string"}}},
        ),
        risk_level=risk,
        handler=handler or (lambda text="": f"{name}: {text}"),
    )


def make_agent(
    provider: MockLlmProvider,
    callback: RecordingCallback | None = None,
    *,
    mode: ApprovalMode = ApprovalMode.YOLO,
    streaming: bool = False,
    **overrides,
) -> Agent:
    """Agent with classification disabled so the full tool set is visible."""
    config = AgentConfig()
    config.safety.approval_mode = mode
    config.llm.use_streaming = streaming
    for key, value in overrides.items():
        group, _, field = key.partition("__")
        setattr(getattr(config, group), field, value)
    return Agent(provider, config, callback or RecordingCallback(), classifier=lambda task: None)


@pytest.fixture
def provider():
    return MockLlmProvider()


@pytest.fixture
def callback():
    return RecordingCallback()


@pytest.fixture
def echo_tool():
    return make_tool("echo_test")


@pytest.fixture
def write_tool():
    return make_tool("write_test", RiskLevel.WRITE)
