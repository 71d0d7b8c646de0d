"""Echo and date/time tools."""

from datetime import datetime, timezone

from steward.core.models import RiskLevel, ToolDefinition
from steward.tools.registry import RegisteredTool


def _echo(text: str) -> str:
    return f"Echo: {text}"


def _current_datetime(timezone_name: str = "UTC") -> str:
    """Return the current date and time in ISO format."""
    if timezone_name.upper() == "UTC":
        return datetime.now(timezone.utc).isoformat()
    from zoneinfo import ZoneInfo

    return datetime.now(ZoneInfo(timezone_name)).isoformat()


ECHO_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="echo",
        description="Echo the given text back. Useful for testing tool calls.",
        parameters={
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Text to echo"},
            },
            "required": ["text"],
        },
    ),
    risk_level=RiskLevel.READ_ONLY,
    handler=_echo,
    timeout=5.0,
)

DATETIME_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="datetime",
        description="Get the current date and time in ISO format.",
        parameters={
            "type": "object",
            "properties": {
                "timezone_name": {
                    "type": "string",
                    "description": "IANA timezone name (default: UTC)",
                    "default": "UTC",
                },
            },
        },
    ),
    risk_level=RiskLevel.READ_ONLY,
    handler=_current_datetime,
    timeout=5.0,
)
