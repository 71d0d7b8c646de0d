"""
Steward Configuration

A single AgentConfig is consumed when the orchestrator is constructed.
Every group is a pydantic model with defaults, so a bare ``AgentConfig()``
is a working configuration.

Usage:
    from steward.config import AgentConfig

    config = AgentConfig.from_file("steward.json")
    config.safety.approval_mode = ApprovalMode.CAUTIOUS
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class ApprovalMode(str, Enum):
    """Which risk classes require explicit user approval."""
    SAFE = "safe"           # only read-only actions auto-approved
    CAUTIOUS = "cautious"   # read-only and writes auto-approved
    PARANOID = "paranoid"   # every action requires approval
    YOLO = "yolo"           # everything auto-approved


class RateLimitConfig(BaseModel):
    """Provider-side rate limits. Zero disables a dimension."""
    itpm: int = 0  # input tokens per minute
    otpm: int = 0  # output tokens per minute
    rpm: int = 0   # requests per minute


class LlmConfig(BaseModel):
    provider: str = "claude"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    use_streaming: bool = True
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_seconds: float = 120.0
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)


class MemoryConfig(BaseModel):
    window_size: int = Field(default=20, ge=2)
    consumed_preview_chars: int = 500
    stale_preview_chars: int = 200
    keep_recent: int = 4
    max_facts: int = 10_000
    max_corrections: int = 1_000


class InjectionDetectionConfig(BaseModel):
    enabled: bool = True
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    scan_tool_outputs: bool = True


class AdaptiveTrustConfig(BaseModel):
    enabled: bool = False
    trust_escalation_threshold: int = 5


class SafetyConfig(BaseModel):
    approval_mode: ApprovalMode = ApprovalMode.SAFE
    max_iterations: int = Field(default=25, ge=1)
    denied_paths: list[str] = Field(default_factory=lambda: [
        ".env*",
        "**/*.key",
        "**/secrets/**",
        "**/*.pem",
        "**/credentials*",
        ".ssh/**",
        ".aws/**",
        "**/*id_rsa*",
    ])
    denied_commands: list[str] = Field(default_factory=lambda: [
        "sudo",
        "curl | sh",
        "wget | bash",
        "rm -rf /",
    ])
    allowed_hosts: list[str] = Field(default_factory=list)  # empty means all hosts allowed
    injection_detection: InjectionDetectionConfig = Field(default_factory=InjectionDetectionConfig)
    adaptive_trust: AdaptiveTrustConfig = Field(default_factory=AdaptiveTrustConfig)
    max_audit_entries: int = 10_000


class BudgetConfig(BaseModel):
    """Cost ceilings. A limit of zero means unlimited.

    The soft limit is ``warn_ratio`` times the hard limit.
    """
    session_limit_usd: float = 0.0
    task_limit_usd: float = 0.0
    session_token_limit: int = 0
    warn_ratio: float = Field(default=0.8, gt=0.0, le=1.0)
    halt_on_exceed: bool = False
    assumed_completion_tokens: int = 500
    cost_prediction_threshold: float = 0.05


class SchedulerConfig(BaseModel):
    enabled: bool = False
    heartbeat_seconds: int = 60
    quiet_hours_start: str | None = None  # "HH:MM" UTC
    quiet_hours_end: str | None = None


class PlanConfig(BaseModel):
    enabled: bool = False
    max_steps: int = Field(default=20, ge=1)
    max_review_rounds: int = 10


class PersonaConfig(BaseModel):
    enabled: bool = True


class MoeConfig(BaseModel):
    enabled: bool = True
    max_experts_per_route: int = Field(default=3, ge=1)
    activation_threshold: float = 0.15
    max_tool_tokens: int = 6000
    cache_size: int = 256
    extra_prompts: dict[str, str] = Field(default_factory=dict)


class ConsentConfig(BaseModel):
    enabled: bool = False
    require_explicit_provider_consent: bool = False
    auto_grant_ttl_hours: int = 24


class VerificationConfig(BaseModel):
    run_on_file_write: bool = False
    commands: list[str] = Field(default_factory=list)
    timeout_seconds: float = 120.0
    workdir: str | None = None
    max_feedback_chars: int = 2000


class HydrationConfig(BaseModel):
    enabled: bool = False
    root: str = "."
    max_files: int = 5
    max_chars: int = 4000
    include_extensions: list[str] = Field(default_factory=lambda: [
        ".py", ".md", ".toml", ".rs", ".ts", ".js", ".go", ".json", ".yaml", ".yml",
    ])


class KnowledgeConfig(BaseModel):
    enabled: bool = True
    max_rules: int = 20
    min_corrections_for_rule: int = 2


class StorageConfig(BaseModel):
    """Optional sqlite persistence for long-term memory, decisions and consent."""
    db_path: str | None = None


class AgentConfig(BaseModel):
    """Top-level configuration for an Agent."""
    system_prompt: str = (
        "You are Steward, an autonomous assistant. Use the available tools to "
        "accomplish the user's task, then answer with a concise summary."
    )
    llm: LlmConfig = Field(default_factory=LlmConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    plan: PlanConfig = Field(default_factory=PlanConfig)
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    moe: MoeConfig = Field(default_factory=MoeConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    hydration: HydrationConfig = Field(default_factory=HydrationConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_file(cls, path: str | Path) -> AgentConfig:
        """Load a JSON configuration file. Missing keys take their defaults."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def from_env(cls, base: AgentConfig | None = None) -> AgentConfig:
        """Overlay STEWARD_* environment variables on a base configuration."""
        config = (base or cls()).model_copy(deep=True)
        if mode := os.environ.get("STEWARD_APPROVAL_MODE"):
            config.safety.approval_mode = ApprovalMode(mode.lower())
        if max_iter := os.environ.get("STEWARD_MAX_ITERATIONS"):
            config.safety.max_iterations = int(max_iter)
        if provider := os.environ.get("STEWARD_PROVIDER"):
            config.llm.provider = provider
        if model := os.environ.get("STEWARD_MODEL"):
            config.llm.model = model
        if db_path := os.environ.get("STEWARD_DB_PATH"):
            config.storage.db_path = db_path
        return config
