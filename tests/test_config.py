"""Tests for AgentConfig loading and validation."""

import json

import pytest
from pydantic import ValidationError

from steward.config import AgentConfig, ApprovalMode


class TestDefaults:
    def test_bare_config_is_usable(self):
        config = AgentConfig()
        assert config.safety.approval_mode == ApprovalMode.SAFE
        assert config.safety.max_iterations == 25
        assert config.memory.window_size == 20
        assert ".env*" in config.safety.denied_paths
        assert config.budget.session_limit_usd == 0.0
        assert config.storage.db_path is None

    @pytest.mark.parametrize("group, field, value", [
        ("memory", "window_size", 1),
        ("safety", "max_iterations", 0),
        ("budget", "warn_ratio", 1.5),
        ("plan", "max_steps", 0),
    ])
    def test_out_of_range_rejected(self, group, field, value):
        with pytest.raises(ValidationError):
            AgentConfig.model_validate({group: {field: value}})


class TestFromFile:
    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "steward.json"
        path.write_text(json.dumps({
            "safety": {"approval_mode": "cautious", "allowed_hosts": ["example.com"]},
            "llm": {"provider": "openai", "rate_limits": {"rpm": 50}},
        }))

        config = AgentConfig.from_file(path)

        assert config.safety.approval_mode == ApprovalMode.CAUTIOUS
        assert config.safety.allowed_hosts == ["example.com"]
        assert config.safety.max_iterations == 25
        assert config.llm.rate_limits.rpm == 50
        assert config.llm.rate_limits.itpm == 0

    def test_invalid_mode(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"safety": {"approval_mode": "reckless"}}))
        with pytest.raises(ValidationError):
            AgentConfig.from_file(path)


class TestFromEnv:
    def test_overlay(self, monkeypatch):
        monkeypatch.setenv("STEWARD_APPROVAL_MODE", "PARANOID")
        monkeypatch.setenv("STEWARD_MAX_ITERATIONS", "7")
        monkeypatch.setenv("STEWARD_PROVIDER", "mock")
        monkeypatch.delenv("STEWARD_MODEL", raising=False)
        monkeypatch.delenv("STEWARD_DB_PATH", raising=False)
        base = AgentConfig()

        config = AgentConfig.from_env(base)

        assert config.safety.approval_mode == ApprovalMode.PARANOID
        assert config.safety.max_iterations == 7
        assert config.llm.provider == "mock"
        assert base.llm.provider == "claude"
