"""
Steward Personas

A persona adjusts the agent's register for a class of tasks: a prompt
addendum, preferred tools and a confidence modifier applied to decision
explanations. The active persona is an explicit override, else resolved
from the task classification, else General.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from steward.config import PersonaConfig
from steward.core.classification import ClassificationKind, TaskClassification


class PersonaId(str, Enum):
    GENERAL = "general"
    ARCHITECT = "architect"
    SECURITY_GUARDIAN = "security_guardian"
    MLOPS_ENGINEER = "mlops_engineer"


class PersonaProfile(BaseModel):
    id: PersonaId
    label: str
    prompt_addendum: str = ""
    preferred_tools: list[str] = Field(default_factory=list)
    confidence_modifier: float = 0.0


BUILTIN_PERSONAS: dict[PersonaId, PersonaProfile] = {
    PersonaId.ARCHITECT: PersonaProfile(
        id=PersonaId.ARCHITECT,
        label="Systems Architect",
        prompt_addendum=(
            "You are operating as a Systems Architect. Prioritize structure, performance "
            "and maintainability. When reviewing code, focus on interfaces, data flow and "
            "complexity. Prefer code analysis tools before editing."
        ),
        preferred_tools=["codebase_search", "file_read", "smart_edit"],
        confidence_modifier=0.1,
    ),
    PersonaId.SECURITY_GUARDIAN: PersonaProfile(
        id=PersonaId.SECURITY_GUARDIAN,
        label="Security Guardian",
        prompt_addendum=(
            "You are operating as a Security Guardian. Apply extra scrutiny to shell "
            "commands, network operations and file writes. Prefer read-only inspection "
            "and explain the risk of every change you propose."
        ),
        preferred_tools=["codebase_search", "file_read"],
        confidence_modifier=-0.1,
    ),
    PersonaId.MLOPS_ENGINEER: PersonaProfile(
        id=PersonaId.MLOPS_ENGINEER,
        label="MLOps Engineer",
        prompt_addendum=(
            "You are operating as an MLOps Engineer. Focus on reproducibility, evaluation "
            "metrics, monitoring and systematic improvement."
        ),
        preferred_tools=["system_monitor", "shell_exec"],
        confidence_modifier=0.05,
    ),
    PersonaId.GENERAL: PersonaProfile(id=PersonaId.GENERAL, label="General"),
}

_WORKFLOW_PERSONAS = {
    "security_scan": PersonaId.SECURITY_GUARDIAN,
    "dependency_audit": PersonaId.SECURITY_GUARDIAN,
    "compliance_audit": PersonaId.SECURITY_GUARDIAN,
    "deployment": PersonaId.MLOPS_ENGINEER,
    "incident_response": PersonaId.MLOPS_ENGINEER,
    "ml_training": PersonaId.MLOPS_ENGINEER,
    "code_review": PersonaId.ARCHITECT,
    "pr_review": PersonaId.ARCHITECT,
    "refactor": PersonaId.ARCHITECT,
    "test_generation": PersonaId.ARCHITECT,
    "documentation": PersonaId.ARCHITECT,
}


def resolve_from_classification(classification: TaskClassification) -> PersonaId:
    kind = classification.kind
    if kind in (ClassificationKind.CODE_ANALYSIS, ClassificationKind.GIT_OPERATION):
        return PersonaId.ARCHITECT
    if kind == ClassificationKind.SYSTEM_MONITOR:
        return PersonaId.MLOPS_ENGINEER
    if kind == ClassificationKind.WORKFLOW:
        return _WORKFLOW_PERSONAS.get(classification.workflow or "", PersonaId.GENERAL)
    return PersonaId.GENERAL


class PersonaResolver:
    def __init__(self, config: PersonaConfig | None = None):
        self.config = config or PersonaConfig()
        self.override: PersonaId | None = None

    def active(self, classification: TaskClassification | None) -> PersonaId:
        if self.override is not None:
            return self.override
        if self.config.enabled and classification is not None:
            return resolve_from_classification(classification)
        return PersonaId.GENERAL

    def profile(self, classification: TaskClassification | None) -> PersonaProfile:
        return BUILTIN_PERSONAS[self.active(classification)]

    def prompt_addendum(self, classification: TaskClassification | None) -> str:
        return self.profile(classification).prompt_addendum

    def confidence_modifier(self, classification: TaskClassification | None) -> float:
        return self.profile(classification).confidence_modifier
