"""Steward safety: permission checks, approval context, contracts, consent and redaction."""

from steward.safety.action_details import (
    ActionRequest,
    ApprovalContext,
    ApprovalDecision,
    PermissionOutcome,
    PermissionResult,
    ReversibilityInfo,
    build_approval_context,
    create_action_request,
    parse_action_details,
)
from steward.safety.consent import ConsentManager, ConsentRecord
from steward.safety.contracts import (
    ContractCheckResult,
    ContractEnforcer,
    Invariant,
    Predicate,
    ResourceBounds,
    SafetyContract,
)
from steward.safety.guardian import SafetyGuardian, glob_matches
from steward.safety.injection import InjectionDetector, InjectionScanResult
from steward.safety.redact import redact

__all__ = [
    "ActionRequest",
    "ApprovalContext",
    "ApprovalDecision",
    "ConsentManager",
    "ConsentRecord",
    "ContractCheckResult",
    "ContractEnforcer",
    "InjectionDetector",
    "InjectionScanResult",
    "Invariant",
    "PermissionOutcome",
    "PermissionResult",
    "Predicate",
    "ResourceBounds",
    "ReversibilityInfo",
    "SafetyContract",
    "SafetyGuardian",
    "build_approval_context",
    "create_action_request",
    "glob_matches",
    "parse_action_details",
    "redact",
]
