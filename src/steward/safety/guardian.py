"""
Steward Safety Guardian

Decides whether a proposed tool execution is Allowed, Denied or
RequiresApproval. Checks run in a fixed order and the first decisive
layer wins:

1. Denied patterns: path globs, command substrings, host allowlist.
2. Prompt-injection scan of the action's arguments.
3. Session allowlist populated by "approve all similar".
4. Adaptive trust: anomalous behavior forces approval; a clean approval
   history may auto-approve (never for destructive actions).
5. The approval mode.

The guardian also owns the safety contract enforcer and the hash-chained
audit trail of executions and approval decisions.
"""

from __future__ import annotations

import fnmatch
import posixpath
from collections import defaultdict

from pydantic import BaseModel

from steward.audit.trace_logger import AuditEntry, AuditTrail
from steward.config import ApprovalMode, SafetyConfig
from steward.core.models import RiskLevel
from steward.logging import get_logger
from steward.safety.action_details import (
    ActionDetails,
    ActionRequest,
    ApprovalDecision,
    BrowserAction,
    FileDeleteAction,
    FileReadAction,
    FileWriteAction,
    NetworkRequestAction,
    OtherAction,
    PermissionResult,
    ShellCommandAction,
)
from steward.safety.contracts import ContractCheckResult, ContractEnforcer, SafetyContract
from steward.safety.injection import InjectionDetector

logger = get_logger("steward.safety")

ANOMALY_FORCE_APPROVAL = 0.7
MAX_AUTO_APPROVE_ERROR_RATE = 0.1


# ─── Glob matching ───────────────────────────────────────────

def normalize_path(path: str) -> str:
    """Collapse ``.`` and ``..`` segments lexically so traversal cannot dodge a glob."""
    if not path:
        return path
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return normalized.removeprefix("./")


def glob_matches(pattern: str, path: str) -> bool:
    """Match a denied-path glob against a path.

    Supported forms: ``**``, ``**/dir/**``, ``**/*.ext``, ``**/name*``,
    ``prefix/**``, ``*.ext``, ``prefix*`` and literal paths.
    """
    basename = posixpath.basename(path)

    if pattern == "**":
        return True

    if pattern.startswith("**/") and pattern.endswith("/**"):
        directory = pattern[3:-3]
        return path.startswith(f"{directory}/") or f"/{directory}/" in path

    if pattern.startswith("**/"):
        tail = pattern[3:]
        if "*" in tail:
            return fnmatch.fnmatchcase(basename, tail)
        return basename == tail or path.endswith(f"/{tail}") or path == tail

    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        return path.startswith(f"{prefix}/") or f"/{prefix}/" in path

    if pattern.startswith("*.") and "/" not in pattern:
        return basename.endswith(pattern[1:])

    if pattern.endswith("*") and "/" not in pattern:
        return basename.startswith(pattern[:-1])

    return path == pattern or path.endswith(f"/{pattern}")


# ─── Adaptive trust ──────────────────────────────────────────

class ToolTrustStats(BaseModel):
    approvals: int = 0
    denials: int = 0
    executions: int = 0
    errors: int = 0

    @property
    def error_rate(self) -> float:
        return self.errors / self.executions if self.executions else 0.0


class BehavioralFingerprint(BaseModel):
    """Session-level behavior used to spot anomalies."""
    total_actions: int = 0
    high_risk_actions: int = 0
    consecutive_errors: int = 0
    approvals: int = 0
    denials: int = 0

    def anomaly_score(self) -> float:
        score = 0.0
        if self.consecutive_errors >= 3:
            score += 0.3 * min(self.consecutive_errors / 10, 1.0)
        if self.total_actions:
            ratio = self.high_risk_actions / self.total_actions
            if ratio > 0.5:
                score += 0.3 * ratio
        if self.approvals + self.denials >= 3 and self.denials > self.approvals:
            score += 0.4
        return min(score, 1.0)


# ─── Guardian ────────────────────────────────────────────────

class SafetyGuardian:
    """Permission checks, contract enforcement and the audit trail."""

    def __init__(
        self,
        config: SafetyConfig | None = None,
        contract: SafetyContract | None = None,
    ):
        self.config = config or SafetyConfig()
        self.approval_mode = self.config.approval_mode
        self.detector = InjectionDetector(self.config.injection_detection.threshold)
        self.contracts = ContractEnforcer(contract)
        self.audit = AuditTrail(max_entries=self.config.max_audit_entries)
        self.fingerprint = BehavioralFingerprint()
        self._session_allowlist: set[tuple[str, RiskLevel]] = set()
        self._trust: dict[str, ToolTrustStats] = defaultdict(ToolTrustStats)

    # ── Permission ──

    def check_permission(self, action: ActionRequest) -> PermissionResult:
        denial = self._check_denied_patterns(action.details)
        if denial is not None:
            logger.warning(
                "Action denied by pattern",
                extra={"tool_name": action.tool_name, "risk_level": str(action.risk_level)},
            )
            return PermissionResult.denied(denial)

        if self.config.injection_detection.enabled:
            verdict = self._check_injection(action)
            if verdict is not None:
                return verdict

        if (action.tool_name, action.risk_level) in self._session_allowlist:
            return PermissionResult.allowed()

        if self.config.adaptive_trust.enabled and self.approval_mode != ApprovalMode.YOLO:
            score = self.fingerprint.anomaly_score()
            if score > ANOMALY_FORCE_APPROVAL:
                return PermissionResult.requires_approval(
                    f"{action.description} (risk: {action.risk_level}) - "
                    f"unusual session behavior (anomaly score {score:.2f}) requires approval"
                )
            if self._trusted(action):
                logger.info(
                    "Auto-approved by adaptive trust",
                    extra={"tool_name": action.tool_name, "risk_level": str(action.risk_level)},
                )
                return PermissionResult.allowed()

        return self._check_mode(action)

    def _check_denied_patterns(self, details: ActionDetails) -> str | None:
        if isinstance(details, (FileReadAction, FileWriteAction, FileDeleteAction)):
            path = normalize_path(details.path)
            for pattern in self.config.denied_paths:
                if glob_matches(pattern, path):
                    return f"Path '{details.path}' matches denied pattern '{pattern}'"

        if isinstance(details, ShellCommandAction):
            lowered = details.command.lower()
            for denied in self.config.denied_commands:
                if denied.lower() in lowered:
                    return f"Command contains denied pattern '{denied}'"

        if isinstance(details, NetworkRequestAction) and self.config.allowed_hosts:
            host = details.host.lower()
            allowed = any(
                host == h.lower() or host.endswith(f".{h.lower()}") for h in self.config.allowed_hosts
            )
            if not allowed:
                return f"Host '{details.host}' is not in the allowed hosts list"

        return None

    def _check_injection(self, action: ActionRequest) -> PermissionResult | None:
        text = _scannable_text(action.details)
        if not text:
            return None
        scan = self.detector.scan_input(text)
        if not scan.is_suspicious:
            return None

        matched = ", ".join(p.matched_text for p in scan.detected_patterns)
        logger.warning(
            "Suspicious action arguments",
            extra={"tool_name": action.tool_name, "event_type": "injection"},
        )
        if scan.has_high_severity:
            return PermissionResult.denied(
                f"Prompt injection detected (risk: {scan.risk_score:.2f}): {matched}"
            )
        return PermissionResult.requires_approval(
            f"Suspicious content in arguments for {action.tool_name} (risk: {scan.risk_score:.2f})"
        )

    def _trusted(self, action: ActionRequest) -> bool:
        if action.risk_level == RiskLevel.DESTRUCTIVE:
            return False
        stats = self._trust.get(action.tool_name)
        if stats is None:
            return False
        return (
            stats.approvals >= self.config.adaptive_trust.trust_escalation_threshold
            and stats.denials == 0
            and stats.error_rate < MAX_AUTO_APPROVE_ERROR_RATE
        )

    def _check_mode(self, action: ActionRequest) -> PermissionResult:
        mode = self.approval_mode
        risk = action.risk_level
        summary = f"{action.description} (risk: {risk})"

        if mode == ApprovalMode.YOLO:
            return PermissionResult.allowed()
        if mode == ApprovalMode.SAFE:
            if risk == RiskLevel.READ_ONLY:
                return PermissionResult.allowed()
            return PermissionResult.requires_approval(
                f"{summary} - safe mode requires approval for non-read operations"
            )
        if mode == ApprovalMode.CAUTIOUS:
            if risk <= RiskLevel.WRITE:
                return PermissionResult.allowed()
            return PermissionResult.requires_approval(
                f"{summary} - cautious mode requires approval for execute/network/destructive operations"
            )
        return PermissionResult.requires_approval(
            f"{summary} - paranoid mode requires approval for all actions"
        )

    # ── Session state ──

    def add_session_allowlist(self, tool_name: str, risk_level: RiskLevel) -> None:
        self._session_allowlist.add((tool_name, risk_level))
        logger.info(
            "Added to session allowlist",
            extra={"tool_name": tool_name, "risk_level": str(risk_level)},
        )

    def is_session_allowed(self, tool_name: str, risk_level: RiskLevel) -> bool:
        return (tool_name, risk_level) in self._session_allowlist

    def clear_session_allowlist(self) -> None:
        self._session_allowlist.clear()

    def trust_stats(self, tool_name: str) -> ToolTrustStats:
        return self._trust[tool_name].model_copy()

    # ── Contracts ──

    def check_contract(self, action: ActionRequest) -> ContractCheckResult:
        return self.contracts.check_pre(action.tool_name, action.risk_level, action.arguments)

    # ── Audit ──

    def log_execution(
        self,
        action: ActionRequest,
        success: bool,
        duration_ms: int,
        task_id: str | None = None,
    ) -> None:
        self.contracts.record_execution(action.risk_level)
        self.record_behavioral_outcome(action.tool_name, action.risk_level, success)
        self.audit.append(AuditEntry(
            event_type="execution",
            tool_name=action.tool_name,
            risk_level=action.risk_level,
            task_id=task_id,
            success=success,
            duration_ms=duration_ms,
            details={"description": action.description},
        ))

    def log_approval_decision(
        self,
        action: ActionRequest,
        decision: ApprovalDecision,
        task_id: str | None = None,
    ) -> None:
        stats = self._trust[action.tool_name]
        if decision == ApprovalDecision.DENY:
            stats.denials += 1
            self.fingerprint.denials += 1
        else:
            stats.approvals += 1
            self.fingerprint.approvals += 1
        self.audit.append(AuditEntry(
            event_type="approval_decision",
            tool_name=action.tool_name,
            risk_level=action.risk_level,
            task_id=task_id,
            details={"decision": decision.value},
        ))

    def record_behavioral_outcome(self, tool_name: str, risk_level: RiskLevel, success: bool) -> None:
        stats = self._trust[tool_name]
        stats.executions += 1
        fp = self.fingerprint
        fp.total_actions += 1
        if risk_level >= RiskLevel.EXECUTE:
            fp.high_risk_actions += 1
        if success:
            fp.consecutive_errors = 0
        else:
            stats.errors += 1
            fp.consecutive_errors += 1

    def verify_audit(self) -> tuple[bool, str]:
        return self.audit.verify_integrity()


def _scannable_text(details: ActionDetails) -> str:
    if isinstance(details, ShellCommandAction):
        return details.command
    if isinstance(details, FileWriteAction):
        return details.path
    if isinstance(details, NetworkRequestAction):
        return details.host
    if isinstance(details, BrowserAction):
        return details.url or ""
    if isinstance(details, OtherAction):
        return details.info
    return ""
