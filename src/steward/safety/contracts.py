"""
Steward Safety Contracts

Formal constraints evaluated before every tool execution:

- Invariants: predicates that must hold for every call.
- Pre-conditions: per-tool predicates.
- Resource bounds: session limits on total calls, destructive calls and
  spend. A bound of zero is unlimited.

Contracts are declarative so they can be loaded from configuration; the
predicate set is closed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from steward.core.models import RiskLevel


class PredicateKind(str, Enum):
    TOOL_NAME_IS = "tool_name_is"
    TOOL_NAME_IS_NOT = "tool_name_is_not"
    MAX_RISK_LEVEL = "max_risk_level"
    ARGUMENT_CONTAINS_KEY = "argument_contains_key"
    ARGUMENT_NOT_CONTAINS_KEY = "argument_not_contains_key"
    ALWAYS_TRUE = "always_true"
    ALWAYS_FALSE = "always_false"


class Predicate(BaseModel):
    """A boolean test over (tool name, risk level, arguments)."""
    kind: PredicateKind
    value: str | None = None

    @classmethod
    def tool_name_is(cls, name: str) -> Predicate:
        return cls(kind=PredicateKind.TOOL_NAME_IS, value=name)

    @classmethod
    def tool_name_is_not(cls, name: str) -> Predicate:
        return cls(kind=PredicateKind.TOOL_NAME_IS_NOT, value=name)

    @classmethod
    def max_risk_level(cls, level: RiskLevel) -> Predicate:
        return cls(kind=PredicateKind.MAX_RISK_LEVEL, value=level.value)

    @classmethod
    def argument_contains_key(cls, key: str) -> Predicate:
        return cls(kind=PredicateKind.ARGUMENT_CONTAINS_KEY, value=key)

    @classmethod
    def argument_not_contains_key(cls, key: str) -> Predicate:
        return cls(kind=PredicateKind.ARGUMENT_NOT_CONTAINS_KEY, value=key)

    @classmethod
    def always_true(cls) -> Predicate:
        return cls(kind=PredicateKind.ALWAYS_TRUE)

    @classmethod
    def always_false(cls) -> Predicate:
        return cls(kind=PredicateKind.ALWAYS_FALSE)

    def evaluate(self, tool_name: str, risk_level: RiskLevel, arguments: dict[str, Any]) -> bool:
        kind = self.kind
        if kind == PredicateKind.TOOL_NAME_IS:
            return tool_name == self.value
        if kind == PredicateKind.TOOL_NAME_IS_NOT:
            return tool_name != self.value
        if kind == PredicateKind.MAX_RISK_LEVEL:
            return risk_level <= RiskLevel(self.value)
        if kind == PredicateKind.ARGUMENT_CONTAINS_KEY:
            return isinstance(arguments, dict) and self.value in arguments
        if kind == PredicateKind.ARGUMENT_NOT_CONTAINS_KEY:
            return isinstance(arguments, dict) and self.value not in arguments
        return kind == PredicateKind.ALWAYS_TRUE

    def describe(self) -> str:
        if self.value is None:
            return self.kind.value
        return f"{self.kind.value}({self.value})"


class Invariant(BaseModel):
    description: str
    predicate: Predicate


class ResourceBounds(BaseModel):
    max_tool_calls: int = 0
    max_destructive_calls: int = 0
    max_cost_usd: float = 0.0


class SafetyContract(BaseModel):
    name: str = ""
    invariants: list[Invariant] = Field(default_factory=list)
    pre_conditions: dict[str, list[Predicate]] = Field(default_factory=dict)
    resource_bounds: ResourceBounds = Field(default_factory=ResourceBounds)


class ViolationKind(str, Enum):
    INVARIANT = "invariant_violation"
    PRE_CONDITION = "pre_condition_violation"
    RESOURCE_BOUND = "resource_bound_exceeded"


class ContractCheckResult(BaseModel):
    """``violation`` is None when the contract is satisfied."""
    violation: ViolationKind | None = None
    detail: str = ""

    @property
    def satisfied(self) -> bool:
        return self.violation is None

    def describe(self) -> str:
        if self.violation is None:
            return "satisfied"
        return f"{self.violation.value}: {self.detail}"


class ContractEnforcer:
    """Tracks session resource usage and evaluates an optional contract."""

    def __init__(self, contract: SafetyContract | None = None):
        self.contract = contract
        self.total_tool_calls = 0
        self.destructive_calls = 0
        self.total_cost = 0.0
        self.violations: list[ContractCheckResult] = []

    @property
    def has_contract(self) -> bool:
        return self.contract is not None

    def _violate(self, kind: ViolationKind, detail: str) -> ContractCheckResult:
        result = ContractCheckResult(violation=kind, detail=detail)
        self.violations.append(result)
        return result

    def check_pre(
        self, tool_name: str, risk_level: RiskLevel, arguments: dict[str, Any]
    ) -> ContractCheckResult:
        """Resource bounds, then invariants, then per-tool pre-conditions."""
        contract = self.contract
        if contract is None:
            return ContractCheckResult()

        bounds = contract.resource_bounds
        if bounds.max_tool_calls > 0 and self.total_tool_calls >= bounds.max_tool_calls:
            return self._violate(
                ViolationKind.RESOURCE_BOUND, f"Max tool calls ({bounds.max_tool_calls}) exceeded"
            )
        if (
            bounds.max_destructive_calls > 0
            and risk_level == RiskLevel.DESTRUCTIVE
            and self.destructive_calls >= bounds.max_destructive_calls
        ):
            return self._violate(
                ViolationKind.RESOURCE_BOUND,
                f"Max destructive calls ({bounds.max_destructive_calls}) exceeded",
            )

        for invariant in contract.invariants:
            if not invariant.predicate.evaluate(tool_name, risk_level, arguments):
                return self._violate(ViolationKind.INVARIANT, invariant.description)

        for condition in contract.pre_conditions.get(tool_name, []):
            if not condition.evaluate(tool_name, risk_level, arguments):
                return self._violate(
                    ViolationKind.PRE_CONDITION, f"{tool_name}: {condition.describe()}"
                )

        return ContractCheckResult()

    def record_execution(self, risk_level: RiskLevel, cost: float = 0.0) -> None:
        self.total_tool_calls += 1
        if risk_level == RiskLevel.DESTRUCTIVE:
            self.destructive_calls += 1
        self.total_cost += cost

    def check_cost_bound(self) -> ContractCheckResult:
        if self.contract is None:
            return ContractCheckResult()
        limit = self.contract.resource_bounds.max_cost_usd
        if limit > 0 and self.total_cost > limit:
            return ContractCheckResult(
                violation=ViolationKind.RESOURCE_BOUND,
                detail=f"Max cost ${limit:.4f} exceeded (current: ${self.total_cost:.4f})",
            )
        return ContractCheckResult()
