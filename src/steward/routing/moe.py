"""
Steward Mixture-of-Experts Router

Routes a task to up to three expert profiles. Each expert owns a set of
domain tools, a prompt addendum and a list of system-prompt keywords it
does not need. A small set of shared tools is always sent.

Scoring:
- keyword affinity: matched keywords / total keywords, minus 0.3 per
  negative keyword hit, clamped to [0, 1];
- the expert picked by the task classification gets +0.5 (capped at 1)
  when its own score is below 0.5;
- experts above the activation threshold are ranked and the top-K kept.

Tools of the primary expert get Full precision, the second expert's get
Half and the rest Quarter. A token budget then trims or downgrades the
routed tools. Routes are cached by the normalized task text.
"""

from __future__ import annotations

from collections import OrderedDict
from enum import Enum

from pydantic import BaseModel, Field

from steward.config import MoeConfig
from steward.core.classification import ClassificationKind, TaskClassification, classify
from steward.logging import get_logger

logger = get_logger("steward.routing.moe")

CACHE_KEY_CHARS = 100
CLASSIFICATION_BOOST = 0.5
NEGATIVE_KEYWORD_PENALTY = 0.3


class ToolPrecision(str, Enum):
    FULL = "full"
    HALF = "half"
    QUARTER = "quarter"

    @property
    def estimated_tokens(self) -> int:
        return {"full": 400, "half": 200, "quarter": 100}[self.value]


SHARED_TOOLS = [
    "ask_user",
    "echo",
    "datetime",
    "calculator",
    "web_search",
    "file_read",
    "file_write",
    "shell_exec",
]


class ExpertId(str, Enum):
    FILE_OPS = "file_ops"
    GIT = "git"
    WEB_BROWSE = "web_browse"
    DEV_TOOLS = "dev_tools"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    SEC_SCAN = "sec_scan"
    SEC_REVIEW = "sec_review"
    SRE = "sre"
    ML_TRAIN = "ml_train"
    RESEARCH = "research"


class ExpertProfile(BaseModel):
    id: ExpertId
    display_name: str
    domain_tools: list[str]
    keywords: list[str]
    negative_keywords: list[str] = Field(default_factory=list)
    prompt_addendum: str
    prompt_exclusions: list[str] = Field(default_factory=list)


_MACOS_EXCLUSIONS = ["AppleScript", "macOS", "HomeKit", "Photos.app", "Siri", "iMessage"]
_ML_EXCLUSIONS = ["LoRA", "quantiz", "finetun"]
_GENERIC_EXCLUSIONS = ["HomeKit", "Photos.app", "Siri", "LoRA", "quantiz"]

EXPERTS: dict[ExpertId, ExpertProfile] = {p.id: p for p in [
    ExpertProfile(
        id=ExpertId.FILE_OPS,
        display_name="File Operations",
        domain_tools=["file_list", "file_search", "file_patch", "smart_edit", "file_delete", "document_read"],
        keywords=["file", "read", "write", "create", "delete", "list", "search", "directory",
                  "folder", "path", "move", "rename", "organize", "document"],
        negative_keywords=["train", "deploy", "scan vulnerability"],
        prompt_addendum=(
            "You are specialized in file operations: reading, writing, searching, patching "
            "and organizing files. Focus on precise file manipulation."
        ),
        prompt_exclusions=_GENERIC_EXCLUSIONS,
    ),
    ExpertProfile(
        id=ExpertId.GIT,
        display_name="Git & Code",
        domain_tools=["git_status", "git_diff", "git_commit", "codebase_search"],
        keywords=["git", "commit", "diff", "branch", "merge", "push", "pull", "status", "log",
                  "stash", "rebase", "codebase"],
        negative_keywords=["calendar", "music", "train model"],
        prompt_addendum=(
            "You are specialized in git version control: status, diff, commit and codebase "
            "search. Focus on efficient version-control operations."
        ),
        prompt_exclusions=_GENERIC_EXCLUSIONS,
    ),
    ExpertProfile(
        id=ExpertId.WEB_BROWSE,
        display_name="Web & Browser",
        domain_tools=["web_fetch", "http_api", "browser_navigate", "browser_click",
                      "browser_type", "browser_screenshot"],
        keywords=["browser", "web", "fetch", "http", "url", "navigate", "webpage", "download", "api"],
        negative_keywords=["calendar", "reminder", "train model"],
        prompt_addendum=(
            "You are specialized in web interaction: browser automation, HTTP APIs and "
            "web content fetching."
        ),
        prompt_exclusions=["HomeKit", "Photos.app"],
    ),
    ExpertProfile(
        id=ExpertId.DEV_TOOLS,
        display_name="Development",
        domain_tools=["test_runner", "lint", "scaffold", "database", "git_status", "git_diff",
                      "codebase_search", "smart_edit"],
        keywords=["test", "lint", "build", "compile", "framework", "project", "code review",
                  "refactor", "database", "scaffold"],
        negative_keywords=["calendar", "music", "train model"],
        prompt_addendum=(
            "You are specialized in software development: testing, linting, building and "
            "refactoring. Verify changes with the project's own tooling."
        ),
        prompt_exclusions=_GENERIC_EXCLUSIONS,
    ),
    ExpertProfile(
        id=ExpertId.COMMUNICATION,
        display_name="Communication",
        domain_tools=["send_message", "channel_reply", "slack", "email_read"],
        keywords=["message", "slack", "email", "chat", "send", "reply", "inbox", "sms"],
        negative_keywords=["file", "git", "train", "scan"],
        prompt_addendum=(
            "You are specialized in messaging: drafting, sending and triaging messages "
            "across channels. Always show the draft before sending."
        ),
        prompt_exclusions=["kubernetes", "prometheus", "terraform", *_ML_EXCLUSIONS, "SAST", "SBOM"],
    ),
    ExpertProfile(
        id=ExpertId.PRODUCTIVITY,
        display_name="Productivity",
        domain_tools=["calendar", "reminders", "notes", "schedule_task", "knowledge_graph"],
        keywords=["calendar", "meeting", "schedule", "reminder", "todo", "note", "event",
                  "plan my", "productivity"],
        negative_keywords=["scan vulnerability", "kubernetes", "train model"],
        prompt_addendum=(
            "You are specialized in personal productivity: calendars, reminders, notes and "
            "scheduled tasks."
        ),
        prompt_exclusions=["kubernetes", "prometheus", "terraform", *_ML_EXCLUSIONS],
    ),
    ExpertProfile(
        id=ExpertId.SEC_SCAN,
        display_name="Security Scan",
        domain_tools=["sast_scan", "sca_scan", "secrets_scan", "container_scan", "iac_scan",
                      "vulnerability_check"],
        keywords=["sast", "secret", "vulnerability", "scan", "supply chain", "container",
                  "dockerfile", "cve", "security"],
        negative_keywords=["calendar", "music", "train model", "rag"],
        prompt_addendum=(
            "You are specialized in security scanning: static analysis, dependency analysis, "
            "secrets detection, container and infrastructure scanning."
        ),
        prompt_exclusions=[*_MACOS_EXCLUSIONS, *_ML_EXCLUSIONS, "RAG", "embedding"],
    ),
    ExpertProfile(
        id=ExpertId.SEC_REVIEW,
        display_name="Security Review",
        domain_tools=["code_review", "analyze_diff", "quality_score", "complexity_check",
                      "dead_code_detect", "suggest_fix"],
        keywords=["review", "quality", "complexity", "dead code", "duplicate", "tech debt",
                  "audit", "compliance", "license"],
        negative_keywords=["calendar", "music", "train model", "rag"],
        prompt_addendum=(
            "You are specialized in code quality and security review: diff analysis, "
            "complexity, dead code and automated fix suggestions."
        ),
        prompt_exclusions=[*_MACOS_EXCLUSIONS, *_ML_EXCLUSIONS, "RAG", "embedding"],
    ),
    ExpertProfile(
        id=ExpertId.SRE,
        display_name="SRE/DevOps",
        domain_tools=["system_monitor", "alert_manager", "deployment_intel", "kubernetes",
                      "prometheus", "log_analyze"],
        keywords=["deploy", "kubernetes", "k8s", "prometheus", "alert", "incident", "oncall",
                  "uptime", "monitor", "cpu", "latency"],
        negative_keywords=["calendar", "music", "train model", "rag"],
        prompt_addendum=(
            "You are specialized in Site Reliability Engineering: alerts, deployments, "
            "monitoring, Kubernetes operations and incident response."
        ),
        prompt_exclusions=[*_MACOS_EXCLUSIONS, *_ML_EXCLUSIONS],
    ),
    ExpertProfile(
        id=ExpertId.ML_TRAIN,
        display_name="ML Engineering",
        domain_tools=["ml_train", "ml_experiment", "ml_metrics", "ml_finetune", "ml_dataset_prep",
                      "inference_serve"],
        keywords=["train", "model", "fine-tune", "finetune", "dataset", "epoch", "checkpoint",
                  "inference", "embedding", "lora"],
        negative_keywords=["calendar", "music", "kubernetes", "compliance"],
        prompt_addendum=(
            "You are specialized in machine learning engineering: experiments, fine-tuning, "
            "dataset preparation, evaluation metrics and model serving."
        ),
        prompt_exclusions=[*_MACOS_EXCLUSIONS, "Calendar", "Reminders"],
    ),
    ExpertProfile(
        id=ExpertId.RESEARCH,
        display_name="Deep Research",
        domain_tools=["web_fetch", "http_api", "arxiv_research", "document_read", "knowledge_graph"],
        keywords=["research", "paper", "arxiv", "literature", "survey", "compare", "sources",
                  "investigate"],
        negative_keywords=["calendar", "music", "kubernetes", "deploy"],
        prompt_addendum=(
            "You are specialized in deep research: decomposing questions, gathering "
            "information from multiple sources and synthesizing findings. Always cite sources."
        ),
        prompt_exclusions=["HomeKit", "Photos.app"],
    ),
]}

_CLASSIFICATION_EXPERTS = {
    ClassificationKind.GENERAL: ExpertId.FILE_OPS,
    ClassificationKind.FILE_OPERATION: ExpertId.FILE_OPS,
    ClassificationKind.SEARCH: ExpertId.FILE_OPS,
    ClassificationKind.GIT_OPERATION: ExpertId.GIT,
    ClassificationKind.CODE_ANALYSIS: ExpertId.DEV_TOOLS,
    ClassificationKind.WEB_SEARCH: ExpertId.WEB_BROWSE,
    ClassificationKind.WEB_FETCH: ExpertId.WEB_BROWSE,
    ClassificationKind.BROWSER: ExpertId.WEB_BROWSE,
    ClassificationKind.MESSAGING: ExpertId.COMMUNICATION,
    ClassificationKind.CALENDAR: ExpertId.PRODUCTIVITY,
    ClassificationKind.SYSTEM_MONITOR: ExpertId.SRE,
    ClassificationKind.DEEP_RESEARCH: ExpertId.RESEARCH,
}

_WORKFLOW_EXPERTS = {
    "security_scan": ExpertId.SEC_SCAN,
    "dependency_audit": ExpertId.SEC_SCAN,
    "compliance_audit": ExpertId.SEC_REVIEW,
    "code_review": ExpertId.SEC_REVIEW,
    "pr_review": ExpertId.SEC_REVIEW,
    "deployment": ExpertId.SRE,
    "incident_response": ExpertId.SRE,
    "refactor": ExpertId.DEV_TOOLS,
    "test_generation": ExpertId.DEV_TOOLS,
    "documentation": ExpertId.DEV_TOOLS,
    "dependency_update": ExpertId.DEV_TOOLS,
    "changelog": ExpertId.GIT,
    "ml_training": ExpertId.ML_TRAIN,
}


def expert_for_classification(classification: TaskClassification) -> ExpertId:
    if classification.kind == ClassificationKind.WORKFLOW:
        return _WORKFLOW_EXPERTS.get(classification.workflow or "", ExpertId.FILE_OPS)
    return _CLASSIFICATION_EXPERTS.get(classification.kind, ExpertId.FILE_OPS)


def keyword_affinity(lower_task: str, expert: ExpertProfile) -> float:
    if not expert.keywords:
        return 0.0
    matched = sum(1 for kw in expert.keywords if kw in lower_task)
    negated = sum(1 for kw in expert.negative_keywords if kw in lower_task)
    score = matched / len(expert.keywords) - negated * NEGATIVE_KEYWORD_PENALTY
    return max(0.0, min(score, 1.0))


def strip_irrelevant_sections(prompt: str, exclusions: list[str]) -> str:
    """Drop prompt lines mentioning an excluded keyword.

    Blank lines, headings, separators and table rows are always kept.
    """
    if not exclusions:
        return prompt
    lowered = [e.lower() for e in exclusions]
    kept = []
    for line in prompt.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith(("#", "---", "| ")):
            kept.append(line)
            continue
        if not any(e in trimmed.lower() for e in lowered):
            kept.append(line)
    return "\n".join(kept)


class RouteResult(BaseModel):
    selected_experts: list[tuple[ExpertId, float]]
    shared_tools: list[str]
    routed_tools: dict[str, ToolPrecision]
    system_prompt_addendum: str
    routing_reasoning: str
    cache_hit: bool
    total_tool_tokens: int
    classification: TaskClassification | None = None

    @property
    def primary_expert(self) -> ExpertId:
        return self.selected_experts[0][0] if self.selected_experts else ExpertId.FILE_OPS

    @property
    def confidence(self) -> float:
        return self.selected_experts[0][1] if self.selected_experts else 0.0

    def all_tool_names(self) -> list[str]:
        names = list(self.shared_tools)
        names.extend(n for n in self.routed_tools if n not in names)
        return names

    def precision_hints(self) -> dict[str, str]:
        hints = {name: ToolPrecision.FULL.value for name in self.shared_tools}
        hints.update({name: p.value for name, p in self.routed_tools.items()})
        return hints

    def prompt_exclusions(self) -> list[str]:
        # Only keywords every selected expert agrees to drop
        sets = [set(EXPERTS[e].prompt_exclusions) for e, _ in self.selected_experts]
        return sorted(set.intersection(*sets)) if sets else []


class RouterStats(BaseModel):
    total_routed: int = 0
    cache_hits: int = 0
    multi_expert_routes: int = 0
    expert_hits: dict[str, int] = Field(default_factory=dict)


class _CachedRoute(BaseModel):
    classification: TaskClassification | None
    selected: list[tuple[ExpertId, float]]


class MoeRouter:
    def __init__(self, config: MoeConfig | None = None):
        self.config = config or MoeConfig()
        self.stats = RouterStats()
        self._cache: OrderedDict[str, _CachedRoute] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def route(self, task: str, classification: TaskClassification | None = None) -> RouteResult:
        key = task.lower()[:CACHE_KEY_CHARS]
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            selected, classification, cache_hit = cached.selected, cached.classification, True
        else:
            if classification is None:
                classification = classify(task)
            heuristic = expert_for_classification(classification or TaskClassification.general())
            selected = self._score_and_select(task.lower(), heuristic)
            self._cache[key] = _CachedRoute(classification=classification, selected=selected)
            if len(self._cache) > self.config.cache_size:
                self._cache.popitem(last=False)
            cache_hit = False

        routed: dict[str, ToolPrecision] = {}
        seen = set(SHARED_TOOLS)
        for rank, (expert_id, _score) in enumerate(selected):
            precision = (ToolPrecision.FULL, ToolPrecision.HALF)[rank] if rank < 2 else ToolPrecision.QUARTER
            for tool in EXPERTS[expert_id].domain_tools:
                if tool not in seen:
                    seen.add(tool)
                    routed[tool] = precision

        shared_tokens = len(SHARED_TOOLS) * ToolPrecision.FULL.estimated_tokens
        remaining = max(self.config.max_tool_tokens - shared_tokens, 0)
        budgeted: dict[str, ToolPrecision] = {}
        for tool, precision in routed.items():
            if remaining >= precision.estimated_tokens:
                remaining -= precision.estimated_tokens
                budgeted[tool] = precision
            elif remaining >= ToolPrecision.QUARTER.estimated_tokens:
                remaining -= ToolPrecision.QUARTER.estimated_tokens
                budgeted[tool] = ToolPrecision.QUARTER

        total_tokens = shared_tokens + sum(p.estimated_tokens for p in budgeted.values())

        addenda = []
        for expert_id, _ in selected:
            addenda.append(EXPERTS[expert_id].prompt_addendum)
            if extra := self.config.extra_prompts.get(expert_id.value):
                addenda.append(extra)

        chosen = ", ".join(f"{EXPERTS[e].display_name}({s:.2f})" for e, s in selected)
        reasoning = (
            f"Scored {len(EXPERTS)} experts; selected Top-{len(selected)}: {chosen}. "
            f"Classification: {classification}. {len(SHARED_TOOLS)} shared + {len(budgeted)} "
            f"routed tools (~{total_tokens} tokens). Cache {'hit' if cache_hit else 'miss'}."
        )

        self.stats.total_routed += 1
        if cache_hit:
            self.stats.cache_hits += 1
        if len(selected) > 1:
            self.stats.multi_expert_routes += 1
        for expert_id, _ in selected:
            self.stats.expert_hits[expert_id.value] = self.stats.expert_hits.get(expert_id.value, 0) + 1

        logger.debug(reasoning, extra={"event_type": "moe_route"})
        return RouteResult(
            selected_experts=selected,
            shared_tools=list(SHARED_TOOLS),
            routed_tools=budgeted,
            system_prompt_addendum="\n\n".join(addenda),
            routing_reasoning=reasoning,
            cache_hit=cache_hit,
            total_tool_tokens=total_tokens,
            classification=classification,
        )

    def _score_and_select(self, lower_task: str, heuristic: ExpertId) -> list[tuple[ExpertId, float]]:
        scored = []
        for expert_id, expert in EXPERTS.items():
            score = keyword_affinity(lower_task, expert)
            if expert_id == heuristic and score < CLASSIFICATION_BOOST:
                score = min(score + CLASSIFICATION_BOOST, 1.0)
            if score > self.config.activation_threshold:
                scored.append((expert_id, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        selected = scored[: self.config.max_experts_per_route]
        return selected or [(heuristic, 1.0)]

    def clear_cache(self) -> None:
        self._cache.clear()
