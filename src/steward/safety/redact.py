"""
Steward Output Redaction

Replaces secrets with ``[REDACTED:<KIND>]`` markers before tool output is
stored in long-term memory. The original values are never kept.
"""

from __future__ import annotations

import re

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"AKIA[0-9A-Z]{16}"), "AWS_ACCESS_KEY"),
    (re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,}"), "GITHUB_TOKEN"),
    (
        re.compile(r"""(?i)(api[_-]?key|apikey|api[_-]?secret)\s*[:=]\s*["']?[A-Za-z0-9\-_]{20,}["']?"""),
        "API_KEY",
    ),
    (re.compile(r"-----BEGIN\s+(RSA|EC|OPENSSH|DSA|PGP)\s+PRIVATE\s+KEY-----"), "PRIVATE_KEY"),
    (re.compile(r"sk_live_[a-zA-Z0-9]{24,}"), "STRIPE_SECRET"),
    (re.compile(r"eyJ[A-Za-z0-9\-_]{10,}\.eyJ[A-Za-z0-9\-_]{10,}\.[A-Za-z0-9\-_.]{10,}"), "JWT_TOKEN"),
    (re.compile(r"xox[bpors]-[0-9A-Za-z\-]{10,}"), "SLACK_TOKEN"),
    (re.compile(r"sk-ant-[A-Za-z0-9\-_]{40,}"), "ANTHROPIC_API_KEY"),
    (re.compile(r"(?i)(bearer|token)\s+[A-Za-z0-9\-_.]{20,}"), "BEARER_TOKEN"),
    (re.compile(r"""(?i)(password|passwd|pwd)\s*[:=]\s*["']?[^\s"']{8,}["']?"""), "PASSWORD"),
    (re.compile(r"(?i)(?:postgres|mysql|mongodb)://[^\s]{10,}"), "DATABASE_URL"),
]


def redact(text: str) -> str:
    """Return ``text`` with every recognized secret replaced by a marker."""
    for pattern, kind in _PATTERNS:
        text = pattern.sub(f"[REDACTED:{kind}]", text)
    return text
