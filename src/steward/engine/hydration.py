"""
Steward Context Hydration

Scans the workspace for files relevant to the task and renders the best
matches as a "## Relevant Repository Context" block appended to the
system prompt.

Relevance is keyword scoring: task words found in a file's path weigh
more than occurrences in its content. The scan is bounded by file count,
file size and total characters.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel

from steward.config import HydrationConfig
from steward.logging import get_logger

logger = get_logger("steward.hydration")

SKIP_DIRS = frozenset({
    ".git", "node_modules", "__pycache__", ".venv", "venv", "target", "dist", "build",
    ".mypy_cache", ".pytest_cache", ".ruff_cache",
})
STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "please", "can", "you",
    "what", "how", "why", "are", "all", "any", "file", "files", "code", "make", "some",
})
MAX_FILE_BYTES = 256_000
MAX_SCANNED_FILES = 2_000
PATH_WEIGHT = 5
SNIPPET_RADIUS = 10

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{2,}")


class ScoredFile(BaseModel):
    path: str
    score: int
    first_hit_line: int = 0


def extract_keywords(task: str) -> list[str]:
    seen: list[str] = []
    for word in _WORD_RE.findall(task.lower()):
        if word not in STOPWORDS and word not in seen:
            seen.append(word)
    return seen


class ContextHydrator:
    def __init__(self, config: HydrationConfig | None = None):
        self.config = config or HydrationConfig()

    def _candidates(self, root: Path) -> list[Path]:
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS and not d.startswith("."))
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if path.suffix in self.config.include_extensions:
                    found.append(path)
                    if len(found) >= MAX_SCANNED_FILES:
                        return found
        return found

    def score_files(self, task: str) -> list[ScoredFile]:
        keywords = extract_keywords(task)
        if not keywords:
            return []
        root = Path(self.config.root)
        scored: list[ScoredFile] = []
        for path in self._candidates(root):
            rel = str(path.relative_to(root)).lower()
            score = sum(PATH_WEIGHT for k in keywords if k in rel)
            first_hit = 0
            try:
                if path.stat().st_size <= MAX_FILE_BYTES:
                    lines = path.read_text(encoding="utf-8", errors="ignore").lower().splitlines()
                    for number, line in enumerate(lines, start=1):
                        hits = sum(line.count(k) for k in keywords)
                        if hits and not first_hit:
                            first_hit = number
                        score += hits
            except OSError as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
                continue
            if score > 0:
                scored.append(ScoredFile(path=str(path.relative_to(root)), score=score, first_hit_line=first_hit))
        scored.sort(key=lambda s: (-s.score, s.path))
        return scored[: self.config.max_files]

    def hydrate(self, task: str) -> str:
        """Context block for the system prompt, or empty when nothing matched."""
        if not self.config.enabled:
            return ""
        files = self.score_files(task)
        if not files:
            return ""

        root = Path(self.config.root)
        parts = ["\n\n## Relevant Repository Context\n"]
        budget = self.config.max_chars
        for scored in files:
            lines = (root / scored.path).read_text(encoding="utf-8", errors="replace").splitlines()
            start = max(scored.first_hit_line - 1 - SNIPPET_RADIUS, 0)
            snippet = "\n".join(lines[start:start + 2 * SNIPPET_RADIUS])
            block = f"### {scored.path} (L{start + 1})\n```\n{snippet}\n```\n"
            if len(block) > budget:
                break
            parts.append(block)
            budget -= len(block)

        if len(parts) == 1:
            return ""
        logger.info(
            f"Hydrated context with {len(parts) - 1} files",
            extra={"event_type": "hydration"},
        )
        return "".join(parts)
