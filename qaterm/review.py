"""Project review: collect a directory's text files into one review request."""

import os
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from .guard import is_path_ignored, load_ignore_patterns

MAX_REVIEW_FILES = 200
MAX_FILE_CHARS = 2000
MAX_FILE_BYTES = 1024 * 1024

REVIEW_REQUEST = (
    "Please review the codebase in {root} and provide a comprehensive analysis."
)


@dataclass
class DirectoryAnalysis:
    root: Path
    files: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    skipped: int = 0
    truncated: bool = False

    def summary(self) -> str:
        """File counts per extension, largest group first."""
        counts = Counter(Path(rel).suffix.lower() or "(none)" for rel in self.files)
        return ", ".join(f"{ext}: {n}" for ext, n in counts.most_common())


def analyze_directory(root, *, max_files: int = MAX_REVIEW_FILES) -> DirectoryAnalysis:
    """Walk root, reading UTF-8 text files not hidden by .aiignore.

    Ignored directories are pruned during the walk. Binary and oversized
    files are counted as skipped; unreadable ones are recorded as errors.
    """
    root = Path(root).resolve()
    patterns = load_ignore_patterns(root)
    analysis = DirectoryAnalysis(root)

    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(
            d for d in dirs if not is_path_ignored(Path(dirpath) / d, patterns, root)
        )
        for filename in sorted(files):
            filepath = Path(dirpath) / filename
            if is_path_ignored(filepath, patterns, root):
                continue
            if len(analysis.files) >= max_files:
                analysis.truncated = True
                return analysis
            rel = filepath.relative_to(root).as_posix()
            try:
                if filepath.stat().st_size > MAX_FILE_BYTES:
                    analysis.skipped += 1
                    continue
                analysis.files[rel] = filepath.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                analysis.skipped += 1
            except OSError as e:
                analysis.errors.append(f"{rel}: {e.strerror or e}")
    return analysis


def build_review_prompt(analysis: DirectoryAnalysis) -> str:
    """Render the analysis as a single user message ending with the request."""
    lines = [
        f"Directory analysis results for {analysis.root}:",
        f"1. Total files analyzed: {len(analysis.files)}",
        f"2. File types: {analysis.summary() or 'none'}",
        f"3. Files skipped (binary or too large): {analysis.skipped}",
        f"4. Errors encountered: {len(analysis.errors)}",
    ]
    if analysis.truncated:
        lines.append(f"Only the first {len(analysis.files)} files were collected.")

    groups: dict[str, list[str]] = {}
    for rel in analysis.files:
        category = Path(rel).suffix.lower().lstrip(".") or "other"
        groups.setdefault(category, []).append(rel)

    for category, rels in groups.items():
        lines.append("")
        lines.append(f"{category.upper()} FILES ({len(rels)}):")
        for rel in rels:
            content = analysis.files[rel]
            lines.append(f"File: {rel}")
            lines.append(content[:MAX_FILE_CHARS])
            if len(content) > MAX_FILE_CHARS:
                lines.append("... (truncated)")
            lines.append("---")

    lines.append("")
    lines.append(REVIEW_REQUEST.format(root=analysis.root))
    return "\n".join(lines)
