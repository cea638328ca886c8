"""
Working-tree diff collection and noise filtering.
"""

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import List, Sequence

from ..exceptions import GitOperationError
from ..git import GitOperations
from .chunker import split_file_segments

logger = logging.getLogger(__name__)


@dataclass
class CollectedDiff:
    """What the collector found in the working tree."""
    has_changes: bool
    full_diff: str = ""
    filtered_diff: str = ""
    has_code_changes: bool = False
    has_doc_changes: bool = False
    code_files: List[str] = field(default_factory=list)
    doc_files: List[str] = field(default_factory=list)

    @property
    def doc_only(self) -> bool:
        return self.has_doc_changes and not self.has_code_changes

    @classmethod
    def empty(cls) -> 'CollectedDiff':
        return cls(has_changes=False)


@dataclass
class FilterResult:
    filtered_diff: str
    code_files: List[str]
    doc_files: List[str]


class DiffFilter:
    """Removes documentation, log and generated files from a diff."""

    def __init__(self, noise_patterns: Sequence[str]):
        self.noise_patterns = tuple(noise_patterns)

    def is_noise(self, path: str) -> bool:
        """Check a repository-relative path against the noise patterns."""
        return any(fnmatchcase(path, pattern) for pattern in self.noise_patterns)

    def filter(self, diff: str) -> FilterResult:
        """
        Drop noise file segments from a diff.

        Segments whose path cannot be parsed are kept: they are reviewed as code.
        """
        kept: List[str] = []
        code_files: List[str] = []
        doc_files: List[str] = []

        for segment in split_file_segments(diff):
            if segment.path and self.is_noise(segment.path):
                doc_files.append(segment.path)
                logger.debug(f"Filtering out file from review: {segment.path}")
                continue

            kept.append(segment.text)
            if segment.path:
                code_files.append(segment.path)

        return FilterResult(filtered_diff=''.join(kept), code_files=code_files, doc_files=doc_files)


class DiffCollector:
    """Reads the working tree without modifying it."""

    def __init__(self, git_ops: GitOperations, diff_filter: DiffFilter):
        self.git_ops = git_ops
        self.diff_filter = diff_filter

    def collect(self) -> CollectedDiff:
        """
        Collect the filtered diff of all uncommitted work.

        Returns:
            CollectedDiff; `has_changes` is False for a clean tree

        Raises:
            GitOperationError: If status or the tracked diff cannot be read
        """
        changes = self.git_ops.get_status()
        if not changes:
            logger.info("Working tree is clean")
            return CollectedDiff.empty()

        parts = [self.git_ops.get_diff()]
        for change in changes:
            if not change.is_untracked:
                continue
            try:
                parts.append(self.git_ops.get_untracked_diff(change.path))
            except GitOperationError as e:
                logger.warning(f"Could not diff untracked file {change.path}: {e}")

        full_diff = ''
        for part in parts:
            if not part:
                continue
            if full_diff and not full_diff.endswith('\n'):
                full_diff += '\n'
            full_diff += part

        result = self.diff_filter.filter(full_diff)

        # Classification is by changed path, so paths git shows no diff for still count
        doc_files = [c.path for c in changes if self.diff_filter.is_noise(c.path)]
        code_files = [c.path for c in changes if not self.diff_filter.is_noise(c.path)]

        collected = CollectedDiff(
            has_changes=True,
            full_diff=full_diff,
            filtered_diff=result.filtered_diff,
            has_code_changes=bool(code_files),
            has_doc_changes=bool(doc_files),
            code_files=code_files,
            doc_files=doc_files,
        )

        logger.debug(
            f"Diff filtering: full {len(full_diff)} chars, filtered {len(result.filtered_diff)} chars, "
            f"{len(code_files)} code files, {len(doc_files)} doc files"
        )
        return collected
