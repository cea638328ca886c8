"""
Commit orchestration: the only stage that writes to the repository.

Each run performs at most one stage -> commit -> (push) sequence. History is
never rewritten: no amend, no force push.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..ai import ClassificationOracle
from ..config import CommitConfig
from ..diff import CollectedDiff
from ..exceptions import GitOperationError, ValidationError
from ..git import GitOperations
from ..security import InputValidator, redact_sensitive
from ..tasks import TaskContext
from ..utils import Deadline
from .classification import ReviewVerdict

logger = logging.getLogger(__name__)

CONVENTIONAL_COMMIT_PATTERN = re.compile(r'^(feat|fix|docs|style|refactor|test|chore|build|ci|perf)(\([^)]+\))?:')

PUSH_FAILED_WARNING = "push failed - commit succeeded locally"
NOTHING_TO_COMMIT_WARNING = "nothing to commit"


@dataclass
class CommitOutcome:
    """What the orchestrator did to the repository."""
    committed: bool
    commit_hash: Optional[str] = None
    message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def template_message(collected: CollectedDiff, task_id: Optional[str] = None) -> str:
    """Deterministic commit message for doc-only, code-only or mixed changes."""
    if collected.doc_only:
        return f"docs: update {task_id} documentation" if task_id else "docs: update progress notes"
    if collected.has_doc_changes:
        return f"wip: {task_id} save changes and notes" if task_id else "wip: save changes and notes"
    return f"wip: {task_id} save changes" if task_id else "wip: save changes"


def build_message_prompt(diff: str, task_id: Optional[str] = None) -> str:
    task_line = f"\nActive task: {task_id}" if task_id else ""
    if task_id:
        formats = f"type: description or type: {task_id} description"
        examples = f"feat: {task_id} add user auth, fix: {task_id} resolve parsing bug"
    else:
        formats = "type: description"
        examples = "feat: add user auth, fix: resolve parsing bug"
    return (f"Write a conventional commit message for these changes. "
            f"Return only the commit message, nothing else.{task_line}\n\n"
            f"{redact_sensitive(diff[:3000])}\n\n"
            f"Use format: {formats}\n"
            f"Examples: {examples}")


def extract_conventional_line(text: str) -> Optional[str]:
    """First line of text that looks like a conventional commit subject."""
    for line in text.splitlines():
        line = line.strip().strip('`"\'')
        if CONVENTIONAL_COMMIT_PATTERN.match(line):
            return line
    return None


class CommitOrchestrator:
    """Stages everything, commits once and optionally pushes."""

    def __init__(self, git_ops: GitOperations, config: Optional[CommitConfig] = None,
                 message_oracle: Optional[ClassificationOracle] = None):
        """
        Initialize orchestrator.

        Args:
            git_ops: Repository to write to
            config: Push and message-generation settings
            message_oracle: Oracle used to write a message when the verdict has none
        """
        self.git_ops = git_ops
        self.config = config or CommitConfig()
        self.message_oracle = message_oracle

    async def resolve_message(self, verdict: ReviewVerdict, collected: CollectedDiff,
                              context: Optional[TaskContext] = None,
                              deadline: Optional[Deadline] = None) -> str:
        """
        Pick the commit message: verdict suggestion, then a generated
        message, then the template. Candidates failing validation are skipped.
        """
        task_id = context.task_id if context else None

        if verdict.suggested_commit_message:
            message = self._validated(verdict.suggested_commit_message, "suggested")
            if message:
                return message

        if self.config.generate_messages and self.message_oracle and collected.has_code_changes \
                and collected.filtered_diff:
            generated = await self._generate_message(collected.filtered_diff, task_id, deadline)
            if generated:
                message = self._validated(generated, "generated")
                if message:
                    return message

        return template_message(collected, task_id)

    async def commit(self, verdict: ReviewVerdict, collected: CollectedDiff,
                     context: Optional[TaskContext] = None, deadline: Optional[Deadline] = None,
                     dry_run: bool = False) -> CommitOutcome:
        """
        Commit all working tree changes.

        Args:
            verdict: Review outcome; never prevents the commit
            collected: Collector output
            context: Active task, used for message templates
            deadline: Overall pipeline budget, bounds message generation
            dry_run: Resolve the message but leave the repository untouched

        Returns:
            CommitOutcome; git failures are reported as warnings
        """
        if not collected.has_changes:
            return CommitOutcome(committed=False)

        message = await self.resolve_message(verdict, collected, context, deadline)

        if dry_run:
            logger.info(f"Dry run, would commit: {message}")
            return CommitOutcome(committed=False, message=message)

        outcome = CommitOutcome(committed=False, message=message)

        try:
            self.git_ops.stage_all()
            if not self.git_ops.has_staged_changes():
                logger.info("Nothing staged after git add, skipping commit")
                outcome.warnings.append(NOTHING_TO_COMMIT_WARNING)
                return outcome
            outcome.commit_hash = self.git_ops.commit(message)
            outcome.committed = True
        except GitOperationError as e:
            logger.error(f"Auto-commit failed: {e}", extra={'details': e.stderr or 'no stderr'})
            outcome.warnings.append(f"commit failed: {e}")
            return outcome

        if self.config.push_enabled:
            self._push(outcome)

        return outcome

    def _push(self, outcome: CommitOutcome) -> None:
        branch = self.git_ops.get_current_branch()
        if not branch:
            outcome.warnings.append("push skipped - detached HEAD")
            return
        try:
            self.git_ops.push(self.config.remote, branch)
        except GitOperationError as e:
            logger.warning(f"Push to {self.config.remote}/{branch} failed: {e}",
                           extra={'details': e.stderr or 'no stderr'})
            outcome.warnings.append(PUSH_FAILED_WARNING)

    async def _generate_message(self, diff: str, task_id: Optional[str],
                                deadline: Optional[Deadline]) -> Optional[str]:
        timeout = self.config.message_timeout
        if deadline is not None:
            timeout = deadline.cap(timeout)
        if timeout <= 0:
            return None

        try:
            response = await asyncio.wait_for(
                self.message_oracle.classify(build_message_prompt(diff, task_id), timeout, 1), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Commit message generation timed out after {timeout:.1f}s")
            return None
        except Exception as e:
            # Oracles should report failure in the response, but a backend bug must not escape
            logger.warning(f"Commit message generation raised {type(e).__name__}: {e}")
            return None

        if not response.succeeded:
            logger.debug(f"Commit message generation failed: {response.error}")
            return None
        return extract_conventional_line(response.text)

    @staticmethod
    def _validated(message: str, source: str) -> Optional[str]:
        try:
            return InputValidator.validate_commit_message(message)
        except ValidationError as e:
            logger.warning(f"Rejected {source} commit message: {e}")
            return None
