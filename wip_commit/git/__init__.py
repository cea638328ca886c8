"""
Git operations module for WIP Commit.

This module wraps the git command line: working-tree status, diffs (tracked
and untracked), staging, committing and pushing. Every command is fallible;
failures raise GitOperationError carrying git's stderr and exit code.
"""

import subprocess
import logging
import time
from datetime import datetime
from typing import List, Optional, Sequence
from pathlib import Path
from dataclasses import dataclass

from ..exceptions import GitOperationError

logger = logging.getLogger(__name__)

# Header paths keep their a/ and b/ prefixes whatever the user's diff config says
DIFF_OPTIONS = ['--no-color', '--no-ext-diff', '--src-prefix=a/', '--dst-prefix=b/']


@dataclass
class FileChange:
    """One entry of `git status --porcelain`."""
    status: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.status == '??'


class GitOperations:
    """Handles git operations for one working tree."""

    def __init__(self, repo_root: Optional[str] = None, command_timeout: float = 30.0):
        """
        Initialize Git operations handler.

        Args:
            repo_root: Working tree to operate on (defaults to the current directory)
            command_timeout: Default timeout for a single git command in seconds
        """
        self.repo_root = str(Path(repo_root or Path.cwd()))
        self.command_timeout = command_timeout

    def _run_git_command(self, args: List[str], timeout: Optional[float] = None,
                         ok_codes: Sequence[int] = (0,)) -> subprocess.CompletedProcess:
        """
        Run a git command in the repository root.

        Args:
            args: Arguments after `git`
            timeout: Timeout in seconds (defaults to command_timeout)
            ok_codes: Exit codes treated as success

        Returns:
            The completed process

        Raises:
            GitOperationError: If git exits with an unexpected code or times out
        """
        command = ['git'] + list(args)
        command_str = ' '.join(command)
        start_time = time.time()

        try:
            result = subprocess.run(
                command,
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout or self.command_timeout
            )
        except subprocess.TimeoutExpired:
            raise GitOperationError(f"Git command timed out: {command_str}")
        except OSError as e:
            raise GitOperationError(f"Could not run git: {e}")

        logger.debug(f"{command_str} exited {result.returncode} in {time.time() - start_time:.2f}s")

        if result.returncode not in ok_codes:
            stderr = (result.stderr or '').strip()
            raise GitOperationError(
                f"Git command failed: {command_str} - {stderr or 'exit code ' + str(result.returncode)}",
                stderr=stderr,
                returncode=result.returncode
            )
        return result

    def is_repository(self) -> bool:
        """Check whether the root is inside a git working tree."""
        try:
            self._run_git_command(['rev-parse', '--git-dir'], timeout=10)
            return True
        except GitOperationError:
            return False

    def has_head(self) -> bool:
        """Check whether the repository has at least one commit."""
        try:
            self._run_git_command(['rev-parse', '--verify', '--quiet', 'HEAD'], timeout=10)
            return True
        except GitOperationError:
            return False

    def get_status(self) -> List[FileChange]:
        """
        Get the working-tree status, listing untracked files individually.

        Returns:
            List of changed paths with their two-letter status code

        Raises:
            GitOperationError: If git status fails
        """
        result = self._run_git_command(['status', '--porcelain', '-z', '--untracked-files=all'])

        changes = []
        entries = result.stdout.split('\0')
        index = 0
        while index < len(entries):
            entry = entries[index]
            index += 1
            if len(entry) < 4:
                continue

            status, path = entry[:2], entry[3:]
            changes.append(FileChange(status=status, path=path))

            # Renames and copies carry the original path as a separate entry
            if status[0] in 'RC':
                index += 1

        logger.debug(f"Working tree has {len(changes)} changed paths")
        return changes

    def get_diff(self) -> str:
        """
        Get the diff of tracked files, staged and unstaged, against HEAD.

        Returns:
            Unified diff text (may be empty)

        Raises:
            GitOperationError: If git diff fails
        """
        if self.has_head():
            return self._run_git_command(['diff', 'HEAD'] + DIFF_OPTIONS).stdout

        # No commits yet: index against the empty tree plus working tree against the index
        staged = self._run_git_command(['diff', '--cached'] + DIFF_OPTIONS).stdout
        unstaged = self._run_git_command(['diff'] + DIFF_OPTIONS).stdout
        return staged + unstaged

    def get_untracked_diff(self, path: str) -> str:
        """
        Get a new-file diff for an untracked path without touching the index.

        Args:
            path: Repository-relative path of the untracked file

        Returns:
            Unified diff text

        Raises:
            GitOperationError: If git diff fails
        """
        # --no-index exits 1 when the files differ, which is always the case here
        result = self._run_git_command(
            ['diff', '--no-index'] + DIFF_OPTIONS + ['--', '/dev/null', path],
            ok_codes=(0, 1)
        )
        return result.stdout

    def stage_all(self) -> None:
        """
        Stage every change in the working tree, including deletions and new files.

        Raises:
            GitOperationError: If git add fails
        """
        self._run_git_command(['add', '-A'])
        logger.debug("Staged all changes")

    def has_staged_changes(self) -> bool:
        """
        Check whether the index differs from HEAD.

        Returns:
            True if staged changes exist
        """
        if not self.has_head():
            result = self._run_git_command(['ls-files', '--cached'])
            return bool(result.stdout.strip())

        # Exit code 1 means differences exist
        result = self._run_git_command(['diff', '--cached', '--quiet'], ok_codes=(0, 1))
        return result.returncode == 1

    def commit(self, message: str) -> str:
        """
        Create a new commit from the index.

        Args:
            message: The commit message to use

        Returns:
            Hash of the new commit

        Raises:
            GitOperationError: If commit fails
        """
        self._run_git_command(['commit', '-m', message])
        commit_hash = self.get_head_hash()
        logger.info(f"Committed {commit_hash[:8]}: {message}")
        return commit_hash

    def get_head_hash(self) -> str:
        """Get the full hash of HEAD."""
        return self._run_git_command(['rev-parse', 'HEAD'], timeout=10).stdout.strip()

    def get_last_commit_time(self) -> Optional[datetime]:
        """
        Get the committer date of HEAD.

        Returns:
            Timezone-aware commit time, or None before the first commit
        """
        try:
            result = self._run_git_command(['log', '-1', '--format=%cI'], timeout=10)
        except GitOperationError as e:
            logger.debug(f"No last commit time: {e}")
            return None

        value = result.stdout.strip()
        if not value:
            return None
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            logger.warning(f"Unparseable commit date from git log: {value}")
            return None

    def get_current_branch(self) -> Optional[str]:
        """
        Get current git branch name.

        Returns:
            Current branch name or None if detached or undeterminable
        """
        try:
            result = self._run_git_command(['rev-parse', '--abbrev-ref', 'HEAD'], timeout=10)
        except GitOperationError as e:
            logger.warning(f"Could not determine current branch: {e}")
            return None

        branch_name = result.stdout.strip()
        if not branch_name or branch_name == 'HEAD':
            return None
        return branch_name

    def push(self, remote: str, branch: str, timeout: float = 60.0) -> None:
        """
        Push a branch to a remote without ever forcing.

        Raises:
            GitOperationError: If push fails
        """
        self._run_git_command(['push', remote, branch], timeout=timeout)
        logger.info(f"Pushed {branch} to {remote}")
