"""
The review pipeline run at each Stop checkpoint.

collect -> filter -> (chunk -> compress) -> classify -> commit -> report,
inside a single event loop and a single wall-clock budget.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

from ..ai import ClassificationOracle, NullOracle, OpenAIOracle, SummarizationOracle
from ..config import PipelineConfig, WipCommitConfig
from ..diff import CollectedDiff, DiffChunker, DiffCollector, DiffFilter
from ..exceptions import GitOperationError
from ..git import GitOperations
from ..tasks import ClaudeMdTaskStore, TaskContext, TaskStore, read_recent_messages
from ..utils import Deadline
from .classification import ClassificationEngine, ReviewVerdict
from .commit import CommitOrchestrator
from .compression import CompressionPipeline
from .status import FileStatusSurface, HookResult, StatusReporter, StatusSurface

logger = logging.getLogger(__name__)

NOT_A_REPOSITORY_MESSAGE = "Not a git repository - skipping auto-commit"
NO_CHANGES_MESSAGE = "✅ No changes to commit"


class ReviewPipeline:
    """Wires the pipeline stages together for one working tree."""

    def __init__(self, git_ops: GitOperations, summarizer: SummarizationOracle,
                 classifier: ClassificationOracle, config: Optional[PipelineConfig] = None,
                 task_store: Optional[TaskStore] = None, status_surface: Optional[StatusSurface] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the pipeline.

        Args:
            git_ops: Repository access
            summarizer: Oracle used to compress large diffs
            classifier: Oracle used for review and commit messages
            config: Per-stage settings
            task_store: Source of the active task (None means no task)
            status_surface: Where status artifacts go (None disables publishing)
            clock: Monotonic clock for the run budget
        """
        self.config = config or PipelineConfig()
        self.git_ops = git_ops
        self.task_store = task_store
        self._clock = clock

        self.collector = DiffCollector(git_ops, DiffFilter(self.config.noise_patterns))
        self.chunker = DiffChunker(self.config.chunking.max_chunk_bytes,
                                   self.config.chunking.compression_threshold_bytes)
        self.compression = CompressionPipeline(summarizer, self.config.compression,
                                               self.config.chunking.max_chunk_bytes)
        self.classification = ClassificationEngine(classifier, self.config.classification)
        self.orchestrator = CommitOrchestrator(git_ops, self.config.commit, classifier)
        self.reporter = StatusReporter(status_surface, self.config.status)

    @classmethod
    def from_config(cls, config: WipCommitConfig, project_root: Union[str, Path, None] = None) -> 'ReviewPipeline':
        """Build a pipeline backed by the configured oracle, or templates only without one."""
        root = Path(project_root or Path.cwd())
        if config.oracle is not None:
            oracle = OpenAIOracle(config.oracle)
        else:
            logger.info("No oracle configured, review and message generation disabled")
            oracle = NullOracle()

        status_path = Path(config.pipeline.status.path)
        if not status_path.is_absolute():
            status_path = root / status_path

        return cls(
            git_ops=GitOperations(str(root)),
            summarizer=oracle,
            classifier=oracle,
            config=config.pipeline,
            task_store=ClaudeMdTaskStore(root),
            status_surface=FileStatusSurface(status_path),
        )

    def run(self, stop_hook_active: bool = False, transcript_path: Optional[str] = None,
            dry_run: bool = False) -> HookResult:
        """
        Run one review and auto-commit pass.

        Never raises: an unexpected internal error still yields a
        `continue` decision so the user's session is not blocked.
        """
        try:
            return asyncio.run(self.run_async(stop_hook_active, transcript_path, dry_run))
        except Exception as e:
            logger.exception("Review pipeline failed")
            return HookResult(message=f"⚠️ Auto-commit review failed: {e}")

    async def run_async(self, stop_hook_active: bool = False, transcript_path: Optional[str] = None,
                        dry_run: bool = False) -> HookResult:
        deadline = Deadline(self.config.total_budget, self._clock)

        if not self.git_ops.is_repository():
            logger.info(NOT_A_REPOSITORY_MESSAGE)
            return self.reporter.report_message(NOT_A_REPOSITORY_MESSAGE, publish=False)

        try:
            collected = self.collector.collect()
        except GitOperationError as e:
            logger.error(f"Could not read working tree: {e}", extra={'details': e.stderr or 'no stderr'})
            return self.reporter.report_message(f"⚠️ Could not read working tree: {e}", publish=False)

        if not collected.has_changes:
            return self.reporter.report_message(NO_CHANGES_MESSAGE)

        context = self._load_context(transcript_path)
        verdict = await self.review(collected, context, deadline)
        outcome = await self.orchestrator.commit(verdict, collected, context, deadline, dry_run=dry_run)

        logger.debug(f"Pipeline finished with {deadline.remaining():.1f}s of budget left")
        return self.reporter.report(verdict, outcome, stop_hook_active)

    async def review(self, collected: CollectedDiff, context: Optional[TaskContext],
                     deadline: Deadline) -> ReviewVerdict:
        """Classify collected changes, compressing the diff first when it is large."""
        if not collected.filtered_diff.strip():
            if collected.doc_only:
                logger.info("Documentation-only changes, skipping review")
                return ReviewVerdict.on_track("Documentation updates only")
            return ReviewVerdict.on_track("No reviewable code changes")

        if context is None or not context.has_task:
            return await self.classification.classify(collected.filtered_diff, context)

        diff_text = collected.filtered_diff
        compressed = False
        fell_back = False

        if self.chunker.needs_compression(diff_text):
            chunks = self.chunker.chunk(diff_text)
            result = await self.compression.compress(chunks, deadline)
            diff_text = result.text
            compressed = result.compressed
            fell_back = not result.compressed
        else:
            logger.debug(f"Diff is small ({len(diff_text)} chars), skipping compression")

        verdict = await self.classification.classify(
            diff_text, context, compressed=compressed,
            has_doc_changes=collected.has_doc_changes, deadline=deadline)

        if fell_back:
            note = "Reviewed a truncated raw diff because compression failed"
            verdict.details = f"{verdict.details}\n{note}" if verdict.details else note
        return verdict

    def _load_context(self, transcript_path: Optional[str]) -> Optional[TaskContext]:
        if self.task_store is None:
            return None
        try:
            context = self.task_store.get_active_task_context()
        except Exception as e:
            # A broken task store means reviewing without a task, not failing the run
            logger.warning(f"Could not load active task: {e}")
            return None

        if context is not None and transcript_path:
            # Turns before the last commit were already reviewed
            context.recent_messages = read_recent_messages(
                transcript_path, self.config.classification.transcript_message_limit,
                since=self.git_ops.get_last_commit_time())
        return context

