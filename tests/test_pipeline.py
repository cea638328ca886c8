"""
End-to-end tests for the review pipeline with a mocked repository and fake oracles.
"""

import asyncio
import json
import re
import unittest
import sys
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wip_commit.ai import ClassificationOracle, OracleResponse, SummarizationOracle
from wip_commit.config import (
    ChunkingConfig, ClassificationConfig, CommitConfig, PipelineConfig,
)
from wip_commit.diff import byte_size
from wip_commit.exceptions import GitOperationError
from wip_commit.git import FileChange, GitOperations
from wip_commit.review import ReviewPipeline, StatusSurface
from wip_commit.review.commit import PUSH_FAILED_WARNING
from wip_commit.tasks import TaskContext, TaskStore

FILE_PATTERN = re.compile(r'^diff --git a/(\S+)', re.MULTILINE)


def file_diff(path, lines=5):
    body = ''.join(f"+line {i} of {path}\n" for i in range(lines))
    return (f"diff --git a/{path} b/{path}\n"
            f"--- a/{path}\n"
            f"+++ b/{path}\n"
            f"@@ -1,0 +1,{lines} @@\n" + body)


class FakeSummarizer(SummarizationOracle):
    def __init__(self, fail_files=()):
        self.fail_files = set(fail_files)
        self.calls = 0

    async def summarize(self, text, timeout):
        self.calls += 1
        files = FILE_PATTERN.findall(text)
        if self.fail_files.intersection(files):
            return OracleResponse.failure("overloaded")
        return OracleResponse(text=f"• updated {len(files)} files", succeeded=True)


class FakeClassifier(ClassificationOracle):
    def __init__(self, status="on_track", commit_message="feat: TASK_001 add parser", hang=False):
        self.status = status
        self.commit_message = commit_message
        self.hang = hang
        self.prompts = []

    async def classify(self, prompt, timeout, max_turns):
        self.prompts.append(prompt)
        if self.hang:
            await asyncio.sleep(3600)
        payload = {"status": self.status, "message": "Reviewed", "commitMessage": self.commit_message}
        return OracleResponse(text=json.dumps(payload), succeeded=True)


TASK = TaskContext(task_id="TASK_001", requirements_text="# TASK_001\nImplement the parser.")


class TestReviewPipeline(unittest.TestCase):
    """Scenario tests for ReviewPipeline.run()."""

    def setUp(self):
        self.git_ops = MagicMock(spec=GitOperations)
        self.git_ops.is_repository.return_value = True
        self.git_ops.get_status.return_value = []
        self.git_ops.get_diff.return_value = ""
        self.git_ops.has_staged_changes.return_value = True
        self.git_ops.commit.return_value = "0123456789abcdef"
        self.git_ops.get_current_branch.return_value = "feature/parser"
        self.git_ops.get_last_commit_time.return_value = None

        self.task_store = MagicMock(spec=TaskStore)
        self.task_store.get_active_task_context.return_value = TASK
        self.surface = MagicMock(spec=StatusSurface)
        self.summarizer = FakeSummarizer()
        self.classifier = FakeClassifier()

    def make_pipeline(self, config=None):
        return ReviewPipeline(self.git_ops, self.summarizer, self.classifier,
                              config or PipelineConfig(), self.task_store, self.surface)

    def set_changes(self, paths, diff):
        self.git_ops.get_status.return_value = [FileChange(' M', p) for p in paths]
        self.git_ops.get_diff.return_value = diff

    def assert_no_git_writes(self):
        self.git_ops.stage_all.assert_not_called()
        self.git_ops.commit.assert_not_called()
        self.git_ops.push.assert_not_called()

    def test_clean_tree(self):
        pipeline = self.make_pipeline()

        first = pipeline.run()
        second = pipeline.run()

        for result in (first, second):
            self.assertEqual(result.decision, "continue")
            self.assertFalse(result.committed)
        self.assert_no_git_writes()
        self.surface.publish.assert_not_called()
        self.assertEqual(self.classifier.prompts, [])

    def test_not_a_repository(self):
        self.git_ops.is_repository.return_value = False

        result = self.make_pipeline().run()

        self.assertEqual(result.decision, "continue")
        self.assertIn("Not a git repository", result.message)
        self.git_ops.get_status.assert_not_called()
        self.surface.publish.assert_not_called()

    def test_small_code_diff_on_track(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))

        result = self.make_pipeline().run()

        self.assertEqual(result.decision, "continue")
        self.assertEqual(result.status, "on_track")
        self.assertTrue(result.committed)
        self.assertEqual(result.commit_hash, "0123456789abcdef")
        self.git_ops.commit.assert_called_once_with("feat: TASK_001 add parser")
        self.assertEqual(self.summarizer.calls, 0)
        self.assertIn("```diff", self.classifier.prompts[0])
        self.surface.publish.assert_called_once()

    def test_doc_only_diff_skips_classification(self):
        self.set_changes(["NOTES.md", "docs/plan.md"], file_diff("NOTES.md") + file_diff("docs/plan.md"))

        result = self.make_pipeline().run()

        self.assertEqual(self.classifier.prompts, [])
        self.assertEqual(self.summarizer.calls, 0)
        self.assertTrue(result.committed)
        self.git_ops.commit.assert_called_once_with("docs: update TASK_001 documentation")

    def test_large_diff_with_partial_compression_failure(self):
        paths = [f"src/mod{i:02d}.py" for i in range(60)]
        files = [file_diff(p, lines=15) for p in paths]
        self.set_changes(paths, ''.join(files))
        self.summarizer = FakeSummarizer(fail_files={"src/mod10.py", "src/mod25.py", "src/mod40.py"})
        config = PipelineConfig(chunking=ChunkingConfig(max_chunk_bytes=byte_size(files[0]) * 5))

        with self.assertLogs('wip_commit.review.compression', level='INFO') as logs:
            result = self.make_pipeline(config).run()

        self.assertEqual(self.summarizer.calls, 12)
        self.assertTrue(any("ratio" in line and "3/12 chunks failed" in line for line in logs.output))
        prompt = self.classifier.prompts[0]
        self.assertIn("Compressed Git Diff Summary", prompt)
        self.assertEqual(prompt.count("[chunk omitted: compression failed]"), 3)
        positions = [prompt.index(f"### Change Set {n} ") for n in range(1, 13)]
        self.assertEqual(positions, sorted(positions))
        self.assertTrue(result.committed)

    def test_all_compression_failures_fall_back_to_raw_diff(self):
        paths = [f"src/mod{i:02d}.py" for i in range(20)]
        self.set_changes(paths, ''.join(file_diff(p, lines=15) for p in paths))
        self.summarizer = FakeSummarizer(fail_files=set(paths))

        result = self.make_pipeline().run()

        prompt = self.classifier.prompts[0]
        self.assertIn("```diff", prompt)
        self.assertNotIn("### Change Set", prompt)
        self.assertIn("truncated raw diff", result.message)
        self.assertTrue(result.committed)

    def test_classification_timeout_still_commits(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))
        self.classifier = FakeClassifier(hang=True)
        config = PipelineConfig(
            classification=ClassificationConfig(timeout=0.05),
            commit=CommitConfig(message_timeout=0.05),
        )

        result = self.make_pipeline(config).run()

        self.assertEqual(result.status, "needs_verification")
        self.assertEqual(result.decision, "continue")
        self.assertTrue(result.committed)
        self.git_ops.commit.assert_called_once_with("wip: TASK_001 save changes")

    def test_push_failure_is_reported_as_warning(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))
        self.git_ops.push.side_effect = GitOperationError("push failed", stderr="Could not resolve host")
        config = PipelineConfig(commit=CommitConfig(push_enabled=True))

        result = self.make_pipeline(config).run()

        self.assertTrue(result.committed)
        self.assertEqual(result.commit_hash, "0123456789abcdef")
        self.assertIn(PUSH_FAILED_WARNING, result.warnings)
        self.assertIn(PUSH_FAILED_WARNING, result.message)
        self.assertEqual(result.decision, "continue")

    def test_no_active_task_skips_oracles(self):
        self.task_store.get_active_task_context.return_value = None
        self.set_changes(["src/parser.py"], file_diff("src/parser.py", lines=400))

        result = self.make_pipeline(PipelineConfig(commit=CommitConfig(generate_messages=False))).run()

        self.assertEqual(result.status, "on_track")
        self.assertEqual(self.classifier.prompts, [])
        self.assertEqual(self.summarizer.calls, 0)
        self.git_ops.commit.assert_called_once_with("wip: save changes")

    def test_deviation_reported_but_committed(self):
        self.set_changes(["src/other.py"], file_diff("src/other.py"))
        self.classifier = FakeClassifier(status="deviation", commit_message="refactor: unrelated cleanup")

        result = self.make_pipeline().run()

        self.assertEqual(result.decision, "continue")
        self.assertIn("DEVIATION DETECTED", result.message)
        self.assertTrue(result.committed)

    def test_status_failure_continues(self):
        self.git_ops.get_status.side_effect = GitOperationError("index.lock exists")

        result = self.make_pipeline().run()

        self.assertEqual(result.decision, "continue")
        self.assertIn("index.lock", result.message)
        self.assert_no_git_writes()

    def test_unexpected_internal_error_continues(self):
        self.git_ops.is_repository.side_effect = RuntimeError("boom")

        with self.assertLogs('wip_commit.review.pipeline', level='ERROR'):
            result = self.make_pipeline().run()

        self.assertEqual(result.decision, "continue")
        self.assertIn("boom", result.message)

    def test_transcript_messages_reach_the_prompt(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))
        with tempfile.NamedTemporaryFile('w', suffix='.jsonl', delete=False, encoding='utf-8') as f:
            f.write(json.dumps({"type": "user", "timestamp": "2024-05-01T10:00:00Z",
                                "message": {"role": "user", "content": "Please add the parser"}}) + "\n")
            transcript = f.name
        self.addCleanup(os.unlink, transcript)
        self.task_store.get_active_task_context.return_value = TaskContext(
            task_id="TASK_001", requirements_text="Implement the parser.")

        self.make_pipeline().run(transcript_path=transcript)

        self.assertIn("User: Please add the parser", self.classifier.prompts[0])

    def test_transcript_is_limited_to_turns_since_last_commit(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))
        with tempfile.NamedTemporaryFile('w', suffix='.jsonl', delete=False, encoding='utf-8') as f:
            for stamp, text in [("2024-05-01T09:00:00Z", "Write the lexer"),
                                ("2024-05-01T11:00:00Z", "Now add the parser")]:
                f.write(json.dumps({"type": "user", "timestamp": stamp,
                                    "message": {"role": "user", "content": text}}) + "\n")
            transcript = f.name
        self.addCleanup(os.unlink, transcript)
        self.git_ops.get_last_commit_time.return_value = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        self.task_store.get_active_task_context.return_value = TaskContext(
            task_id="TASK_001", requirements_text="Implement the parser.")

        self.make_pipeline().run(transcript_path=transcript)

        prompt = self.classifier.prompts[0]
        self.assertIn("Now add the parser", prompt)
        self.assertNotIn("Write the lexer", prompt)

    def test_dry_run(self):
        self.set_changes(["src/parser.py"], file_diff("src/parser.py"))

        result = self.make_pipeline().run(dry_run=True)

        self.assertFalse(result.committed)
        self.assert_no_git_writes()


if __name__ == '__main__':
    unittest.main()
