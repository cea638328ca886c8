"""
Tests for the git command wrapper.
"""

import shutil
import subprocess
import unittest
import sys
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wip_commit.config import DEFAULT_NOISE_PATTERNS
from wip_commit.diff import DiffCollector, DiffFilter, DiffChunker
from wip_commit.exceptions import GitOperationError
from wip_commit.git import GitOperations


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


class TestGitOperations(unittest.TestCase):
    """Test GitOperations with subprocess mocked out."""

    def setUp(self):
        self.git_ops = GitOperations('/repo')

    @patch('wip_commit.git.subprocess.run')
    def test_commands_run_in_repo_root_without_shell(self, mock_run):
        mock_run.return_value = completed(".git\n")

        self.assertTrue(self.git_ops.is_repository())

        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], ['git', 'rev-parse', '--git-dir'])
        self.assertEqual(kwargs['cwd'], '/repo')
        self.assertNotIn('shell', kwargs)

    @patch('wip_commit.git.subprocess.run')
    def test_failure_raises_with_stderr(self, mock_run):
        mock_run.return_value = completed(returncode=128, stderr="fatal: not a git repository")

        with self.assertRaises(GitOperationError) as ctx:
            self.git_ops.get_status()

        self.assertEqual(ctx.exception.returncode, 128)
        self.assertIn("not a git repository", ctx.exception.stderr)
        self.assertFalse(self.git_ops.is_repository())

    @patch('wip_commit.git.subprocess.run')
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(['git', 'push'], 60)

        with self.assertRaises(GitOperationError):
            self.git_ops.push('origin', 'main')

    @patch('wip_commit.git.subprocess.run')
    def test_get_status_parses_porcelain_z(self, mock_run):
        mock_run.return_value = completed(
            " M src/app.py\0?? new file.py\0R  new_name.py\0old_name.py\0D  gone.py\0")

        changes = self.git_ops.get_status()

        self.assertEqual([(c.status, c.path) for c in changes], [
            (' M', 'src/app.py'), ('??', 'new file.py'), ('R ', 'new_name.py'), ('D ', 'gone.py')])
        self.assertTrue(changes[1].is_untracked)
        self.assertFalse(changes[0].is_untracked)

    @patch('wip_commit.git.subprocess.run')
    def test_get_diff_against_head(self, mock_run):
        mock_run.side_effect = [completed("abc\n"), completed("diff --git a/x b/x\n")]

        self.assertEqual(self.git_ops.get_diff(), "diff --git a/x b/x\n")
        self.assertEqual(mock_run.call_args_list[1][0][0][:3], ['git', 'diff', 'HEAD'])

    @patch('wip_commit.git.subprocess.run')
    def test_get_diff_without_commits(self, mock_run):
        mock_run.side_effect = [completed(returncode=1), completed("staged\n"), completed("unstaged\n")]

        self.assertEqual(self.git_ops.get_diff(), "staged\nunstaged\n")
        self.assertIn('--cached', mock_run.call_args_list[1][0][0])

    @patch('wip_commit.git.subprocess.run')
    def test_untracked_diff_accepts_exit_code_one(self, mock_run):
        mock_run.return_value = completed("diff --git a/new.py b/new.py\n", returncode=1)

        diff = self.git_ops.get_untracked_diff('new.py')

        self.assertIn("new.py", diff)
        command = mock_run.call_args[0][0]
        self.assertEqual(command[:3], ['git', 'diff', '--no-index'])
        self.assertEqual(command[-2:], ['/dev/null', 'new.py'])

    @patch('wip_commit.git.subprocess.run')
    def test_stage_and_commit(self, mock_run):
        mock_run.side_effect = [completed(), completed(), completed("0123abcd\n")]

        self.git_ops.stage_all()
        commit_hash = self.git_ops.commit('wip: save "quoted" changes')

        self.assertEqual(commit_hash, "0123abcd")
        commands = [c[0][0] for c in mock_run.call_args_list]
        self.assertEqual(commands[0], ['git', 'add', '-A'])
        self.assertEqual(commands[1], ['git', 'commit', '-m', 'wip: save "quoted" changes'])
        for command in commands:
            self.assertNotIn('--amend', command)

    @patch('wip_commit.git.subprocess.run')
    def test_has_staged_changes(self, mock_run):
        mock_run.side_effect = [completed("abc\n"), completed(returncode=1)]
        self.assertTrue(self.git_ops.has_staged_changes())

        mock_run.side_effect = [completed("abc\n"), completed(returncode=0)]
        self.assertFalse(self.git_ops.has_staged_changes())

    @patch('wip_commit.git.subprocess.run')
    def test_push_never_forces(self, mock_run):
        mock_run.return_value = completed()

        self.git_ops.push('origin', 'main')

        command = mock_run.call_args[0][0]
        self.assertEqual(command, ['git', 'push', 'origin', 'main'])

    @patch('wip_commit.git.subprocess.run')
    def test_current_branch(self, mock_run):
        mock_run.return_value = completed("main\n")
        self.assertEqual(self.git_ops.get_current_branch(), "main")

        mock_run.return_value = completed("HEAD\n")
        self.assertIsNone(self.git_ops.get_current_branch())

        mock_run.return_value = completed(returncode=128, stderr="fatal")
        self.assertIsNone(self.git_ops.get_current_branch())

    @patch('wip_commit.git.subprocess.run')
    def test_diff_prefixes_are_pinned(self, mock_run):
        mock_run.side_effect = [completed("abc\n"), completed("")]
        self.git_ops.get_diff()
        mock_run.return_value = completed("", returncode=1)
        mock_run.side_effect = None
        self.git_ops.get_untracked_diff('new.py')

        for call in mock_run.call_args_list[1:]:
            command = call[0][0]
            self.assertIn('--src-prefix=a/', command)
            self.assertIn('--dst-prefix=b/', command)

    @patch('wip_commit.git.subprocess.run')
    def test_last_commit_time(self, mock_run):
        mock_run.return_value = completed("2024-05-01T12:30:00+02:00\n")
        self.assertEqual(self.git_ops.get_last_commit_time(),
                         datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc))
        self.assertEqual(mock_run.call_args[0][0], ['git', 'log', '-1', '--format=%cI'])

        mock_run.return_value = completed(returncode=128, stderr="fatal: bad default revision 'HEAD'")
        self.assertIsNone(self.git_ops.get_last_commit_time())


@unittest.skipUnless(shutil.which('git'), "git is not installed")
class TestGitOperationsOnRealRepository(unittest.TestCase):
    """Run against a temporary repository with prefix-changing diff settings."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.git('init', '-q')
        self.git('config', 'user.name', 'Test User')
        self.git('config', 'user.email', 'test@example.com')
        self.git('config', 'commit.gpgsign', 'false')
        (self.root / 'README.md').write_text("# Project\n", encoding='utf-8')
        (self.root / 'app.py').write_text("print('hi')\n", encoding='utf-8')
        self.git('add', '-A')
        self.git('commit', '-q', '-m', 'initial')
        self.git_ops = GitOperations(str(self.root))
        self.collector = DiffCollector(self.git_ops, DiffFilter(DEFAULT_NOISE_PATTERNS))

    def tearDown(self):
        self.temp_dir.cleanup()

    def git(self, *args):
        subprocess.run(['git'] + list(args), cwd=self.root, check=True, capture_output=True)

    def test_doc_only_change_with_mnemonic_prefix(self):
        self.git('config', 'diff.mnemonicPrefix', 'true')
        (self.root / 'README.md').write_text("# Project\n\nNotes.\n", encoding='utf-8')

        collected = self.collector.collect()

        self.assertTrue(collected.has_changes)
        self.assertEqual(collected.filtered_diff, "")
        self.assertTrue(collected.doc_only)

    def test_noprefix_keeps_file_names_in_chunks(self):
        self.git('config', 'diff.noprefix', 'true')
        (self.root / 'app.py').write_text("print('bye')\n", encoding='utf-8')
        (self.root / 'new_module.py').write_text("VALUE = 1\n", encoding='utf-8')

        collected = self.collector.collect()
        chunks = DiffChunker(max_chunk_bytes=256).chunk(collected.filtered_diff)

        self.assertTrue(collected.has_code_changes)
        self.assertEqual(sorted(f for chunk in chunks for f in chunk.files), ['app.py', 'new_module.py'])

    def test_last_commit_time_is_recent(self):
        committed_at = self.git_ops.get_last_commit_time()

        self.assertIsNotNone(committed_at.tzinfo)
        self.assertLess(abs(datetime.now(timezone.utc) - committed_at), timedelta(hours=1))


if __name__ == '__main__':
    unittest.main()
