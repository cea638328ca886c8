"""
Tests for diff chunking and truncation.
"""

import unittest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wip_commit.diff import (
    DiffChunker, byte_size, extract_path, split_file_segments,
    truncate_at_file_boundaries, truncate_large_file_diff, truncate_text_bytes,
)


def file_diff(path, lines=3, text='x'):
    """Build a new-file diff for path with the given number of added lines."""
    body = ''.join(f"+{text} {i}\n" for i in range(lines))
    return (f"diff --git a/{path} b/{path}\n"
            f"new file mode 100644\n"
            f"--- /dev/null\n"
            f"+++ b/{path}\n"
            f"@@ -0,0 +1,{lines} @@\n" + body)


class TestSegments(unittest.TestCase):
    """Test splitting a diff into per-file segments."""

    def test_extract_path(self):
        self.assertEqual(extract_path("diff --git a/src/app.py b/src/app.py\n"), "src/app.py")
        self.assertEqual(extract_path('diff --git "a/my file.py" "b/my file.py"'), "my file.py")
        self.assertIsNone(extract_path("+++ b/src/app.py"))

    def test_split_preserves_order_and_text(self):
        diff = file_diff("a.py") + file_diff("b.py") + file_diff("c.py")
        segments = split_file_segments(diff)

        self.assertEqual([s.path for s in segments], ["a.py", "b.py", "c.py"])
        self.assertEqual(''.join(s.text for s in segments), diff)

    def test_preamble_stays_with_first_segment(self):
        diff = "warning: something\n" + file_diff("a.py") + file_diff("b.py")
        segments = split_file_segments(diff)

        self.assertEqual(len(segments), 2)
        self.assertTrue(segments[0].text.startswith("warning: something\n"))
        self.assertEqual(''.join(s.text for s in segments), diff)

    def test_text_without_headers_is_one_segment(self):
        segments = split_file_segments("not a diff\nat all\n")
        self.assertEqual(len(segments), 1)
        self.assertIsNone(segments[0].path)

    def test_empty_diff(self):
        self.assertEqual(split_file_segments(""), [])


class TestDiffChunker(unittest.TestCase):
    """Test greedy, file-boundary-respecting chunking."""

    def setUp(self):
        self.chunker = DiffChunker(max_chunk_bytes=1000, compression_threshold_bytes=500)

    def test_files_are_never_split(self):
        files = [file_diff(f"f{i}.py", lines=i % 7 + 3) for i in range(30)]
        diff = ''.join(files)
        chunks = self.chunker.chunk(diff)

        for chunk in chunks:
            if not chunk.oversized:
                self.assertLessEqual(chunk.byte_size, 1000)
            for path in chunk.files:
                self.assertIn(f"diff --git a/{path} b/{path}", chunk.raw_text)

        # Every file appears in exactly one chunk, in original order
        all_files = [path for chunk in chunks for path in chunk.files]
        self.assertEqual(all_files, [f"f{i}.py" for i in range(30)])
        self.assertEqual(''.join(c.raw_text for c in chunks), diff)

    def test_greedy_accumulation(self):
        small = file_diff("a.py", lines=2)
        size = byte_size(small)
        chunker = DiffChunker(max_chunk_bytes=size * 2)

        chunks = chunker.chunk(small + file_diff("b.py", lines=2) + file_diff("c.py", lines=2))

        self.assertEqual([c.files for c in chunks], [["a.py", "b.py"], ["c.py"]])
        self.assertEqual([c.id for c in chunks], [0, 1])

    def test_oversized_file_is_its_own_chunk(self):
        big = file_diff("big.py", lines=200)
        diff = file_diff("a.py") + big + file_diff("b.py")
        chunks = self.chunker.chunk(diff)

        self.assertEqual([c.files for c in chunks], [["a.py"], ["big.py"], ["b.py"]])
        self.assertTrue(chunks[1].oversized)
        self.assertEqual(chunks[1].raw_text, big)
        self.assertFalse(chunks[0].oversized)

    def test_malformed_diff_is_single_chunk(self):
        text = "garbage line\n" * 200
        chunks = self.chunker.chunk(text)

        self.assertEqual(len(chunks), 1)
        self.assertTrue(chunks[0].oversized)
        self.assertEqual(chunks[0].files, [])
        self.assertEqual(chunks[0].raw_text, text)

    def test_explicit_limit_overrides_config(self):
        diff = file_diff("a.py") + file_diff("b.py")
        self.assertEqual(len(self.chunker.chunk(diff)), 1)
        self.assertEqual(len(self.chunker.chunk(diff, max_chunk_bytes=byte_size(file_diff("a.py")))), 2)

    def test_needs_compression(self):
        self.assertFalse(self.chunker.needs_compression("x" * 499))
        self.assertTrue(self.chunker.needs_compression("x" * 500))

    def test_sizes_are_utf8_bytes(self):
        self.assertEqual(byte_size("é"), 2)
        self.assertEqual(truncate_text_bytes("éé", 3), "é")


class TestTruncation(unittest.TestCase):
    """Test diff truncation helpers."""

    def test_small_diff_is_untouched(self):
        diff = file_diff("a.py")
        self.assertEqual(truncate_at_file_boundaries(diff, 10000), diff)
        self.assertEqual(truncate_large_file_diff(diff, 10000), diff)

    def test_truncate_at_file_boundaries_keeps_whole_files(self):
        files = [file_diff(f"f{i}.py", lines=10) for i in range(10)]
        diff = ''.join(files)
        limit = byte_size(files[0]) * 3 + 150

        result = truncate_at_file_boundaries(diff, limit)

        self.assertTrue(result.startswith(''.join(files[:3])))
        self.assertNotIn("f3.py", result)
        self.assertIn("[7 files omitted due to size limit", result)
        self.assertLessEqual(byte_size(result), limit)

    def test_truncate_when_first_file_too_large(self):
        diff = file_diff("big.py", lines=500) + file_diff("b.py")
        result = truncate_at_file_boundaries(diff, 1000)

        self.assertIn("[file truncated due to size limit]", result)
        self.assertTrue(result.startswith("diff --git a/big.py b/big.py"))

    def test_truncate_large_file_diff_keeps_header_head_and_tail(self):
        diff = file_diff("big.py", lines=400)
        result = truncate_large_file_diff(diff, 2000)

        self.assertLessEqual(byte_size(result), 2000)
        self.assertTrue(result.startswith("diff --git a/big.py b/big.py\n"))
        self.assertIn("+x 0", result)
        self.assertIn("+x 399", result)
        self.assertIn("lines omitted", result)


if __name__ == '__main__':
    unittest.main()
