"""
Diff chunking for WIP Commit.

Splits a unified diff into size-bounded chunks that never cut through a
file's diff, and provides the truncation helpers used when a diff (or a
single oversized file) has to be shrunk.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

FILE_HEADER = 'diff --git '
HEADER_PATTERN = re.compile(r'^diff --git "?a/(.+?)"? "?b/(.+?)"?$')


def byte_size(text: str) -> int:
    """Size of text in UTF-8 bytes."""
    return len(text.encode('utf-8'))


@dataclass
class DiffSegment:
    """The complete diff of one file (or unparseable text when path is None)."""
    path: Optional[str]
    text: str

    @property
    def byte_size(self) -> int:
        return byte_size(self.text)


@dataclass
class DiffChunk:
    """A file-boundary-respecting slice of a diff."""
    id: int
    files: List[str] = field(default_factory=list)
    raw_text: str = ""
    byte_size: int = 0
    oversized: bool = False


def extract_path(header_line: str) -> Optional[str]:
    """
    Extract the post-change path from a `diff --git a/X b/Y` header.

    Args:
        header_line: The header line, with or without trailing newline

    Returns:
        The `b/` path, or None if the line is not a parseable header
    """
    match = HEADER_PATTERN.match(header_line.rstrip('\r\n'))
    if not match:
        return None
    return match.group(2)


def split_file_segments(diff: str) -> List[DiffSegment]:
    """
    Split a diff into per-file segments at each `diff --git` header.

    Text before the first header stays attached to the first segment, so
    joining every segment's text reproduces the input exactly. A diff with
    no headers at all comes back as a single segment without a path.

    Args:
        diff: Complete unified diff

    Returns:
        Segments in original order
    """
    if not diff:
        return []

    segments: List[DiffSegment] = []
    current_lines: List[str] = []
    current_path: Optional[str] = None
    seen_header = False

    for line in diff.splitlines(keepends=True):
        if line.startswith(FILE_HEADER):
            if seen_header:
                segments.append(DiffSegment(path=current_path, text=''.join(current_lines)))
                current_lines = []
            seen_header = True
            current_path = extract_path(line)
        current_lines.append(line)

    if current_lines:
        segments.append(DiffSegment(path=current_path, text=''.join(current_lines)))

    return segments


class DiffChunker:
    """Greedy, file-boundary-respecting diff chunker."""

    def __init__(self, max_chunk_bytes: int = 8000, compression_threshold_bytes: int = 5000):
        """
        Initialize chunker.

        Args:
            max_chunk_bytes: Upper bound for a chunk made of several files
            compression_threshold_bytes: Diffs smaller than this skip compression
        """
        self.max_chunk_bytes = max_chunk_bytes
        self.compression_threshold_bytes = compression_threshold_bytes

    def needs_compression(self, diff: str) -> bool:
        """Whether a diff is large enough for compression to pay off."""
        return byte_size(diff) >= self.compression_threshold_bytes

    def chunk(self, diff: str, max_chunk_bytes: Optional[int] = None) -> List[DiffChunk]:
        """
        Split a diff into chunks of whole file diffs.

        Args:
            diff: Complete unified diff
            max_chunk_bytes: Override for the configured chunk size

        Returns:
            Chunks with ids assigned in diff order
        """
        limit = max_chunk_bytes or self.max_chunk_bytes
        chunks: List[DiffChunk] = []
        current: List[DiffSegment] = []
        current_size = 0

        def flush() -> None:
            nonlocal current, current_size
            if current:
                chunks.append(self._make_chunk(len(chunks), current, current_size, oversized=False))
                current = []
                current_size = 0

        for segment in split_file_segments(diff):
            size = segment.byte_size

            # A single file larger than the limit becomes its own chunk
            if size > limit:
                flush()
                chunks.append(self._make_chunk(len(chunks), [segment], size, oversized=True))
                continue

            if current and current_size + size > limit:
                flush()

            current.append(segment)
            current_size += size

        flush()

        oversized = sum(1 for c in chunks if c.oversized)
        logger.debug(f"Split diff into {len(chunks)} chunks ({oversized} oversized, limit {limit} bytes)")
        return chunks

    @staticmethod
    def _make_chunk(chunk_id: int, segments: List[DiffSegment], size: int, oversized: bool) -> DiffChunk:
        return DiffChunk(
            id=chunk_id,
            files=[s.path for s in segments if s.path],
            raw_text=''.join(s.text for s in segments),
            byte_size=size,
            oversized=oversized,
        )


def truncate_text_bytes(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes UTF-8 bytes without splitting a character."""
    encoded = text.encode('utf-8')
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max(0, max_bytes)].decode('utf-8', errors='ignore')


def truncate_large_file_diff(file_diff: str, max_size: int) -> str:
    """
    Shrink a single file's diff by keeping its header plus the first and
    last lines of content.

    Args:
        file_diff: Single file diff
        max_size: Maximum size in bytes for the truncated diff

    Returns:
        Truncated diff
    """
    if byte_size(file_diff) <= max_size:
        return file_diff

    lines = file_diff.split('\n')
    header_lines = []
    content_lines = []
    in_header = True

    for line in lines:
        if in_header and not line.startswith('@@'):
            header_lines.append(line)
        else:
            in_header = False
            content_lines.append(line)

    header = '\n'.join(header_lines)
    available_size = max_size - byte_size(header) - 60  # room for the omission marker

    if not content_lines or available_size <= 0:
        first_line = header_lines[0] if header_lines else ''
        return truncate_text_bytes(
            f"{first_line}\n# Large file diff truncated ({byte_size(file_diff)} bytes)", max_size)

    half = available_size // 2
    head = _take_lines(content_lines, half)
    tail = _take_lines(list(reversed(content_lines[len(head):])), half)
    tail.reverse()

    omitted = len(content_lines) - len(head) - len(tail)
    if omitted <= 0:
        return truncate_text_bytes(file_diff, max_size)

    result = header_lines + head + [f"# ... {omitted} lines omitted ..."] + tail
    return truncate_text_bytes('\n'.join(result), max_size)


def _take_lines(lines: List[str], budget: int) -> List[str]:
    """Leading lines whose size, newlines included, fits in budget bytes."""
    taken = []
    used = 0
    for line in lines:
        cost = byte_size(line) + 1
        if used + cost > budget:
            break
        taken.append(line)
        used += cost
    return taken


def truncate_at_file_boundaries(diff: str, max_bytes: int) -> str:
    """
    Truncate a diff to stay under max_bytes, dropping whole trailing files.

    Args:
        diff: Complete unified diff
        max_bytes: Size limit in bytes, including the omission notice

    Returns:
        The diff itself when small enough, otherwise the leading complete
        files plus a notice of what was omitted
    """
    if byte_size(diff) <= max_bytes:
        return diff

    reserve = 100  # room for the omission notice
    segments = split_file_segments(diff)

    if len(segments) <= 1:
        kept = truncate_text_bytes(diff, max_bytes - reserve)
        return f"{kept}\n\n... [diff truncated due to size limit] ..."

    included: List[str] = []
    included_size = 0
    for segment in segments:
        if included_size + segment.byte_size > max_bytes - reserve:
            break
        included.append(segment.text)
        included_size += segment.byte_size

    if not included:
        kept = truncate_text_bytes(segments[0].text, max_bytes - reserve)
        return f"{kept}\n\n... [file truncated due to size limit] ..."

    omitted = segments[len(included):]
    omitted_lines = sum(segment.text.count('\n') for segment in omitted)
    return (''.join(included) +
            f"\n... [{len(omitted)} files omitted due to size limit ({omitted_lines} lines)] ...")
