"""
Diff handling for WIP Commit: collection, noise filtering and chunking.
"""

from .chunker import (
    DiffChunk, DiffChunker, DiffSegment, byte_size, extract_path,
    split_file_segments, truncate_at_file_boundaries, truncate_large_file_diff,
    truncate_text_bytes,
)
from .collector import CollectedDiff, DiffCollector, DiffFilter, FilterResult

__all__ = [
    'CollectedDiff', 'DiffChunk', 'DiffChunker', 'DiffCollector', 'DiffFilter',
    'DiffSegment', 'FilterResult', 'byte_size', 'extract_path', 'split_file_segments',
    'truncate_at_file_boundaries', 'truncate_large_file_diff', 'truncate_text_bytes',
]
