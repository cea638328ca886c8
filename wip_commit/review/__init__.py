"""
Stop-hook review: compression, classification, commit and status reporting.
"""

from .classification import (
    ClassificationEngine, ParsedVerdict, ParseFailure, ReviewStatus, ReviewVerdict,
    build_review_prompt, extract_json_object, parse_verdict,
)
from .commit import CommitOrchestrator, CommitOutcome, template_message
from .compression import CHUNK_FAILED_MARKER, CompressedDiff, CompressionPipeline, CompressionResult
from .pipeline import ReviewPipeline
from .status import FileStatusSurface, HookResult, StatusArtifact, StatusReporter, StatusSurface

__all__ = [
    'CHUNK_FAILED_MARKER', 'ClassificationEngine', 'CommitOrchestrator', 'CommitOutcome',
    'CompressedDiff', 'CompressionPipeline', 'CompressionResult', 'FileStatusSurface',
    'HookResult', 'ParseFailure', 'ParsedVerdict', 'ReviewPipeline', 'ReviewStatus',
    'ReviewVerdict', 'StatusArtifact', 'StatusReporter', 'StatusSurface',
    'build_review_prompt', 'extract_json_object', 'parse_verdict', 'template_message',
]
