"""
Compression of large diffs into per-chunk summaries.

Chunks are summarized concurrently (at most `concurrency_cap` calls in
flight) and reassembled in chunk order, so the classification oracle sees
file changes in the same order as the original diff.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..ai import SummarizationOracle
from ..config import CompressionConfig
from ..diff import (
    DiffChunk, byte_size, truncate_at_file_boundaries, truncate_large_file_diff,
    truncate_text_bytes,
)
from ..security import redact_sensitive
from ..utils import Deadline

logger = logging.getLogger(__name__)

CHUNK_FAILED_MARKER = "[chunk omitted: compression failed]"
SECTION_HEADER = "### Change Set"

SUMMARY_PROMPT = """Summarize this git diff in 2-3 concise bullet points. Focus on WHAT changed, not HOW.
Ignore formatting, whitespace, and minor refactoring. Group related changes together.

{diff}

Respond with ONLY bullet points (use • character), no headers or explanations. Keep total under 300 characters."""


@dataclass
class CompressionResult:
    """Outcome of summarizing one chunk."""
    chunk_id: int
    summary_text: str
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def failed(cls, chunk_id: int, error: str) -> 'CompressionResult':
        return cls(chunk_id=chunk_id, summary_text="", succeeded=False, error=error)


@dataclass
class CompressedDiff:
    """The diff text handed to classification, plus how it was produced."""
    text: str
    compression_ratio: float
    compressed: bool
    original_size: int = 0
    chunk_count: int = 0
    failed_chunks: int = 0
    results: List[CompressionResult] = field(default_factory=list)


class CompressionPipeline:
    """Summarizes diff chunks with bounded concurrency and per-call timeouts."""

    def __init__(self, oracle: SummarizationOracle, config: Optional[CompressionConfig] = None,
                 max_chunk_bytes: int = 8000):
        """
        Initialize compression pipeline.

        Args:
            oracle: Summarization backend
            config: Concurrency, timeout and fallback settings
            max_chunk_bytes: Size oversized chunks are cut to before summarizing
        """
        self.oracle = oracle
        self.config = config or CompressionConfig()
        self.max_chunk_bytes = max_chunk_bytes

    async def compress(self, chunks: Sequence[DiffChunk], deadline: Optional[Deadline] = None) -> CompressedDiff:
        """
        Summarize chunks and reassemble them in chunk order.

        Args:
            chunks: Chunks from DiffChunker, in diff order
            deadline: Overall pipeline budget; chunks still pending when it
                runs out are cancelled and treated as failed

        Returns:
            CompressedDiff; `compressed` is False when every chunk failed and
            the raw diff was truncated instead
        """
        chunks = sorted(chunks, key=lambda c: c.id)
        original = ''.join(chunk.raw_text for chunk in chunks)
        original_size = byte_size(original)

        if not chunks:
            return CompressedDiff(text="", compression_ratio=1.0, compressed=False)

        if not self.config.enabled:
            logger.info("Diff compression disabled, truncating raw diff")
            return self._raw_fallback(original, original_size, chunks, [])

        logger.info(f"Starting diff compression: {len(chunks)} chunks, {original_size} bytes")

        semaphore = asyncio.Semaphore(self.config.concurrency_cap)
        tasks = [asyncio.ensure_future(self._compress_chunk(chunk, semaphore, deadline)) for chunk in chunks]

        budget = deadline.remaining() if deadline is not None else None
        done, pending = await asyncio.wait(tasks, timeout=budget)

        if pending:
            logger.warning(f"Compression budget exhausted, abandoning {len(pending)} pending chunks")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for chunk, task in zip(chunks, tasks):
            if task in done:
                results.append(task.result())
            else:
                results.append(CompressionResult.failed(chunk.id, "budget exhausted"))

        failed = sum(1 for r in results if not r.succeeded)
        if failed == len(results):
            logger.warning("All chunks failed to compress, falling back to truncated raw diff")
            return self._raw_fallback(original, original_size, chunks, results)

        text = self._assemble(chunks, results)
        compressed = CompressedDiff(
            text=text,
            compression_ratio=self._ratio(text, original_size),
            compressed=True,
            original_size=original_size,
            chunk_count=len(chunks),
            failed_chunks=failed,
            results=results,
        )
        logger.info(
            f"Diff compression complete: {original_size} -> {byte_size(text)} bytes "
            f"(ratio {compressed.compression_ratio:.3f}, {failed}/{len(chunks)} chunks failed)"
        )
        return compressed

    async def _compress_chunk(self, chunk: DiffChunk, semaphore: asyncio.Semaphore,
                              deadline: Optional[Deadline]) -> CompressionResult:
        async with semaphore:
            timeout = self.config.call_timeout
            if deadline is not None:
                timeout = deadline.cap(timeout)
            if timeout <= 0:
                return CompressionResult.failed(chunk.id, "budget exhausted")

            text = chunk.raw_text
            if chunk.oversized:
                text = truncate_large_file_diff(text, self.max_chunk_bytes)

            try:
                response = await asyncio.wait_for(
                    self.oracle.summarize(SUMMARY_PROMPT.format(diff=redact_sensitive(text)), timeout), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Chunk {chunk.id} summary timed out after {timeout:.1f}s")
                return CompressionResult.failed(chunk.id, f"timed out after {timeout:.1f}s")
            except Exception as e:
                # Oracles should report failure in the response, but a backend bug must not escape
                logger.warning(f"Chunk {chunk.id} summary raised {type(e).__name__}: {e}")
                return CompressionResult.failed(chunk.id, str(e))

            summary = response.text.strip() if response.succeeded else ""
            if not summary:
                error = response.error or "empty summary"
                logger.warning(f"Chunk {chunk.id} summary failed: {error}")
                return CompressionResult.failed(chunk.id, error)

            logger.debug(f"Chunk {chunk.id} summarized: {chunk.byte_size} -> {byte_size(summary)} bytes")
            return CompressionResult(chunk_id=chunk.id, summary_text=summary, succeeded=True)

    def _assemble(self, chunks: Sequence[DiffChunk], results: Sequence[CompressionResult]) -> str:
        sections = []
        for number, (chunk, result) in enumerate(zip(chunks, results), start=1):
            files = ', '.join(chunk.files) or 'unparsed diff'
            if result.succeeded:
                body = result.summary_text
            else:
                body = f"{CHUNK_FAILED_MARKER}\n{truncate_text_bytes(chunk.raw_text, self.config.chunk_fallback_bytes)}"
            sections.append(f"{SECTION_HEADER} {number} ({files}):\n{body}")
        return '\n\n'.join(sections)

    def _raw_fallback(self, original: str, original_size: int, chunks: Sequence[DiffChunk],
                      results: List[CompressionResult]) -> CompressedDiff:
        text = truncate_at_file_boundaries(original, self.config.raw_fallback_max_bytes)
        return CompressedDiff(
            text=text,
            compression_ratio=self._ratio(text, original_size),
            compressed=False,
            original_size=original_size,
            chunk_count=len(chunks),
            failed_chunks=len(results),
            results=results,
        )

    @staticmethod
    def _ratio(text: str, original_size: int) -> float:
        if not original_size:
            return 1.0
        return byte_size(text) / original_size
