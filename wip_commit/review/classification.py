"""
Classification of a change against the active task.

The classification oracle answers in JSON, but in practice the JSON is
sometimes wrapped in a CLI envelope or in prose. Parsing is therefore two
steps (strict, then first balanced object) with a named result type, and any
failure lands on the conservative NEEDS_VERIFICATION status.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..ai import ClassificationOracle
from ..config import ClassificationConfig
from ..security import redact_sensitive
from ..tasks import TaskContext
from ..utils import Deadline, truncate_text

logger = logging.getLogger(__name__)


class ReviewStatus(Enum):
    """Review outcome, declared from least to most severe."""
    ON_TRACK = "on_track"
    DEVIATION = "deviation"
    NEEDS_VERIFICATION = "needs_verification"
    CRITICAL_FAILURE = "critical_failure"

    @property
    def severity(self) -> int:
        return list(ReviewStatus).index(self)

    @classmethod
    def normalize(cls, value: Any) -> Optional['ReviewStatus']:
        """Map `On-Track`, `needs verification` and the like to a status; None if unknown."""
        if not isinstance(value, str):
            return None
        key = re.sub(r'[\s\-]+', '_', value.strip().lower())
        for status in cls:
            if status.value == key:
                return status
        return None


@dataclass
class ReviewVerdict:
    """The single classification outcome of one run."""
    status: ReviewStatus
    message: str
    suggested_commit_message: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def on_track(cls, message: str) -> 'ReviewVerdict':
        return cls(status=ReviewStatus.ON_TRACK, message=message)

    @classmethod
    def needs_verification(cls, message: str, details: Optional[str] = None) -> 'ReviewVerdict':
        return cls(status=ReviewStatus.NEEDS_VERIFICATION, message=message, details=details)


@dataclass
class ParsedVerdict:
    status: ReviewStatus
    message: str
    commit_message: Optional[str] = None
    details: Optional[str] = None


@dataclass
class ParseFailure:
    reason: str
    raw_text: str = ""


def extract_json_object(text: str, prefer_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Find the first balanced `{...}` in text that decodes to a JSON object.

    Braces inside JSON strings are ignored while matching. With prefer_key,
    the first object containing that key wins; the first object of any
    shape is returned only when none has it.
    """
    fallback = None
    start = text.find('{')
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == '\\':
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    try:
                        candidate = json.loads(text[start:index + 1])
                    except ValueError:
                        break
                    if isinstance(candidate, dict):
                        if prefer_key is None or prefer_key in candidate:
                            return candidate
                        if fallback is None:
                            fallback = candidate
                    break
        start = text.find('{', start + 1)
    return fallback


def _decode_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data
    return extract_json_object(text, prefer_key='status')


def parse_verdict(text: str) -> Union[ParsedVerdict, ParseFailure]:
    """
    Parse the classification oracle's answer.

    Args:
        text: Raw oracle output

    Returns:
        ParsedVerdict, or ParseFailure describing why nothing usable was found
    """
    if not text or not text.strip():
        return ParseFailure("empty response", text or "")

    data = _decode_object(text)

    # CLI-style envelope: {"type": "result", "result": "<model text>"}
    if data is not None and data.get('type') == 'result' and 'result' in data:
        inner = data['result']
        data = inner if isinstance(inner, dict) else _decode_object(str(inner))

    if data is None:
        return ParseFailure("no JSON object in response", text)

    status = ReviewStatus.normalize(data.get('status'))
    if status is None:
        return ParseFailure(f"unknown status {data.get('status')!r}", text)

    commit_message = data.get('commitMessage') or data.get('commit_message')
    details = data.get('details')
    return ParsedVerdict(
        status=status,
        message=str(data.get('message') or ''),
        commit_message=str(commit_message) if commit_message else None,
        details=str(details) if details else None,
    )


def build_review_prompt(diff_text: str, context: TaskContext, compressed: bool = False,
                        has_doc_changes: bool = False,
                        config: Optional[ClassificationConfig] = None) -> str:
    """Build the review prompt sent to the classification oracle."""
    config = config or ClassificationConfig()
    diff_text = redact_sensitive(diff_text)

    doc_note = ""
    if has_doc_changes:
        doc_note = ("\n## Important Note:\nChanges to documentation files have been filtered out from "
                    "the diff below and are always acceptable. Focus only on the code changes shown.\n")

    if compressed:
        diff_section = f"## Compressed Git Diff Summary:\n{diff_text}"
    else:
        diff_section = ("## Git Diff (code changes only, documentation excluded):\n"
                        f"```diff\n{diff_text[:config.max_raw_diff_chars]}\n```")

    compressed_note = ""
    if compressed:
        compressed_note = ("\n- The diff has been compressed into summaries to save tokens - "
                           "focus on the high-level changes described")

    requirements = (context.requirements_text or '')[:config.max_requirements_chars]
    messages = (context.recent_messages or '')[:config.max_messages_chars] or "(no transcript available)"

    return f"""You are reviewing an AI assistant's work on a coding task. Analyze if the work is on track or has deviated.
{doc_note}
## Active Task Requirements:
{requirements}

## Recent Conversation:
{messages}

{diff_section}

## Review Categories:
1. **on_track**: Work aligns with task requirements
2. **deviation**: Work has deviated from requirements (especially if trying to "simplify")
3. **needs_verification**: Claims completion but hasn't tested/verified
4. **critical_failure**: Broke something important (deleted files, broke build, admitted failing tests)

## Red Flags to Watch For:
- Any mention of "simplifying" or "simple solution" when stuck
- Claiming things work without testing
- Making changes unrelated to the current task
- Deleting or overwriting important files

## IMPORTANT:
- Documentation updates are ALWAYS acceptable and have been filtered out
- Focus only on code changes when determining if work is on track{compressed_note}

Respond with ONLY a valid JSON object, no text before or after, in exactly this format:
{{"status": "on_track|deviation|needs_verification|critical_failure", "message": "Brief explanation for the user", "commitMessage": "Conventional commit message", "details": "Optional detailed explanation"}}

Be strict about deviations - if the changes don't directly address the task requirements, it's a deviation."""


class ClassificationEngine:
    """Turns a diff (or its summary) plus the task into a ReviewVerdict."""

    def __init__(self, oracle: ClassificationOracle, config: Optional[ClassificationConfig] = None):
        self.oracle = oracle
        self.config = config or ClassificationConfig()

    async def classify(self, diff_text: str, context: Optional[TaskContext], compressed: bool = False,
                       has_doc_changes: bool = False, deadline: Optional[Deadline] = None) -> ReviewVerdict:
        """
        Classify a change against the active task.

        Args:
            diff_text: Compressed summary or raw (small) filtered diff
            context: Active task, or None
            compressed: Whether diff_text is a compressed summary
            has_doc_changes: Whether documentation changes were filtered out
            deadline: Overall pipeline budget

        Returns:
            ReviewVerdict; oracle errors, timeouts and unparseable answers
            give NEEDS_VERIFICATION
        """
        if context is None or not context.has_task:
            logger.info("No active task, skipping review")
            return ReviewVerdict.on_track("No active task - exploratory work")

        timeout = self.config.timeout
        if deadline is not None:
            timeout = deadline.cap(timeout)
        if timeout <= 0:
            logger.warning("Time budget exhausted before review")
            return ReviewVerdict.needs_verification("Review skipped - time budget exhausted")

        prompt = build_review_prompt(diff_text, context, compressed, has_doc_changes, self.config)
        logger.debug(f"Review prompt: {len(prompt)} chars, timeout {timeout:.1f}s")

        try:
            response = await asyncio.wait_for(
                self.oracle.classify(prompt, timeout, self.config.max_turns), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Review timed out after {timeout:.1f}s")
            return ReviewVerdict.needs_verification(
                "Could not review changes - review timed out", details=f"timeout after {timeout:.1f}s")
        except Exception as e:
            # Oracles should report failure in the response, but a backend bug must not escape
            logger.error(f"Review oracle raised {type(e).__name__}: {e}")
            return ReviewVerdict.needs_verification("Could not review changes", details=str(e))

        if not response.succeeded:
            logger.warning(f"Review failed: {response.error}")
            return ReviewVerdict.needs_verification("Could not review changes", details=response.error)

        parsed = parse_verdict(response.text)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Unparseable review response ({parsed.reason}): {truncate_text(parsed.raw_text, 200)}")
            return ReviewVerdict.needs_verification("Could not parse review response", details=parsed.reason)

        logger.info(f"Review verdict: {parsed.status.value}")
        return ReviewVerdict(
            status=parsed.status,
            message=parsed.message or parsed.status.value.replace('_', ' '),
            suggested_commit_message=parsed.commit_message,
            details=parsed.details,
        )
