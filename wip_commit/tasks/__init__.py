"""
Active task lookup and transcript reading for WIP Commit.

Task files are owned by the coding assistant's workflow; this module only
reads them.
"""

import abc
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

TASK_IMPORT_PATTERN = re.compile(r'@\.claude/tasks/(TASK_\d+)\.md')


@dataclass
class TaskContext:
    """The task the assistant is working on, if any."""
    task_id: Optional[str] = None
    requirements_text: Optional[str] = None
    recent_messages: str = ""

    @property
    def has_task(self) -> bool:
        return bool(self.requirements_text and self.requirements_text.strip())


class TaskStore(abc.ABC):
    """Read-only source of the active task."""

    @abc.abstractmethod
    def get_active_task_context(self) -> Optional[TaskContext]:
        """Return the active task, or None when no task is active."""


class ClaudeMdTaskStore(TaskStore):
    """Finds the active task through the `@.claude/tasks/TASK_NNN.md` import in CLAUDE.md."""

    def __init__(self, project_root: Union[str, Path]):
        self.project_root = Path(project_root)

    def get_active_task_id(self) -> Optional[str]:
        claude_md = self.project_root / 'CLAUDE.md'
        try:
            content = claude_md.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read {claude_md}: {e}")
            return None

        match = TASK_IMPORT_PATTERN.search(content)
        return match.group(1) if match else None

    def get_active_task_context(self) -> Optional[TaskContext]:
        task_id = self.get_active_task_id()
        if not task_id:
            logger.debug("No active task in CLAUDE.md")
            return None

        task_file = self.project_root / '.claude' / 'tasks' / f'{task_id}.md'
        try:
            requirements = task_file.read_text(encoding='utf-8')
        except OSError as e:
            logger.warning(f"Active task {task_id} has no readable task file: {e}")
            return None

        return TaskContext(task_id=task_id, requirements_text=requirements)


def _content_text(content) -> str:
    """Plain text of a message's content, skipping tool calls and results."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [block.get('text', '') for block in content
                 if isinstance(block, dict) and block.get('type') == 'text']
        return '\n'.join(p for p in parts if p)
    return ''


def _parse_timestamp(value) -> Optional[datetime]:
    """Parse a transcript timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        stamp = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def _format_timestamp(value) -> str:
    stamp = _parse_timestamp(value)
    if stamp is None:
        return str(value or '')
    return stamp.strftime('%Y-%m-%d %H:%M:%S')


def _iter_entries(lines: Iterable[str]):
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            yield entry


def read_recent_messages(transcript_path: Optional[str], limit: int = 20,
                         since: Optional[datetime] = None) -> str:
    """
    Read the last user and assistant messages from a JSONL transcript.

    Args:
        transcript_path: Transcript written by the coding assistant
        limit: Maximum number of messages to return
        since: Drop messages older than this (normally the last commit time);
            messages without a readable timestamp are kept

    Returns:
        Messages formatted as `[timestamp] Role: text`, or "" when the
        transcript is missing or unreadable
    """
    if not transcript_path:
        return ""
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    path = Path(transcript_path)
    if not path.is_file():
        logger.warning(f"Transcript not found, skipping conversation context: {transcript_path}")
        return ""

    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            entries = list(_iter_entries(f))
    except OSError as e:
        logger.warning(f"Cannot read transcript {transcript_path}: {e}")
        return ""

    messages = []
    for entry in entries:
        role = entry.get('type')
        if role not in ('user', 'assistant'):
            continue
        if since is not None:
            stamp = _parse_timestamp(entry.get('timestamp'))
            if stamp is not None and stamp < since:
                continue
        message = entry.get('message') or {}
        text = _content_text(message.get('content') if isinstance(message, dict) else None).strip()
        if text:
            messages.append((entry.get('timestamp'), role, text))

    lines: List[str] = []
    for timestamp, role, text in messages[-limit:]:
        prefix = f"[{_format_timestamp(timestamp)}] {role.capitalize()}:"
        text_lines = text.split('\n')
        if len(text_lines) == 1:
            lines.append(f"{prefix} {text}")
        else:
            lines.append(prefix)
            lines.extend(f"  {line}" for line in text_lines)

    logger.debug(f"Read {len(messages[-limit:])} of {len(messages)} transcript messages")
    return '\n'.join(lines)
