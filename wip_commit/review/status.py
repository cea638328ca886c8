"""
Status reporting: the hook result returned upward and the short status
artifact shown by the assistant's status line.
"""

import abc
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config import StatusConfig
from ..exceptions import FileOperationError
from .classification import ReviewStatus, ReviewVerdict
from .commit import CommitOutcome

logger = logging.getLogger(__name__)

STATUS_PREFIXES = {
    ReviewStatus.ON_TRACK: "🛤️ Project is on track.",
    ReviewStatus.DEVIATION: "⚠️ DEVIATION DETECTED:",
    ReviewStatus.NEEDS_VERIFICATION: "🔍 VERIFICATION NEEDED:",
    ReviewStatus.CRITICAL_FAILURE: "🚨 CRITICAL ISSUE:",
}


@dataclass
class StatusArtifact:
    timestamp: str
    message: str
    source: str

    @classmethod
    def now(cls, message: str, source: str) -> 'StatusArtifact':
        return cls(timestamp=datetime.now(timezone.utc).isoformat(), message=message, source=source)


@dataclass
class HookResult:
    """The single structured result handed back to the hook harness."""
    decision: str = "continue"
    message: str = ""
    committed: bool = False
    commit_hash: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.decision == "block"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_hook_output(self) -> Dict[str, Any]:
        """Render the JSON object the Stop hook prints on stdout."""
        output: Dict[str, Any] = {"continue": True}
        if self.blocked:
            output["decision"] = "block"
            output["reason"] = self.reason or self.message
        if self.message:
            output["systemMessage"] = self.message
        return output


class StatusSurface(abc.ABC):
    """Write-only display target for status artifacts."""

    @abc.abstractmethod
    def publish(self, artifact: StatusArtifact) -> None:
        """Publish artifact, replacing the previous one."""


class FileStatusSurface(StatusSurface):
    """Writes the artifact as JSON, atomically, for the status line to read."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def publish(self, artifact: StatusArtifact) -> None:
        """
        Replace the status file with artifact.

        Raises:
            FileOperationError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix='.hook-status-', suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(asdict(artifact), f, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise FileOperationError(f"Cannot write status file {self.path}: {e}")


class StatusReporter:
    """Builds the HookResult and publishes the status artifact."""

    def __init__(self, surface: Optional[StatusSurface], config: Optional[StatusConfig] = None):
        self.surface = surface
        self.config = config or StatusConfig()

    def is_excluded(self, message: str) -> bool:
        lowered = message.lower()
        return any(pattern.lower() in lowered for pattern in self.config.excluded_messages)

    def publish(self, message: str) -> bool:
        """
        Publish message unless it is excluded. Failures are logged, not raised.

        Returns:
            True if the artifact was written
        """
        if self.surface is None or not message or self.is_excluded(message):
            return False
        try:
            self.surface.publish(StatusArtifact.now(message, self.config.source))
        except FileOperationError as e:
            logger.warning(f"Status not published: {e}")
            return False
        return True

    def report(self, verdict: ReviewVerdict, outcome: CommitOutcome,
               stop_hook_active: bool = False) -> HookResult:
        """
        Turn a verdict and commit outcome into the hook result.

        Only a deviation can block, and only when blocking is enabled and
        the hook is not already running inside a blocked stop.
        """
        headline = f"{STATUS_PREFIXES[verdict.status]} {verdict.message}".strip()
        lines = [headline]
        if verdict.details:
            lines.append(f"Details: {verdict.details}")
        if outcome.committed:
            lines.append(f"Committed {(outcome.commit_hash or '')[:8]}: {outcome.message}")
        for warning in outcome.warnings:
            lines.append(f"Warning: {warning}")

        result = HookResult(
            message='\n'.join(lines),
            committed=outcome.committed,
            commit_hash=outcome.commit_hash,
            status=verdict.status.value,
            warnings=list(outcome.warnings),
        )

        if verdict.status is ReviewStatus.DEVIATION and self.config.block_on_deviation and not stop_hook_active:
            result.decision = "block"
            result.reason = (f"Deviation detected: {verdict.message}. "
                             "Please fix the issues and align with the task requirements.")

        self.publish(headline)
        logger.info(f"Review complete: {verdict.status.value}, decision {result.decision}")
        return result

    def report_message(self, message: str, publish: bool = True) -> HookResult:
        """Result for runs that end before review (clean tree, not a repository)."""
        if publish:
            self.publish(message)
        return HookResult(message=message)
