"""Diagnostics for walkthrough runs that ended in an error.

The session records every error that escapes a run. The CLI prints the
summary and, on request, writes a log file that can be attached to a bug
report.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

VALIDATION_STEP = '<validation>'


class DiagnosticCollector:
    """Accumulates run failures for one CLI or host session."""

    def __init__(self):
        self.failures: List[Dict[str, Any]] = []
        self.start_time = datetime.now()

    def record_failure(self, script_id: str, step_id: Optional[str], error: str,
                       context: Optional[Dict[str, Any]] = None) -> None:
        """Record a run failure with context.

        Args:
            script_id: Script that was running
            step_id: Step the error escaped from (None if the script never
                got past validation)
            error: Error message
            context: Extra detail such as the error type
        """
        self.failures.append({
            'script': script_id,
            'step': step_id or VALIDATION_STEP,
            'error': error,
            'context': dict(context or {}),
            'timestamp': datetime.now().isoformat(),
        })

    def has_failures(self) -> bool:
        return len(self.failures) > 0

    def get_summary(self) -> str:
        if not self.failures:
            return "No failures recorded"

        lines = [f"{len(self.failures)} run failures detected:", ""]
        for failure in self.failures:
            lines.extend([
                f"* {failure['script']} failed at step: {failure['step']}",
                f"  Error: {failure['error']}",
            ])
        return "\n".join(lines)

    def _report(self) -> str:
        now = datetime.now()
        sections = [
            "Walkthrough Run Diagnostics",
            f"Session started: {self.start_time}",
            f"Generated: {now}",
            "=" * 70,
            "",
        ]
        for number, failure in enumerate(self.failures, 1):
            sections += [
                f"FAILURE {number}: {failure['script']}",
                "-" * 40,
                f"Step: {failure['step']}",
                f"Error: {failure['error']}",
                f"Timestamp: {failure['timestamp']}",
            ]
            if failure['context']:
                sections.append("Context:")
                sections += [f"  {key}: {value}" for key, value in failure['context'].items()]
            sections.append("")
        return "\n".join(sections) + "\n"

    def save_log(self, directory: Union[str, Path] = ".") -> str:
        """Write the full report to a timestamped file in ``directory``.

        Returns:
            Path of the written log file
        """
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(directory) / f"walkthrough_diagnostic_{stamp}.log"
        log_path.write_text(self._report())
        return str(log_path)
