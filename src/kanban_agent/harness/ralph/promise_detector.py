"""
Promise detection for ralph loop completion.

Detects the completion promise an agent emits in its output to signal
that a ralph loop task is finished.
"""

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class DetectionResult:
    """Result of promise detection."""
    found: bool
    promise_text: Optional[str] = None  # Interior of the first tag, trimmed
    position: Optional[int] = None  # Start position of the first tag


class PromiseDetector:
    """Detects completion promises in agent output.

    Only the first ``<promise>...</promise>`` tag in the output counts.
    Its interior is trimmed and compared case-insensitively with the
    expected promise; tags themselves are matched case-insensitively and
    may span several lines.

    Example:
        detector = PromiseDetector(promise="TASK_COMPLETE")
        result = detector.detect("Done. <promise>task_complete</promise>")
        assert result.found
    """

    XML_PATTERN = re.compile(
        r'<promise>(.+?)</promise>',
        re.IGNORECASE | re.DOTALL
    )

    def __init__(self, promise: str):
        self.promise = promise.strip()
        self._normalized_promise = self.promise.lower()

    def detect(self, output: str) -> DetectionResult:
        """Detect if the promise is present in the output.

        Args:
            output: The agent output to scan

        Returns:
            DetectionResult with found=True if the first promise tag
            carries the expected text. promise_text is filled whenever
            a tag is present, matching or not.
        """
        if not output:
            return DetectionResult(found=False)

        match = self.XML_PATTERN.search(output)
        if match is None:
            return DetectionResult(found=False)

        promise_content = match.group(1).strip()
        return DetectionResult(
            found=promise_content.lower() == self._normalized_promise,
            promise_text=promise_content,
            position=match.start(),
        )


def detect_promise(output: str, expected: str) -> bool:
    """Return True if the first promise tag in output equals expected."""
    return PromiseDetector(expected).detect(output).found
