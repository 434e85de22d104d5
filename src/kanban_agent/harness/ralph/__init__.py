"""
Ralph-Wiggum style loop for the harness.

A loop re-runs the agent on the same task until it emits the completion
promise or the iteration bound is reached.
"""

from .executor import RalphExecutor, RalphResult
from .iteration_tracker import IterationRecord, IterationTracker
from .promise_detector import DetectionResult, PromiseDetector, detect_promise

__all__ = [
    "DetectionResult",
    "IterationRecord",
    "IterationTracker",
    "PromiseDetector",
    "RalphExecutor",
    "RalphResult",
    "detect_promise",
]
