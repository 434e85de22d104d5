"""
Codebase analysis run mode.

Asks the agent, with read-only tools and a hard deadline, which of a list
of tasks a project already implements. Whatever happens to the agent
process, the caller gets exactly one well-formed result per requested
subject, in request order.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .events import EventPublisher, EventType, NullPublisher
from .executors import AgentInvocation, BaseCLIExecutor, ProcessResult
from .models import AnalysisSubject
from .prompts import build_analysis_prompt

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_TIMEOUT = 120.0


class AnalysisStatus(Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    NOT_STARTED = "not_started"
    UNKNOWN = "unknown"


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AnalysisResult:
    """Verdict for one analysis subject."""

    subject_title: str
    status: AnalysisStatus
    confidence: Confidence
    evidence: str

    @classmethod
    def unknown(cls, subject_title: str, evidence: str) -> "AnalysisResult":
        return cls(
            subject_title=subject_title,
            status=AnalysisStatus.UNKNOWN,
            confidence=Confidence.LOW,
            evidence=evidence,
        )

    def to_dict(self) -> dict:
        return {
            "subjectTitle": self.subject_title,
            "status": self.status.value,
            "confidence": self.confidence.value,
            "evidence": self.evidence,
        }


def extract_results_payload(output: str) -> Optional[List[Any]]:
    """Find the first JSON object with a "results" list in free-form output.

    Leading and trailing prose (or markdown fences) around the object is
    tolerated.

    Returns:
        The results list, or None if no such object could be decoded
    """
    decoder = json.JSONDecoder()
    position = output.find("{")
    while position != -1:
        try:
            parsed, _ = decoder.raw_decode(output, position)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, dict) and "results" in parsed:
            results = parsed["results"]
            if isinstance(results, list):
                return results
            logger.error("Analysis output has a non-list results field")
            return None

        position = output.find("{", position + 1)

    return None


def _normalize_title(title: str) -> str:
    return " ".join(title.split()).lower()


def _coerce(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def reconcile_results(
    subjects: Sequence[AnalysisSubject],
    raw_results: List[Any],
) -> List[AnalysisResult]:
    """Produce exactly one result per subject from the agent's raw results.

    Titles are matched exactly first, then ignoring case and whitespace.
    Subjects the agent did not report on come back as unknown.
    """
    exact: Dict[str, dict] = {}
    loose: Dict[str, dict] = {}
    for entry in raw_results:
        if not isinstance(entry, dict):
            continue
        title = entry.get("subjectTitle", entry.get("taskTitle"))
        if not isinstance(title, str):
            continue
        exact.setdefault(title, entry)
        loose.setdefault(_normalize_title(title), entry)

    results = []
    for subject in subjects:
        entry = exact.get(subject.title) or loose.get(_normalize_title(subject.title))
        if entry is None:
            results.append(AnalysisResult.unknown(subject.title, "Not analyzed"))
            continue

        evidence = entry.get("evidence")
        results.append(AnalysisResult(
            subject_title=subject.title,
            status=_coerce(AnalysisStatus, entry.get("status"), AnalysisStatus.UNKNOWN),
            confidence=_coerce(Confidence, entry.get("confidence"), Confidence.LOW),
            evidence=str(evidence) if evidence is not None else "",
        ))
    return results


class CodebaseAnalyzer:
    """Runs the codebase analysis agent.

    Args:
        executor: Agent executor used to spawn the process
        publisher: Receives analysis:start/progress/complete events
        model: Model alias for the analysis run
        allowed_tools: Read-only tool allow-list
        timeout: Hard deadline in seconds
    """

    def __init__(
        self,
        executor: BaseCLIExecutor,
        publisher: Optional[EventPublisher] = None,
        model: str = "haiku",
        allowed_tools: Optional[List[str]] = None,
        timeout: float = DEFAULT_ANALYSIS_TIMEOUT,
    ):
        self.executor = executor
        self.publisher = publisher or NullPublisher()
        self.model = model
        self.allowed_tools = allowed_tools or ["Read", "Glob", "Grep"]
        self.timeout = timeout

    async def analyze(
        self,
        project_directory: str,
        subjects: Sequence[AnalysisSubject],
    ) -> List[AnalysisResult]:
        """Analyze a project and return one result per subject. Never raises."""
        subjects = list(subjects)
        if not subjects:
            return []

        self.publisher.publish(EventType.ANALYSIS_START, {"taskCount": len(subjects)})

        try:
            result = await self.executor.run(
                AgentInvocation(
                    prompt=build_analysis_prompt(subjects),
                    cwd=project_directory,
                    model=self.model,
                    allowed_tools=list(self.allowed_tools),
                    output_format="text",
                    timeout=self.timeout,
                ),
                on_output=lambda text: self.publisher.publish(
                    EventType.ANALYSIS_PROGRESS, {"message": text}
                ),
            )
            results, flags = self._interpret(result, subjects)
        except Exception as e:
            logger.exception(f"Codebase analysis of {project_directory} failed")
            results = [AnalysisResult.unknown(s.title, f"Analysis failed: {e}") for s in subjects]
            flags = {"error": True}

        self.publisher.publish(EventType.ANALYSIS_COMPLETE, {
            "results": [r.to_dict() for r in results],
            **flags,
        })
        return results

    def _interpret(
        self,
        result: ProcessResult,
        subjects: List[AnalysisSubject],
    ) -> tuple[List[AnalysisResult], Dict[str, bool]]:
        if result.timed_out:
            logger.warning(f"Codebase analysis timed out after {self.timeout:g}s")
            evidence = f"Analysis timed out after {self.timeout:g} seconds"
            return [AnalysisResult.unknown(s.title, evidence) for s in subjects], {"timedOut": True}

        if result.spawn_failed:
            evidence = f"Process error: {result.error}"
            return [AnalysisResult.unknown(s.title, evidence) for s in subjects], {"error": True}

        if result.exit_code != 0:
            logger.error(f"Codebase analysis exited with code {result.exit_code}")
            evidence = f"Analysis failed (exit code {result.exit_code})"
            return [AnalysisResult.unknown(s.title, evidence) for s in subjects], {"error": True}

        raw_results = extract_results_payload(result.output)
        if raw_results is None:
            logger.error("No analysis results JSON found in agent output")
            evidence = "Could not parse analysis results"
            return [AnalysisResult.unknown(s.title, evidence) for s in subjects], {"parseError": True}

        return reconcile_results(subjects, raw_results), {}
