"""
Lifecycle events published by the harness.

The harness only publishes; delivery to the board (websockets, queues,
terminal) is the publisher's concern. Publishing is fire-and-forget.
"""

import json
import logging
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional, TextIO

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event names as seen by subscribers."""
    RUN_PROGRESS = "run:progress"
    RUN_COMPLETE = "run:complete"
    ITERATION_START = "ralph:iteration_start"
    ITERATION_COMPLETE = "ralph:iteration_complete"
    LOOP_COMPLETE = "ralph:complete"
    TASK_UPDATED = "task:updated"
    ANALYSIS_START = "analysis:start"
    ANALYSIS_PROGRESS = "analysis:progress"
    ANALYSIS_COMPLETE = "analysis:complete"


class EventPublisher(ABC):
    """One-way publish capability the harness depends on."""

    @abstractmethod
    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Deliver one event. Override in subclasses."""
        pass

    def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Publish an event, logging and dropping any delivery failure."""
        try:
            self._publish(event_type, payload)
        except Exception:
            logger.exception(f"Failed to publish {event_type.value} event")


class NullPublisher(EventPublisher):
    """Discards every event."""

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        pass


class CallbackPublisher(EventPublisher):
    """Forwards events to a ``broadcast(type, payload)`` callable."""

    def __init__(self, broadcast: Callable[[str, Dict[str, Any]], None]):
        self.broadcast = broadcast

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.broadcast(event_type.value, payload)


class LoggingPublisher(EventPublisher):
    """Writes lifecycle events to the log; progress chunks go to DEBUG."""

    def __init__(self, name: str = "kanban_agent.events"):
        self.logger = logging.getLogger(name)

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if event_type in (EventType.RUN_PROGRESS, EventType.ANALYSIS_PROGRESS):
            self.logger.debug(f"{event_type.value}: {payload.get('message', '')!r}")
        elif event_type == EventType.TASK_UPDATED:
            self.logger.info(f"{event_type.value}: {payload.get('id')}")
        else:
            self.logger.info(f"{event_type.value}: {payload}")


class JsonLinesPublisher(EventPublisher):
    """Writes each event as one JSON object per line.

    Args:
        stream: Destination stream. Defaults to stdout.
        echo_progress: If True, progress messages are written as raw text
            instead of JSON so agent output reads naturally in a terminal.
    """

    def __init__(self, stream: Optional[TextIO] = None, echo_progress: bool = False):
        self.stream = stream or sys.stdout
        self.echo_progress = echo_progress

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self.echo_progress and event_type in (EventType.RUN_PROGRESS, EventType.ANALYSIS_PROGRESS):
            self.stream.write(payload.get("message", ""))
        else:
            self.stream.write(json.dumps({"type": event_type.value, "payload": payload}) + "\n")
        self.stream.flush()
