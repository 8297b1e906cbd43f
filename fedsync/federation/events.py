"""
Event recording for federated resources.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

from fedsync.federation.metadata import QualifiedName
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


@dataclass
class Event:
    """
    An event emitted against a resource.
    
    Attributes:
        kind: Kind of the involved resource
        name: Qualified name of the involved resource
        event_type: Normal or Warning
        reason: Machine-readable reason
        message: Human-readable message
    """
    kind: str
    name: QualifiedName
    event_type: str
    reason: str
    message: str


class EventRecorder(ABC):
    """Sink for resource events."""
    
    @abstractmethod
    def event(self, obj: Dict[str, Any], event_type: str, reason: str, message: str) -> None:
        pass


class LoggingEventRecorder(EventRecorder):
    """Event recorder that writes events to the structured log and keeps them."""
    
    def __init__(self, component: str = "sync-controller"):
        self.component = component
        self.events: List[Event] = []
    
    def event(self, obj: Dict[str, Any], event_type: str, reason: str, message: str) -> None:
        recorded = Event(
            kind=obj.get("kind", ""),
            name=QualifiedName.from_object(obj),
            event_type=event_type,
            reason=reason,
            message=message,
        )
        self.events.append(recorded)
        
        log = logger.warning if event_type == EVENT_TYPE_WARNING else logger.info
        log(
            "Recorded event",
            component=self.component,
            kind=recorded.kind,
            key=str(recorded.name),
            reason=reason,
            message=message,
        )
    
    def reasons(self) -> List[str]:
        return [e.reason for e in self.events]
