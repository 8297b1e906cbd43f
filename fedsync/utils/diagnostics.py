"""
Error reporting for errors that belong to no single resource.

An ErrorReporter is handed to each component so that unexpected failures
are logged and counted without a process-wide handler.
"""

from typing import List, Optional

from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorReporter:
    """
    Collects process-level errors.
    
    Errors are logged and counted; the most recent ones are kept so that
    callers and tests can inspect them.
    """
    
    def __init__(self, component: str = "sync-controller", history_size: int = 100):
        """
        Initialize error reporter.
        
        Args:
            component: Component name attached to every log entry
            history_size: Number of recent errors to keep
        """
        self.component = component
        self.history_size = history_size
        self.error_count = 0
        self._recent: List[str] = []
    
    def handle_error(self, err: BaseException, context: Optional[str] = None) -> None:
        """
        Report an error.
        
        Args:
            err: The error
            context: Short description of what was being attempted
        """
        message = f"{context}: {err}" if context else str(err)
        
        self.error_count += 1
        self._recent.append(message)
        if len(self._recent) > self.history_size:
            self._recent.pop(0)
        
        logger.error(
            "Unhandled error",
            component=self.component,
            error=message,
            error_type=type(err).__name__,
        )
    
    def recent_errors(self) -> List[str]:
        return list(self._recent)
