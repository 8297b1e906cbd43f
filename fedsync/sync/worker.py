"""
Reconcile worker.

Queues resource names and calls the reconcile function for them, never
running two reconciles of the same name at once. The status returned by
reconcile decides when the name is processed again.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from fedsync.federation.metadata import QualifiedName, ReconciliationStatus
from fedsync.utils.config import ControllerConfig
from fedsync.utils.diagnostics import ErrorReporter
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

ReconcileFunc = Callable[[QualifiedName], Awaitable[ReconciliationStatus]]


@dataclass
class WorkerTiming:
    """
    Requeue delays per reconcile outcome.
    
    Attributes:
        retry_delay_ms: Delay after NEEDS_RECHECK
        initial_backoff_ms: First delay after ERROR
        max_backoff_ms: Ceiling for the doubling ERROR delay
        cluster_sync_delay_ms: Delay after NOT_SYNCED
    """
    retry_delay_ms: int = 10000
    initial_backoff_ms: int = 5000
    max_backoff_ms: int = 60000
    cluster_sync_delay_ms: int = 20000
    
    @classmethod
    def from_config(cls, config: ControllerConfig) -> "WorkerTiming":
        return cls(
            retry_delay_ms=config.retry_delay_ms,
            initial_backoff_ms=config.initial_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
            cluster_sync_delay_ms=config.cluster_available_delay_ms,
        )


class ReconcileWorker:
    """
    Single-flight reconcile queue.
    
    A name enqueued while it is being reconciled is processed again once
    the running reconcile finishes. Delayed enqueues of the same name keep
    the earliest time.
    """
    
    def __init__(
        self,
        reconcile: ReconcileFunc,
        timing: Optional[WorkerTiming] = None,
        workers: int = 1,
        reporter: Optional[ErrorReporter] = None,
    ):
        """
        Initialize reconcile worker.
        
        Args:
            reconcile: Coroutine function reconciling one name
            timing: Requeue delays
            workers: Number of concurrent reconciles across different names
            reporter: Error reporter for reconcile crashes
        """
        self.reconcile = reconcile
        self.timing = timing or WorkerTiming()
        self.workers = max(1, workers)
        self.reporter = reporter or ErrorReporter()
        
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[QualifiedName] = set()
        self._processing: Set[QualifiedName] = set()
        self._dirty: Set[QualifiedName] = set()
        
        # name -> (due time, timer handle)
        self._timers: Dict[QualifiedName, Tuple[float, asyncio.TimerHandle]] = {}
        
        # name -> current error backoff in ms
        self._backoff: Dict[QualifiedName, int] = {}
        
        self._tasks: List[asyncio.Task] = []
        self._running = False
    
    async def start(self) -> None:
        """Start worker tasks."""
        if self._running:
            return
        
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i))
            for i in range(self.workers)
        ]
        
        logger.info("ReconcileWorker started", workers=self.workers)
    
    async def stop(self) -> None:
        """Stop worker tasks and drop pending timers."""
        self._running = False
        
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        
        logger.info("ReconcileWorker stopped")
    
    def enqueue(self, qualified_name: QualifiedName) -> None:
        """Queue a name for immediate processing."""
        timer = self._timers.pop(qualified_name, None)
        if timer is not None:
            timer[1].cancel()
        
        if qualified_name in self._queued:
            return
        if qualified_name in self._processing:
            self._dirty.add(qualified_name)
            return
        
        self._queued.add(qualified_name)
        self._queue.put_nowait(qualified_name)
    
    def enqueue_with_delay(self, qualified_name: QualifiedName, delay_ms: int) -> None:
        """Queue a name after a delay."""
        if delay_ms <= 0:
            self.enqueue(qualified_name)
            return
        
        loop = asyncio.get_running_loop()
        due = loop.time() + delay_ms / 1000
        
        existing = self._timers.get(qualified_name)
        if existing is not None:
            if existing[0] <= due:
                return
            existing[1].cancel()
        
        handle = loop.call_later(delay_ms / 1000, self.enqueue, qualified_name)
        self._timers[qualified_name] = (due, handle)
    
    def enqueue_for_retry(self, qualified_name: QualifiedName) -> None:
        self.enqueue_with_delay(qualified_name, self.timing.retry_delay_ms)
    
    def enqueue_for_cluster_sync(self, qualified_name: QualifiedName) -> None:
        self.enqueue_with_delay(qualified_name, self.timing.cluster_sync_delay_ms)
    
    def enqueue_for_error(self, qualified_name: QualifiedName) -> None:
        """Queue a name after its next exponential backoff delay."""
        previous = self._backoff.get(qualified_name)
        if previous is None:
            backoff = self.timing.initial_backoff_ms
        else:
            backoff = min(previous * 2, self.timing.max_backoff_ms)
        self._backoff[qualified_name] = backoff
        
        self.enqueue_with_delay(qualified_name, backoff)
    
    def current_backoff_ms(self, qualified_name: QualifiedName) -> Optional[int]:
        return self._backoff.get(qualified_name)
    
    def is_scheduled(self, qualified_name: QualifiedName) -> bool:
        return qualified_name in self._timers or qualified_name in self._queued
    
    def handle_status(self, qualified_name: QualifiedName, status: ReconciliationStatus) -> None:
        """Requeue a name according to its reconcile outcome."""
        if status == ReconciliationStatus.ALL_OK:
            self._backoff.pop(qualified_name, None)
        elif status == ReconciliationStatus.ERROR:
            self.enqueue_for_error(qualified_name)
        elif status == ReconciliationStatus.NEEDS_RECHECK:
            self.enqueue_for_retry(qualified_name)
        elif status == ReconciliationStatus.NOT_SYNCED:
            self.enqueue_for_cluster_sync(qualified_name)
    
    async def _worker_loop(self, worker_id: int) -> None:
        while self._running:
            try:
                qualified_name = await self._queue.get()
            except asyncio.CancelledError:
                break
            
            self._queued.discard(qualified_name)
            self._processing.add(qualified_name)
            
            try:
                status = await self.reconcile(qualified_name)
            except asyncio.CancelledError:
                self._processing.discard(qualified_name)
                break
            except Exception as e:
                self.reporter.handle_error(e, f"reconcile of {qualified_name} failed")
                status = ReconciliationStatus.ERROR
            finally:
                self._queue.task_done()
            
            self._processing.discard(qualified_name)
            
            logger.debug(
                "Reconciled",
                worker=worker_id,
                key=str(qualified_name),
                status=status.value,
            )
            
            self.handle_status(qualified_name, status)
            
            if qualified_name in self._dirty:
                self._dirty.discard(qualified_name)
                self.enqueue(qualified_name)
