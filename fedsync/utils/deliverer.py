"""
Delaying deliverer.

Delivers keyed items to a handler once their delivery time has passed.
Scheduling the same key again keeps the earlier of the two times, so a
burst of triggers collapses into a single delivery.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeliveryItem:
    """
    Item waiting for delivery.
    
    Attributes:
        key: Item key
        value: Opaque payload
        deliver_at: Monotonic delivery time in seconds
    """
    key: str
    value: Any
    deliver_at: float


class DelayingDeliverer:
    """Delivers items to an async handler after a per-item delay."""
    
    def __init__(self, check_interval_ms: int = 50):
        """
        Initialize deliverer.
        
        Args:
            check_interval_ms: How often pending items are examined
        """
        self.check_interval_ms = check_interval_ms
        
        self._items: Dict[str, DeliveryItem] = {}
        self._handler: Optional[Callable[[DeliveryItem], Awaitable[None]]] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
    
    def deliver_after(self, key: str, value: Any, delay_ms: int) -> None:
        """
        Schedule an item for delivery.
        
        Args:
            key: Item key
            value: Payload
            delay_ms: Delay before delivery
        """
        deliver_at = time.monotonic() + delay_ms / 1000
        
        existing = self._items.get(key)
        if existing is not None and existing.deliver_at <= deliver_at:
            return
        
        self._items[key] = DeliveryItem(key=key, value=value, deliver_at=deliver_at)
    
    def pending(self) -> int:
        return len(self._items)
    
    def start(self, handler: Callable[[DeliveryItem], Awaitable[None]]) -> None:
        """
        Start delivering items.
        
        Args:
            handler: Coroutine function invoked for each due item
        """
        if self._running:
            return
        
        self._handler = handler
        self._running = True
        self._task = asyncio.create_task(self._delivery_loop())
        
        logger.info("DelayingDeliverer started")
    
    async def stop(self) -> None:
        """Stop delivering items."""
        self._running = False
        
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        
        logger.info("DelayingDeliverer stopped")
    
    async def _delivery_loop(self) -> None:
        while self._running:
            try:
                now = time.monotonic()
                due = [item for item in self._items.values() if item.deliver_at <= now]
                
                for item in due:
                    del self._items[item.key]
                    await self._handler(item)
                
                await asyncio.sleep(self.check_interval_ms / 1000)
            
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "Error in delivery loop",
                    error=str(e),
                )
                await asyncio.sleep(self.check_interval_ms / 1000)
