import asyncio
import logging
import threading
from typing import Annotated, Optional

from fastapi import Depends

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


class ChangeFeed:
    """Fan-out of row-change events to websocket subscribers.

    Publishers may run in the threadpool (sync endpoints), so every event is
    handed to the subscriber's own event loop with ``call_soon_threadsafe``.
    Subscribers only get told *that* something changed and re-fetch.
    """

    def __init__(self, table: str):
        self.table = table
        self._subscribers: dict = {}
        self._lock = threading.Lock()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_type: str, row_id: Optional[int] = None) -> None:
        event = {"table": self.table, "type": event_type, "item_id": row_id}
        with self._lock:
            targets = list(self._subscribers.items())
        for queue, loop in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                # loop already closed; the websocket handler never cleaned up
                logger.warning("Dropping %s subscriber with a closed loop", self.table)
                self.unsubscribe(queue)


item_feed = ChangeFeed("items")


def get_item_feed() -> ChangeFeed:
    return item_feed


ItemFeedDep = Annotated[ChangeFeed, Depends(get_item_feed)]
