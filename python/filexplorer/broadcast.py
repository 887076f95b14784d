"""
Change broadcaster for connected observers (SSE clients).

Each subscriber owns a bounded asyncio.Queue. publish() never blocks: a
subscriber whose queue is full misses that message and keeps its
subscription.
"""

import asyncio
import itertools
import logging
from typing import Optional

logger = logging.getLogger("filexplorer.broadcast")

DEFAULT_QUEUE_SIZE = 256

ENTRY_ADDED = "entry-added"
ENTRY_UPDATED = "entry-updated"
ENTRY_REMOVED = "entry-removed"
TAG_ADDED = "tag-added"
TAG_REMOVED = "tag-removed"


def entry_message(kind: str, path: str) -> dict:
    return {"type": kind, "path": path}


def tag_message(kind: str, path: str, key: str, value: str) -> dict:
    return {"type": kind, "path": path, "tag": {"key": key, "value": value}}


class ChangeBroadcaster:
    """Fan-out of index change messages to subscribers."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: dict[int, asyncio.Queue] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> tuple[int, asyncio.Queue]:
        """Register a subscriber; returns (subscriber id, its queue)."""
        subscriber_id = next(self._ids)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[subscriber_id] = queue
        logger.info(f"Subscriber {subscriber_id} connected ({len(self._subscribers)} total)")
        return subscriber_id, queue

    def unsubscribe(self, subscriber_id: int) -> None:
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.info(
                f"Subscriber {subscriber_id} disconnected ({len(self._subscribers)} remaining)"
            )

    def publish(self, message: dict) -> int:
        """
        Deliver message to every subscriber with room for it.

        Returns:
            Number of subscribers that received it
        """
        delivered = 0
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    f"Queue full for subscriber {subscriber_id}; dropping {message.get('type')}"
                )
        return delivered

    def close(self, final_message: Optional[dict] = None) -> None:
        """Drop all subscribers, optionally after one last message."""
        if final_message is not None:
            self.publish(final_message)
        self._subscribers.clear()
