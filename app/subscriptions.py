"""Per-user snapshot subscriptions.

A subscriber asks for one collection of one user (for example the
medications of user 7) and receives the full current list every time that
collection changes. Snapshots replace each other; nothing is merged on the
server and the last committed write wins.
"""
import logging
import queue
import threading
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Snapshot = list[dict[str, Any]]
SnapshotLoader = Callable[[int], Snapshot]

_CLOSED = object()


class UnknownCollectionError(KeyError):
    pass


class Subscription:
    def __init__(self, hub: "SnapshotHub", user_id: int, collection: str, keepalive_seconds: float = 15.0):
        self.hub = hub
        self.user_id = user_id
        self.collection = collection
        self.keepalive_seconds = keepalive_seconds
        self.closed = False
        self._queue: queue.Queue = queue.Queue()

    def push(self, snapshot: Snapshot) -> None:
        if not self.closed:
            self._queue.put(snapshot)

    def get(self, timeout: float | None = None) -> Snapshot | None:
        """Next snapshot, or None when cancelled or when the timeout passes."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub.unsubscribe(self)
        self._queue.put(_CLOSED)

    def __iter__(self):
        # None marks an idle interval so stream writers can send keepalives.
        while not self.closed:
            try:
                item = self._queue.get(timeout=self.keepalive_seconds)
            except queue.Empty:
                yield None
                continue
            if item is _CLOSED:
                return
            yield item

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()


class SnapshotHub:
    def __init__(self):
        self._loaders: dict[str, SnapshotLoader] = {}
        self._subscriptions: dict[tuple[int, str], list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    @property
    def collections(self) -> list[str]:
        return sorted(self._loaders)

    def register(self, collection: str, loader: SnapshotLoader) -> None:
        self._loaders[collection] = loader

    def _loader_for(self, collection: str) -> SnapshotLoader:
        loader = self._loaders.get(collection)
        if loader is None:
            raise UnknownCollectionError(collection)
        return loader

    def subscribe(self, user_id: int, collection: str, **kwargs) -> Subscription:
        loader = self._loader_for(collection)
        subscription = Subscription(self, user_id, collection, **kwargs)
        with self._lock:
            self._subscriptions[(user_id, collection)].append(subscription)
        subscription.push(loader(user_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        key = (subscription.user_id, subscription.collection)
        with self._lock:
            live = self._subscriptions.get(key, [])
            if subscription in live:
                live.remove(subscription)
            if not live:
                self._subscriptions.pop(key, None)

    def subscriber_count(self, user_id: int, collection: str) -> int:
        with self._lock:
            return len(self._subscriptions.get((user_id, collection), []))

    def publish(self, user_id: int, *collections: str) -> int:
        """Push a fresh snapshot of each collection; returns deliveries made."""
        delivered = 0
        for collection in collections:
            with self._lock:
                targets = list(self._subscriptions.get((user_id, collection), []))
            if not targets:
                continue
            try:
                snapshot = self._loader_for(collection)(user_id)
            except UnknownCollectionError:
                raise
            except Exception:
                logger.exception("Snapshot load failed for %s user_id=%s", collection, user_id)
                continue
            for subscription in targets:
                subscription.push(snapshot)
                delivered += 1
        return delivered
