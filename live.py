"""
Live queries

A standing query is registered against one collection. Whenever a write to that
collection goes through the DocumentStore, every standing query on it is re-run
and its *whole* current result is pushed to the subscriber. Consumers replace
their local view on each snapshot, they never append.
"""
import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from errors import HackMateError, translate_store_error

logger = logging.getLogger(__name__)

Snapshot = List[Dict[str, Any]]
SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[HackMateError], None]


class Subscription:
    """Handle for one standing query. Call unsubscribe() when the view goes away."""

    def __init__(
        self,
        hub: "LiveQueryHub",
        collection: str,
        run_query: Callable[[], Any],
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.id = uuid.uuid4().hex
        self.collection = collection
        self.active = True
        self._hub = hub
        self._run_query = run_query
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        # reentrant: a consumer may write to the collection it watches
        self._refresh_lock = threading.RLock()

    def refresh(self) -> None:
        # query and delivery happen under one lock so snapshots arrive in query order
        with self._refresh_lock:
            if not self.active:
                return
            try:
                snapshot = self._run_query()
            except Exception as e:
                error = translate_store_error(e)
                logger.warning("Subscription %s on %s ended: %s", self.id, self.collection, error.detail)
                # terminal: the caller has to subscribe again
                self.unsubscribe()
                if self._on_error is not None:
                    self._on_error(error)
                return
            try:
                self._on_snapshot(snapshot)
            except Exception:
                logger.exception("Snapshot consumer for subscription %s failed", self.id)

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._hub.remove(self)


class LiveQueryHub:
    def __init__(self):
        self._lock = threading.Lock()
        # collection -> subscription id -> Subscription
        self._subscriptions: Dict[str, Dict[str, Subscription]] = {}

    def subscribe(
        self,
        collection: str,
        run_query: Callable[[], Any],
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Register a standing query and deliver its first snapshot right away."""
        sub = Subscription(self, collection, run_query, on_snapshot, on_error)
        with self._lock:
            self._subscriptions.setdefault(collection, {})[sub.id] = sub
        logger.debug("Subscribed %s to %s", sub.id, collection)
        sub.refresh()
        return sub

    def remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.get(sub.collection, {}).pop(sub.id, None)
        logger.debug("Unsubscribed %s from %s", sub.id, sub.collection)

    def notify(self, collection: str) -> None:
        with self._lock:
            subs = list(self._subscriptions.get(collection, {}).values())
        for sub in subs:
            sub.refresh()

    def count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._subscriptions.get(collection, {}))
            return sum(len(s) for s in self._subscriptions.values())
