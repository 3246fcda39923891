"""Live query subscriptions over the document store.

A subscriber registers a loader (a callable that reads its full result set from
a session) together with the collections the result depends on. It receives one
snapshot right away and a fresh one after every committed write to any of those
collections. Snapshots are always complete; there is no diffing.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

Loader = Callable[[Session], List[Any]]
SnapshotCallback = Callable[[List[Any]], None]


@dataclass(frozen=True)
class Query:
    """Equality filters, one sort key and an optional limit over a collection."""

    collection: str
    where: Mapping[str, Any] = field(default_factory=dict)
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


class Subscription:
    """Handle for one live query. ``close`` may be called any number of times."""

    def __init__(self, hub: "SubscriptionHub", loader: Loader, collections: FrozenSet[str],
                 callback: SnapshotCallback, owner: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.loader = loader
        self.collections = collections
        self.callback = callback
        self.owner = owner
        self._hub = hub
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SubscriptionHub:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.session_factory = session_factory
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def _open_session(self) -> Session:
        if self.session_factory is None:
            from database import SessionLocal

            self.session_factory = SessionLocal
        return self.session_factory()

    def subscribe(self, loader: Loader, collections: Iterable[str], callback: SnapshotCallback,
                  owner: Optional[str] = None) -> Subscription:
        subscription = Subscription(self, loader, frozenset(collections), callback, owner)
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.info(
            "Subscription opened",
            subscription_id=subscription.id,
            collections=sorted(subscription.collections),
            owner=owner,
        )
        self._deliver([subscription])
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscriptions.pop(subscription.id, None)
        if removed is not None:
            logger.info("Subscription closed", subscription_id=subscription.id, owner=subscription.owner)

    def notify(self, *collections: str) -> None:
        """Push fresh snapshots to every subscriber watching any of ``collections``."""
        changed = set(collections)
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.collections & changed]
        if targets:
            self._deliver(targets)

    def release_owner(self, owner: str) -> int:
        with self._lock:
            owned = [s for s in self._subscriptions.values() if s.owner == owner]
        for subscription in owned:
            subscription.close()
        return len(owned)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _deliver(self, subscriptions: List[Subscription]) -> None:
        db = self._open_session()
        try:
            for subscription in subscriptions:
                if not subscription.active:
                    continue
                try:
                    snapshot = subscription.loader(db)
                    subscription.callback(snapshot)
                except Exception:
                    # A broken listener must not starve the others
                    logger.error(
                        "Snapshot delivery failed",
                        subscription_id=subscription.id,
                        exc_info=True,
                    )
                    db.rollback()
        finally:
            db.close()


hub = SubscriptionHub()
