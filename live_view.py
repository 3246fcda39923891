"""Per-view state: the full collection, the filter parameters and what is visible."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

import structlog

from filtering import (
    ALL,
    FilterSpec,
    all_facet_options,
    facet_options,
    filter_items,
    reconcile_facets,
    select_facet,
)
from subscriptions import Loader, Subscription, SubscriptionHub

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FilterParams:
    query: str = ""
    facets: Dict[str, str] = field(default_factory=dict)


class LiveView(Generic[T]):
    """Owns one listing's data and recomputes its visible subset on every change.

    ``on_change`` is called with the view after each recompute.
    """

    def __init__(self, spec: FilterSpec, params: Optional[FilterParams] = None,
                 on_change: Optional[Callable[["LiveView[T]"], None]] = None):
        self.spec = spec
        params = params or FilterParams()
        self.params = replace(
            params, facets={name: value for name, value in params.facets.items() if spec.facet(name)}
        )
        self.on_change = on_change
        self.full: List[T] = []
        self.visible: List[T] = []
        self._subscription: Optional[Subscription] = None
        self._closed = False

    # --- inputs ---
    def apply_snapshot(self, items: Iterable[T], reconcile: bool = False) -> None:
        """Adopt a complete new collection, keeping the current filters.

        ``reconcile`` checks the selected facets against the new collection
        first. Only the opening snapshot of a view passes it, so facets that
        arrived before any data was loaded cannot silently empty the view.
        """
        if self._closed:
            return
        self.full = list(items)
        if reconcile and self.params.facets:
            facets = reconcile_facets(self.full, self.params.facets, self.spec)
            self.params = replace(self.params, facets=facets)
        self._recompute()

    def set_query(self, query: str) -> None:
        self.params = replace(self.params, query=query or "")
        self._recompute()

    def select_facet(self, name: str, value: str) -> None:
        if self.spec.facet(name) is None:
            logger.debug("Ignoring undeclared facet", facet=name)
            return
        facets = select_facet(self.full, self.params.facets, name, value, self.spec)
        self.params = replace(self.params, facets=facets)
        self._recompute()

    def update(self, query: Optional[str] = None, facets: Optional[Dict[str, str]] = None) -> None:
        """Apply a batch of parameter changes with a single recompute."""
        if query is not None:
            self.params = replace(self.params, query=query)
        # A view without that facet has nothing to narrow by it
        facets = {name: value for name, value in (facets or {}).items() if self.spec.facet(name)}
        if facets:
            merged = dict(self.params.facets)
            merged.update({name: value or ALL for name, value in facets.items()})
            changed = [f.name for f in self.spec.facets if f.name in facets]
            if changed:
                merged = reconcile_facets(self.full, merged, self.spec, start=changed[0])
            self.params = replace(self.params, facets=merged)
        self._recompute()

    def clear_filters(self) -> None:
        self.params = FilterParams()
        self._recompute()

    def _recompute(self) -> None:
        if self._closed:
            return
        self.visible = filter_items(self.full, self.params.query, self.params.facets, self.spec)
        if self.on_change is not None:
            self.on_change(self)

    # --- derived ---
    def facet_options(self, name: str) -> List[str]:
        return facet_options(self.full, name, self.params.facets, self.spec)

    def all_facet_options(self) -> Dict[str, List[str]]:
        return all_facet_options(self.full, self.params.facets, self.spec)

    def selected(self) -> Dict[str, str]:
        return {facet.name: self.params.facets.get(facet.name, ALL) for facet in self.spec.facets}

    def pages(self, page_size: int) -> int:
        return math.ceil(len(self.visible) / page_size) if page_size > 0 else 1

    def page(self, number: int, page_size: int) -> Sequence[T]:
        start = (max(number, 1) - 1) * page_size
        return self.visible[start:start + page_size]

    # --- lifecycle ---
    def bind(self, hub: SubscriptionHub, loader: Loader, collections: Iterable[str],
             owner: Optional[str] = None,
             deliver: Optional[Callable[[List[T]], None]] = None) -> Subscription:
        """Follow a live query. ``deliver`` may reroute snapshots, e.g. onto an event loop."""
        if self._subscription is not None:
            self._subscription.close()
        self._subscription = hub.subscribe(loader, collections, deliver or self.apply_snapshot, owner=owner)
        return self._subscription

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.close()
        logger.debug("Live view closed", items=len(self.full))
