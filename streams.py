"""Server-sent event streams that follow a live view for one connected client."""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog
from fastapi.concurrency import run_in_threadpool
from structlog.contextvars import get_contextvars

from live_view import FilterParams, LiveView
from subscriptions import Subscription, SubscriptionHub
from views import ViewDefinition

logger = structlog.get_logger(__name__)


def render_snapshot(live: LiveView, page_size: int) -> Dict:
    return {
        "items": [item.model_dump(by_alias=True, mode="json") for item in live.visible],
        "total": len(live.visible),
        "pages": live.pages(page_size),
        "query": live.params.query,
        "facets": live.selected(),
        "facetOptions": live.all_facet_options(),
    }


@dataclass
class LiveStream:
    id: str
    owner: str
    view: ViewDefinition
    live: LiveView
    queue: asyncio.Queue
    subscription: Optional[Subscription] = field(default=None)


class StreamManager:
    def __init__(self, hub: SubscriptionHub, page_size: int = 10):
        self.hub = hub
        self.page_size = page_size
        self.streams: Dict[str, LiveStream] = {}

    async def open(self, owner: str, view: ViewDefinition, params: Optional[FilterParams] = None) -> LiveStream:
        """Start following ``view`` for ``owner``; the first snapshot is queued right away."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stream_id = uuid.uuid4().hex

        def push(live: LiveView) -> None:
            payload = render_snapshot(live, self.page_size)
            payload["streamId"] = stream_id
            request_id = get_contextvars().get("request_id")
            if request_id:
                payload["request_id"] = request_id
            queue.put_nowait({"event": "snapshot", "data": json.dumps(payload)})

        live: LiveView = LiveView(view.spec, params, on_change=push)
        stream = LiveStream(stream_id, owner, view, live, queue)
        self.streams[stream_id] = stream

        opened = False

        def adopt(items: List) -> None:
            nonlocal opened
            # Facets from the request are checked once, against the first snapshot
            live.apply_snapshot(items, reconcile=not opened)
            opened = True

        def deliver(items: List) -> None:
            # Snapshots are always loaded on a worker thread
            loop.call_soon_threadsafe(adopt, items)

        # The first snapshot is a blocking query; keep it off the event loop
        stream.subscription = await run_in_threadpool(
            live.bind, self.hub, view.load, view.collections, owner, deliver
        )
        logger.info("Live stream opened", stream_id=stream_id, view=view.name, owner=owner)
        return stream

    def get(self, stream_id: str, owner: str) -> Optional[LiveStream]:
        stream = self.streams.get(stream_id)
        if stream is None or stream.owner != owner:
            return None
        return stream

    def update_filters(self, stream_id: str, owner: str, query: Optional[str] = None,
                       facets: Optional[Dict[str, str]] = None) -> Optional[LiveStream]:
        stream = self.get(stream_id, owner)
        if stream is None:
            return None
        stream.live.update(query=query, facets=facets)
        return stream

    def close(self, stream_id: str) -> None:
        stream = self.streams.pop(stream_id, None)
        if stream is None:
            return
        stream.live.close()
        logger.info("Live stream closed", stream_id=stream_id, owner=stream.owner)

    def close_owner(self, owner: str) -> int:
        owned = [stream_id for stream_id, s in self.streams.items() if s.owner == owner]
        for stream_id in owned:
            self.close(stream_id)
        # Anything else the owner subscribed to outside a stream
        self.hub.release_owner(owner)
        return len(owned)
