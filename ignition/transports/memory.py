from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..errors import NetworkError
from ..message import Envelope
from ..transport import Filter, OnEose, OnEvent, Subscription, Transport

logger = logging.getLogger(__name__)

def event_matches(filter_: Filter, event: Envelope) -> bool:
    """NIP-01 filter semantics: every present condition must hold."""
    if "ids" in filter_ and event.id not in filter_["ids"]:
        return False
    if "kinds" in filter_ and event.kind not in filter_["kinds"]:
        return False
    if "authors" in filter_ and event.pubkey not in filter_["authors"]:
        return False
    if "since" in filter_ and event.created_at < filter_["since"]:
        return False
    if "until" in filter_ and event.created_at > filter_["until"]:
        return False
    for key, wanted in filter_.items():
        if key.startswith("#") and len(key) == 2:
            if not set(event.tag_values(key[1])) & set(wanted):
                return False
    return True

@dataclass
class _LiveSub:
    filter_: Filter
    on_event: OnEvent
    on_eose: Optional[OnEose]
    closed: bool = False

@dataclass
class MemoryRelay:
    url: str
    events: Dict[str, Envelope] = field(default_factory=dict)
    subs: List[_LiveSub] = field(default_factory=list)
    reject: bool = False     # refuse every publish/query, as an unreachable relay would

@dataclass
class MemoryRelayNetwork:
    """A set of in-process relays shared by every MemoryTransport attached to it."""
    relays: Dict[str, MemoryRelay] = field(default_factory=dict)

    def relay(self, url: str) -> MemoryRelay:
        if url not in self.relays:
            self.relays[url] = MemoryRelay(url)
        return self.relays[url]

    def set_rejecting(self, url: str, reject: bool = True) -> None:
        self.relay(url).reject = reject

class MemorySubscription(Subscription):
    def __init__(self, live: List[tuple]):
        self._live = live       # (relay, _LiveSub)
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for relay, sub in self._live:
            sub.closed = True
            if sub in relay.subs:
                relay.subs.remove(sub)

    @property
    def closed(self) -> bool:
        return self._closed

class MemoryTransport(Transport):
    """
    Transport over a MemoryRelayNetwork.

    Delivery is scheduled on the event loop, never inline, so a publisher
    returns before any subscriber sees the event. An event published to two
    relays reaches a subscriber of both twice.
    """

    def __init__(self, network: Optional[MemoryRelayNetwork] = None):
        self.network = network or MemoryRelayNetwork()
        self.running = False
        self.published: List[Envelope] = []

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def subscribe(self, relays: Sequence[str], filter_: Filter, on_event: OnEvent,
                        on_eose: Optional[OnEose] = None) -> Subscription:
        loop = asyncio.get_running_loop()
        live = []
        for url in relays:
            relay = self.network.relay(url)
            if relay.reject:
                logger.debug("relay %s refused subscription", url)
                continue
            sub = _LiveSub(filter_, on_event, on_eose)
            relay.subs.append(sub)
            live.append((relay, sub))
            for event in list(relay.events.values()):
                if event_matches(filter_, event):
                    loop.call_soon(self._deliver, sub, event)
            if on_eose:
                loop.call_soon(self._eose, sub, url)
        return MemorySubscription(live)

    async def publish(self, relays: Sequence[str], event: Envelope) -> List[str]:
        loop = asyncio.get_running_loop()
        accepted: List[str] = []
        for url in relays:
            relay = self.network.relay(url)
            if relay.reject:
                logger.debug("relay %s rejected event %s", url, event.id)
                continue
            accepted.append(url)
            if event.id in relay.events:
                continue
            relay.events[event.id] = event
            for sub in list(relay.subs):
                if event_matches(sub.filter_, event):
                    loop.call_soon(self._deliver, sub, event)
        if not accepted:
            raise NetworkError(f"event {event.id} rejected by all {len(relays)} relays")
        self.published.append(event)
        return accepted

    async def query_sync(self, relays: Sequence[str], filter_: Filter,
                         timeout: float = 5.0) -> List[Envelope]:
        found: Dict[str, Envelope] = {}
        answered = 0
        for url in relays:
            relay = self.network.relay(url)
            if relay.reject:
                continue
            answered += 1
            for event in relay.events.values():
                if event_matches(filter_, event):
                    found.setdefault(event.id, event)
        if relays and not answered:
            raise NetworkError(f"query failed on all {len(relays)} relays")
        events = sorted(found.values(), key=lambda e: e.created_at, reverse=True)
        limit = filter_.get("limit")
        return events[:limit] if isinstance(limit, int) else events

    @staticmethod
    def _deliver(sub: _LiveSub, event: Envelope) -> None:
        if not sub.closed:
            sub.on_event(event)

    @staticmethod
    def _eose(sub: _LiveSub, url: str) -> None:
        if not sub.closed and sub.on_eose:
            sub.on_eose(url)
