from __future__ import annotations
import asyncio
import json
import logging
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from nostr_sdk import Client, Event, Filter, HandleNotification, NostrSdkError, RelayMessage

from ..errors import NetworkError, ProtocolError
from ..message import Envelope
from ..transport import Filter as FilterDict, OnEose, OnEvent, Subscription, Transport
from ..wire import pack_event, unpack_event

logger = logging.getLogger(__name__)

class _Notifications(HandleNotification):
    def __init__(self, transport: "RelayTransport"):
        self._transport = transport

    async def handle(self, relay_url: str, subscription_id: str, event: Event):
        self._transport._on_event(relay_url, subscription_id, event)

    async def handle_msg(self, relay_url: str, msg: RelayMessage):
        m = msg.as_enum()
        if m.is_end_of_stored_events():
            self._transport._on_eose(relay_url, m.subscription_id)

class RelaySubscription(Subscription):
    def __init__(self, transport: "RelayTransport", sub_id: str):
        self._transport = transport
        self.id = sub_id
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport._handlers.pop(self.id, None)
        try:
            await self._transport.client.unsubscribe(self.id)
        except NostrSdkError as ex:
            logger.warning("unsubscribe %s failed: %s", self.id, ex)

    @property
    def closed(self) -> bool:
        return self._closed

class RelayTransport(Transport):
    """Transport over a nostr-sdk Client (websocket relay pool).

    Mapping:
    - subscribe -> REQ on the given relays; events and EOSE arrive through one
      notification loop and are routed by subscription id
    - publish   -> EVENT to the given relays; OK messages decide success
    - query_sync -> REQ that completes on EOSE from all relays or on timeout
    """

    def __init__(self, relays: Sequence[str] = (), client: Optional[Client] = None):
        self.client = client or Client()
        self._relays: List[str] = list(relays)
        self._added: Set[str] = set()
        self._handlers: Dict[str, Tuple[OnEvent, Optional[OnEose]]] = {}
        self._notify_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self) -> None:
        if self.running:
            return
        await self._ensure_relays(self._relays)
        self._notify_task = asyncio.create_task(self.client.handle_notifications(_Notifications(self)))
        self.running = True
        logger.info("relay transport started on %s", ", ".join(self._relays) or "no relays")

    async def stop(self) -> None:
        self.running = False
        self._handlers.clear()
        if self._notify_task:
            self._notify_task.cancel()
            try:
                await self._notify_task
            except asyncio.CancelledError:
                pass
            self._notify_task = None
        try:
            await self.client.disconnect()
        except NostrSdkError as ex:
            logger.warning("disconnect failed: %s", ex)

    async def subscribe(self, relays: Sequence[str], filter_: FilterDict, on_event: OnEvent,
                        on_eose: Optional[OnEose] = None) -> Subscription:
        await self._ensure_relays(relays)
        try:
            output = await self.client.subscribe_to(list(relays), _to_filter(filter_))
        except NostrSdkError as ex:
            raise NetworkError(f"subscribe failed: {ex}") from ex
        if not output.success:
            raise NetworkError(f"subscribe failed on all relays: {output.failed}")
        self._handlers[output.id] = (on_event, on_eose)
        return RelaySubscription(self, output.id)

    async def publish(self, relays: Sequence[str], event: Envelope) -> List[str]:
        await self._ensure_relays(relays)
        try:
            output = await self.client.send_event_to(list(relays), Event.from_json(pack_event(event)))
        except NostrSdkError as ex:
            raise NetworkError(f"publish of {event.id} failed: {ex}") from ex
        if not output.success:
            raise NetworkError(f"event {event.id} rejected by all relays: {output.failed}")
        for url, reason in output.failed.items():
            logger.debug("relay %s rejected %s: %s", url, event.id, reason)
        return list(output.success)

    async def query_sync(self, relays: Sequence[str], filter_: FilterDict,
                         timeout: float = 5.0) -> List[Envelope]:
        await self._ensure_relays(relays)
        try:
            events = await self.client.fetch_events_from(
                list(relays), _to_filter(filter_), timedelta(seconds=timeout))
        except NostrSdkError as ex:
            raise NetworkError(f"query failed: {ex}") from ex
        out: List[Envelope] = []
        for e in events.to_vec():
            try:
                out.append(unpack_event(e.as_json()))
            except ProtocolError as ex:
                logger.warning("dropping malformed stored event: %s", ex)
        return out

    async def _ensure_relays(self, relays: Sequence[str]) -> None:
        new = [url for url in relays if url not in self._added]
        if not new:
            return
        for url in new:
            try:
                await self.client.add_relay(url)
            except NostrSdkError as ex:
                logger.warning("cannot add relay %s: %s", url, ex)
                continue
            self._added.add(url)
        await self.client.connect()

    def _on_event(self, relay_url: str, subscription_id: str, event: Event) -> None:
        handlers = self._handlers.get(subscription_id)
        if not handlers:
            return
        try:
            env = unpack_event(event.as_json())
        except ProtocolError as ex:
            logger.warning("dropping malformed event from %s: %s", relay_url, ex)
            return
        handlers[0](env)

    def _on_eose(self, relay_url: str, subscription_id: str) -> None:
        handlers = self._handlers.get(subscription_id)
        if handlers and handlers[1]:
            handlers[1](relay_url)

def _to_filter(filter_: FilterDict) -> Filter:
    return Filter.from_json(json.dumps(filter_))
