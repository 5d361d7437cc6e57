from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union
import asyncio
import json
import logging
import time

from .builder import EnvelopeBuilder, new_request_id
from .codecs import Codec, Nip04Codec
from .errors import (
    ConfigurationError,
    CryptoError,
    NetworkError,
    ProtocolError,
    RemoteError,
    RequestTimeoutError,
    ValidationError,
)
from .keys import KeyPair
from .message import (
    Envelope,
    Kind,
    Nip46Request,
    Nip46Response,
    PUBKEY_REGEX,
    ResponseKind,
    SessionState,
    classify,
)
from .transport import Subscription, Transport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 7000

AuthUrlHandler = Callable[[str, "PendingRequest"], None]
RequestHandler = Callable[[Nip46Request], None]

@dataclass
class PendingRequest:
    id: str
    method: str
    counterparty: str
    created_at: float
    future: "asyncio.Future[Nip46Response]"
    timer: Optional[asyncio.TimerHandle] = None
    auth_urls: Set[str] = field(default_factory=set)


class Nip46Engine:

    # Notes:
    # - One subscription (kinds 24133/24134, #p = our pubkey) lives as long as the engine
    # - The subscription callback only enqueues; a dispatcher task decrypts and routes
    # - Responses match pending requests by id only; arrival order is irrelevant
    # - A pending request ends on its first terminal response or on its timer, whichever
    #   comes first; later duplicates find no entry and are dropped
    # - Bad inbound events (decrypt, JSON, shape, unknown id) are logged and skipped

    def __init__(self, transport: Transport, keys: Optional[KeyPair], relays: Sequence[str], *,
                 codec: Optional[Codec] = None, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 state: Optional[SessionState] = None):
        if keys is None:
            raise ConfigurationError("No keys found")
        self.t = transport
        self.keys = keys
        self.relays = list(relays)
        self.codec = codec or Nip04Codec()
        self.timeout_ms = timeout_ms
        self.state = state or SessionState()

        self.pending: Dict[str, PendingRequest] = {}

        # Handlers
        self._auth_handlers: List[AuthUrlHandler] = []
        self._req_handlers: List[RequestHandler] = []

        self._inbox: "asyncio.Queue[Envelope]" = asyncio.Queue()
        self._subscription: Optional[Subscription] = None
        self._dispatcher: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    def on_auth_url(self, handler: AuthUrlHandler) -> None:
        """Called with (url, pending request) when a bunker asks the user to visit a url."""
        self._auth_handlers.append(handler)

    def on_request(self, handler: RequestHandler) -> None:
        """Called for inbound NIP-46 requests addressed to our key."""
        self._req_handlers.append(handler)

    async def start(self) -> None:
        if self.running:
            return
        self._subscription = await self.t.subscribe(
            self.relays,
            {"kinds": [int(Kind.NOSTR_CONNECT), int(Kind.CREATE_ACCOUNT)], "#p": [self.keys.public_key]},
            self._inbox.put_nowait,
            lambda url: logger.debug("EOSE from %s", url),
        )
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        logger.info("listening for NIP-46 traffic to %s on %d relays", self.keys.public_key, len(self.relays))

    async def close(self) -> None:
        """Close the subscription. Pending requests are left to their timers."""
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

    async def send(self, method: str, params: List[Any], counterparty: Optional[str], *,
                   kind: int = Kind.NOSTR_CONNECT, timeout_ms: Optional[int] = None) -> Nip46Response:
        """
        Encrypt, sign and publish a request, then wait for its response.

        Raises:
          ConfigurationError   no counterparty pubkey
          ValidationError      counterparty is not a 64-hex pubkey
          NetworkError         every relay rejected the event
          RequestTimeoutError  no terminal response within the window
          RemoteError          the bunker answered with an error
        """
        if not counterparty:
            raise ConfigurationError("No remote public key found")
        if not PUBKEY_REGEX.match(counterparty):
            raise ValidationError(f"Invalid pubkey: {counterparty!r}")
        # relays and event pubkeys use lowercase hex
        counterparty = counterparty.lower()

        req_id = new_request_id()
        while req_id in self.pending:
            req_id = new_request_id()

        envelope = (EnvelopeBuilder(self.keys, self.codec)
                    .request(method, params, request_id=req_id)
                    .kind(kind)
                    .to(counterparty)
                    .build())

        loop = asyncio.get_running_loop()
        window = self.timeout_ms if timeout_ms is None else timeout_ms
        entry = PendingRequest(
            id=req_id,
            method=method,
            counterparty=counterparty,
            created_at=time.time(),
            future=loop.create_future(),
        )
        # register before publishing so a fast response can't miss its entry
        self.pending[req_id] = entry
        entry.timer = loop.call_later(window / 1000.0, self._expire, req_id, window)

        try:
            await self.t.publish(self.relays, envelope)
        except NetworkError:
            self._drop(req_id)
            raise
        logger.debug("sent %s request %s to %s", method, req_id, counterparty)

        return await entry.future

    async def parse_event(self, event: Envelope) -> Union[Nip46Request, Nip46Response]:
        """Decrypt an inbound envelope into a request or response shape."""
        plaintext = self.codec.decrypt(self.keys.private_key, event.pubkey, event.content)
        try:
            body = json.loads(plaintext)
        except (ValueError, RecursionError) as ex:
            raise ProtocolError(f"event {event.id} content is not JSON") from ex
        if not isinstance(body, dict) or not isinstance(body.get("id"), str):
            raise ProtocolError(f"event {event.id} payload has no string id")

        if body.get("method"):
            params = body.get("params") or []
            if not isinstance(params, list):
                raise ProtocolError(f"event {event.id} params must be a list")
            return Nip46Request(id=body["id"], pubkey=event.pubkey, method=str(body["method"]),
                                params=params, event=event)

        result, error = body.get("result"), body.get("error")
        return Nip46Response(id=body["id"], result=result, error=error,
                             kind=classify(result, error), event=event)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                msg = await self.parse_event(event)
            except (CryptoError, ProtocolError) as ex:
                logger.warning("dropping event %s from %s: %s", event.id, event.pubkey, ex)
                continue
            except Exception:
                logger.exception("unexpected failure parsing event %s", event.id)
                continue

            if isinstance(msg, Nip46Request):
                for handler in self._req_handlers:
                    try:
                        handler(msg)
                    except Exception:
                        logger.exception("request handler failed for %s", msg.method)
                continue

            try:
                self._handle_response(msg)
            except Exception:
                logger.exception("unexpected failure handling response %s", msg.id)

    def _handle_response(self, resp: Nip46Response) -> None:
        entry = self.pending.get(resp.id)
        if entry is None:
            logger.debug("no pending request for response %s", resp.id)
            return
        if resp.event.pubkey != entry.counterparty:
            logger.warning("response %s came from %s, expected %s",
                           resp.id, resp.event.pubkey, entry.counterparty)
            return

        if resp.kind == ResponseKind.AUTH_URL:
            url = resp.error
            if not isinstance(url, str) or not url or url in entry.auth_urls:
                return
            entry.auth_urls.add(url)
            logger.info("%s request %s needs user approval at %s", entry.method, entry.id, url)
            for handler in self._auth_handlers:
                try:
                    handler(url, entry)
                except Exception:
                    logger.exception("auth_url handler failed")
            return

        self._drop(resp.id)
        if entry.future.done():
            return

        if resp.kind == ResponseKind.ERROR:
            entry.future.set_exception(RemoteError(resp.id, str(resp.error)))
            return

        if resp.kind == ResponseKind.ACK and entry.method == "connect":
            self.state.connected = True
            logger.info("connected to %s", entry.counterparty)
        elif resp.kind == ResponseKind.PUBKEY and entry.method == "create_account":
            self.state.remote_pubkey = resp.result.lower()
            self.state.connected = False
            logger.info("bunker created account %s", resp.result)

        entry.future.set_result(resp)

    def _expire(self, req_id: str, window: int) -> None:
        entry = self.pending.pop(req_id, None)
        if entry is None:
            return
        logger.warning("%s request %s timed out after %d ms", entry.method, req_id, window)
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(req_id, entry.method, window))

    def _drop(self, req_id: str) -> Optional[PendingRequest]:
        entry = self.pending.pop(req_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry
