"""
Shared fixtures: an in-memory relay network, keypairs, a started engine and a
scriptable bunker that answers NIP-46 requests over the same network.
"""
import asyncio
import json
import time

import pytest
import pytest_asyncio

from ignition.builder import EnvelopeBuilder, sign_event
from ignition.codecs import Nip04Codec
from ignition.keys import KeyPair
from ignition.message import Kind
from ignition.protocol import Nip46Engine
from ignition.transports.memory import MemoryRelayNetwork, MemoryTransport


RELAYS = ["wss://relay.one.test", "wss://relay.two.test"]


async def wait_for(predicate, timeout=1.0):
    """Poll until predicate() is truthy or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeBunker:
    """
    Listens for requests addressed to its key and answers from `replies`:
    method -> list of (result, error) tuples, or a callable(body, event)
    returning such a list. Methods without an entry stay unanswered until
    the test calls respond().
    """

    def __init__(self, network, keys, relays=RELAYS):
        self.transport = MemoryTransport(network)
        self.keys = keys
        self.relays = relays
        self.replies = {}
        self.requests = []
        self._seen = set()
        self._queue = asyncio.Queue()
        self._task = None
        self._sub = None

    async def start(self):
        self._sub = await self.transport.subscribe(
            self.relays,
            {"kinds": [int(Kind.NOSTR_CONNECT), int(Kind.CREATE_ACCOUNT)], "#p": [self.keys.public_key]},
            self._queue.put_nowait,
        )
        self._task = asyncio.create_task(self._loop())
        return self

    async def stop(self):
        await self._sub.close()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def respond(self, request_id, to, result, error=None):
        env = (EnvelopeBuilder(self.keys)
               .kind(Kind.NOSTR_CONNECT)
               .to(to)
               .response(request_id, result, error)
               .build())
        await self.transport.publish(self.relays, env)

    async def _loop(self):
        while True:
            event = await self._queue.get()
            # every relay delivers its own copy
            if event.id in self._seen:
                continue
            self._seen.add(event.id)
            body = json.loads(Nip04Codec().decrypt(self.keys.private_key, event.pubkey, event.content))
            self.requests.append((event, body))
            reply = self.replies.get(body["method"])
            if reply is None:
                continue
            answers = reply(body, event) if callable(reply) else reply
            for result, error in answers:
                await self.respond(body["id"], event.pubkey, result, error)


def signed_advert(keys, content, tags=None, created_at=None):
    return sign_event(
        keys,
        kind=Kind.HANDLER_INFORMATION,
        tags=tags if tags is not None else [["k", "24133"], ["d", keys.public_key[:8]]],
        content=content if isinstance(content, str) else json.dumps(content),
        created_at=created_at or int(time.time()),
    )


@pytest.fixture
def network():
    return MemoryRelayNetwork()


@pytest.fixture
def client_keys():
    return KeyPair.generate()


@pytest.fixture
def bunker_keys():
    return KeyPair.generate()


@pytest.fixture
def user_keys():
    return KeyPair.generate()


@pytest_asyncio.fixture
async def engine(network, client_keys):
    eng = Nip46Engine(MemoryTransport(network), client_keys, RELAYS, timeout_ms=1000)
    await eng.start()
    yield eng
    await eng.close()


@pytest_asyncio.fixture
async def bunker(network, bunker_keys):
    b = await FakeBunker(network, bunker_keys).start()
    yield b
    await b.stop()


@pytest_asyncio.fixture
async def user_signer(network, user_keys):
    """Stands in for the bunker once it serves the user's new key."""
    b = await FakeBunker(network, user_keys).start()
    yield b
    await b.stop()
