"""
Tests for bunker discovery: handler adverts on relays, nip05 validation
against the domain's nostr.json and name availability checks.
"""
import httpx
import pytest

from ignition.discovery import BunkerDirectory, split_nip05
from ignition.errors import NetworkError, ValidationError
from ignition.keys import KeyPair
from ignition.transports.memory import MemoryTransport

from conftest import RELAYS, signed_advert


def wellknown(names_by_domain, status=200):
    """MockTransport handler serving {domain: names} as nostr.json documents."""
    def handler(request):
        assert request.url.path == "/.well-known/nostr.json"
        domain = request.url.host
        if domain not in names_by_domain:
            return httpx.Response(404)
        return httpx.Response(status, json={"names": names_by_domain[domain]})
    return handler


@pytest.fixture
def transport(network):
    return MemoryTransport(network)


async def publish(transport, *events):
    for e in events:
        await transport.publish(RELAYS, e)


class TestFetchBunkers:

    @pytest.mark.asyncio
    async def test_only_vouched_bunkers_are_kept(self, transport):
        a, b = KeyPair.generate(), KeyPair.generate()
        await publish(transport,
                      signed_advert(a, {"nip05": "_@good.example", "name": "Good"}),
                      signed_advert(b, {"nip05": "_@bad.example", "name": "Bad"}))
        names = {
            "good.example": {"_": a.public_key},
            "bad.example": {"_": KeyPair.generate().public_key},
        }

        async with httpx.AsyncClient(transport=httpx.MockTransport(wellknown(names))) as http:
            directory = BunkerDirectory(transport, RELAYS, http=http)
            bunkers = await directory.fetch_bunkers()

        assert [x.pubkey for x in bunkers] == [a.public_key]
        assert bunkers[0].domain == "good.example"
        assert bunkers[0].name == "Good"
        assert directory.bunkers == bunkers

    @pytest.mark.asyncio
    async def test_adverts_without_nip46_tag_are_ignored(self, transport):
        a = KeyPair.generate()
        await publish(transport, signed_advert(a, {"nip05": "_@good.example"}, tags=[["k", "1"]]))

        async with httpx.AsyncClient(transport=httpx.MockTransport(
                wellknown({"good.example": {"_": a.public_key}}))) as http:
            assert await BunkerDirectory(transport, RELAYS, http=http).fetch_bunkers() == []

    @pytest.mark.asyncio
    async def test_bad_content_and_missing_nip05_are_skipped(self, transport):
        a, b, c = KeyPair.generate(), KeyPair.generate(), KeyPair.generate()
        await publish(transport,
                      signed_advert(a, "{not json"),
                      signed_advert(b, {"name": "no nip05"}),
                      signed_advert(c, {"nip05": "nodomain"}))

        async with httpx.AsyncClient(transport=httpx.MockTransport(wellknown({}))) as http:
            assert await BunkerDirectory(transport, RELAYS, http=http).fetch_bunkers() == []

    @pytest.mark.asyncio
    async def test_unreachable_domain_is_dropped(self, transport):
        a, b = KeyPair.generate(), KeyPair.generate()
        await publish(transport,
                      signed_advert(a, {"nip05": "_@good.example"}),
                      signed_advert(b, {"nip05": "_@down.example"}))

        async with httpx.AsyncClient(transport=httpx.MockTransport(
                wellknown({"good.example": {"_": a.public_key}}))) as http:
            bunkers = await BunkerDirectory(transport, RELAYS, http=http).fetch_bunkers()

        assert [x.pubkey for x in bunkers] == [a.public_key]

    @pytest.mark.asyncio
    async def test_newest_advert_wins(self, transport):
        a = KeyPair.generate()
        await publish(transport,
                      signed_advert(a, {"nip05": "_@old.example"}, created_at=1700000000),
                      signed_advert(a, {"nip05": "_@good.example"}, created_at=1700000100))
        names = {"old.example": {"_": a.public_key}, "good.example": {"_": a.public_key}}

        async with httpx.AsyncClient(transport=httpx.MockTransport(wellknown(names))) as http:
            bunkers = await BunkerDirectory(transport, RELAYS, http=http).fetch_bunkers()

        assert [x.domain for x in bunkers] == ["good.example"]

    @pytest.mark.asyncio
    async def test_find_by_domain(self, transport):
        a = KeyPair.generate()
        await publish(transport, signed_advert(a, {"nip05": "_@Good.Example"}))

        async with httpx.AsyncClient(transport=httpx.MockTransport(
                wellknown({"good.example": {"_": a.public_key}}))) as http:
            directory = BunkerDirectory(transport, RELAYS, http=http)
            await directory.fetch_bunkers()

        assert directory.find_by_domain("GOOD.example").pubkey == a.public_key
        assert directory.find_by_domain("other.example") is None

    @pytest.mark.asyncio
    async def test_all_relays_down_is_network_error(self, transport, network):
        for url in RELAYS:
            network.set_rejecting(url)

        with pytest.raises(NetworkError):
            await BunkerDirectory(transport, RELAYS).fetch_bunkers()


class TestNip05:

    @pytest.mark.asyncio
    async def test_validate_nip05(self, transport):
        a = KeyPair.generate()
        async with httpx.AsyncClient(transport=httpx.MockTransport(
                wellknown({"good.example": {"_": a.public_key}}))) as http:
            directory = BunkerDirectory(transport, RELAYS, http=http)
            assert await directory.validate_nip05("_@good.example", a.public_key)
            assert not await directory.validate_nip05("_@good.example", KeyPair.generate().public_key)
            assert not await directory.validate_nip05("broken", a.public_key)

    @pytest.mark.asyncio
    async def test_availability(self, transport):
        taken = KeyPair.generate().public_key
        seen = []

        def handler(request):
            seen.append(request.url.params.get("name"))
            return httpx.Response(200, json={"names": {"bob": taken}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            directory = BunkerDirectory(transport, RELAYS, http=http)
            assert await directory.check_nip05_availability("alice@good.example") is True
            assert await directory.check_nip05_availability("bob@good.example") is False

        assert seen == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_availability_lookup_failure_is_network_error(self, transport):
        async with httpx.AsyncClient(transport=httpx.MockTransport(wellknown({}))) as http:
            with pytest.raises(NetworkError):
                await BunkerDirectory(transport, RELAYS, http=http).check_nip05_availability("a@x.example")

    @pytest.mark.asyncio
    async def test_availability_rejects_malformed_nip05(self, transport):
        with pytest.raises(ValidationError):
            await BunkerDirectory(transport, RELAYS).check_nip05_availability("alice")

    @pytest.mark.parametrize("value", ["alice", "@good.example", "alice@", "a@b@c", ""])
    def test_split_rejects_malformed(self, value):
        with pytest.raises(ValidationError):
            split_nip05(value)

    def test_split_lowercases_domain(self):
        assert split_nip05("Alice@Good.Example") == ("Alice", "good.example")
