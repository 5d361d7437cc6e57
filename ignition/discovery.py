from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple
import asyncio
import json
import logging

import httpx

from .errors import NetworkError, ValidationError
from .message import Envelope, Kind
from .transport import Transport

logger = logging.getLogger(__name__)

WELL_KNOWN_URL = "https://{domain}/.well-known/nostr.json"
ROOT_NAME = "_"

@dataclass(frozen=True)
class BunkerProfile:
    pubkey: str
    domain: str
    nip05: str
    name: Optional[str] = None
    picture: Optional[str] = None
    about: Optional[str] = None
    website: Optional[str] = None

def split_nip05(nip05: str) -> Tuple[str, str]:
    parts = nip05.split("@") if isinstance(nip05, str) else []
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError(f"Invalid nip05: {nip05!r}")
    return parts[0], parts[1].lower()

def advertises_nip46(event: Envelope) -> bool:
    return str(int(Kind.NOSTR_CONNECT)) in event.tag_values("k")

class BunkerDirectory:
    """
    Finds bunkers through NIP-89 handler adverts (kind 31990 with a k=24133 tag)
    and keeps only those whose nip05 domain vouches for the advertising key:
    the domain's nostr.json must map the root name "_" to that pubkey.
    """

    def __init__(self, transport: Transport, relays: Sequence[str],
                 http: Optional[httpx.AsyncClient] = None, *, timeout: float = 5.0):
        self.transport = transport
        self.relays = list(relays)
        self.http = http
        self.timeout = timeout
        self.bunkers: List[BunkerProfile] = []

    async def fetch_bunkers(self) -> List[BunkerProfile]:
        events = await self.transport.query_sync(
            self.relays, {"kinds": [int(Kind.HANDLER_INFORMATION)]}, timeout=self.timeout)

        # newest advert per pubkey
        latest: Dict[str, Envelope] = {}
        for e in events:
            if not advertises_nip46(e):
                continue
            if e.pubkey not in latest or e.created_at > latest[e.pubkey].created_at:
                latest[e.pubkey] = e

        candidates = [p for p in (self._profile(e) for e in latest.values()) if p is not None]
        async with self._client() as http:
            checks = await asyncio.gather(
                *(self._validate(http, p.nip05, p.pubkey) for p in candidates))

        self.bunkers = [p for p, ok in zip(candidates, checks) if ok]
        logger.info("found %d valid bunkers out of %d adverts", len(self.bunkers), len(latest))
        return list(self.bunkers)

    async def validate_nip05(self, nip05: str, pubkey: str) -> bool:
        async with self._client() as http:
            return await self._validate(http, nip05, pubkey)

    async def check_nip05_availability(self, nip05: str) -> bool:
        """True when the domain has no entry for the name yet."""
        name, domain = split_nip05(nip05)
        async with self._client() as http:
            try:
                names = await self._names(http, name, domain)
            except (httpx.HTTPError, ValueError) as ex:
                raise NetworkError(f"nip05 lookup on {domain} failed: {ex}") from ex
        return name not in names

    def find_by_domain(self, domain: str) -> Optional[BunkerProfile]:
        domain = domain.lower()
        return next((b for b in self.bunkers if b.domain == domain), None)

    def _profile(self, event: Envelope) -> Optional[BunkerProfile]:
        try:
            content = json.loads(event.content)
        except ValueError:
            logger.debug("advert %s has non-JSON content", event.id)
            return None
        if not isinstance(content, dict) or not isinstance(content.get("nip05"), str):
            logger.debug("advert %s has no nip05", event.id)
            return None
        try:
            _, domain = split_nip05(content["nip05"])
        except ValidationError:
            logger.debug("advert %s has malformed nip05 %r", event.id, content["nip05"])
            return None
        return BunkerProfile(
            pubkey=event.pubkey,
            domain=domain,
            nip05=content["nip05"],
            name=content.get("name") or content.get("display_name"),
            picture=content.get("picture"),
            about=content.get("about"),
            website=content.get("website"),
        )

    async def _validate(self, http: httpx.AsyncClient, nip05: str, pubkey: str) -> bool:
        try:
            _, domain = split_nip05(nip05)
            names = await self._names(http, ROOT_NAME, domain)
        except ValidationError:
            return False
        except (httpx.HTTPError, ValueError) as ex:
            logger.warning("could not validate %s: %s", nip05, ex)
            return False
        ok = names.get(ROOT_NAME) == pubkey
        if not ok:
            logger.warning("dropping bunker %s: %s does not vouch for it", pubkey, nip05)
        return ok

    async def _names(self, http: httpx.AsyncClient, name: str, domain: str) -> Dict[str, str]:
        resp = await http.get(WELL_KNOWN_URL.format(domain=domain), params={"name": name})
        resp.raise_for_status()
        doc = resp.json()
        names = doc.get("names") if isinstance(doc, dict) else None
        if not isinstance(names, dict):
            raise ValueError(f"{domain} nostr.json has no 'names' object")
        return names

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http is not None:
            yield self.http
            return
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as http:
            yield http
