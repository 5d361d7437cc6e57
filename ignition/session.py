from __future__ import annotations
import json
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote

from .discovery import BunkerDirectory, split_nip05
from .errors import ConfigurationError, ProtocolError, ValidationError
from .message import PUBKEY_REGEX, Kind, ResponseKind, SessionState
from .protocol import Nip46Engine, PendingRequest
from .wire import serialize_event, to_npub, verify_event

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

class Session:
    """
    The create-account / connect / ping / sign flows on top of one engine.

    Session state (remote pubkey, connected flag) is shared with the engine,
    which updates it when create_account and connect responses arrive.
    """

    def __init__(self, engine: Nip46Engine, directory: Optional[BunkerDirectory] = None, *,
                 app_name: str = "", redirect_uri: Optional[str] = None,
                 open_url: Optional[Callable[[str], None]] = None):
        self.engine = engine
        self.directory = directory
        self.app_name = app_name
        self.redirect_uri = redirect_uri
        self.open_url = open_url
        self.engine.on_auth_url(self._on_auth_url)

    # ---- state ----
    @property
    def state(self) -> SessionState:
        return self.engine.state

    @property
    def remote_pubkey(self) -> Optional[str]:
        return self.state.remote_pubkey

    @remote_pubkey.setter
    def remote_pubkey(self, pubkey: Optional[str]) -> None:
        if pubkey and not PUBKEY_REGEX.match(pubkey):
            raise ValidationError(f"Invalid pubkey: {pubkey!r}")
        self.state.remote_pubkey = pubkey.lower() if pubkey else None
        self.state.connected = False

    @property
    def connected(self) -> bool:
        return self.state.connected

    @property
    def local_pubkey(self) -> str:
        return self.engine.keys.public_key

    def remote_npub(self) -> Optional[str]:
        return to_npub(self.state.remote_pubkey)

    # ---- lifecycle ----
    async def start(self, *, discover: bool = False) -> None:
        await self.engine.t.start()
        await self.engine.start()
        if discover and self.directory is not None:
            await self.directory.fetch_bunkers()

    async def close(self) -> None:
        await self.engine.close()
        await self.engine.t.stop()

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ---- flows ----
    async def create_account(self, bunker_pubkey: str, username: str, domain: str,
                             email: Optional[str] = None, *, timeout_ms: Optional[int] = None) -> str:
        """Ask a bunker to create a new key; returns the new remote pubkey."""
        if not username or not domain:
            raise ValidationError("username and domain are required")
        if email and not EMAIL_REGEX.match(email):
            raise ValidationError(f"Invalid email: {email!r}")

        params = [username, domain]
        if email:
            params.append(email)

        resp = await self.engine.send("create_account", params, bunker_pubkey,
                                      kind=Kind.CREATE_ACCOUNT, timeout_ms=timeout_ms)
        if resp.kind != ResponseKind.PUBKEY:
            raise ProtocolError(f"create_account returned {resp.result!r}, expected a pubkey")
        return resp.result.lower()

    async def connect(self, secret: Optional[str] = None, *, timeout_ms: Optional[int] = None) -> None:
        remote = self._require_remote()
        params = [self.local_pubkey]
        if secret:
            params.append(secret)
        resp = await self.engine.send("connect", params, remote, timeout_ms=timeout_ms)
        if resp.kind != ResponseKind.ACK:
            raise ProtocolError(f"connect returned {resp.result!r}, expected 'ack'")

    async def ping(self, *, timeout_ms: Optional[int] = None) -> Any:
        """Liveness probe; any response counts."""
        resp = await self.engine.send("ping", [], self._require_remote(), timeout_ms=timeout_ms)
        return resp.result

    async def get_public_key(self, *, timeout_ms: Optional[int] = None) -> str:
        resp = await self.engine.send("get_public_key", [], self._require_remote(), timeout_ms=timeout_ms)
        if resp.kind != ResponseKind.PUBKEY:
            raise ProtocolError(f"get_public_key returned {resp.result!r}")
        return resp.result.lower()

    async def sign_event(self, unsigned: Mapping[str, Any], *, verify: bool = True,
                         timeout_ms: Optional[int] = None) -> Dict[str, Any]:
        """
        Have the bunker sign an event. The signed event's id and signature are
        checked unless verify=False.
        """
        remote = self._require_remote()
        resp = await self.engine.send("sign_event", [serialize_event(unsigned)], remote,
                                      timeout_ms=timeout_ms)
        try:
            signed = json.loads(resp.result) if isinstance(resp.result, str) else resp.result
        except ValueError as ex:
            raise ProtocolError("sign_event result is not JSON") from ex
        if not isinstance(signed, dict):
            raise ProtocolError("sign_event result is not an event object")
        if verify and not verify_event(signed):
            raise ProtocolError(f"bunker returned an event with a bad signature: {signed.get('id')}")
        return signed

    async def register(self, username: str, domain: str, email: Optional[str] = None) -> str:
        """
        Full signup: pick the bunker serving `domain`, create the account,
        then connect to the new key. Returns the new remote pubkey.
        """
        if self.directory is None:
            raise ConfigurationError("No bunker directory configured")
        bunker = self.directory.find_by_domain(domain)
        if bunker is None:
            raise ConfigurationError(f"No validated bunker for {domain}")
        pubkey = await self.create_account(bunker.pubkey, username, bunker.domain, email)
        await self.connect()
        return pubkey

    async def check_nip05_availability(self, nip05: str) -> bool:
        split_nip05(nip05)
        if self.directory is None:
            raise ConfigurationError("No bunker directory configured")
        return await self.directory.check_nip05_availability(nip05)

    # ---- auth_url ----
    def auth_url_for(self, url: str) -> str:
        if not self.redirect_uri:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}redirect_uri={quote(self.redirect_uri, safe='')}"

    def _on_auth_url(self, url: str, request: PendingRequest) -> None:
        target = self.auth_url_for(url)
        if self.open_url is None:
            logger.warning("%s needs approval at %s but no open_url handler is set", request.method, target)
            return
        self.open_url(target)

    def _require_remote(self) -> str:
        if not self.state.remote_pubkey:
            raise ConfigurationError("No remote public key found")
        return self.state.remote_pubkey
