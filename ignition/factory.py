from __future__ import annotations
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional, Union
import logging

import httpx

from .codecs import Codecs
from .config import IgnitionOptions
from .errors import ConfigurationError
from .discovery import BunkerDirectory
from .keys import FileStorage, IdentityStore, Storage
from .message import SessionState
from .protocol import Nip46Engine
from .session import Session
from .transport import Transport

logger = logging.getLogger(__name__)

async def Ignition(app_name: str = "",
                   redirect_uri: Optional[str] = None,
                   *,
                   relays: Optional[Iterable[str]] = None,
                   transport: Union[str, Transport] = "relay",
                   codec: Union[str, Any, None] = None,
                   storage: Optional[Storage] = None,
                   remote_pubkey: Optional[str] = None,
                   timeout_ms: Optional[int] = None,
                   open_url: Optional[Callable[[str], None]] = None,
                   http: Optional[httpx.AsyncClient] = None,
                   options: Optional[IgnitionOptions] = None,
                   discover: bool = True,
                   auto_start: bool = True) -> Session:
    """
    One-liner factory:
      session = await Ignition("My app", "https://my.app/done")
      session = await Ignition("My app", transport=MemoryTransport(net), discover=False)

    - app_name / redirect_uri: shown to and used for auth_url challenges
    - relays: relay urls (default: IgnitionOptions.relays)
    - transport: "relay" | "memory" | Transport instance
    - codec: "nip04" | "nip44" | Codec instance (default: options.codec)
    - storage: where the client pubkey is persisted (default: options.storage_path or memory)
    - remote_pubkey: talk to a known bunker key without create_account
    - open_url: called with auth_url challenge targets
    - http: httpx client for NIP-05 lookups
    - discover: fetch and validate bunkers on start
    - auto_start: open the relay subscription before returning
    """
    opts = replace(options) if options is not None else IgnitionOptions()
    if app_name:
        opts.app_name = app_name
    if redirect_uri:
        opts.redirect_uri = redirect_uri
    if relays:
        opts.relays = list(relays)
    if remote_pubkey:
        opts.remote_pubkey = remote_pubkey
    if timeout_ms is not None:
        opts.timeout_ms = timeout_ms
    if isinstance(codec, str):
        opts.codec = codec
    opts.validate()
    logging.getLogger("ignition").setLevel(opts.log_level)

    # Resolve codec
    codec_obj = Codecs.get(opts.codec) if codec is None or isinstance(codec, str) else codec

    # Resolve transport
    if isinstance(transport, str):
        tlabel = transport.lower()
        if tlabel == "relay":
            from .transports.relay import RelayTransport
            t = RelayTransport(relays=opts.relays)
        elif tlabel in ("memory", "inmemory"):
            from .transports.memory import MemoryTransport
            t = MemoryTransport()
        else:
            raise ConfigurationError(f"Unknown transport label: {transport}")
    else:
        t = transport

    if storage is None and opts.storage_path is not None:
        storage = FileStorage(opts.storage_path)
    keys = IdentityStore(storage, opts.storage_key).load()

    engine = Nip46Engine(
        t, keys, opts.relays,
        codec=codec_obj,
        timeout_ms=opts.timeout_ms,
        state=SessionState(remote_pubkey=opts.remote_pubkey),
    )
    directory = BunkerDirectory(t, opts.relays, http=http)
    session = Session(engine, directory, app_name=opts.app_name,
                      redirect_uri=opts.redirect_uri, open_url=open_url)

    if auto_start:
        await session.start(discover=discover)
        logger.info("%s ready, %d bunkers available", opts.app_name or "ignition",
                    len(directory.bunkers))

    return session
