"""
Public API:
- Ignition: async one-call factory returning a started Session
- Session: create_account / connect / ping / sign_event flows
- Nip46Engine: core runtime (send encrypted request, wait for the matching response)
- BunkerDirectory, BunkerProfile: bunker discovery and NIP-05 checks
- EnvelopeBuilder, build_envelope: encrypted + signed NIP-46 events
- Envelope, Nip46Request, Nip46Response, Kind, ResponseKind, SessionState: wire-level types
- Transport: abstract class transports must implement
- IdentityStore, KeyPair: the local ephemeral keypair
- Codecs: nip04 / nip44 payload encryption
"""

# Core runtime
from .protocol import Nip46Engine, PendingRequest
from .session import Session
from .factory import Ignition
from .config import IgnitionOptions, DEFAULT_RELAYS

# Builder & wire types
from .builder import EnvelopeBuilder, build_envelope
from .message import (
    Envelope,
    Kind,
    Nip46Request,
    Nip46Response,
    ResponseKind,
    SessionState,
)
from .wire import pack_event, unpack_event, serialize_event, verify_event, to_npub

# Transport contract
from .transport import Transport, Subscription

# Keys, crypto & discovery
from .keys import IdentityStore, KeyPair, MemoryStorage, FileStorage
from .codecs import Codecs, Nip04Codec, Nip44Codec
from .discovery import BunkerDirectory, BunkerProfile

from .errors import (
    IgnitionError,
    ConfigurationError,
    ValidationError,
    CryptoError,
    ProtocolError,
    RequestTimeoutError,
    NetworkError,
    RemoteError,
)

__all__ = [
    "Ignition",
    "IgnitionOptions",
    "DEFAULT_RELAYS",
    "Session",
    "Nip46Engine",
    "PendingRequest",
    "EnvelopeBuilder",
    "build_envelope",
    "Envelope",
    "Kind",
    "Nip46Request",
    "Nip46Response",
    "ResponseKind",
    "SessionState",
    "pack_event",
    "unpack_event",
    "serialize_event",
    "verify_event",
    "to_npub",
    "Transport",
    "Subscription",
    "IdentityStore",
    "KeyPair",
    "MemoryStorage",
    "FileStorage",
    "Codecs",
    "Nip04Codec",
    "Nip44Codec",
    "BunkerDirectory",
    "BunkerProfile",
    "IgnitionError",
    "ConfigurationError",
    "ValidationError",
    "CryptoError",
    "ProtocolError",
    "RequestTimeoutError",
    "NetworkError",
    "RemoteError",
]

__version__ = "0.1.0"
