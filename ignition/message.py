from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, List, Any
from enum import IntEnum, StrEnum
import re

PUBKEY_REGEX = re.compile(r"^[a-fA-F0-9]{64}$")

# Event kinds used on the wire
class Kind(IntEnum):
    NOSTR_CONNECT        = 24133   # NIP-46 requests and responses
    CREATE_ACCOUNT       = 24134   # legacy kind for create_account requests
    HANDLER_INFORMATION  = 31990   # NIP-89 handler adverts (bunker discovery)

# Shape of a decrypted response, decided once when it is parsed
class ResponseKind(StrEnum):
    AUTH_URL = "auth_url"
    ACK      = "ack"
    PUBKEY   = "pubkey"
    ERROR    = "error"
    RESULT   = "result"

@dataclass(frozen=True)
class Envelope:
    """
    A signed relay event (NIP-01). 'content' is ciphertext for NIP-46 kinds
    """
    id: str                      # sha256 of the serialized event, hex
    pubkey: str                  # author, 64-hex x-only key
    created_at: int              # unix seconds
    kind: int
    tags: List[List[str]]
    content: str
    sig: str                     # schnorr signature, hex

    def tag_values(self, name: str) -> List[str]:
        return [t[1] for t in self.tags if len(t) >= 2 and t[0] == name]

    def recipient(self) -> Optional[str]:
        values = self.tag_values("p")
        return values[0] if values else None

@dataclass(frozen=True)
class Nip46Request:
    id: str
    pubkey: str                  # sender of the request
    method: str
    params: List[Any]
    event: Envelope

@dataclass(frozen=True)
class Nip46Response:
    id: str
    result: Optional[str]
    error: Optional[str]
    kind: ResponseKind
    event: Envelope

def classify(result: Any, error: Any) -> ResponseKind:
    # auth_url challenges carry the url in 'error'; check them before errors
    if result == "auth_url":
        return ResponseKind.AUTH_URL
    if error:
        return ResponseKind.ERROR
    if result == "ack":
        return ResponseKind.ACK
    if isinstance(result, str) and PUBKEY_REGEX.match(result):
        return ResponseKind.PUBKEY
    return ResponseKind.RESULT

@dataclass
class SessionState:
    remote_pubkey: Optional[str] = None
    connected: bool = False
