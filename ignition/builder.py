from __future__ import annotations
import json
import time
import uuid
from typing import Any, Dict, List, Optional

from nostr_sdk import EventBuilder, Keys, SecretKey, Tag, Timestamp
from nostr_sdk import Kind as SdkKind

from .codecs import Codec, Nip04Codec
from .errors import ConfigurationError
from .keys import KeyPair
from .message import Envelope, Kind
from .wire import unpack_event

class EnvelopeBuilder:
    """
    Builder that always produces a signed, encrypted NIP-46 Envelope:
     - content is the codec ciphertext of the JSON payload, readable only by the recipient
     - exactly one 'p' tag naming the recipient
    """
    def __init__(self, keys: Optional[KeyPair], codec: Optional[Codec] = None):
        if keys is None:
            raise ConfigurationError("No local keypair to sign with")
        self._keys = keys
        self._codec = codec or Nip04Codec()
        self._kind: int = Kind.NOSTR_CONNECT
        self._to: Optional[str] = None
        self._payload: Dict[str, Any] = {}
        self._created_at: Optional[int] = None

    def request(self, method: str, params: List[Any], request_id: Optional[str] = None):
        self._payload = {"id": request_id or new_request_id(), "method": method, "params": list(params)}
        return self

    def response(self, request_id: str, result: Optional[str], error: Optional[str] = None):
        self._payload = {"id": request_id, "result": result}
        if error is not None:
            self._payload["error"] = error
        return self

    def json(self, payload: Dict[str, Any]):
        self._payload = payload
        return self

    def kind(self, kind: int):
        self._kind = int(kind)
        return self

    def to(self, pubkey: str):
        self._to = pubkey
        return self

    def created_at(self, ts: int):
        self._created_at = int(ts)
        return self

    @property
    def payload(self) -> Dict[str, Any]:
        return self._payload

    def build(self) -> Envelope:
        if not self._to:
            raise ConfigurationError("NIP-46 envelopes need a recipient pubkey")
        plaintext = json.dumps(self._payload, separators=(",", ":"), ensure_ascii=False)
        content = self._codec.encrypt(self._keys.private_key, self._to, plaintext)
        return sign_event(
            self._keys,
            kind=self._kind,
            tags=[["p", self._to]],
            content=content,
            created_at=self._created_at if self._created_at is not None else int(time.time()),
        )

def build_envelope(kind: int, counterparty: str, payload: Dict[str, Any],
                   keys: Optional[KeyPair], codec: Optional[Codec] = None) -> Envelope:
    return EnvelopeBuilder(keys, codec).kind(kind).to(counterparty).json(payload).build()

def sign_event(keys: KeyPair, *, kind: int, tags: List[List[str]], content: str,
               created_at: int) -> Envelope:
    signer = Keys(SecretKey.parse(keys.private_key.hex()))
    event = (EventBuilder(SdkKind(kind), content)
             .tags([Tag.parse(t) for t in tags])
             .custom_created_at(Timestamp.from_secs(created_at))
             .sign_with_keys(signer))
    return unpack_event(event.as_json())

def new_request_id() -> str:
    return uuid.uuid4().hex
