from __future__ import annotations
import json
import time
from typing import Any, Dict, Mapping, Optional

from nostr_sdk import Event, NostrSdkError, PublicKey

from .errors import ProtocolError
from .message import Envelope, PUBKEY_REGEX

_FIELDS = ("id", "pubkey", "created_at", "kind", "tags", "content", "sig")

def envelope_to_dict(env: Envelope) -> Dict[str, Any]:
    return {
        "id":         env.id,
        "pubkey":     env.pubkey,
        "created_at": env.created_at,
        "kind":       env.kind,
        "tags":       [list(t) for t in env.tags],
        "content":    env.content,
        "sig":        env.sig,
    }

def pack_event(env: Envelope) -> str:
    return json.dumps(envelope_to_dict(env), separators=(",", ":"), ensure_ascii=False)

def unpack_event(raw: Any) -> Envelope:
    """Accepts a JSON string or an already-decoded dict; raises ProtocolError on a bad shape."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as ex:
            raise ProtocolError(f"event is not JSON: {ex}") from ex
    if not isinstance(raw, Mapping):
        raise ProtocolError("event must be a JSON object")
    missing = [f for f in _FIELDS if f not in raw]
    if missing:
        raise ProtocolError(f"event is missing fields: {', '.join(missing)}")

    tags = raw["tags"]
    if not isinstance(tags, list) or not all(isinstance(t, list) for t in tags):
        raise ProtocolError("event tags must be a list of lists")
    if not isinstance(raw["kind"], int) or not isinstance(raw["created_at"], int):
        raise ProtocolError("event kind and created_at must be integers")
    if not isinstance(raw["content"], str):
        raise ProtocolError("event content must be a string")
    if not isinstance(raw["pubkey"], str) or not PUBKEY_REGEX.match(raw["pubkey"]):
        raise ProtocolError("event pubkey must be 64 hex characters")

    return Envelope(
        id=str(raw["id"]),
        pubkey=raw["pubkey"].lower(),
        created_at=raw["created_at"],
        kind=raw["kind"],
        tags=[[str(v) for v in t] for t in tags],
        content=raw["content"],
        sig=str(raw["sig"]),
    )

def verify_event(event: Mapping[str, Any]) -> bool:
    """Check the id and schnorr signature of a signed event dict."""
    try:
        return bool(Event.from_json(json.dumps(dict(event))).verify())
    except (NostrSdkError, TypeError, ValueError):
        return False

def serialize_event(unsigned: Mapping[str, Any], *, now: Optional[int] = None) -> str:
    """JSON for the sign_event param: {kind, content, tags, created_at}."""
    kind = unsigned.get("kind")
    if not isinstance(kind, int):
        raise ProtocolError("unsigned event needs an integer kind")
    body = {
        "kind":       kind,
        "content":    unsigned.get("content", ""),
        "tags":       [list(t) for t in unsigned.get("tags", [])],
        "created_at": int(unsigned.get("created_at") or now or time.time()),
    }
    if unsigned.get("pubkey"):
        body["pubkey"] = unsigned["pubkey"]
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)

def to_npub(pubkey_hex: Optional[str]) -> Optional[str]:
    if not pubkey_hex:
        return None
    return PublicKey.parse(pubkey_hex).to_bech32()
