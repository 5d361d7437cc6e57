from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Protocol as TypingProtocol
import json
import logging
import threading

from nostr_sdk import Keys

from .message import PUBKEY_REGEX

logger = logging.getLogger(__name__)

# Durable key the ephemeral public key is stored under
STORAGE_KEY = "localNostrPubkey"

@dataclass(frozen=True)
class KeyPair:
    private_key: bytes = field(repr=False)   # 32 bytes, memory only
    public_key: str                          # 64-hex x-only key

    @classmethod
    def generate(cls) -> "KeyPair":
        keys = Keys.generate()
        return cls(
            private_key=bytes.fromhex(keys.secret_key().to_hex()),
            public_key=keys.public_key().to_hex(),
        )

class Storage(TypingProtocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...

@dataclass
class MemoryStorage:
    items: Dict[str, str] = field(default_factory=dict)
    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)
    def set(self, key: str, value: str) -> None:
        self.items[key] = value

class FileStorage:
    """Flat JSON object on disk; survives process restarts like browser localStorage."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("storage file %s is not valid JSON, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

class IdentityStore:
    """
    Owns the local ephemeral keypair used to talk to bunkers.

    Only the public key is persisted. The private key lives in this object, so a
    new store (a reload) cannot sign for the persisted public key: load() always
    generates a fresh pair, even when the stored value is a valid pubkey, and a
    bunker sees a new client that must connect again. This matches the
    established nostr-ignition client behavior; persisted_public_key() still
    reports the previous key for callers that want to detect a reload.
    """

    def __init__(self, storage: Optional[Storage] = None, storage_key: str = STORAGE_KEY):
        self.storage = storage if storage is not None else MemoryStorage()
        self.storage_key = storage_key
        self._keys: Optional[KeyPair] = None

    def persisted_public_key(self) -> Optional[str]:
        value = self.storage.get(self.storage_key)
        if value and PUBKEY_REGEX.match(value):
            return value.lower()
        return None

    def load(self) -> KeyPair:
        if self._keys is not None:
            return self._keys

        previous = self.persisted_public_key()
        if previous:
            logger.debug("persisted client pubkey %s has no private key in memory, regenerating", previous)
        elif self.storage.get(self.storage_key) is not None:
            logger.warning("ignoring malformed persisted client pubkey under %r", self.storage_key)

        self._keys = KeyPair.generate()
        self.storage.set(self.storage_key, self._keys.public_key)
        logger.info("generated client keypair %s", self._keys.public_key)
        return self._keys

    @property
    def keys(self) -> Optional[KeyPair]:
        return self._keys
