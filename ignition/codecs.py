from __future__ import annotations
from typing import Dict, Protocol as TypingProtocol

from nostr_sdk import (
    Nip44Version,
    NostrSdkError,
    PublicKey,
    SecretKey,
    nip04_decrypt,
    nip04_encrypt,
    nip44_decrypt,
    nip44_encrypt,
)

from .errors import ConfigurationError, CryptoError

class Codec(TypingProtocol):
    name: str
    def encrypt(self, local_priv: bytes, remote_pub: str, plaintext: str) -> str: ...
    def decrypt(self, local_priv: bytes, remote_pub: str, ciphertext: str) -> str: ...

def _keys(local_priv: bytes, remote_pub: str):
    try:
        return SecretKey.parse(local_priv.hex()), PublicKey.parse(remote_pub)
    except NostrSdkError as ex:
        raise CryptoError(f"invalid key material: {ex}") from ex

class Nip04Codec:
    """AES-256-CBC over the ECDH shared x coordinate; `<b64 ct>?iv=<b64 iv>`."""
    name = "nip04"

    def encrypt(self, local_priv: bytes, remote_pub: str, plaintext: str) -> str:
        sk, pk = _keys(local_priv, remote_pub)
        return nip04_encrypt(sk, pk, plaintext)

    def decrypt(self, local_priv: bytes, remote_pub: str, ciphertext: str) -> str:
        if not isinstance(ciphertext, str) or "?iv=" not in ciphertext:
            raise CryptoError("nip04 ciphertext must look like '<data>?iv=<iv>'")
        sk, pk = _keys(local_priv, remote_pub)
        try:
            return nip04_decrypt(sk, pk, ciphertext)
        except NostrSdkError as ex:
            raise CryptoError(f"nip04 decrypt failed: {ex}") from ex

class Nip44Codec:
    name = "nip44"

    def encrypt(self, local_priv: bytes, remote_pub: str, plaintext: str) -> str:
        sk, pk = _keys(local_priv, remote_pub)
        return nip44_encrypt(sk, pk, plaintext, Nip44Version.V2)

    def decrypt(self, local_priv: bytes, remote_pub: str, ciphertext: str) -> str:
        if not isinstance(ciphertext, str) or not ciphertext:
            raise CryptoError("nip44 payload must be a non-empty string")
        sk, pk = _keys(local_priv, remote_pub)
        try:
            return nip44_decrypt(sk, pk, ciphertext)
        except NostrSdkError as ex:
            raise CryptoError(f"nip44 decrypt failed: {ex}") from ex

class Codecs:
    _registry: Dict[str, Codec] = {"nip04": Nip04Codec(), "nip44": Nip44Codec()}

    @classmethod
    def get(cls, name: str) -> 'Codec':
        if name not in cls._registry:
            raise ConfigurationError(f"Unknown codec: {name}")
        return cls._registry[name]
