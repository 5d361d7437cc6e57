from __future__ import annotations


class IgnitionError(Exception):
    """Base class for every error raised by ignition."""


class ConfigurationError(IgnitionError):
    """Missing local keypair, missing remote pubkey, or bad host options."""


class ValidationError(IgnitionError, ValueError):
    """Malformed user input (nip05 address, email)."""


class CryptoError(IgnitionError):
    """Ciphertext could not be decrypted."""


class ProtocolError(IgnitionError):
    """Envelope or decrypted payload has an unexpected shape."""


class RequestTimeoutError(IgnitionError, TimeoutError):
    def __init__(self, request_id: str, method: str, timeout_ms: int):
        super().__init__(f"{method} request {request_id} got no response within {timeout_ms} ms")
        self.request_id = request_id
        self.method = method
        self.timeout_ms = timeout_ms


class NetworkError(IgnitionError):
    """Every relay (or the NIP-05 host) failed."""


class RemoteError(IgnitionError):
    """The bunker answered with an error payload."""

    def __init__(self, request_id: str, error: str):
        super().__init__(error)
        self.request_id = request_id
        self.error = error
