"""
Ignition configuration

Host-supplied options: the app's display name, where auth_url challenges
should redirect back to, and which relays to use.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .keys import STORAGE_KEY
from .message import PUBKEY_REGEX
from .protocol import DEFAULT_TIMEOUT_MS


DEFAULT_RELAYS = ["wss://relay.nostr.band", "wss://relay.nsecbunker.com"]


@dataclass
class IgnitionOptions:
    """
    Complete client configuration.
    """
    app_name: str = ""
    redirect_uri: Optional[str] = None
    relays: List[str] = field(default_factory=lambda: list(DEFAULT_RELAYS))

    # Bunker key to talk to without create_account (optional)
    remote_pubkey: Optional[str] = None

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    codec: str = "nip04"

    # Where the client pubkey is persisted; None keeps it in memory
    storage_path: Optional[Path] = None
    storage_key: str = STORAGE_KEY

    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IgnitionOptions":
        opts = cls()
        if "app_name" in data:
            opts.app_name = str(data["app_name"])
        if "redirect_uri" in data:
            opts.redirect_uri = data["redirect_uri"] or None
        if data.get("relays"):
            opts.relays = [str(r) for r in data["relays"]]
        if "remote_pubkey" in data:
            opts.remote_pubkey = str(data["remote_pubkey"]).lower() if data["remote_pubkey"] else None
        if "timeout_ms" in data:
            opts.timeout_ms = int(data["timeout_ms"])
        if "codec" in data:
            opts.codec = str(data["codec"])
        if data.get("storage_path"):
            opts.storage_path = Path(data["storage_path"])
        if "storage_key" in data:
            opts.storage_key = str(data["storage_key"])
        if "log_level" in data:
            opts.log_level = str(data["log_level"]).upper()
        return opts

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If an option is unusable
        """
        if not self.relays:
            raise ConfigurationError("At least one relay is required")
        for url in self.relays:
            if not url.startswith(("wss://", "ws://")):
                raise ConfigurationError(f"Invalid relay url: {url}")
        if self.remote_pubkey and not PUBKEY_REGEX.match(self.remote_pubkey):
            raise ConfigurationError(f"Invalid remote pubkey: {self.remote_pubkey}")
        if self.remote_pubkey:
            self.remote_pubkey = self.remote_pubkey.lower()
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"Invalid timeout: {self.timeout_ms}")
        if self.codec not in ("nip04", "nip44"):
            raise ConfigurationError(f"Unknown codec: {self.codec}")
        if not self.storage_key:
            raise ConfigurationError("storage_key must not be empty")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
