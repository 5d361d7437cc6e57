from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from .message import Envelope

Filter = Dict[str, Any]                    # NIP-01 filter, e.g. {"kinds": [24133], "#p": [pk]}
OnEvent = Callable[[Envelope], None]
OnEose = Callable[[str], None]            # called with the relay url

class Subscription(ABC):

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering events. Safe to call more than once."""
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

class Transport(ABC):

    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, relays: Sequence[str], filter_: Filter, on_event: OnEvent,
                        on_eose: Optional[OnEose] = None) -> Subscription:
        """Open a live subscription on every relay; events are delivered through on_event."""
        raise NotImplementedError

    @abstractmethod
    async def publish(self, relays: Sequence[str], event: Envelope) -> List[str]:
        """
        Send one event to every relay. Returns the relays that accepted it;
        raises NetworkError only when all of them rejected it.
        """
        raise NotImplementedError

    @abstractmethod
    async def query_sync(self, relays: Sequence[str], filter_: Filter,
                         timeout: float = 5.0) -> List[Envelope]:
        """Stored events matching filter_, once every relay sent EOSE or timeout elapsed."""
        raise NotImplementedError
