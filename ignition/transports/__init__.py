from .memory import MemoryRelayNetwork, MemoryTransport

__all__ = ["MemoryRelayNetwork", "MemoryTransport"]
