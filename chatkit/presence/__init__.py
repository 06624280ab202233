from chatkit.presence.registry import PresenceRegistry

__all__ = ["PresenceRegistry"]
