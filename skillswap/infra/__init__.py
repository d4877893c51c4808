from .channels import ChannelManager
from .config import SkillSwapConfig
from .database import SQLStore
from .event_pusher import NullEventPusher, WebSocketEventPusher
from .memory_store import MemoryStore

__all__ = [
    "ChannelManager",
    "SkillSwapConfig",
    "SQLStore",
    "MemoryStore",
    "NullEventPusher",
    "WebSocketEventPusher",
]
