from .hybrid_session import HybridSession
from .memory_session import InMemorySession
from .mongodb_session import MongoDBSession
from .redis_session import RedisSession
from .session import Session, SessionABC
from .session_manager import SessionManager, SessionManagerConfig, create_session
from .summarization import SUMMARY_PREFIX, SummarizationConfig, compact_messages
from .util import SessionInputCallback

__all__ = [
    "HybridSession",
    "InMemorySession",
    "MongoDBSession",
    "RedisSession",
    "Session",
    "SessionABC",
    "SessionManager",
    "SessionManagerConfig",
    "SessionInputCallback",
    "SUMMARY_PREFIX",
    "SummarizationConfig",
    "compact_messages",
    "create_session",
]
