"""
Rankwatch Database Module

SQLAlchemy models, session management and the rank history store.
"""

from .models import (
    Base,
    BUCKET_SCHEMA_VERSION,
    Client,
    TrackedKeyword,
    RankBucket,
    DashboardSnapshot,
)
from .session import (
    get_database_url,
    create_db_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    reset_engine,
    init_db,
    check_db_connection,
)
from .repository import (
    RankHistoryRepository,
    SQLRankHistoryRepository,
    StoreRetryConfig,
)
from .clients import ClientDirectory, SQLClientDirectory

__all__ = [
    # Models
    "Base",
    "BUCKET_SCHEMA_VERSION",
    "Client",
    "TrackedKeyword",
    "RankBucket",
    "DashboardSnapshot",
    # Session
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "reset_engine",
    "init_db",
    "check_db_connection",
    # Store
    "RankHistoryRepository",
    "SQLRankHistoryRepository",
    "StoreRetryConfig",
    "ClientDirectory",
    "SQLClientDirectory",
]
