"""
Database Infrastructure Package for QuantiPackAI

Exports database utilities, models, and repositories.
"""

from quantipack.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from quantipack.infrastructure.db.dependencies import (
    SessionDep,
    get_user_repository,
    get_entitlement_ledger,
    UserRepoDep,
    LedgerDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
    "get_user_repository",
    "get_entitlement_ledger",
    "UserRepoDep",
    "LedgerDep",
]
