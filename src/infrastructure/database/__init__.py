# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the backend store.

Example:
    from src.infrastructure.database import (
        SqlAlchemyAnalyticsStore,
        get_sessionmaker,
        init_database,
    )

    await init_database(settings)
    store = SqlAlchemyAnalyticsStore(get_sessionmaker())
"""

from src.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    get_sessionmaker,
    init_database,
)
from src.infrastructure.database.store import (
    AnalyticsStore,
    CollectionQuery,
    SqlAlchemyAnalyticsStore,
)

__all__ = [
    # Connection
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "get_sessionmaker",
    "init_database",
    # Store
    "AnalyticsStore",
    "CollectionQuery",
    "SqlAlchemyAnalyticsStore",
]
