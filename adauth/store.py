"""
Local Permission Store
Removes the local permission and preference rows of a directory user.
The directory object itself is never touched.
"""

import logging

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, func, select
from sqlalchemy.engine import Engine

_DEFAULT_DB_URL = "sqlite:///adauth.db"

_metadata = MetaData()

_bill_perms = Table(
    "bill_perms",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("bill_id", Integer, nullable=False),
)

_devices_perms = Table(
    "devices_perms",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("device_id", Integer, nullable=False),
)

_ports_perms = Table(
    "ports_perms",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("port_id", Integer, nullable=False),
)

_users_prefs = Table(
    "users_prefs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("pref", String(32), nullable=False),
    Column("value", Text),
)

USER_TABLES = (_bill_perms, _devices_perms, _ports_perms, _users_prefs)


class PermissionStore:
    """Repository for local rows keyed by user_id.

    Usage:
        store = PermissionStore("mysql+pymysql://...")
        store.delete_user(1105)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, create_tables: bool = False) -> None:
        self.engine: Engine = create_engine(db_url)
        if create_tables:
            _metadata.create_all(self.engine)

    def grant(self, table_name: str, user_id: int, **values) -> None:
        """Insert a row for user_id into one of the per-user tables."""
        table = _metadata.tables[table_name]
        with self.engine.begin() as conn:
            conn.execute(table.insert().values(user_id=user_id, **values))

    def count_rows(self, user_id: int) -> int:
        """Number of local rows referencing user_id across all per-user tables."""
        total = 0
        with self.engine.connect() as conn:
            for table in USER_TABLES:
                total += conn.execute(
                    select(func.count()).select_from(table).where(table.c.user_id == user_id)
                ).scalar()
        return total

    def delete_user(self, user_id: int) -> int:
        """Remove every local row for user_id. Returns the number of rows deleted."""
        deleted = 0
        with self.engine.begin() as conn:
            for table in USER_TABLES:
                result = conn.execute(table.delete().where(table.c.user_id == user_id))
                deleted += result.rowcount
        logging.info(f"Removed {deleted} local permission rows for user {user_id}")
        return deleted

    def close(self) -> None:
        self.engine.dispose()
