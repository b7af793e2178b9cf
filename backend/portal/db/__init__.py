from portal.db.base import Base
from portal.db.session import get_db, engine, SessionLocal
from portal.db.tables import ALL_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "ALL_TABLE_NAMES"]
