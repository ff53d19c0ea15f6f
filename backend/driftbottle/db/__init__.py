from driftbottle.db.base import Base
from driftbottle.db.session import make_engine, make_session_factory
from driftbottle.db.tables import ALL_TABLE_NAMES

__all__ = ["Base", "ALL_TABLE_NAMES", "make_engine", "make_session_factory"]
