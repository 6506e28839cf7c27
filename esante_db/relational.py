"""
esante_db/relational.py

Responsible for:
1) creating the DB connection (SQLite by default)
2) the Session factory used by the key-value store back end
3) creating the tables themselves (init_db)
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from esante_db.settings import DATABASE_URL, SQL_ECHO


def make_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO):
    """
    Store calls run in worker threads (asyncio.to_thread), so SQLite
    connections must be usable outside the thread that opened them.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=echo, connect_args=connect_args)


engine = make_engine()

SessionLocal = sessionmaker(bind=engine)


def init_db(bind=None):
    """
    Create the tables defined in esante_db/models.py.
    """
    from esante_db.models import Base  # local import avoids circular imports
    Base.metadata.create_all(bind=bind if bind is not None else engine)
