import os

from sqlmodel import create_engine, SQLModel
from . import crud, models  # noqa: F401  (registers the tables)
from .logging_utils import get_logger

logger = get_logger("trivia_engine.init_db")


def init_db(path=None):
    path = path or os.getenv("DATABASE_URL", "sqlite:///./trivia.db")
    connect_args = {"check_same_thread": False} if path.startswith("sqlite") else {}
    if path.startswith("sqlite"):
        engine = create_engine(path, connect_args=connect_args)
    else:
        engine = create_engine(path, pool_pre_ping=True, pool_size=10, max_overflow=20, pool_recycle=1800)
    SQLModel.metadata.create_all(engine)
    crud.engine = engine
    logger.info("db_initialized", extra={"event": "db_initialized"})
    return engine


if __name__ == '__main__':
    init_db()
