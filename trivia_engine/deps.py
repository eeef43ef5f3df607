from contextlib import contextmanager

from sqlmodel import Session
from . import crud


@contextmanager
def get_session():
    # short-lived session bound to the configured engine
    if crud.engine is None:
        raise RuntimeError("database engine is not initialised; call init_db() first")
    with Session(crud.engine) as session:
        yield session
