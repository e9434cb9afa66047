from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session
from .settings import settings

def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # store calls run in worker threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, **kwargs)

engine = make_engine(settings.database_url)

def init_db(bind: Engine | None = None):
    from . import models  # noqa: F401  registers the tables
    SQLModel.metadata.create_all(bind or engine)

def get_session(bind: Engine | None = None):
    # prevent attribute expiration so simple reads after commit are safe
    return Session(bind or engine, expire_on_commit=False)
