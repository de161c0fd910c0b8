# database.py
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

import config

BASE_DIR = Path(__file__).resolve().parent
# DB_FILE may be absolute (e.g. /data/paystub.db); otherwise it lives next to the code
DB_PATH = Path(config.DB_FILE)
if not DB_PATH.is_absolute():
    DB_PATH = BASE_DIR / DB_PATH

SQLALCHEMY_DATABASE_URL = f"sqlite:///{DB_PATH}"

Base = declarative_base()


def make_engine(url: str = SQLALCHEMY_DATABASE_URL):
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees its own empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args={"check_same_thread": False})


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine):
    import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
