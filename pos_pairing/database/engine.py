from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from pos_pairing.core.config import settings

load_dotenv()


def normalize_database_url(url: str) -> str:
    if not url:
        raise ValueError("DATABASE_URL environment variable is not set.")

    if url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql+psycopg2://")
    elif url.startswith("postgresql://") and "psycopg2" not in url and "asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+psycopg2://")
    return url


def _serialise_sqlite_writers(engine: Engine) -> None:
    # pysqlite's deferred BEGIN lets two writers deadlock on lock upgrade;
    # take the write lock up front so row transitions are strictly ordered.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: Optional[str] = None) -> Engine:
    url = normalize_database_url(url or settings.DATABASE_URL)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _serialise_sqlite_writers(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=30,
        pool_recycle=3600,
        connect_args={"connect_timeout": 10},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
