from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from campus_eav.core.config import Settings, settings


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite defers BEGIN and breaks SAVEPOINT; emit BEGIN ourselves.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_with_settings(config: Settings) -> Engine:
    url = make_url(config.DATABASE_URL)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url)
        _install_sqlite_hooks(engine)
        return engine

    connect_args = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        pool_recycle=config.DB_POOL_RECYCLE,
        connect_args=connect_args,
    )


engine = create_engine_with_settings(settings)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
