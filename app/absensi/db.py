from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# table -> columns the running code depends on
REQUIRED_SCHEMA: dict[str, tuple[str, ...]] = {
    "users": ("username", "daerah_id", "desa_id", "kelompok_id", "permissions", "meeting_form_settings"),
    "students": ("status", "deleted_at", "archived_at"),
    "student_classes": ("student_id", "class_id"),
    "meetings": ("class_ids", "student_snapshot", "meeting_type_code"),
    "attendance_logs": ("meeting_id", "student_id", "status"),
    "transfer_requests": ("status", "to_kelompok_id"),
    "class_masters": ("sort_order",),
}


def _engine_kwargs(db_url: str) -> dict[str, object]:
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        kwargs.update({"pool_recycle": 1800, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30})
    return kwargs


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_kwargs(db_url))

    if db_url.startswith("sqlite"):
        # Hard-deleting a student or meeting relies on ON DELETE CASCADE.
        @event.listens_for(engine, "connect")
        def _sqlite_fk_on(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def find_missing_schema(engine: Engine, required: dict[str, tuple[str, ...]] = REQUIRED_SCHEMA) -> list[str]:
    """Tables/columns the code expects but the database lacks, as "table.column" strings."""
    insp = sa_inspect(engine)
    missing: list[str] = []
    for table, columns in required.items():
        if not insp.has_table(table):
            missing.append(f"{table} (table)")
            continue
        present = {c["name"] for c in insp.get_columns(table)}
        missing.extend(f"{table}.{col}" for col in columns if col not in present)
    return missing


def db_session(app: Flask | None = None) -> Session:
    """
    Session bound to the current request; created on first use and closed in teardown.
    """
    s = getattr(g, "db_session", None)
    if s is not None:
        return s
    sm = (app or current_app).extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        return
    if _exc is not None:
        s.rollback()
    s.close()
    g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Session for seeding scripts and tests outside a request. Commits on
    success and rolls back on any error.
    """
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
