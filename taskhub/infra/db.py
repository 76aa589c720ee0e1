from __future__ import annotations

import os

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg://taskhub:taskhub@db:5432/taskhub")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "0") == "1"


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Engine for a tenant store; SQLite URLs get the thread flag the API needs."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(DATABASE_URL, echo=DATABASE_ECHO)


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database readiness check failed: {}", exc)
        return False
    return True
