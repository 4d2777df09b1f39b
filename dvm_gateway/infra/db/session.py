"""数据库会话管理：按数据库类型构建引擎、建表并提供会话工厂。"""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from dvm_gateway.config import get_settings
from dvm_gateway.infra.db.models import Base

settings = get_settings()
logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """创建数据库引擎；SQLite 需放开跨线程访问并启用外键级联。"""
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, Any] = {"check_same_thread": False} if is_sqlite else {}
    built = create_engine(database_url, pool_pre_ping=True, future=True, connect_args=connect_args)
    if is_sqlite:

        @event.listens_for(built, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return built


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


def init_db(target: Engine | None = None) -> None:
    """初始化数据库表结构。"""
    bind = target or engine
    started = time.perf_counter()
    logger.info("db init started", extra={"event": "db.init.started", "external_service": "database", "op": "create_all"})
    try:
        Base.metadata.create_all(bind=bind)
    except Exception as exc:
        logger.exception(
            "db init failed",
            extra={
                "event": "db.init.failed",
                "external_service": "database",
                "op": "create_all",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        raise
    logger.info(
        "db init succeeded",
        extra={
            "event": "db.init.succeeded",
            "external_service": "database",
            "op": "create_all",
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
