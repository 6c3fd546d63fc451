"""
数据库连接管理

连接池配置说明:
- pool_size: 连接池保持的连接数（默认20）
- max_overflow: 超出 pool_size 后允许创建的额外连接（默认40）
- pool_recycle: 连接回收时间（秒），避免数据库（如 RDS）关闭长时间空闲连接
- pool_timeout: 获取连接的超时时间（秒）
- pool_pre_ping: 使用前检查连接是否有效

引擎按需创建，测试可以直接把 Session 绑定到自己的引擎上
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from hangar.core.config import get_settings
from hangar.core.logging import get_logger

logger = get_logger(__name__)

# ORM 基类
Base = declarative_base()

# 创建会话工厂（引擎在 get_engine 中绑定）
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def _install_pool_listeners(engine: Engine) -> None:
    """连接池监控：连接取出 / 归还时记录"""
    pool = engine.pool

    def on_checkout(dbapi_conn, connection_record, connection_proxy):
        logger.debug(
            "db_connection_checkout",
            pool_size=pool.size(),
            checked_in=pool.checkedin(),
            checked_out=pool.checkedout(),
            overflow=pool.overflow(),
        )

    def on_checkin(dbapi_conn, connection_record):
        logger.debug(
            "db_connection_checkin",
            pool_size=pool.size(),
            checked_in=pool.checkedin(),
            checked_out=pool.checkedout(),
            overflow=pool.overflow(),
        )

    event.listen(pool, "checkout", on_checkout)
    event.listen(pool, "checkin", on_checkin)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """创建数据库引擎（生产级连接池配置）"""
    settings = get_settings()

    if settings.DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            settings.DATABASE_URL, connect_args={"check_same_thread": False}, echo=False
        )
    else:
        engine = create_engine(
            settings.DATABASE_URL,
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=3600,  # 每小时回收连接，避免 RDS 空闲超时
            pool_timeout=30,
            echo=False,
        )
        _install_pool_listeners(engine)

    SessionLocal.configure(bind=engine)
    logger.info("db_engine_created", dialect=engine.dialect.name)
    return engine


def get_db() -> Iterator[Session]:
    """
    获取数据库会话

    用法：
    ```python
    for db in get_db():
        service = BuildService(db)
    ```
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    事务上下文：正常退出时提交，出现异常时回滚后继续抛出

    多语句写操作（创建 + 零件、修订暂存、审核合并）都必须放在同一个 transaction 中
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def is_unique_violation(exc: IntegrityError) -> bool:
    """判断 IntegrityError 是否是唯一约束冲突（PostgreSQL 23505 / SQLite UNIQUE）"""
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(orig)
