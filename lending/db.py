import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from lending.config import get_settings
from lending.errors import LendingError, StorageFailure

logger = logging.getLogger(__name__)


def _use_immediate_transactions(engine: Engine) -> None:
    # pysqlite 默认是延迟事务：读的时候不加锁，两个并发借用可能同时读到“还剩 1 个”。
    # 改成每个事务都 BEGIN IMMEDIATE，写者在事务开头就排队。
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": get_settings().sqlite_busy_timeout,
        }
        engine = create_engine(url, connect_args=connect_args, **kwargs)
        _use_immediate_transactions(engine)
        return engine
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = make_engine(get_settings().database_url)


def create_db_and_tables(bind: Engine | None = None) -> None:
    from lending import models  # noqa: F401  注册表结构
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Iterator[Session]:
    session = Session(engine)
    try:
        yield session
    except (HTTPException, LendingError):
        # 业务/鉴权错误：事务已经在 unit_of_work 里处理过
        raise
    except Exception:
        session.rollback()
        logger.exception("session rolled back")
        raise
    finally:
        session.close()


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """One commit/rollback boundary around several writes.

    Everything done on ``session`` inside the block is committed together when
    the block exits normally. Any exception rolls the whole block back;
    SQLAlchemy errors are re-raised as :class:`StorageFailure`.
    """
    try:
        yield session
        session.commit()
    except LendingError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("storage failure, rolled back: %s", e)
        raise StorageFailure(str(e.__class__.__name__)) from e
    except Exception:
        session.rollback()
        raise
