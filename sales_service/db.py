"""
Sales Service — データベースハンドル

グローバルな接続を持たず、Database を各処理に注入する。

- open()/close() で明示的にライフサイクルを管理する
- 接続リトライは open() の中だけで行う（Coordinator / Aggregator ではリトライしない）
- transaction() はどの経路（正常終了・例外・キャンセル）でも
  commit か rollback のどちらかを必ず行い、接続を返却する

SQLite では書き込みトランザクションだけを BEGIN IMMEDIATE で開始して直列化する。
読み取りは通常の BEGIN なので、書き込み中でもロックを待たずに読める。
PostgreSQL では条件付き UPDATE の行ロックで同時実行を制御し、
lock_timeout でロック待ちの上限を決める。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .errors import StoreUnavailable, TransactionAborted
from .schema import metadata

logger = logging.getLogger(__name__)

IMMEDIATE_OPTION = "sqlite_begin_immediate"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite はタイムゾーンを保存しないので、読み出した naive な値を UTC とみなす。"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # ドライバ自身の BEGIN を止めて、下の begin フックで発行する
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(IMMEDIATE_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


class Database:
    def __init__(
        self,
        url: str,
        *,
        connect_retries: int = 3,
        retry_interval: float = 5.0,
        pool_size: int = 10,
        lock_timeout_ms: int = 5000,
        echo: bool = False,
    ) -> None:
        self.url = url
        self.connect_retries = connect_retries
        self.retry_interval = retry_interval
        self.pool_size = pool_size
        self.lock_timeout_ms = lock_timeout_ms
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._session_factory: sessionmaker | None = None

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.database_url,
            connect_retries=settings.db_connect_retries,
            retry_interval=settings.db_retry_interval,
            pool_size=settings.db_pool_size,
            lock_timeout_ms=settings.db_lock_timeout_ms,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def _create_engine(self) -> AsyncEngine:
        if self.is_sqlite:
            engine = create_async_engine(
                self.url,
                echo=self.echo,
                connect_args={"timeout": self.lock_timeout_ms / 1000},
            )
            _use_immediate_transactions(engine)
            return engine

        connect_args = {}
        if self.url.startswith("postgresql+asyncpg"):
            connect_args["server_settings"] = {"lock_timeout": str(self.lock_timeout_ms)}
        return create_async_engine(
            self.url,
            echo=self.echo,
            pool_size=self.pool_size,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    # ── Lifecycle ────────────────────────────────

    async def open(self) -> None:
        """接続を確立する。失敗したら retry_interval 秒待って最大 connect_retries 回やり直す。"""
        if self.engine is not None:
            return

        attempt = 0
        while True:
            engine = self._create_engine()
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except (OSError, SQLAlchemyError) as exc:
                await engine.dispose()
                if attempt >= self.connect_retries:
                    logger.error("Database connection failed: %s", exc)
                    raise StoreUnavailable(
                        f"Failed to connect to database after {self.connect_retries} retries"
                    ) from exc
                attempt += 1
                logger.warning(
                    "Retrying database connection... attempt %d/%d",
                    attempt,
                    self.connect_retries,
                )
                await asyncio.sleep(self.retry_interval)
                continue

            self.engine = engine
            self._session_factory = sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info("Database connected (%s)", engine.url.render_as_string(hide_password=True))
            return

    async def close(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database connection closed")

    async def create_schema(self) -> None:
        """テーブルとインデックスを作成する（既存のものはそのまま）。"""
        async with self._require_engine().begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def ping(self) -> bool:
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OSError, SQLAlchemyError):
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    # ── Sessions ─────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        書き込み用トランザクション。

        ブロックを正常に抜けたら commit、それ以外（例外・キャンセル）は rollback。
        ストア起因の失敗は TransactionAborted に変換する。
        """
        session = self._require_factory()()
        try:
            if self.is_sqlite:
                # 最初の接続取得時に BEGIN IMMEDIATE で書き込みロックを取る
                await session.connection(execution_options={IMMEDIATE_OPTION: True})
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await self._rollback(session)
            raise TransactionAborted(f"Transaction aborted: {exc}") from exc
        except BaseException:
            await self._rollback(session)
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """読み取り専用セッション。コミット済みのデータだけを読む。"""
        session = self._require_factory()()
        try:
            yield session
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Store query failed: {exc}") from exc
        finally:
            await session.close()

    async def _rollback(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except SQLAlchemyError:
            # 元の例外を優先する
            logger.exception("Rollback failed")

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise StoreUnavailable("Database is not open")
        return self.engine

    def _require_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise StoreUnavailable("Database is not open")
        return self._session_factory
