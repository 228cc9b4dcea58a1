import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text, update

from sales_service import analytics, queries
from sales_service.db import Database, as_utc
from sales_service.errors import StoreUnavailable, TransactionAborted
from sales_service.schema import products


class Boom(Exception):
    pass


async def test_transaction_rolls_back_on_error(db, seed):
    product = await seed.product(stock=5)

    with pytest.raises(Boom):
        async with db.transaction() as session:
            await session.execute(
                update(products).where(products.c.id == product).values(stock=0)
            )
            raise Boom()

    assert await seed.stock_of(product) == 5


async def test_transaction_rolls_back_on_cancellation(db, seed):
    product = await seed.product(stock=5)

    with pytest.raises(asyncio.CancelledError):
        async with db.transaction() as session:
            await session.execute(
                update(products).where(products.c.id == product).values(stock=1)
            )
            raise asyncio.CancelledError()

    assert await seed.stock_of(product) == 5


async def test_cancelled_task_leaves_no_partial_write(db, seed):
    product = await seed.product(stock=5)
    decremented = asyncio.Event()

    async def slow_writer():
        async with db.transaction() as session:
            await session.execute(
                update(products).where(products.c.id == product).values(stock=products.c.stock - 1)
            )
            decremented.set()
            await asyncio.sleep(30)

    task = asyncio.create_task(slow_writer())
    await decremented.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await seed.stock_of(product) == 5


async def test_reads_do_not_wait_for_open_write_transaction(db, seed, tmp_path):
    product = await seed.product(stock=5)
    reader = Database(f"sqlite+aiosqlite:///{tmp_path / 'sales.db'}", connect_retries=0, lock_timeout_ms=200)
    await reader.open()
    try:
        async with db.transaction() as session:
            await session.execute(
                update(products).where(products.c.id == product).values(stock=0)
            )

            listed = await queries.list_products(reader)
            ranking = await analytics.top_selling_products(reader)

        assert [p["stock"] for p in listed] == [5]
        assert ranking == []
    finally:
        await reader.close()

    assert await seed.stock_of(product) == 0


async def test_store_errors_become_transaction_aborted(db):
    with pytest.raises(TransactionAborted) as exc_info:
        async with db.transaction() as session:
            await session.execute(text("SELECT * FROM no_such_table"))

    assert exc_info.value.__cause__ is not None


async def test_store_errors_in_reads_become_store_unavailable(db):
    with pytest.raises(StoreUnavailable):
        async with db.session() as session:
            await session.execute(text("SELECT * FROM no_such_table"))


async def test_open_gives_up_after_bounded_retries(tmp_path):
    database = Database(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'sales.db'}",
        connect_retries=2,
        retry_interval=0,
    )

    with pytest.raises(StoreUnavailable) as exc_info:
        await database.open()

    assert "after 2 retries" in str(exc_info.value)
    assert database.engine is None


async def test_closed_database_is_unavailable(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'sales.db'}")

    assert await database.ping() is False
    with pytest.raises(StoreUnavailable):
        async with database.transaction():
            pass


async def test_ping(db):
    assert await db.ping() is True


def test_as_utc_treats_naive_values_as_utc():
    naive = datetime(2024, 1, 1, 9, 30)
    jst = datetime(2024, 1, 1, 18, 30, tzinfo=timezone(timedelta(hours=9)))

    assert as_utc(naive) == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)
    assert as_utc(jst) == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)
    assert as_utc(None) is None
