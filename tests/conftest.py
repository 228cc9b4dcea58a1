import json
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import insert, select

from sales_service.db import Database, utcnow
from sales_service.models import round_money
from sales_service.schema import customers, order_lines, orders, products


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(
        f"sqlite+aiosqlite:///{tmp_path / 'sales.db'}",
        connect_retries=0,
        lock_timeout_ms=10000,
    )
    await database.open()
    await database.create_schema()
    yield database
    await database.close()


class Seed:
    """テスト用データを直接テーブルに書き込むヘルパー"""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def customer(self, name="Alice", email=None, age=30, location="Tokyo", gender="Female") -> str:
        customer_id = str(uuid.uuid4())
        now = utcnow()
        async with self.db.transaction() as session:
            await session.execute(
                insert(customers).values(
                    id=customer_id,
                    name=name,
                    email=email or f"{customer_id}@example.com",
                    age=age,
                    location=location,
                    gender=gender,
                    created_at=now,
                    updated_at=now,
                )
            )
        return customer_id

    async def product(self, name="Widget", category="general", price="10.00", stock=10) -> str:
        product_id = str(uuid.uuid4())
        now = utcnow()
        async with self.db.transaction() as session:
            await session.execute(
                insert(products).values(
                    id=product_id,
                    name=name,
                    category=category,
                    price=Decimal(price),
                    stock=stock,
                    created_at=now,
                    updated_at=now,
                )
            )
        return product_id

    async def order(self, customer_id, lines, status="completed", order_date=None) -> str:
        """lines: [(product_id, quantity, price_str), ...]"""
        order_id = str(uuid.uuid4())
        order_date = order_date or utcnow()
        total = round_money(sum((Decimal(price) * qty for _, qty, price in lines), Decimal("0")))
        async with self.db.transaction() as session:
            await session.execute(
                insert(orders).values(
                    id=order_id,
                    customer_id=customer_id,
                    total_amount=total,
                    order_date=order_date,
                    status=status,
                    created_at=order_date,
                    updated_at=order_date,
                )
            )
            await session.execute(
                insert(order_lines),
                [
                    {
                        "order_id": order_id,
                        "line_no": line_no,
                        "product_id": product_id,
                        "quantity": qty,
                        "price_at_purchase": Decimal(price),
                    }
                    for line_no, (product_id, qty, price) in enumerate(lines)
                ],
            )
        return order_id

    async def stock_of(self, product_id) -> int | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(products.c.stock).where(products.c.id == product_id)
            )
            return result.scalar_one_or_none()

    async def order_count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(orders.c.id))
            return len(result.fetchall())


@pytest.fixture
def seed(db):
    return Seed(db)


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise RedisConnectionError("redis is down")
        self.published.append((channel, json.loads(message)))
        return 1


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def failing_redis():
    return FakeRedis(fail=True)
