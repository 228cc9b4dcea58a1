"""
Sales Service — クエリハンドラ (CQRS の Read 側)

顧客・商品・注文の参照系。どれも状態を変更しないので何度呼んでも安全。
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Database, as_utc
from .models import to_decimal
from .schema import customers, order_lines, orders, products

MAX_PAGE_SIZE = 100


def _iso(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _customer_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "email": row.email,
        "age": row.age,
        "location": row.location,
        "gender": row.gender,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _product_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "category": row.category,
        "price": float(to_decimal(row.price)),
        "stock": row.stock,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


# ── Customers ────────────────────────────────────


async def get_customer(db: Database, customer_id: str) -> dict | None:
    async with db.session() as session:
        result = await session.execute(
            select(customers).where(customers.c.id == customer_id)
        )
        row = result.fetchone()
    if not row:
        return None
    return _customer_dict(row)


async def list_customers(db: Database) -> list[dict]:
    async with db.session() as session:
        result = await session.execute(
            select(customers).order_by(customers.c.name, customers.c.id)
        )
        return [_customer_dict(row) for row in result.fetchall()]


# ── Products ─────────────────────────────────────


async def get_product(db: Database, product_id: str) -> dict | None:
    async with db.session() as session:
        result = await session.execute(
            select(products).where(products.c.id == product_id)
        )
        row = result.fetchone()
    if not row:
        return None
    return _product_dict(row)


async def list_products(db: Database) -> list[dict]:
    async with db.session() as session:
        result = await session.execute(
            select(products).order_by(products.c.name, products.c.id)
        )
        return [_product_dict(row) for row in result.fetchall()]


# ── Orders ───────────────────────────────────────


async def _load_orders(session: AsyncSession, order_rows) -> list[dict]:
    """注文行に明細を付けて返す。明細は 1 回のクエリでまとめて読む。"""
    if not order_rows:
        return []

    result = await session.execute(
        select(order_lines)
        .where(order_lines.c.order_id.in_([row.id for row in order_rows]))
        .order_by(order_lines.c.order_id, order_lines.c.line_no)
    )
    lines_by_order: dict[str, list[dict]] = {}
    for line in result.fetchall():
        lines_by_order.setdefault(line.order_id, []).append(
            {
                "product_id": line.product_id,
                "quantity": line.quantity,
                "price_at_purchase": float(to_decimal(line.price_at_purchase)),
            }
        )

    return [
        {
            "id": row.id,
            "customer_id": row.customer_id,
            "products": lines_by_order.get(row.id, []),
            "total_amount": float(to_decimal(row.total_amount)),
            "order_date": _iso(row.order_date),
            "status": row.status,
        }
        for row in order_rows
    ]


async def get_order(db: Database, order_id: str) -> dict | None:
    async with db.session() as session:
        result = await session.execute(select(orders).where(orders.c.id == order_id))
        row = result.fetchone()
        if not row:
            return None
        loaded = await _load_orders(session, [row])
    return loaded[0]


async def list_customer_orders(
    db: Database,
    customer_id: str,
    page: int = 1,
    limit: int = 10,
) -> list[dict]:
    """顧客の注文履歴（新しい順）。page は 1 始まり。"""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    async with db.session() as session:
        result = await session.execute(
            select(orders)
            .where(orders.c.customer_id == customer_id)
            .order_by(orders.c.order_date.desc(), orders.c.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return await _load_orders(session, result.fetchall())
