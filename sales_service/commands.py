"""
Sales Service — 注文トランザクション (CQRS の Write 側)

placeOrder は 1 つのトランザクションで以下を行う:

1. 顧客の存在確認          → なければ CustomerNotFound
2. 明細の入力チェック      → 不正なら InvalidLineItem（まだ何も変更していない）
3. 全明細の条件付き在庫減算 (stock >= quantity のときだけ減らす 1 回の UPDATE)
4. 1 行でも失敗したら全体をロールバックして OrderRejected（全行分の問題を返す）
5. すべて成功したら注文を INSERT して在庫減算と一緒にコミット

在庫の確認と減算を別々のクエリにすると、その間に他の注文が割り込める。
そのため必ず条件付き UPDATE 1 回で行う。
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Database, utcnow
from .errors import CustomerNotFound, InvalidLineItem, OrderRejected
from .events import publish_order_placed
from .models import (
    LineItemInput,
    Order,
    OrderLine,
    OrderStatus,
    PlaceOrderInput,
    StockIssue,
    round_money,
    to_decimal,
)
from .schema import customers, order_lines, orders, products

logger = logging.getLogger(__name__)


def validate_lines(lines: list[LineItemInput]) -> None:
    if not lines:
        raise InvalidLineItem(None, "at least one line item is required")
    for index, line in enumerate(lines):
        if line.product_id is None or not line.product_id.strip():
            raise InvalidLineItem(index, "product_id is required")
        if line.quantity is None or line.quantity < 1:
            raise InvalidLineItem(index, f"quantity must be >= 1, got {line.quantity}")


def compute_total(lines: list[OrderLine]) -> Decimal:
    total = sum(
        (to_decimal(line.price_at_purchase) * line.quantity for line in lines),
        Decimal("0"),
    )
    return round_money(total)


async def _customer_exists(session: AsyncSession, customer_id: str) -> bool:
    result = await session.execute(
        select(customers.c.id).where(customers.c.id == customer_id)
    )
    return result.first() is not None


async def _reserve_line(
    session: AsyncSession,
    index: int,
    line: LineItemInput,
    now: datetime,
) -> OrderLine | StockIssue:
    """1 明細分の条件付き減算。成功なら OrderLine、失敗なら StockIssue を返す。"""
    result = await session.execute(
        update(products)
        .where(products.c.id == line.product_id, products.c.stock >= line.quantity)
        .values(stock=products.c.stock - line.quantity, updated_at=now)
        .returning(products.c.price)
    )
    row = result.first()
    if row is not None:
        return OrderLine(
            product_id=line.product_id,
            quantity=line.quantity,
            price_at_purchase=float(round_money(row.price)),
        )

    # 失敗理由の切り分け。同じトランザクション内なので、この注文の先行行の減算も反映済み
    result = await session.execute(
        select(products.c.name, products.c.stock).where(products.c.id == line.product_id)
    )
    product = result.first()
    if product is None:
        return StockIssue(
            line_index=index,
            product_id=line.product_id,
            kind="product_not_found",
            requested=line.quantity,
        )
    return StockIssue(
        line_index=index,
        product_id=line.product_id,
        kind="insufficient_stock",
        requested=line.quantity,
        available=product.stock,
        product_name=product.name,
    )


async def _insert_order(session: AsyncSession, order: Order) -> None:
    await session.execute(
        insert(orders).values(
            id=order.id,
            customer_id=order.customer_id,
            total_amount=to_decimal(order.total_amount),
            order_date=order.order_date,
            status=order.status.value,
            created_at=order.order_date,
            updated_at=order.order_date,
        )
    )
    await session.execute(
        insert(order_lines),
        [
            {
                "order_id": order.id,
                "line_no": line_no,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "price_at_purchase": to_decimal(line.price_at_purchase),
            }
            for line_no, line in enumerate(order.products)
        ],
    )


async def place_order(
    db: Database,
    redis: aioredis.Redis | None,
    request: PlaceOrderInput,
) -> Order:
    """
    注文作成コマンド

    在庫減算と注文の記録は 1 つのトランザクションにまとめる。
    途中で失敗した場合、他の処理から見える変更は何も残らない。
    """
    lines = request.products

    async with db.transaction() as session:
        if not await _customer_exists(session, request.customer_id):
            raise CustomerNotFound(request.customer_id)
        validate_lines(lines)

        logger.info(
            "Processing order for customer %s (%d lines)",
            request.customer_id,
            len(lines),
        )

        # 商品 ID 順にロックを取る（逆順で取り合うデッドロックを避ける）
        now = utcnow()
        outcomes: dict[int, OrderLine | StockIssue] = {}
        for index in sorted(range(len(lines)), key=lambda i: (lines[i].product_id, i)):
            outcomes[index] = await _reserve_line(session, index, lines[index], now)

        issues = [
            outcome
            for _, outcome in sorted(outcomes.items())
            if isinstance(outcome, StockIssue)
        ]
        if issues:
            logger.warning(
                "Order rejected for customer %s: %d of %d lines failed",
                request.customer_id,
                len(issues),
                len(lines),
            )
            raise OrderRejected(issues)

        reserved = [outcomes[index] for index in range(len(lines))]
        order = Order(
            id=str(uuid.uuid4()),
            customer_id=request.customer_id,
            products=reserved,
            total_amount=float(compute_total(reserved)),
            order_date=now,
            status=OrderStatus.PENDING,
        )
        await _insert_order(session, order)

    logger.info("Order created successfully: %s, total: %.2f", order.id, order.total_amount)

    await publish_order_placed(redis, order)
    return order
