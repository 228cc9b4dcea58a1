"""
Sales Service — 売上分析 (CQRS Read 側)

完了済み (status = completed) の注文だけを対象に集計する。
集計はすべて SQL の JOIN / GROUP BY / ORDER BY で行い、
金額の丸め（小数第 2 位・四捨五入）だけを Python 側で行う。

書き込みトランザクションには参加せず、コミット済みのデータだけを読む。
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from .db import Database, as_utc
from .errors import InvalidDateRange
from .models import OrderStatus, round_money, to_decimal
from .schema import order_lines, orders, products

logger = logging.getLogger(__name__)

DEFAULT_TOP_LIMIT = 10
MAX_TOP_LIMIT = 100
UNCATEGORIZED = "Uncategorized"


def clamp_limit(limit: int | None) -> int:
    # 0 も他の値と同じく範囲に丸める（既定値 10 になるのは None のときだけ）
    if limit is None:
        return DEFAULT_TOP_LIMIT
    return max(1, min(limit, MAX_TOP_LIMIT))


def parse_date(field: str, value: str) -> datetime:
    """ISO 形式の日付 (YYYY-MM-DD) または日時を UTC の datetime にする。"""
    if not isinstance(value, str) or not value.strip():
        raise InvalidDateRange(field, value)
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise InvalidDateRange(field, value) from None
    return as_utc(parsed)


def _day_after(value: datetime) -> datetime:
    try:
        return value + timedelta(days=1)
    except OverflowError:
        # 9999-12-31 の翌日は表現できないので上限で打ち切る
        return datetime.max.replace(tzinfo=timezone.utc)


async def customer_spending(db: Database, customer_id: str) -> dict:
    """
    顧客ごとの支出サマリー

    注文が 1 件もなければエラーではなく 0 / None を返す。
    """
    logger.info("Calculating spending for customer: %s", customer_id)

    async with db.session() as session:
        result = await session.execute(
            select(
                func.sum(orders.c.total_amount).label("total_spent"),
                func.count(orders.c.id).label("order_count"),
                func.max(orders.c.order_date).label("last_order_date"),
            ).where(
                orders.c.customer_id == customer_id,
                orders.c.status == OrderStatus.COMPLETED.value,
            )
        )
        row = result.fetchone()

    order_count = row.order_count or 0
    if order_count == 0:
        return {
            "customer_id": customer_id,
            "total_spent": 0.0,
            "average_order_value": 0.0,
            "last_order_date": None,
        }

    total = to_decimal(row.total_spent)
    last_order_date = as_utc(row.last_order_date)
    return {
        "customer_id": customer_id,
        "total_spent": float(round_money(total)),
        "average_order_value": float(round_money(total / order_count)),
        "last_order_date": last_order_date.isoformat() if last_order_date else None,
    }


async def top_selling_products(db: Database, limit: int | None = DEFAULT_TOP_LIMIT) -> list[dict]:
    """
    売れ筋商品ランキング

    販売数が同じ場合は product_id の昇順（呼び出し側には順序を保証しない）。
    カタログから消えた商品の明細は JOIN で落ちる。
    """
    safe_limit = clamp_limit(limit)
    logger.info("Fetching top %d selling products", safe_limit)

    total_sold = func.sum(order_lines.c.quantity).label("total_sold")
    async with db.session() as session:
        result = await session.execute(
            select(order_lines.c.product_id, products.c.name, total_sold)
            .select_from(
                order_lines.join(orders, orders.c.id == order_lines.c.order_id).join(
                    products, products.c.id == order_lines.c.product_id
                )
            )
            .where(orders.c.status == OrderStatus.COMPLETED.value)
            .group_by(order_lines.c.product_id, products.c.name)
            .order_by(total_sold.desc(), order_lines.c.product_id)
            .limit(safe_limit)
        )
        return [
            {
                "product_id": row.product_id,
                "name": row.name,
                "total_sold": int(row.total_sold),
            }
            for row in result.fetchall()
        ]


async def sales_analytics(db: Database, start_date: str, end_date: str) -> dict:
    """
    期間内の売上とカテゴリ別内訳

    end_date の日は丸ごと含める: order_date ∈ [start_date, end_date + 1 日)
    """
    start = parse_date("start_date", start_date)
    end = _day_after(parse_date("end_date", end_date))

    logger.info("Analyzing sales from %s to %s", start.isoformat(), end.isoformat())

    in_window = (
        orders.c.status == OrderStatus.COMPLETED.value,
        orders.c.order_date >= start,
        orders.c.order_date < end,
    )
    revenue = func.sum(order_lines.c.quantity * order_lines.c.price_at_purchase).label("revenue")

    async with db.session() as session:
        # 1. 全体の売上と件数
        result = await session.execute(
            select(
                func.sum(orders.c.total_amount).label("total_revenue"),
                func.count(orders.c.id).label("completed_orders"),
            ).where(*in_window)
        )
        summary = result.fetchone()

        # 2. 明細 → 商品カテゴリで JOIN して集計
        result = await session.execute(
            select(products.c.category, revenue)
            .select_from(
                order_lines.join(orders, orders.c.id == order_lines.c.order_id).join(
                    products, products.c.id == order_lines.c.product_id
                )
            )
            .where(*in_window)
            .group_by(products.c.category)
        )
        categories = result.fetchall()

    completed_orders = summary.completed_orders or 0
    if completed_orders == 0:
        return {"total_revenue": 0.0, "completed_orders": 0, "category_breakdown": []}

    breakdown = [
        {
            "category": row.category or UNCATEGORIZED,
            "revenue": float(round_money(row.revenue)),
        }
        for row in categories
    ]
    breakdown.sort(key=lambda item: (-item["revenue"], item["category"]))

    return {
        "total_revenue": float(round_money(summary.total_revenue)),
        "completed_orders": completed_orders,
        "category_breakdown": breakdown,
    }
