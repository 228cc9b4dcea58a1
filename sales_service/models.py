"""
Sales Service — ドメインモデル

注文・明細・在庫問題を pydantic モデルとして定義する。
金額計算は Decimal で行い、API に返すときだけ float にする。
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """DB ドライバが返す float / Decimal / int をそのまま Decimal に揃える。"""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """小数第 2 位で四捨五入（0 から遠い方へ丸める）。"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


# ── Command Input ────────────────────────────────


class LineItemInput(BaseModel):
    # 検証は Coordinator 側で行い、行番号付きの InvalidLineItem を返す
    product_id: str | None = None
    quantity: int | None = None


class PlaceOrderInput(BaseModel):
    customer_id: str
    products: list[LineItemInput]


# ── Order ────────────────────────────────────────


class OrderLine(BaseModel):
    product_id: str
    quantity: int
    price_at_purchase: float


class Order(BaseModel):
    id: str
    customer_id: str
    products: list[OrderLine]
    total_amount: float
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING


class StockIssue(BaseModel):
    """1 行分の在庫問題。Coordinator はこれを集めて OrderRejected にする。"""

    line_index: int
    product_id: str
    kind: Literal["product_not_found", "insufficient_stock"]
    requested: int
    available: int | None = None
    product_name: str | None = None

    def describe(self) -> str:
        if self.kind == "product_not_found":
            return f"Product not found: {self.product_id}"
        return f"{self.product_name} (insufficient stock: {self.available} available)"
