"""
Sales Service — テーブル定義

3 つのコレクション(顧客・商品・注文)を不透明な文字列 ID で管理する。
注文明細は order_lines に正規化し、line_no でリクエスト時の順序を保つ。

集計クエリのために orders の customer_id / order_date / status と
order_lines の product_id にインデックスを張る。
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)

metadata = MetaData()

MONEY = Numeric(12, 2)

customers = Table(
    "customers",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("email", String(320), nullable=False),
    Column("age", Integer, nullable=False),
    Column("location", String(200), nullable=False),
    Column("gender", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("gender IN ('Male', 'Female', 'Other')", name="ck_customers_gender"),
    Index("ux_customers_email", "email", unique=True),
)

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("category", String(100), nullable=False),
    Column("price", MONEY, nullable=False),
    Column("stock", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("price >= 0", name="ck_products_price"),
    CheckConstraint("stock >= 0", name="ck_products_stock"),
    Index("ix_products_category", "category"),
    Index("ix_products_name", "name"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("customer_id", String(36), ForeignKey("customers.id"), nullable=False),
    Column("total_amount", MONEY, nullable=False),
    Column("order_date", DateTime(timezone=True), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("total_amount >= 0", name="ck_orders_total_amount"),
    CheckConstraint(
        "status IN ('pending', 'completed', 'canceled')", name="ck_orders_status"
    ),
    Index("ix_orders_customer_id", "customer_id"),
    Index("ix_orders_order_date", "order_date"),
    Index("ix_orders_status", "status"),
)

# 商品は後から削除されうるので product_id に外部キーは張らない
order_lines = Table(
    "order_lines",
    metadata,
    Column("order_id", String(36), ForeignKey("orders.id"), primary_key=True),
    Column("line_no", Integer, primary_key=True),
    Column("product_id", String(36), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price_at_purchase", MONEY, nullable=False),
    CheckConstraint("quantity >= 1", name="ck_order_lines_quantity"),
    CheckConstraint("price_at_purchase >= 0", name="ck_order_lines_price"),
    Index("ix_order_lines_product_id", "product_id"),
)
