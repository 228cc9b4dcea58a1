"""
Sales Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST) と Query (GET) のエンドポイントを分離。

起動:
    DATABASE_URL=postgresql+asyncpg://... uvicorn sales_service.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from . import analytics, commands, queries
from .config import Settings
from .db import Database
from .errors import (
    CustomerNotFound,
    InvalidDateRange,
    InvalidLineItem,
    OrderRejected,
    SalesServiceError,
    StoreUnavailable,
)
from .logging_config import configure_logging
from .models import Order, PlaceOrderInput

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    CustomerNotFound: 404,
    InvalidLineItem: 400,
    InvalidDateRange: 400,
    OrderRejected: 409,
    StoreUnavailable: 503,
}


def _status_for(exc: SalesServiceError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    redis: aioredis.Redis | None = None,
) -> FastAPI:
    """
    アプリを組み立てる。

    database / redis を渡した場合は呼び出し側がライフサイクルを管理する（テスト用）。
    渡さなければ lifespan の中で settings から開いて、終了時に閉じる。
    """
    if settings is None and database is None:
        settings = Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_db = app.state.db is None
        owns_redis = app.state.redis is None and settings is not None and settings.redis_url

        if settings is not None:
            configure_logging(settings.log_level, settings.log_format, settings.service_name)
        if owns_db:
            app.state.db = Database.from_settings(settings)
            await app.state.db.open()
            if settings.db_create_schema:
                await app.state.db.create_schema()
        if owns_redis:
            app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)

        yield

        if owns_redis:
            await app.state.redis.aclose()
            app.state.redis = None
        if owns_db:
            await app.state.db.close()
            app.state.db = None

    app = FastAPI(title="Sales Service", lifespan=lifespan)
    app.state.db = database
    app.state.redis = redis

    @app.exception_handler(SalesServiceError)
    async def handle_service_error(request: Request, exc: SalesServiceError):
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    # ── Command Endpoints (Write 側) ─────────────────

    @app.post("/commands/orders", status_code=201, response_model=Order)
    async def cmd_place_order(req: PlaceOrderInput, request: Request):
        """注文作成コマンド（在庫減算と注文記録をまとめて 1 トランザクション）"""
        return await commands.place_order(request.app.state.db, request.app.state.redis, req)

    # ── Query Endpoints (Read 側) ────────────────────

    @app.get("/queries/customers")
    async def query_list_customers(request: Request):
        return await queries.list_customers(request.app.state.db)

    @app.get("/queries/customers/{customer_id}")
    async def query_get_customer(customer_id: str, request: Request):
        customer = await queries.get_customer(request.app.state.db, customer_id)
        if not customer:
            raise HTTPException(404, "Customer not found")
        return customer

    @app.get("/queries/customers/{customer_id}/spending")
    async def query_customer_spending(customer_id: str, request: Request):
        return await analytics.customer_spending(request.app.state.db, customer_id)

    @app.get("/queries/customers/{customer_id}/orders")
    async def query_customer_orders(
        customer_id: str,
        request: Request,
        page: int = Query(1),
        limit: int = Query(10),
    ):
        return await queries.list_customer_orders(
            request.app.state.db, customer_id, page=page, limit=limit
        )

    @app.get("/queries/products")
    async def query_list_products(request: Request):
        return await queries.list_products(request.app.state.db)

    # /queries/products/{product_id} より先に登録する
    @app.get("/queries/products/top-selling")
    async def query_top_selling(request: Request, limit: int = Query(analytics.DEFAULT_TOP_LIMIT)):
        return await analytics.top_selling_products(request.app.state.db, limit)

    @app.get("/queries/products/{product_id}")
    async def query_get_product(product_id: str, request: Request):
        product = await queries.get_product(request.app.state.db, product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        return product

    @app.get("/queries/orders/{order_id}")
    async def query_get_order(order_id: str, request: Request):
        order = await queries.get_order(request.app.state.db, order_id)
        if not order:
            raise HTTPException(404, "Order not found")
        return order

    @app.get("/queries/analytics/sales")
    async def query_sales_analytics(request: Request, start_date: str, end_date: str):
        return await analytics.sales_analytics(request.app.state.db, start_date, end_date)

    @app.get("/health")
    async def health(request: Request):
        db = request.app.state.db
        db_ok = db is not None and await db.ping()
        return {
            "status": "ok",
            "service": settings.service_name if settings else "sales-service",
            "db": "connected" if db_ok else "disconnected",
        }

    return app
